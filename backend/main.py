from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from routers import auth, chat, multi_agent, knowledge, templates
from database import init_async_db
from config import settings, setup_logging
from exceptions import AppError
from middleware import LoggingMiddleware
from pydantic import ValidationError
from fastapi.exceptions import RequestValidationError
from starlette.responses import JSONResponse

# Setup logging first
logger, request_id_filter = setup_logging()

logger.info(f"Database target: {settings.DB_NAME or 'sqlite'} @ {settings.DB_HOST or 'local'}")

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.SETTING_VERSION,
    swagger_ui_parameters={
        "persistAuthorization": True,
        "displayRequestDuration": True,
        "tryItOutEnabled": True,
        "defaultModelsExpandDepth": -1,
    }
)

# Add logging middleware
app.add_middleware(LoggingMiddleware, request_id_filter=request_id_filter)

# CORS configuration - include X-New-Token in exposed headers for token refresh
cors_expose_headers = list(settings.CORS_EXPOSE_HEADERS) + ["X-New-Token"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
    expose_headers=cors_expose_headers,
)


@app.middleware("http")
async def token_refresh_middleware(request: Request, call_next):
    """
    Inject a refreshed token into the response header.

    validate_token() stores a new token in request.state.new_token once the
    old one is past its refresh threshold; the client swaps it in.
    """
    response = await call_next(request)

    new_token = getattr(request.state, "new_token", None)
    if new_token:
        response.headers["X-New-Token"] = new_token

    return response

# Include routers
logger.info("Including routers...")

app.include_router(
    auth.router,
    prefix="/api/auth",
    tags=["auth"],
    responses={401: {"description": "Not authenticated"}}
)

app.include_router(multi_agent.router)
app.include_router(chat.router)
app.include_router(knowledge.router)
app.include_router(templates.router)
app.include_router(templates.files_router)

logger.info("Routers included")


@app.on_event("startup")
async def startup_event():
    logger.info("Application starting up...")
    await init_async_db()
    logger.info("Database initialized")


@app.get("/")
async def root():
    """Root endpoint - points at the health check"""
    return {"message": f"{settings.APP_NAME} API", "health": "/api/health", "docs": "/docs"}


@app.get("/api/health")
async def health_check():
    """Health check endpoint for monitoring"""
    return {"status": "healthy", "version": settings.SETTING_VERSION}


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} in {request.url.path}: {exc.message}")
    else:
        logger.warning(f"{type(exc).__name__} in {request.url.path}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message}
    )


@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    logger.error(f"Pydantic ValidationError in {request.url.path}:")
    for error in exc.errors():
        logger.error(f"  - {error['loc']}: {error['msg']} (type: {error['type']})")
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors(include_url=False, include_context=False)}
    )


@app.exception_handler(RequestValidationError)
async def request_validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle FastAPI request validation errors (body parsing, query params, etc.)"""
    logger.error(f"RequestValidationError in {request.url.path}:")
    for error in exc.errors():
        logger.error(f"  - {error.get('loc')}: {error.get('msg')} (type: {error.get('type')})")
    return JSONResponse(
        status_code=422,
        content={"detail": [
            {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
            for error in exc.errors()
        ]}
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all handler for any unhandled exceptions"""
    logger.exception(f"Unhandled exception in {request.url.path}: {type(exc).__name__}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {type(exc).__name__}"}
    )


logger.info("Application startup complete")


def main():
    """Run the API server as a standalone process"""
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info"
    )


if __name__ == "__main__":
    main()
