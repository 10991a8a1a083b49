import time
import logging
import json
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp
from config.settings import settings
from config.logging_config import get_request_id

logger = logging.getLogger(__name__)

MASK = "********"


class LoggingMiddleware(BaseHTTPMiddleware):
    """
    Request/response logging with request ids and timing.

    - Assigns a request id, exposes it on request.state and the X-Request-ID header
    - Logs method, path, query params and client, masking sensitive values
    - Logs status and duration; 4xx as warning, 5xx as error, slow requests as warning
    """

    def __init__(self, app: ASGIApp, request_id_filter=None):
        super().__init__(app)
        self.request_id_filter = request_id_filter

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or get_request_id()
        if self.request_id_filter:
            self.request_id_filter.request_id = request_id

        request.state.request_id = request_id
        start_time = time.time()

        self._log_request(request, request_id)

        try:
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000
            self._log_response(request, response, duration_ms, request_id)
            response.headers["X-Request-ID"] = request_id
            return response
        except Exception as exc:
            duration_ms = (time.time() - start_time) * 1000
            logger.exception(
                f"Unhandled exception processing request: {str(exc)}",
                extra={
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "duration_ms": duration_ms
                }
            )
            raise
        finally:
            if self.request_id_filter:
                self.request_id_filter.request_id = None

    def _log_request(self, request: Request, request_id: str):
        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "query_params": self._mask_sensitive_data(dict(request.query_params)),
            "client_host": request.client.host if request.client else None,
            "user_agent": request.headers.get("user-agent"),
        }
        if settings.LOG_LEVEL == "DEBUG":
            log_data["headers"] = self._mask_sensitive_headers(dict(request.headers))

        logger.info(f"Request: {request.method} {request.url.path}", extra=log_data)

    def _log_response(self, request: Request, response: Response, duration_ms: float, request_id: str):
        log_data = {
            "request_id": request_id,
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2)
        }

        # Streaming responses have no body attribute
        if settings.LOG_RESPONSE_BODY and hasattr(response, "body"):
            try:
                log_data["body"] = self._mask_sensitive_data(json.loads(response.body))
            except (ValueError, TypeError):
                if len(response.body) < 1000:
                    log_data["body"] = response.body.decode('utf-8', errors='replace')

        if response.status_code >= 500:
            logger.error(f"Response: {response.status_code} - {duration_ms:.2f}ms", extra=log_data)
        elif response.status_code >= 400:
            logger.warning(f"Response: {response.status_code} - {duration_ms:.2f}ms", extra=log_data)
        elif duration_ms > settings.LOG_PERFORMANCE_THRESHOLD_MS:
            logger.warning(f"Slow response: {request.method} {request.url.path} - {response.status_code} - {duration_ms:.2f}ms", extra=log_data)
        else:
            logger.info(f"Response: {response.status_code} - {duration_ms:.2f}ms", extra=log_data)

    def _mask_sensitive_headers(self, headers: dict) -> dict:
        return {
            key: MASK if _is_sensitive(key) else value
            for key, value in headers.items()
        }

    def _mask_sensitive_data(self, data):
        """Recursively mask sensitive fields in data structures."""
        if isinstance(data, dict):
            return {
                key: MASK if _is_sensitive(key) else self._mask_sensitive_data(value)
                for key, value in data.items()
            }
        if isinstance(data, list):
            return [self._mask_sensitive_data(item) for item in data]
        return data


def _is_sensitive(key: str) -> bool:
    return any(sensitive in key.lower() for sensitive in settings.LOG_SENSITIVE_FIELDS)
