from pydantic_settings import BaseSettings
import os
import subprocess
from pathlib import Path
from dotenv import load_dotenv

# ENVIRONMENT=production selects .env.production; anything else uses .env
_backend_dir = Path(__file__).resolve().parent.parent
_is_production = os.environ.get("ENVIRONMENT") == "production"

if _is_production:
    load_dotenv(_backend_dir / ".env.production", override=False)
else:
    load_dotenv(_backend_dir / ".env", override=False)


def _get_git_version() -> str:
    """Get version from BUILD_VERSION file, git tag, or fallback."""
    version_file = _backend_dir / "BUILD_VERSION"
    if version_file.exists():
        v = version_file.read_text().strip()
        if v:
            return v
    try:
        tag = subprocess.check_output(
            ["git", "describe", "--tags", "--abbrev=0"],
            stderr=subprocess.DEVNULL,
            cwd=str(_backend_dir),
            timeout=5,
        ).decode().strip()
        if tag:
            return tag
    except (OSError, subprocess.SubprocessError):
        pass
    return "0.1.0"


class Settings(BaseSettings):
    APP_NAME: str = "AgentHub"
    SETTING_VERSION: str = _get_git_version()
    FRONTEND_URL: str = os.getenv("FRONTEND_URL", "http://localhost:5173")

    # Database settings. DATABASE_URL wins; otherwise MySQL from parts, else local SQLite.
    DATABASE_URL_OVERRIDE: str | None = os.getenv("DATABASE_URL")
    DB_HOST: str | None = os.getenv("DB_HOST")
    DB_PORT: str = os.getenv("DB_PORT", "3306")
    DB_USER: str | None = os.getenv("DB_USER")
    DB_PASSWORD: str | None = os.getenv("DB_PASSWORD")
    DB_NAME: str | None = os.getenv("DB_NAME")

    # Authentication settings
    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60

    # LLM providers
    ANTHROPIC_API_KEY: str | None = os.getenv("ANTHROPIC_API_KEY")
    OPENAI_API_KEY: str | None = os.getenv("OPENAI_API_KEY")
    AGENT_MODEL: str = os.getenv("AGENT_MODEL", "claude-sonnet-4-20250514")
    STRATEGY_MODEL: str = os.getenv("STRATEGY_MODEL", "gpt-4.1")
    EMBEDDING_MODEL: str = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")

    # Multi-agent orchestration
    MULTI_AGENT_MAX_ITERATIONS: int = int(os.getenv("MULTI_AGENT_MAX_ITERATIONS", "5"))
    SELECTION_HISTORY_WINDOW: int = 3
    TERMINATION_HISTORY_WINDOW: int = 5
    SESSION_HISTORY_LIMIT: int = 10
    SINGLE_AGENT_HISTORY_LIMIT: int = 15
    AGENT_MAX_TOKENS: int = 1000
    AGENT_TEMPERATURE: float = 0.2
    AGENT_MAX_TOOL_ITERATIONS: int = 5
    MAX_QUERY_LENGTH: int = 500

    # Knowledge / RAG
    RAG_TOP_K: int = 5
    CHUNK_SIZE: int = 512
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # Plugin endpoints
    WEATHER_API_KEY: str | None = os.getenv("WEATHER_API_KEY")
    WEATHER_API_URL: str = os.getenv("WEATHER_API_URL", "http://api.weatherstack.com/current")
    EMAIL_WEBHOOK_URL: str | None = os.getenv("EMAIL_WEBHOOK_URL")
    WEB_SEARCH_URL: str = os.getenv("WEB_SEARCH_URL", "https://html.duckduckgo.com/html/")

    # Blob storage
    BLOB_BACKEND: str = os.getenv("BLOB_BACKEND", "local")  # Options: "local" or "s3"
    BLOB_LOCAL_ROOT: str = os.getenv("BLOB_LOCAL_ROOT", "storage")
    BLOB_PUBLIC_BASE_URL: str = os.getenv("BLOB_PUBLIC_BASE_URL", "http://localhost:8000/api/files")
    S3_BUCKET: str | None = os.getenv("S3_BUCKET")
    S3_REGION: str = os.getenv("S3_REGION", "us-east-1")
    S3_ENDPOINT_URL: str | None = os.getenv("S3_ENDPOINT_URL")
    S3_URL_EXPIRES_SECONDS: int = 3600

    # Environment
    IS_PRODUCTION: bool = _is_production

    # CORS settings
    CORS_ORIGINS: list[str] = ["*"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*", "Authorization"]
    CORS_EXPOSE_HEADERS: list[str] = ["Authorization", "X-Request-ID"]

    # Logging settings
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    LOG_DIR: str = os.getenv("LOG_DIR", "logs")
    LOG_FILENAME_PREFIX: str = "app"
    LOG_BACKUP_COUNT: int = 10
    LOG_FORMAT: str = "standard"  # Options: "standard" or "json"
    LOG_REQUEST_BODY: bool = False
    LOG_RESPONSE_BODY: bool = False
    LOG_SENSITIVE_FIELDS: list[str] = ["password", "token", "secret", "key", "authorization"]
    LOG_PERFORMANCE_THRESHOLD_MS: int = 500
    LOG_PROMPTS: bool = os.getenv("LOG_PROMPTS", "false").lower() == "true"

    @property
    def DATABASE_URL(self) -> str:
        if self.DATABASE_URL_OVERRIDE:
            return self.DATABASE_URL_OVERRIDE
        if self.DB_HOST:
            return f"mysql+pymysql://{self.DB_USER}:{self.DB_PASSWORD}@{self.DB_HOST}:{self.DB_PORT}/{self.DB_NAME}"
        return "sqlite+aiosqlite:///./agenthub.db"

    @property
    def anthropic_model(self) -> str:
        """Get the model used by the chat agents"""
        return self.AGENT_MODEL

    class Config:
        env_file = ".env"
        case_sensitive = True
        env_file_encoding = 'utf-8'
        extra = "ignore"

    def __init__(self, **kwargs):
        super().__init__(**kwargs)

        if self.IS_PRODUCTION and self.JWT_SECRET_KEY == "dev-secret-change-me":
            raise ValueError("JWT_SECRET_KEY not found in environment variables")
        if self.BLOB_BACKEND not in ("local", "s3"):
            raise ValueError(f"Unsupported BLOB_BACKEND: {self.BLOB_BACKEND}")
        if self.BLOB_BACKEND == "s3" and not self.S3_BUCKET:
            raise ValueError("S3_BUCKET not found in environment variables")


settings = Settings()
