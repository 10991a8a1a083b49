from .settings import settings
from .logging_config import setup_logging, get_request_id, new_error_id

__all__ = ["settings", "setup_logging", "get_request_id", "new_error_id"]
