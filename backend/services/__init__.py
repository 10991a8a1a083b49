from .auth_service import validate_token

__all__ = [
    'validate_token'
]
