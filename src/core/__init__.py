from core.logging_middleware import LoggingMiddleware
from core.settings import Settings, StorageBackend, get_settings

__all__ = [
    "LoggingMiddleware",
    "get_settings",
    "Settings",
    "StorageBackend",
]
