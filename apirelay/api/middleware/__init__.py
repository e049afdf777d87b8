"""API Middleware - Request processing middleware."""

from apirelay.api.middleware.auth import APIKeyMiddleware

__all__ = [
    "APIKeyMiddleware",
]
