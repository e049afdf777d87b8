"""
API Key Authentication Middleware
Guards the admin endpoints with an API key and throttles failed attempts.
"""

from typing import List, Optional

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from apirelay.api.security import extract_api_key_from_headers, verify_api_key
from apirelay.proxy.errors import RateLimited

logger = structlog.get_logger(__name__)

LOGIN_TIER = "login"


class APIKeyMiddleware(BaseHTTPMiddleware):
    """
    Middleware that validates API keys on protected path prefixes.

    Accepts API keys via:
    - X-API-Key header
    - Authorization: Bearer <key> header

    Returns 401 for missing or invalid keys. Every failed attempt counts
    against the ``login`` rate limit tier; once it is exhausted the
    client gets 429 until the window resets, even with a valid key.
    """

    def __init__(
        self,
        app,
        api_keys: Optional[List[str]] = None,
        protected_prefixes: Optional[List[str]] = None,
    ):
        super().__init__(app)
        self.api_keys = list(api_keys or [])
        self.protected_prefixes = protected_prefixes or ["/admin"]

    async def dispatch(self, request: Request, call_next):
        path = request.url.path
        if not self._is_protected(path):
            return await call_next(request)

        gateway = request.app.state.gateway
        client_ip = gateway.client_ip(request)
        limiter = gateway.state.rate_limiter

        lockout = limiter.peek(LOGIN_TIER, client_ip)
        if lockout is not None and not lockout.allowed:
            return self._locked_out(limiter, lockout, client_ip)

        api_key = extract_api_key_from_headers(dict(request.headers))

        if not api_key:
            await limiter.admit(LOGIN_TIER, client_ip)
            logger.warning(
                "auth_failed_missing_key",
                client_ip=client_ip,
                path=path,
                method=request.method,
            )
            return JSONResponse(
                status_code=401,
                content={
                    "error": "missing_api_key",
                    "message": "API key required",
                    "hint": "Include X-API-Key header or Authorization: Bearer <key>",
                },
            )

        if not verify_api_key(api_key, self.api_keys):
            await limiter.admit(LOGIN_TIER, client_ip)
            logger.warning(
                "auth_failed_invalid_key",
                client_ip=client_ip,
                path=path,
                method=request.method,
            )
            return JSONResponse(
                status_code=401,
                content={
                    "error": "invalid_api_key",
                    "message": "Invalid API key",
                },
            )

        request.state.operator = f"apikey:{api_key[:8]}"
        logger.debug("auth_success", client_ip=client_ip, path=path, method=request.method)
        return await call_next(request)

    def _locked_out(self, limiter, result, client_ip: str) -> JSONResponse:
        logger.warning("auth_locked_out", client_ip=client_ip)
        return RateLimited(
            "Too many failed authentication attempts, please try again later",
            headers=result.headers(limiter.now()),
            retryAfterSeconds=result.retry_after_seconds,
        ).to_response()

    def _is_protected(self, path: str) -> bool:
        return any(path.startswith(prefix) for prefix in self.protected_prefixes)
