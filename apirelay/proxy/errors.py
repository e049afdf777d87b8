"""
Gateway Errors

Exception taxonomy for the admission and forwarding pipeline. Every
error carries the HTTP status it maps to and renders itself as the
structured JSON body returned to the caller.
"""

from typing import Any, Dict, Optional

from fastapi.responses import JSONResponse


class GatewayError(Exception):
    """Base class for terminal gateway outcomes."""

    status_code: int = 500
    error: str = "gateway_error"

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        error: Optional[str] = None,
        headers: Optional[Dict[str, str]] = None,
        **extra: Any,
    ):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if error is not None:
            self.error = error
        self.headers = dict(headers or {})
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error, "message": self.message}
        body.update(self.extra)
        return body

    def to_response(self) -> JSONResponse:
        return JSONResponse(
            status_code=self.status_code,
            content=self.to_dict(),
            headers=self.headers or None,
        )


class ValidationError(GatewayError):
    """Malformed or disallowed URL, scheme, method or body (400/403/413)."""

    status_code = 400
    error = "invalid_request"


class AdmissionDenied(GatewayError):
    """
    Deny-list or whitelist rejection.

    ``decoy`` marks a permanent block that must be answered with a
    delayed synthetic timeout instead of a truthful 403.
    """

    status_code = 403
    error = "access_denied"

    def __init__(self, message: str, decoy: bool = False, **kwargs: Any):
        if decoy:
            kwargs.setdefault("status_code", 408)
            kwargs.setdefault("error", "request_timeout")
        super().__init__(message, **kwargs)
        self.decoy = decoy


class RateLimited(GatewayError):
    """Client exceeded a rate limit tier (429)."""

    status_code = 429
    error = "rate_limited"


class UpstreamUnreachable(GatewayError):
    """Transport failure reaching the target: DNS (404), refused (503), timeout (504)."""

    status_code = 502
    error = "upstream_unreachable"


class InternalError(GatewayError):
    """Unexpected fault (500). Detail is only exposed in development."""

    status_code = 500
    error = "internal_error"
    GENERIC_MESSAGE = "An error occurred while processing the proxy request"

    @classmethod
    def from_exception(cls, exc: BaseException, expose_detail: bool) -> "InternalError":
        if expose_detail:
            return cls(cls.GENERIC_MESSAGE, detail=f"{type(exc).__name__}: {exc}")
        return cls(cls.GENERIC_MESSAGE)
