"""
Upstream Forwarder

Validates target URLs, forwards requests to them with a header
allow-list and relays the upstream response. Transport failures are
classified into caller-visible statuses; upstream error statuses are
relayed unchanged.
"""

import asyncio
import socket
import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, Mapping, Optional
from urllib.parse import SplitResult, urlsplit

import httpx
import structlog

from apirelay.proxy.config import (
    ALLOWED_METHODS,
    BODY_METHODS,
    CORS_HEADERS,
    FORWARDED_REQUEST_HEADERS,
    RELAYED_RESPONSE_HEADERS,
)
from apirelay.proxy.errors import GatewayError, InternalError, UpstreamUnreachable, ValidationError

logger = structlog.get_logger(__name__)


ALLOWED_SCHEMES = ("http", "https")

# Literal hostname guard. Prefix matching only: no DNS resolution.
PRIVATE_HOSTS = ("localhost", "127.0.0.1")
PRIVATE_PREFIXES = ("10.", "172.", "192.168.")

DNS_ERROR_MARKERS = (
    "name or service not known",
    "nodename nor servname",
    "getaddrinfo failed",
    "temporary failure in name resolution",
    "no address associated with hostname",
)
REFUSED_ERROR_MARKERS = ("connection refused", "errno 111", "errno 61")


@dataclass
class ParsedTarget:
    """A validated forwarding target."""

    url: str
    method: str
    scheme: str
    hostname: str
    parts: SplitResult


@dataclass
class ForwardResult:
    """Response relayed from the target."""

    status_code: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: bytes = b""
    elapsed_ms: float = 0.0
    url: str = ""

    @property
    def is_upstream_error(self) -> bool:
        """The target answered with an error status (relayed as-is)."""
        return self.status_code >= 400


def is_private_hostname(hostname: str) -> bool:
    host = hostname.lower()
    return host in PRIVATE_HOSTS or host.startswith(PRIVATE_PREFIXES)


def _exception_chain(exc: BaseException) -> Iterator[BaseException]:
    seen = set()
    pending = [exc]
    while pending:
        current = pending.pop()
        if current is None or id(current) in seen:
            continue
        seen.add(id(current))
        yield current
        pending.extend(getattr(current, "exceptions", ()) or ())
        pending.append(current.__cause__)
        pending.append(current.__context__)


def classify_connect_error(exc: BaseException) -> Optional[str]:
    """Return ``"dns"``, ``"refused"`` or None for a connection failure."""
    for item in _exception_chain(exc):
        if isinstance(item, socket.gaierror):
            return "dns"
        if isinstance(item, ConnectionRefusedError):
            return "refused"

    text = " ".join(str(item).lower() for item in _exception_chain(exc))
    if any(marker in text for marker in DNS_ERROR_MARKERS):
        return "dns"
    if any(marker in text for marker in REFUSED_ERROR_MARKERS):
        return "refused"
    return None


class UpstreamForwarder:
    """
    Forwards one request to an arbitrary target URL.

    Features:
    - Scheme, private-host and method validation
    - Request and response header allow-lists
    - Hard timeout and redirect cap
    - Transport failure classification
    """

    def __init__(
        self,
        request_timeout: float = 30.0,
        max_redirects: int = 5,
        max_request_size: int = 1024 * 1024,
        service_name: str = "API-Proxy-Service",
        expose_errors: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.request_timeout = request_timeout
        self.max_redirects = max_redirects
        self.max_request_size = max_request_size
        self.service_name = service_name
        self.expose_errors = expose_errors
        self._transport = transport

        self._client: Optional[httpx.AsyncClient] = None

        # Statistics
        self._total_forwarded = 0
        self._successful_forwards = 0
        self._failed_forwards = 0

    async def initialize(self) -> None:
        """Initialize the HTTP client."""
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(self.request_timeout),
            limits=httpx.Limits(
                max_connections=100,
                max_keepalive_connections=20,
            ),
            follow_redirects=True,
            max_redirects=self.max_redirects,
            event_hooks={"request": [self._check_redirect_target]},
            transport=self._transport,
        )
        logger.info("http_client_initialized", timeout=self.request_timeout)

    async def shutdown(self) -> None:
        """Shutdown the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None
        logger.info("http_client_shutdown")

    # =========================================================================
    # Validation
    # =========================================================================

    async def _check_redirect_target(self, request: httpx.Request) -> None:
        """Runs for every hop, so a redirect cannot land on a private host."""
        if is_private_hostname(request.url.host):
            logger.warning("private_redirect_blocked", target=str(request.url))
            raise ValidationError(
                "Redirects to local or private network addresses are not allowed",
                error="private_address",
            )

    def validate(self, method: str, target_url: Optional[str]) -> ParsedTarget:
        """
        Validate a forwarding target.

        Raises:
            ValidationError: 400 for a missing/malformed URL, a private
                hostname or an unsupported method; 403 for a non-HTTP scheme
        """
        if not target_url or not target_url.strip():
            raise ValidationError("Target URL is required", error="missing_url")

        url = target_url.strip()
        try:
            parts = urlsplit(url)
            scheme = parts.scheme.lower()
        except ValueError:
            raise ValidationError("Target URL is malformed", error="invalid_url")

        if not scheme:
            raise ValidationError("Target URL must be absolute", error="invalid_url")

        if scheme not in ALLOWED_SCHEMES:
            raise ValidationError(
                "This type of URL is not allowed",
                status_code=403,
                error="forbidden_scheme",
                scheme=scheme,
            )

        try:
            hostname = parts.hostname
            parts.port  # raises on an out-of-range port
        except ValueError:
            raise ValidationError("Target URL is malformed", error="invalid_url")

        if not hostname:
            raise ValidationError("Target URL has no host", error="invalid_url")

        if is_private_hostname(hostname):
            raise ValidationError(
                "Local or private network addresses are not allowed",
                error="private_address",
            )

        method = method.upper()
        if method not in ALLOWED_METHODS:
            raise ValidationError(
                f"Unsupported HTTP method: {method}",
                error="invalid_method",
            )

        return ParsedTarget(
            url=url,
            method=method,
            scheme=scheme,
            hostname=hostname.lower(),
            parts=parts,
        )

    def check_body_size(self, size: int) -> None:
        if size > self.max_request_size:
            raise ValidationError(
                f"Request body exceeds {self.max_request_size} bytes",
                status_code=413,
                error="payload_too_large",
            )

    # =========================================================================
    # Forwarding
    # =========================================================================

    def build_request_headers(self, headers: Mapping[str, str]) -> Dict[str, str]:
        """Keep only allow-listed inbound headers."""
        return {
            name: value
            for name, value in headers.items()
            if name.lower() in FORWARDED_REQUEST_HEADERS
        }

    async def forward(
        self,
        method: str,
        target_url: str,
        headers: Mapping[str, str],
        body: Optional[bytes] = None,
    ) -> ForwardResult:
        """
        Forward a request to the target and return its response.

        Every upstream status, including 4xx/5xx, is a valid result.

        Raises:
            UpstreamUnreachable: DNS failure (404), refused (503), timeout (504)
            ValidationError: A redirect pointed at a private host (400)
            InternalError: Any other transport or unexpected failure (500)
        """
        if not self._client:
            await self.initialize()

        method = method.upper()
        content = body if method in BODY_METHODS and body else None
        outbound_headers = self.build_request_headers(headers)

        self._total_forwarded += 1
        start = time.perf_counter()

        try:
            # Wall-clock bound on the whole exchange, body included
            response = await asyncio.wait_for(
                self._client.request(
                    method=method,
                    url=target_url,
                    headers=outbound_headers,
                    content=content,
                ),
                timeout=self.request_timeout,
            )
        except GatewayError:
            self._failed_forwards += 1
            raise
        except (httpx.TimeoutException, asyncio.TimeoutError) as e:
            self._failed_forwards += 1
            logger.warning("upstream_timeout", target=target_url, error=str(e))
            raise UpstreamUnreachable(
                "The target server did not respond in time",
                status_code=504,
                error="upstream_timeout",
            ) from e
        except httpx.ConnectError as e:
            self._failed_forwards += 1
            kind = classify_connect_error(e)
            logger.warning("upstream_connect_failed", target=target_url, kind=kind, error=str(e))
            if kind == "dns":
                raise UpstreamUnreachable(
                    "Could not resolve the target host",
                    status_code=404,
                    error="upstream_not_found",
                ) from e
            if kind == "refused":
                raise UpstreamUnreachable(
                    "The target server refused the connection",
                    status_code=503,
                    error="upstream_refused",
                ) from e
            raise InternalError.from_exception(e, self.expose_errors) from e
        except Exception as e:
            self._failed_forwards += 1
            logger.error("upstream_request_failed", target=target_url, error=str(e))
            raise InternalError.from_exception(e, self.expose_errors) from e

        elapsed_ms = (time.perf_counter() - start) * 1000
        self._successful_forwards += 1

        return ForwardResult(
            status_code=response.status_code,
            headers=self.build_response_headers(method, response.headers, elapsed_ms),
            body=response.content,
            elapsed_ms=elapsed_ms,
            url=str(response.url),
        )

    def build_response_headers(
        self,
        method: str,
        upstream_headers: Mapping[str, str],
        elapsed_ms: float,
    ) -> Dict[str, str]:
        """
        Relay allow-listed upstream headers and add gateway headers.

        Content-Length is recomputed from the relayed body, except for
        HEAD where there is no body to measure.
        """
        relayed = {}
        for name in RELAYED_RESPONSE_HEADERS:
            if name == "content-length" and method != "HEAD":
                continue
            value = upstream_headers.get(name)
            if value is not None:
                relayed[name] = value

        relayed.update(CORS_HEADERS)
        relayed["X-Response-Time"] = f"{int(round(elapsed_ms))}ms"
        relayed["X-Proxy-Service"] = self.service_name
        return relayed

    def get_stats(self) -> Dict[str, Any]:
        """Get forwarder statistics."""
        return {
            "total_forwarded": self._total_forwarded,
            "successful_forwards": self._successful_forwards,
            "failed_forwards": self._failed_forwards,
            "success_rate": (
                self._successful_forwards / self._total_forwarded
                if self._total_forwarded > 0
                else 0.0
            ),
        }
