"""
API Relay Gateway

Per-request admission pipeline and the FastAPI application that exposes
it. Every proxied request runs, in order:

    SuspicionScan -> DenyCheck -> RateLimit -> URLValidate
        -> WhitelistCheck -> Forward -> Respond

and any stage may short-circuit straight to Respond.
"""

import asyncio
import random
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional

import httpx
import structlog
from fastapi import FastAPI, Request, Response
from starlette.background import BackgroundTask

from apirelay import __version__
from apirelay.config.settings import Settings, get_settings
from apirelay.domain.value_objects.client_identity import ClientIdentity
from apirelay.infrastructure.persistence.gateway_store import (
    GatewayStore,
    InMemoryGatewayStore,
    RedisGatewayStore,
)
from apirelay.infrastructure.persistence.redis_client import close_redis, get_redis_client, init_redis
from apirelay.proxy.blacklist import BlockDecision
from apirelay.proxy.config import BODY_METHODS, CORS_HEADERS, GatewayConfig
from apirelay.proxy.errors import (
    AdmissionDenied,
    GatewayError,
    InternalError,
    RateLimited,
    UpstreamUnreachable,
)
from apirelay.proxy.forwarder import ForwardResult, ParsedTarget
from apirelay.proxy.inspector import RequestContext
from apirelay.proxy.state import GatewayState

logger = structlog.get_logger(__name__)

PROXY_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH"]
API_TIER = "api"


def resolve_client_ip(request: Request, trust_proxy: bool = True, proxy_hops: int = 1) -> str:
    """
    Proxy-aware client IP, then the socket peer, then loopback.

    Each trusted proxy appends the address it saw to X-Forwarded-For, so
    the client is the entry ``proxy_hops`` from the right. Entries left of
    it are whatever the client sent and are ignored.
    """
    if trust_proxy:
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            hops = [h.strip() for h in forwarded.split(",") if h.strip()]
            if hops:
                return hops[-min(max(proxy_hops, 1), len(hops))]

    if request.client and request.client.host:
        return request.client.host

    return "127.0.0.1"


class ApiRelayGateway:
    """
    Admission-controlled forwarding gateway.

    Composes the suspicion scan, blacklist engine, rate limiter, URL
    validation, whitelist cache and forwarder held by a GatewayState.
    """

    def __init__(
        self,
        state: GatewayState,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        disconnect_poll_interval: float = 0.25,
    ):
        self.state = state
        self.config = state.config
        self._sleep = sleep
        self.disconnect_poll_interval = disconnect_poll_interval

        self._stats = {
            "total_requests": 0,
            "blocked_requests": 0,
            "rate_limited_requests": 0,
            "rejected_requests": 0,
            "forwarded_requests": 0,
            "failed_forwards": 0,
            "cancelled_forwards": 0,
            "start_time": None,
        }

    # =========================================================================
    # Admission pipeline
    # =========================================================================

    def client_ip(self, request: Request) -> str:
        return resolve_client_ip(request, self.config.trust_proxy, self.config.proxy_hops)

    async def handle_proxy(self, request: Request) -> Response:
        """
        Run one proxy request through the admission pipeline.

        Failure-class outcomes (status >= 400, unexpected errors and
        suspicious-pattern matches) are fed to the escalator after the
        response is produced. A deny-list block is terminal and is not
        itself recorded as a failure.
        """
        self._stats["total_requests"] += 1
        started = time.perf_counter()

        client_ip = self.client_ip(request)
        headers = dict(request.headers)
        method = request.method.upper()
        target_url = request.query_params.get("url")

        failures: List[str] = []
        rate_headers: Dict[str, str] = {}

        try:
            # SuspicionScan
            scan = self.state.inspector.inspect(
                RequestContext(
                    client_ip=client_ip,
                    method=method,
                    path=request.url.path,
                    query_string=str(request.url.query),
                    headers=headers,
                    user_agent=headers.get("user-agent"),
                )
            )
            if scan.is_suspicious:
                failures.append(scan.reason)

            # DenyCheck
            identity = ClientIdentity.from_headers(client_ip, headers)
            decision = await self.state.blacklist.check(identity)
            if decision.blocked:
                self._stats["blocked_requests"] += 1
                response = await self._blocked_response(decision, client_ip)
                return self._finish(response, client_ip, failures, started)

            # RateLimit
            limit = await self.state.rate_limiter.admit(API_TIER, client_ip)
            rate_headers = limit.headers(self.state.rate_limiter.now())
            if not limit.allowed:
                self._stats["rate_limited_requests"] += 1
                raise RateLimited(
                    "Too many requests, please try again later",
                    headers=rate_headers,
                    retryAfterSeconds=limit.retry_after_seconds,
                    resetTime=datetime.fromtimestamp(limit.reset_at, tz=timezone.utc).isoformat(),
                )

            # URLValidate
            target = self.state.forwarder.validate(method, target_url)
            body = None
            if method in BODY_METHODS:
                declared = request.headers.get("content-length", "")
                if declared.isdigit():
                    self.state.forwarder.check_body_size(int(declared))
                body = await request.body()
                self.state.forwarder.check_body_size(len(body))

            # WhitelistCheck
            if not await self.state.whitelist.is_domain_allowed(target.url):
                raise AdmissionDenied(
                    "The target domain is not in the allowed whitelist",
                    error="domain_not_whitelisted",
                )

            # Forward
            result = await self._forward_cancellable(request, target, headers, body)
            if result is None:
                self._stats["cancelled_forwards"] += 1
                return Response(status_code=499)

            self._stats["forwarded_requests"] += 1
            if result.is_upstream_error:
                failures.append(f"upstream status {result.status_code}")
            response = Response(
                content=result.body,
                status_code=result.status_code,
                headers=result.headers,
            )

        except GatewayError as e:
            if isinstance(e, (UpstreamUnreachable, InternalError)):
                self._stats["failed_forwards"] += 1
            elif not isinstance(e, RateLimited):
                self._stats["rejected_requests"] += 1
            logger.info(
                "proxy_request_rejected",
                client_ip=client_ip,
                target=target_url,
                status=e.status_code,
                error=e.error,
            )
            failures.append(e.error)
            response = e.to_response()

        except Exception as e:
            logger.exception("proxy_request_failed", client_ip=client_ip, target=target_url)
            failures.append("internal error")
            response = InternalError.from_exception(e, self.config.expose_errors).to_response()

        for name, value in rate_headers.items():
            response.headers.setdefault(name, value)
        return self._finish(response, client_ip, failures, started)

    def _finish(
        self,
        response: Response,
        client_ip: str,
        failures: List[str],
        started: float,
    ) -> Response:
        for name, value in CORS_HEADERS.items():
            response.headers.setdefault(name, value)
        if "x-response-time" not in response.headers:
            elapsed_ms = (time.perf_counter() - started) * 1000
            response.headers["X-Response-Time"] = f"{int(round(elapsed_ms))}ms"

        if failures:
            # One window entry per request, whatever the number of reasons
            response.background = BackgroundTask(
                self.record_failure, client_ip, "; ".join(failures)
            )
        return response

    async def record_failure(self, client_ip: str, reason: str) -> None:
        """Feed the escalator; never raises into the request path."""
        try:
            await self.state.blacklist.record_failure(client_ip, reason)
        except Exception as e:
            logger.error("failure_recording_failed", client_ip=client_ip, error=str(e))

    async def _blocked_response(self, decision: BlockDecision, client_ip: str) -> Response:
        """
        Shape the response for a blocked client.

        Temporary blocks get a truthful 403 with reason and expiry.
        Permanent blocks get a delayed synthetic 408 that looks like an
        upstream timeout.
        """
        if decision.temporary:
            logger.warning(
                "blocked_client_request",
                client_ip=client_ip,
                reason=decision.reason,
                temporary=True,
            )
            return AdmissionDenied(
                "Access temporarily denied",
                error="temporarily_blocked",
                reason=decision.reason,
                expiresAt=decision.expires_at.isoformat() if decision.expires_at else None,
            ).to_response()

        delay = random.uniform(self.config.decoy_delay_min, self.config.decoy_delay_max)
        logger.warning(
            "blocked_client_request",
            client_ip=client_ip,
            reason=decision.reason,
            temporary=False,
            decoy_delay=round(delay, 2),
        )
        await self._sleep(delay)
        return AdmissionDenied(
            "The target server timed out, please try again later",
            decoy=True,
            timestamp=datetime.now(timezone.utc).isoformat(),
        ).to_response()

    async def _forward_cancellable(
        self,
        request: Request,
        target: ParsedTarget,
        headers: Dict[str, str],
        body: Optional[bytes],
    ) -> Optional[ForwardResult]:
        """
        Forward while watching for a client disconnect.

        Returns None if the client went away; the outbound call is
        cancelled in that case.
        """
        forward_task = asyncio.create_task(
            self.state.forwarder.forward(target.method, target.url, headers, body)
        )
        watch_task = asyncio.create_task(self._wait_for_disconnect(request))
        try:
            done, _ = await asyncio.wait(
                {forward_task, watch_task},
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            for task in (forward_task, watch_task):
                if not task.done():
                    task.cancel()

        if forward_task in done:
            return forward_task.result()

        try:
            await forward_task
        except asyncio.CancelledError:
            pass
        logger.info("client_disconnected_forward_cancelled", target=target.url)
        return None

    async def _wait_for_disconnect(self, request: Request) -> None:
        while not await request.is_disconnected():
            await asyncio.sleep(self.disconnect_poll_interval)

    # =========================================================================
    # Form submissions
    # =========================================================================

    async def check_form_client(self, request: Request) -> BlockDecision:
        identity = ClientIdentity.from_headers(self.client_ip(request), dict(request.headers))
        return await self.state.blacklist.check(identity)

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_stats(self) -> Dict[str, Any]:
        """Get gateway statistics."""
        uptime = None
        if self._stats["start_time"]:
            uptime = (datetime.now(timezone.utc) - self._stats["start_time"]).total_seconds()

        stats = {k: v for k, v in self._stats.items() if k != "start_time"}
        stats.update(
            {
                "uptime_seconds": uptime,
                "blacklist": self.state.blacklist.get_stats(),
                "rate_limiter": self.state.rate_limiter.get_stats(),
                "whitelist": self.state.whitelist.get_stats(),
                "inspector": self.state.inspector.get_stats(),
                "forwarder": self.state.forwarder.get_stats(),
            }
        )
        return stats

    # =========================================================================
    # Application
    # =========================================================================

    def create_app(self, on_startup=None, on_shutdown=None) -> FastAPI:
        """Create the FastAPI application for the gateway."""
        from apirelay.api.endpoints.admin import router as admin_router
        from apirelay.api.endpoints.forms import router as forms_router
        from apirelay.api.middleware.auth import APIKeyMiddleware

        @asynccontextmanager
        async def lifespan(app: FastAPI) -> AsyncGenerator:
            """Application lifespan manager."""
            logger.info("starting_api_relay_gateway")
            self._stats["start_time"] = datetime.now(timezone.utc)
            if on_startup is not None:
                await on_startup()
            await self.state.start()

            yield

            logger.info("shutting_down_api_relay_gateway")
            await self.state.stop()
            if on_shutdown is not None:
                await on_shutdown()

        app = FastAPI(
            title="API Relay",
            description="Admission-controlled API forwarding gateway",
            version=__version__,
            lifespan=lifespan,
            docs_url=None,
            redoc_url=None,
        )
        app.state.gateway = self

        app.add_middleware(
            APIKeyMiddleware,
            api_keys=self.config.api_keys,
            protected_prefixes=["/admin"],
        )

        @app.options("/api/proxy")
        async def proxy_preflight():
            """CORS preflight for the proxy endpoint."""
            headers = dict(CORS_HEADERS)
            headers["Access-Control-Max-Age"] = "86400"
            return Response(status_code=200, headers=headers)

        @app.api_route("/api/proxy", methods=PROXY_METHODS)
        async def proxy(request: Request):
            """Forward a request to the target given in ``?url=``."""
            return await self.handle_proxy(request)

        @app.get("/api/info")
        async def info():
            api_tier = self.state.rate_limiter.tiers[API_TIER]
            return {
                "name": "API Relay",
                "version": __version__,
                "endpoints": {
                    "proxy": "/api/proxy",
                    "methods": PROXY_METHODS,
                    "parameters": {"url": "Target URL (required)"},
                },
                "limits": {
                    "request_size_bytes": self.config.max_request_size,
                    "rate_limit": f"{api_tier.max_requests} requests per "
                                  f"{int(api_tier.window_seconds // 60)} minutes",
                },
                "support": {"feedback": "/api/feedback", "report": "/api/report"},
            }

        @app.get("/api/health")
        async def health():
            return {
                "status": "ok",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "version": __version__,
                "sweep_running": self.state.running,
            }

        @app.get("/api/stats")
        async def stats():
            return self.get_stats()

        app.include_router(forms_router, prefix="/api")
        app.include_router(admin_router, prefix="/admin")

        @app.exception_handler(GatewayError)
        async def gateway_error_handler(request, exc: GatewayError):
            return exc.to_response()

        @app.exception_handler(Exception)
        async def global_exception_handler(request, exc):
            logger.error(
                "unhandled_exception",
                path=request.url.path,
                error=str(exc),
            )
            return InternalError.from_exception(exc, self.config.expose_errors).to_response()

        return app


def build_store(settings: Settings) -> GatewayStore:
    if settings.redis.backend == "memory":
        return InMemoryGatewayStore()
    return RedisGatewayStore(
        client=get_redis_client(settings.redis),
        prefix=settings.redis.key_prefix,
    )


def create_gateway_app(
    settings: Optional[Settings] = None,
    config: Optional[GatewayConfig] = None,
    store: Optional[GatewayStore] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    """
    Create a FastAPI application for the gateway.

    Args:
        settings: Application settings (or load from environment)
        config: Gateway configuration (or derive from settings)
        store: Persistent store (or build from settings)
        transport: Optional httpx transport for outbound calls

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    config = config or GatewayConfig.from_settings(settings)

    errors = config.validate()
    if errors:
        logger.error("gateway_config_invalid", errors=errors)
        raise ValueError(f"Invalid gateway configuration: {errors}")

    on_startup = on_shutdown = None
    if store is None:
        store = build_store(settings)
        if isinstance(store, RedisGatewayStore):
            async def on_startup():
                try:
                    await init_redis(settings.redis)
                except Exception as e:
                    logger.warning("redis_connection_failed", error=str(e))

            on_shutdown = close_redis

    state = GatewayState(config=config, store=store, transport=transport)
    gateway = ApiRelayGateway(state)
    return gateway.create_app(on_startup=on_startup, on_shutdown=on_shutdown)
