"""
Gateway State

Owns every in-process structure the gateway shares across requests
(deny-list cache, failure windows, whitelist snapshot, rate limit
buckets) and the periodic expiry sweep.
"""

import asyncio
import time
from typing import Callable, Optional

import httpx
import structlog

from apirelay.infrastructure.persistence.gateway_store import GatewayStore
from apirelay.proxy.blacklist import BlacklistEngine
from apirelay.proxy.config import GatewayConfig
from apirelay.proxy.forwarder import UpstreamForwarder
from apirelay.proxy.inspector import TrafficInspector
from apirelay.proxy.rate_limiter import RateLimiter
from apirelay.proxy.whitelist import WhitelistCache

logger = structlog.get_logger(__name__)


class GatewayState:
    """
    Explicit container for the gateway's shared state.

    Construction yields empty caches; ``start`` opens the HTTP client and
    schedules the sweep, ``stop`` cancels the sweep and closes the
    client. Tests build isolated instances with their own store, clock
    and transport.
    """

    def __init__(
        self,
        config: GatewayConfig,
        store: GatewayStore,
        clock: Callable[[], float] = time.time,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.store = store

        self.whitelist = WhitelistCache(
            store=store,
            enabled=config.whitelist_enabled,
            ttl=config.whitelist_ttl,
            clock=clock,
        )
        self.blacklist = BlacklistEngine(
            store=store,
            block_duration=config.block_duration,
            failure_threshold=config.failure_threshold,
            failure_window=config.failure_window,
            clock=clock,
        )
        self.rate_limiter = RateLimiter(tiers=config.rate_limit_tiers, clock=clock)
        self.inspector = TrafficInspector()
        self.forwarder = UpstreamForwarder(
            request_timeout=config.request_timeout,
            max_redirects=config.max_redirects,
            max_request_size=config.max_request_size,
            service_name=config.service_name,
            expose_errors=config.expose_errors,
            transport=transport,
        )

        self._sweep_task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def start(self) -> None:
        await self.forwarder.initialize()
        if not self.running:
            self._sweep_task = asyncio.create_task(self._sweep_loop())
        logger.info("gateway_state_started", sweep_interval=self.config.sweep_interval)

    async def stop(self) -> None:
        if self._sweep_task is not None:
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
            self._sweep_task = None
        await self.forwarder.shutdown()
        logger.info("gateway_state_stopped")

    async def sweep(self) -> dict:
        """Run one maintenance pass over all expiring structures."""
        result = await self.blacklist.sweep()
        result["rate_buckets_dropped"] = await self.rate_limiter.sweep()
        return result

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.sweep_interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error("gateway_sweep_failed", error=str(e))
