"""
Proxy Server Entry Point

Standalone server for running the API relay gateway.
"""

import sys
from typing import Optional

import structlog
import uvicorn

from apirelay.api.security import generate_api_key
from apirelay.config.logging_config import configure_logging
from apirelay.config.settings import Settings, get_settings
from apirelay.proxy.config import GatewayConfig
from apirelay.proxy.gateway import create_gateway_app

logger = structlog.get_logger(__name__)


def run_proxy_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    settings: Optional[Settings] = None,
    config: Optional[GatewayConfig] = None,
    log_level: Optional[str] = None,
) -> None:
    """
    Run the gateway server.

    Args:
        host: Host to bind to (default: API_HOST)
        port: Port to listen on (default: API_PORT)
        settings: Application settings
        config: Gateway configuration
        log_level: Logging level (default: LOG_LEVEL)
    """
    settings = settings or get_settings()
    config = config or GatewayConfig.from_settings(settings)
    host = host or settings.app.api_host
    port = port or settings.app.api_port
    log_level = (log_level or settings.app.log_level).lower()

    errors = config.validate()
    if errors:
        logger.error("configuration_invalid", errors=errors)
        print(f"Configuration errors: {errors}")
        sys.exit(1)

    print_banner(host, port, settings, config)

    app = create_gateway_app(settings=settings, config=config)

    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level=log_level,
        access_log=settings.app.debug,
    )


def print_banner(host: str, port: int, settings: Settings, config: GatewayConfig) -> None:
    """Print startup banner."""
    api_tier = next(t for t in config.rate_limit_tiers if t.name == "api")
    print(f"""
┌─────────────────────────────────────────────────────────────────────────────┐
│  API Relay Gateway                                                          │
├─────────────────────────────────────────────────────────────────────────────┤
│  Listen Address:    {f"{host}:{port}":<56}│
│  Environment:       {settings.app.env:<56}│
│  Store Backend:     {settings.redis.backend:<56}│
│  Whitelist:         {'Enforced' if config.whitelist_enabled else 'Disabled':<56}│
│  Rate Limit:        {f"{api_tier.max_requests} req/{int(api_tier.window_seconds)}s":<56}│
│  Auto Blacklist:    {f"{config.failure_threshold} failures/{int(config.failure_window)}s":<56}│
└─────────────────────────────────────────────────────────────────────────────┘

  Endpoints:
    • ANY  /api/proxy?url=<target>  - Forward a request
    • GET  /api/info                - Service information
    • GET  /api/health              - Health check
    • GET  /api/stats               - Gateway statistics
    • POST /api/feedback            - Submit feedback
    • POST /api/report              - Report a target URL
    • *    /admin/blacklist         - Deny-list management (API key)
    • *    /admin/whitelist         - Domain whitelist management (API key)

  Starting gateway...
""")


def main():
    """Main entry point for the gateway server."""
    import argparse

    parser = argparse.ArgumentParser(
        description="API Relay Gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with settings from the environment / .env.local
  apirelay-proxy

  # Run on a custom port with an in-process store
  apirelay-proxy --port 9000 --store memory

  # Enforce the domain whitelist
  apirelay-proxy --whitelist

  # Create an admin key to add to API_KEYS
  apirelay-proxy --generate-key
        """,
    )

    parser.add_argument("--host", default=None, help="Host to bind to (default: API_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: API_PORT)")
    parser.add_argument(
        "--store",
        choices=["redis", "memory"],
        default=None,
        help="Persistent store backend (default: STORE_BACKEND)",
    )
    parser.add_argument(
        "--whitelist",
        action="store_true",
        help="Enforce the domain whitelist",
    )
    parser.add_argument(
        "--log-level",
        choices=["debug", "info", "warning", "error"],
        default=None,
        help="Log level (default: LOG_LEVEL)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Render logs as JSON",
    )
    parser.add_argument(
        "--generate-key",
        action="store_true",
        help="Print a new admin API key for API_KEYS and exit",
    )

    args = parser.parse_args()

    if args.generate_key:
        print(generate_api_key())
        return

    settings = get_settings()
    if args.store:
        settings.redis.backend = args.store
    if args.whitelist:
        settings.proxy.whitelist_enabled = True

    configure_logging(
        level=(args.log_level or settings.app.log_level).upper(),
        json_logs=args.json_logs or settings.app.is_production,
    )

    run_proxy_server(
        host=args.host,
        port=args.port,
        settings=settings,
        log_level=args.log_level,
    )


if __name__ == "__main__":
    main()
