"""
API Relay - Admission-controlled API forwarding gateway
Main entry point for the application.
"""

import structlog
from dotenv import load_dotenv

# Load environment variables
load_dotenv(".env.local")

from apirelay import __version__  # noqa: E402
from apirelay.config import configure_logging, get_settings  # noqa: E402
from apirelay.proxy.server import run_proxy_server  # noqa: E402

logger = structlog.get_logger(__name__)


def main():
    """Main entry point."""
    settings = get_settings()
    configure_logging(
        level=settings.app.log_level,
        json_logs=settings.app.is_production,
    )

    logger.info(
        "starting_api_relay",
        version=__version__,
        environment=settings.app.env,
        store=settings.redis.backend,
    )

    run_proxy_server(settings=settings)


if __name__ == "__main__":
    main()
