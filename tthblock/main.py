"""Main entry point for the TTH blocklist filter."""

import asyncio
import logging
import signal
import sys

from .config import load_config, validate_config
from .service import BlocklistService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


async def run_service():
    """Run the blocklist service until a shutdown signal arrives."""
    config = load_config()
    logging.getLogger().setLevel(config.log_level)

    validation_errors = validate_config(config)
    if validation_errors:
        for err in validation_errors:
            logger.error(err)
        sys.exit(1)

    service = BlocklistService(config)

    # Handle shutdown signals; SIGHUP re-applies the settings file
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: asyncio.create_task(service.stop()))
    if hasattr(signal, "SIGHUP"):
        loop.add_signal_handler(signal.SIGHUP, lambda: asyncio.create_task(service.apply_settings()))

    try:
        await service.serve()
    except KeyboardInterrupt:
        pass
    finally:
        await service.stop()


def main():
    """Entry point."""
    asyncio.run(run_service())


if __name__ == "__main__":
    main()
