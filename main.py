"""
Booking engine entry point.
Starts the engine with settings from the environment and keeps it running.
"""

import asyncio
import sys

from loguru import logger

from booking_engine.app import BookingApp
from booking_engine.settings import global_settings


async def main() -> None:
    """Run the engine until interrupted."""
    logger.remove()
    logger.add(sys.stderr, level=global_settings.log_level)

    logger.info("Starting booking engine...")
    app = BookingApp(global_settings)

    try:
        await app.initialize()

        logger.info("Booking engine is running. Press Ctrl+C to stop.")
        while True:
            await asyncio.sleep(60)
            for service_id in app.breakers.get_open_circuits():
                logger.warning(f"Circuit for {service_id} is open")

    except asyncio.CancelledError:
        logger.info("Received interrupt signal, shutting down...")
    except Exception as e:
        logger.error(f"Error in main loop: {e}")
    finally:
        await app.close()
        logger.info("Booking engine stopped")


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
