"""
Entry point: run the signal relay (lifecycle monitor + publish scheduler).

Usage::

    python run.py
"""

import asyncio
import logging
import sys

from signal_relay.config import get_settings, validate_env

settings = get_settings()

logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
    datefmt="%H:%M:%S",
)
logger = logging.getLogger("run")


async def main() -> None:
    from signal_relay.service import build_service

    env_status = validate_env(strict=True)
    for var, present in env_status.items():
        if not present:
            logger.warning("%s is not set", var)

    service = await build_service(settings)
    await service.run_forever()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
