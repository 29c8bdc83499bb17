from __future__ import annotations

import asyncio
import logging

from .config import load_config
from .di import Container
from .logging_config import configure_logging
from .util.signals import setup_signal_handlers

LOGGER = logging.getLogger(__name__)


async def main() -> None:
    config = load_config()
    configure_logging(config.logging.level, config.logging.timezone)
    container = Container(config)
    stopped = asyncio.Event()
    shutdown_called = False

    async def shutdown() -> None:
        nonlocal shutdown_called
        if shutdown_called:
            return
        shutdown_called = True
        try:
            await container.shutdown()
        except Exception:  # pragma: no cover
            LOGGER.exception("Failed to shut down cleanly")
        finally:
            stopped.set()

    setup_signal_handlers(shutdown)
    try:
        await container.startup()
        await stopped.wait()
    finally:
        await shutdown()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
