from __future__ import annotations

import asyncio
import logging
import signal
from typing import Awaitable, Callable

LOGGER = logging.getLogger(__name__)


def setup_signal_handlers(shutdown_func: Callable[[], Awaitable[None]]) -> None:
    loop = asyncio.get_running_loop()

    def _trigger(sig: signal.Signals) -> None:
        LOGGER.info("Received signal, shutting down", extra={"signal": sig.name})
        loop.create_task(shutdown_func())

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _trigger, sig)
        except NotImplementedError:  # pragma: no cover - Windows
            signal.signal(sig, lambda *_, s=sig: loop.call_soon_threadsafe(_trigger, s))
