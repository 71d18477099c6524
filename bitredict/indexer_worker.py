"""Standalone event indexer process.

Polls the chain every few seconds until SIGINT/SIGTERM.
"""

import asyncio
import signal

import structlog

from bitredict.config import get_settings
from bitredict.config.logging import configure_logging
from bitredict.runtime import open_runtime

logger = structlog.get_logger(__name__)


async def run() -> None:
    settings = get_settings()
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    async with open_runtime(settings) as runtime:
        logger.info("indexer_process_starting", contracts=sorted(runtime.indexer.subscriptions))
        await runtime.indexer.run_forever(stop_event)


def main() -> None:
    configure_logging(get_settings().log_level)
    asyncio.run(run())


if __name__ == "__main__":
    main()
