"""Worker entry point: runs queued import jobs until interrupted."""

from __future__ import annotations

import asyncio
import logging
import signal

from media_import.core.config import get_settings
from media_import.services.job_worker import JobWorker

logger = logging.getLogger(__name__)


async def run_worker() -> None:
    worker = JobWorker(get_settings())
    worker.start()

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop.set)

    logger.info("Import worker started")
    await stop.wait()
    await worker.stop()
    logger.info("Import worker stopped")


if __name__ == "__main__":
    logging.basicConfig(level=get_settings().log_level)
    asyncio.run(run_worker())
