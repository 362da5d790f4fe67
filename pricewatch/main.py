"""Main application entry point."""

import asyncio
import logging
import signal

from prometheus_client import start_http_server

from pricewatch.ai.oracle import build_oracle
from pricewatch.config import settings
from pricewatch.db.repository import SqlAlchemyItemRepository
from pricewatch.db.session import AsyncSessionLocal, create_tables, dispose_engine
from pricewatch.ingest.escalation_manager import FetchEscalationController
from pricewatch.ingest.fetchers.headless import HeadlessRenderer
from pricewatch.ingest.fetchers.static import StaticHTMLFetcher
from pricewatch.logging_config import setup_logging
from pricewatch.worker.scan_lock import build_batch_lock
from pricewatch.worker.scheduler import setup_scheduler
from pricewatch.worker.tasks import TaskRunner

setup_logging()
logger = logging.getLogger(__name__)


def build_task_runner() -> TaskRunner:
    renderer = HeadlessRenderer() if settings.headless_enabled else None
    escalation = FetchEscalationController(fetcher=StaticHTMLFetcher(), renderer=renderer)
    return TaskRunner(
        repository=SqlAlchemyItemRepository(AsyncSessionLocal),
        escalation=escalation,
        oracle=build_oracle(),
        lock=build_batch_lock(),
    )


async def run() -> None:
    logger.info("Starting pricewatch...")

    await create_tables()
    start_http_server(settings.metrics_port)
    logger.info(f"Metrics exposed on port {settings.metrics_port}")

    task_runner = build_task_runner()
    scheduler = setup_scheduler(task_runner)
    scheduler.start()
    logger.info("Scheduler started")

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Signal handlers are unavailable on some platforms; rely on KeyboardInterrupt
            pass

    try:
        await stop.wait()
    finally:
        logger.info("Shutting down...")
        scheduler.shutdown(wait=False)
        await task_runner.close()
        await dispose_engine()
        logger.info("Shutdown complete")


def main() -> None:
    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
