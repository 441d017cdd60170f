"""Main entry point: runs the pipeline on a timer and serves the dashboard."""
import asyncio
import logging
import signal
import sys

from dotenv import load_dotenv

load_dotenv()

from shared.config import Config
from shared.logging import setup_logging
from shared.schemas import RunResult
from feeds.limitless_client import LimitlessClient, SessionCache
from pipeline.orchestrator import PipelineOrchestrator
from storage.blob_store import FileBlobStore
from storage.db import SQLiteBlobStore
from dashboard.main import app as dashboard_app, set_last_result, set_store

logger = logging.getLogger("limitless-tracker")


def build_store(config: Config):
    if config.is_sqlite_backend:
        return SQLiteBlobStore(config.DB_PATH)
    return FileBlobStore(config.BLOB_DIR)


class TrackerService:
    """Polls the portfolio API every few minutes and republishes the files."""

    def __init__(self, config: Config):
        self.config = config
        self._shutdown = asyncio.Event()
        # Reused across runs so a login lasts until it expires
        self.session = SessionCache()
        self.store = build_store(config)
        self.last_result: RunResult | None = None

    def _orchestrator(self) -> PipelineOrchestrator:
        client = LimitlessClient(
            private_key=self.config.WALLET_PRIVATE_KEY,
            base_url=self.config.LIMITLESS_API_URL,
            timeout=self.config.HTTP_TIMEOUT,
            session=self.session,
            trades_limit=self.config.TRADES_PAGE_LIMIT,
        )
        return PipelineOrchestrator(
            client,
            self.store,
            history_max_days=self.config.HISTORY_MAX_DAYS,
            report_timezone=self.config.REPORT_TIMEZONE,
        )

    async def run_once(self) -> RunResult:
        result = await self._orchestrator().run()
        self.last_result = result
        set_last_result(result)
        if result.ok:
            logger.info(
                "Run complete",
                extra={"trades": result.trades, "positions": result.positions},
            )
        else:
            logger.error("Run failed", extra={"error": result.error})
        return result

    async def start(self, serve_dashboard: bool = True):
        """Initialize storage and run the poll loop (and dashboard) until shutdown."""
        logger.info(
            "Starting tracker",
            extra={
                "api": self.config.LIMITLESS_API_URL,
                "interval_minutes": self.config.POLL_INTERVAL_MINUTES,
                "backend": "sqlite" if self.config.is_sqlite_backend else "file",
            },
        )
        await self.store.init()
        set_store(self.store)

        tasks = [asyncio.create_task(self._poll_loop(), name="poll")]
        if serve_dashboard:
            tasks.append(asyncio.create_task(self._run_dashboard(), name="dashboard"))

        await self._shutdown.wait()

        logger.info("Shutting down...")
        for t in tasks:
            t.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self.store.close()
        logger.info("Shutdown complete")

    async def _poll_loop(self):
        """Run the pipeline, then sleep; runs never overlap."""
        while not self._shutdown.is_set():
            try:
                await self.run_once()
            except Exception as e:
                logger.exception(f"Unexpected pipeline error: {e}")
            try:
                await asyncio.wait_for(
                    self._shutdown.wait(), timeout=self.config.poll_interval_seconds
                )
            except asyncio.TimeoutError:
                continue

    async def _run_dashboard(self):
        """Run the FastAPI dashboard."""
        import uvicorn
        config = uvicorn.Config(
            dashboard_app,
            host="0.0.0.0",
            port=self.config.DASHBOARD_PORT,
            log_level="warning",
        )
        server = uvicorn.Server(config)
        logger.info(
            "Dashboard starting",
            extra={"port": self.config.DASHBOARD_PORT},
        )
        await server.serve()

    def shutdown(self):
        self._shutdown.set()


async def _run_single(service: TrackerService) -> int:
    await service.store.init()
    try:
        result = await service.run_once()
    finally:
        await service.store.close()
    return 0 if result.ok else 1


def main():
    config = Config.from_env()
    setup_logging("limitless-tracker", config.log_level_value)

    service = TrackerService(config)

    # One-shot mode for cron or a serverless scheduler
    if "--once" in sys.argv[1:]:
        sys.exit(asyncio.run(_run_single(service)))

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)

    def handle_signal(sig, frame):
        logger.info(f"Received signal {sig}")
        loop.call_soon_threadsafe(service.shutdown)

    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        loop.run_until_complete(service.start())
    except KeyboardInterrupt:
        service.shutdown()
        loop.run_until_complete(asyncio.sleep(1))
    finally:
        loop.close()


if __name__ == "__main__":
    main()
