"""Base worker class for background tasks."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.database import async_session_factory

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Abstract base class for background workers.

    Runs :meth:`process` every ``interval_seconds`` until stopped. Each
    iteration gets its own database session from ``session_factory``.
    """

    def __init__(
        self,
        name: str,
        interval_seconds: float = 60,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ):
        """
        Initialize the worker.

        Args:
            name: Worker name for logging
            interval_seconds: How often to run the task
            session_factory: Session factory; the application's by default
        """
        self.name = name
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory or async_session_factory
        self.iterations = 0
        self._running = False
        self._task: Optional[asyncio.Task] = None

    @property
    def is_running(self) -> bool:
        return self._running

    @abstractmethod
    async def process(self, db: AsyncSession) -> int:
        """Process one iteration; returns how many items were handled."""

    async def run_once(self) -> int:
        """Run a single iteration in a fresh session."""
        async with self.session_factory() as db:
            try:
                handled = await self.process(db)
            except Exception:
                await db.rollback()
                raise
        self.iterations += 1
        return handled

    async def start(self) -> None:
        """Start the worker."""
        if self._running:
            logger.warning("Worker is already running", extra={"worker": self.name})
            return

        self._running = True
        self._task = asyncio.create_task(self._run(), name=f"worker-{self.name}")
        logger.info(
            "Worker started",
            extra={"worker": self.name, "interval_seconds": self.interval_seconds}
        )

    async def stop(self) -> None:
        """Stop the worker gracefully."""
        if not self._running:
            logger.warning("Worker is not running", extra={"worker": self.name})
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Worker stopped", extra={"worker": self.name})

    async def _run(self) -> None:
        """Main worker loop."""
        logger.info("Worker loop started", extra={"worker": self.name})

        while self._running:
            try:
                started = time.monotonic()
                handled = await self.run_once()

                duration = time.monotonic() - started
                log = logger.info if handled else logger.debug
                log(
                    "Worker iteration completed",
                    extra={
                        "duration_seconds": duration,
                        "handled": handled,
                        "worker": self.name,
                    }
                )

                # Sleep for the remaining interval time
                sleep_time = max(0, self.interval_seconds - duration)
                if sleep_time > 0:
                    await asyncio.sleep(sleep_time)

            except asyncio.CancelledError:
                logger.info("Worker loop cancelled", extra={"worker": self.name})
                break
            except Exception as e:
                logger.error(
                    f"{self.name} worker error: {e!s}",
                    exc_info=True,
                    extra={"worker": self.name}
                )
                # Wait before retrying on error
                await asyncio.sleep(self.interval_seconds)
