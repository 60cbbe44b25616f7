"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict, Optional

from ..core.config import settings
from ..core.dependencies import get_payment_provider
from ..services.payment_provider import PaymentProvider
from .base import BaseWorker
from .hold_expiry_worker import HoldExpiryWorker
from .reconciliation_worker import ReconciliationWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """
    Manages background workers for the application.

    Coordinates starting, stopping, and monitoring of all background workers.
    """

    def __init__(self, provider: Optional[PaymentProvider] = None):
        """Initialize the worker manager."""
        self.provider = provider
        self.workers: Dict[str, BaseWorker] = {}

    def _setup_workers(self) -> None:
        """Initialize all workers."""
        self.workers["hold_expiry"] = HoldExpiryWorker(
            interval_seconds=settings.hold_sweep_interval_seconds,
            batch_size=settings.hold_sweep_batch_size,
        )
        self.workers["reconciliation"] = ReconciliationWorker(
            provider=self.provider or get_payment_provider(),
            interval_seconds=settings.reconcile_interval_seconds,
            batch_size=settings.reconcile_batch_size,
        )

        logger.info("Initialized workers", extra={"worker_count": len(self.workers)})

    async def start_all(self) -> None:
        """Start all workers."""
        if not self.workers:
            self._setup_workers()

        for name, worker in self.workers.items():
            try:
                await worker.start()
            except Exception as e:
                logger.error(f"Failed to start worker {name}: {e!s}", exc_info=True)

        logger.info("Started workers", extra={"worker_count": len(self.workers)})

    async def stop_all(self) -> None:
        """Stop all workers gracefully."""
        running = {name: worker for name, worker in self.workers.items() if worker.is_running}
        results = await asyncio.gather(
            *(worker.stop() for worker in running.values()),
            return_exceptions=True,
        )

        for name, result in zip(running.keys(), results):
            if isinstance(result, Exception):
                logger.error(f"Error stopping worker {name}: {result!s}")

        logger.info("All workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        """
        Get a specific worker by name.

        Raises:
            KeyError: If worker not found
        """
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        """Running state of every worker."""
        return {name: worker.is_running for name, worker in self.workers.items()}


# Global worker manager instance
worker_manager = WorkerManager()
