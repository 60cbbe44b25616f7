"""Background worker that polls the provider for pending payments."""

import logging
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..schemas.common import SYSTEM_ACTOR
from ..services.payment_provider import PaymentProvider
from ..services.reconciliation_service import ReconciliationService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class ReconciliationWorker(BaseWorker):
    """
    Reconciles pending payments that are due for a poll.

    Covers webhooks that never arrived. Payments backing off after provider
    failures wait for their ``next_reconcile_at``; payments marked for
    attention are left to staff.
    """

    def __init__(
        self,
        provider: PaymentProvider,
        interval_seconds: float = 30,
        batch_size: Optional[int] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        clock: Clock = system_clock,
    ):
        super().__init__(name="Reconciliation", interval_seconds=interval_seconds, session_factory=session_factory)
        self.provider = provider
        self.batch_size = batch_size or settings.reconcile_batch_size
        self.clock = clock

    async def process(self, db: AsyncSession) -> int:
        service = ReconciliationService(db, self.provider, self.clock)
        due = await service.due_payments(self.batch_size)

        changed = 0
        for payment in due:
            result = await service.reconcile(payment.booking_id, SYSTEM_ACTOR)
            if result.changed:
                changed += 1

        if due:
            logger.info(
                "Reconciled pending payments",
                extra={"due": len(due), "changed": changed, "worker": self.name}
            )
        return changed
