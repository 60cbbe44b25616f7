"""Background worker for expiring reservation holds."""

import logging
from typing import Callable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..models.hold import HoldState, ReservationHold
from ..models.payment import Payment, PaymentEvent, PaymentStatus
from ..schemas.common import SYSTEM_ACTOR
from ..services.hold_service import HoldService
from ..services.payment_service import PaymentService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class HoldExpiryWorker(BaseWorker):
    """
    Lease sweep.

    Moves active holds past their lease to EXPIRED, then fails the pending
    payment of every affected booking with ``lease_expired``, which cancels
    the booking and releases its remaining holds.
    """

    def __init__(
        self,
        interval_seconds: float = 30,
        batch_size: Optional[int] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
        clock: Clock = system_clock,
    ):
        """
        Initialize the hold expiry worker.

        Args:
            interval_seconds: How often to check for expired holds
            batch_size: Holds examined per iteration
            session_factory: Session factory override
            clock: Time source
        """
        super().__init__(name="HoldExpiry", interval_seconds=interval_seconds, session_factory=session_factory)
        self.batch_size = batch_size or settings.hold_sweep_batch_size
        self.clock = clock

    async def process(self, db: AsyncSession) -> int:
        """
        Expire lapsed holds and fail the pending payments they strand.

        Payments are picked from every booking with an EXPIRED hold, not only
        from this iteration's batch, so a sweep interrupted between the two
        steps is finished by the next one.

        Returns:
            int: Holds expired plus pending payments left over from earlier sweeps
        """
        expired = await HoldService(db, self.clock).expire_holds(self.batch_size)
        swept_bookings = {hold.booking_id for hold in expired}

        lapsed = (
            select(ReservationHold.id)
            .where(
                ReservationHold.booking_id == Payment.booking_id,
                ReservationHold.state == HoldState.EXPIRED.value,
            )
            .exists()
        )
        result = await db.execute(
            select(Payment.id, Payment.booking_id)
            .where(Payment.status == PaymentStatus.PENDING.value, lapsed)
            .order_by(Payment.created_at)
            .limit(self.batch_size)
        )
        stranded = result.all()

        payments = PaymentService(db, self.clock)
        recovered = 0
        for payment_id, booking_id in stranded:
            outcome = await payments.transition(payment_id, PaymentEvent.LEASE_EXPIRED, {}, SYSTEM_ACTOR)
            if outcome.changed and booking_id not in swept_bookings:
                recovered += 1
            logger.info(
                "Pending payment failed after hold expiry",
                extra={
                    "payment_id": str(payment_id),
                    "outcome": outcome.outcome.value,
                    "changed": outcome.changed,
                    "worker": self.name,
                }
            )

        if expired or stranded:
            logger.info(
                f"Expired {len(expired)} holds",
                extra={
                    "expired_count": len(expired),
                    "failed_payments": len(stranded),
                    "recovered_payments": recovered,
                    "worker": self.name,
                }
            )
        return len(expired) + recovered
