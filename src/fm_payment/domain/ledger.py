"""Payment ledger — escrow bookkeeping for the payments an order owns.

State rules (escrow):
  held -> released   (release; terminal)
  held -> disputed   (dispute; terminal)

State rules (status):
  pending -> processing (release requested) -> completed (released)
  processing -> failed -> processing (retry)
  pending -> refunded (full refund while still held)

The ledger mutates Payment objects in place and appends the matching
timeline event; persistence is the caller's single aggregate write.
"""
import logging
from datetime import datetime

from src.fm_common.cents import split_fee
from src.fm_common.datetime_utils import utc_now
from src.fm_common.enums import (
    ActorRole,
    EscrowStatus,
    PaymentStatus,
    TimelineEventType,
)
from src.fm_common.errors import InvalidStateTransitionError, ValidationError
from src.fm_common.id_generator import generate_id
from src.fm_payment.domain.models import Payment
from src.fm_timeline.domain.models import TimelineEvent
from src.fm_timeline.domain.recorder import record

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


class PaymentLedger:
    def __init__(self, fee_bps: int) -> None:
        if not (0 <= fee_bps <= 10_000):
            raise ValueError(f"fee_bps must be 0-10000, got {fee_bps}")
        self._fee_bps = fee_bps

    @property
    def fee_bps(self) -> int:
        return self._fee_bps

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    @staticmethod
    def find(payments: list[Payment], payment_id: str) -> Payment | None:
        return next((p for p in payments if p.id == payment_id), None)

    @staticmethod
    def for_milestone(payments: list[Payment], milestone_id: str) -> Payment | None:
        return next((p for p in payments if p.milestone_id == milestone_id), None)

    @staticmethod
    def total_held(payments: list[Payment]) -> int:
        return sum(p.held_amount for p in payments)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def create_escrow_payment(
        self,
        order_id: str,
        amount: int,
        currency: str,
        milestone_id: str | None = None,
        description: str = "",
    ) -> Payment:
        """New payment held in escrow. Fee split is fixed here and never recomputed on release."""
        if amount <= 0:
            raise ValidationError(f"payment amount must be positive, got {amount}")
        platform_fee, worker_receives = split_fee(amount, self._fee_bps)
        return Payment(
            id=generate_id(),
            order_id=order_id,
            milestone_id=milestone_id,
            amount=amount,
            currency=currency,
            platform_fee=platform_fee,
            worker_receives=worker_receives,
            description=description,
            status=PaymentStatus.PENDING,
            escrow_status=EscrowStatus.HELD,
            created_at=utc_now(),
        )

    # ------------------------------------------------------------------
    # Release
    # ------------------------------------------------------------------

    def request_release(
        self,
        payment: Payment,
        timeline: list[TimelineEvent],
        actor_id: str = SYSTEM_ACTOR,
        actor_role: ActorRole = ActorRole.SYSTEM,
    ) -> bool:
        """Move a held payment to PROCESSING. Returns False if release was already requested."""
        if payment.is_release_requested or payment.escrow_status == EscrowStatus.RELEASED:
            return False
        if not payment.is_releasable:
            raise InvalidStateTransitionError(
                f"payment {payment.id} is {payment.status.value}/{payment.escrow_status.value}; "
                "cannot request release"
            )
        payment.status = PaymentStatus.PROCESSING
        payment.processed_at = utc_now()
        payment.failure_reason = None
        record(
            timeline,
            TimelineEventType.PAYMENT_PROCESSED,
            "Payment processing",
            f"Release of {payment.amount} cents requested",
            actor_id,
            actor_role,
            {
                "payment_id": payment.id,
                "milestone_id": payment.milestone_id,
                "amount": payment.amount,
            },
        )
        return True

    def release(
        self,
        payment: Payment,
        timeline: list[TimelineEvent],
        transaction_id: str | None = None,
        actor_id: str = SYSTEM_ACTOR,
        actor_role: ActorRole = ActorRole.SYSTEM,
        at: datetime | None = None,
    ) -> bool:
        """Release escrow to the worker. Idempotent: an already-released payment returns False."""
        if payment.escrow_status == EscrowStatus.RELEASED:
            return False
        if not payment.is_releasable:
            raise InvalidStateTransitionError(
                f"payment {payment.id} is {payment.status.value}/{payment.escrow_status.value}; "
                "cannot release"
            )
        now = at or utc_now()
        payment.status = PaymentStatus.COMPLETED
        payment.escrow_status = EscrowStatus.RELEASED
        payment.processed_at = payment.processed_at or now
        payment.released_at = now
        payment.failure_reason = None
        if transaction_id:
            payment.transaction_id = transaction_id
        record(
            timeline,
            TimelineEventType.PAYMENT_RELEASED,
            "Payment released",
            f"{payment.worker_receives} cents released to worker",
            actor_id,
            actor_role,
            {
                "payment_id": payment.id,
                "milestone_id": payment.milestone_id,
                "amount": payment.amount,
                "worker_receives": payment.worker_receives,
                "platform_fee": payment.platform_fee,
                "transaction_id": payment.transaction_id,
            },
        )
        logger.info("Payment released: payment=%s order=%s", payment.id, payment.order_id)
        return True

    def fail_release(self, payment: Payment, reason: str) -> bool:
        """Processor gave up on a PROCESSING payment; funds stay held and release may be retried."""
        if payment.status != PaymentStatus.PROCESSING:
            return False
        payment.status = PaymentStatus.FAILED
        payment.failure_reason = reason
        return True

    # ------------------------------------------------------------------
    # Refund / dispute
    # ------------------------------------------------------------------

    def refund(
        self,
        payment: Payment,
        timeline: list[TimelineEvent],
        actor_id: str,
        actor_role: ActorRole,
        amount: int | None = None,
    ) -> int:
        """Refund part or all of a held, not-yet-processing payment. Returns cents refunded."""
        if payment.escrow_status != EscrowStatus.HELD or payment.status != PaymentStatus.PENDING:
            raise InvalidStateTransitionError(
                f"payment {payment.id} is {payment.status.value}/{payment.escrow_status.value}; "
                "only pending payments held in escrow can be refunded"
            )
        remaining = payment.amount - payment.refunded_amount
        refund_amount = remaining if amount is None else amount
        if refund_amount <= 0 or refund_amount > remaining:
            raise ValidationError(
                f"refund amount must be between 1 and {remaining} cents, got {refund_amount}"
            )

        left = remaining - refund_amount
        # Worker share shrinks proportionally (floored); the residual cent stays with the fee
        new_worker = payment.worker_receives * left // remaining
        payment.worker_receives = new_worker
        payment.platform_fee = left - new_worker
        payment.refunded_amount += refund_amount
        payment.refunded_at = utc_now()
        if left == 0:
            payment.status = PaymentStatus.REFUNDED

        record(
            timeline,
            TimelineEventType.PAYMENT_REFUNDED,
            "Payment refunded" if left == 0 else "Payment partially refunded",
            f"{refund_amount} cents returned to client",
            actor_id,
            actor_role,
            {
                "payment_id": payment.id,
                "milestone_id": payment.milestone_id,
                "refunded": refund_amount,
                "remaining": left,
                "fully_refunded": left == 0,
            },
        )
        return refund_amount

    def dispute(
        self,
        payment: Payment,
        timeline: list[TimelineEvent],
        actor_id: str,
        actor_role: ActorRole,
        reason: str,
    ) -> None:
        if not reason or not reason.strip():
            raise ValidationError("dispute reason must not be empty")
        if payment.escrow_status != EscrowStatus.HELD or payment.status not in (
            PaymentStatus.PENDING,
            PaymentStatus.PROCESSING,
            PaymentStatus.FAILED,
        ):
            raise InvalidStateTransitionError(
                f"payment {payment.id} is {payment.status.value}/{payment.escrow_status.value}; "
                "only held payments can be disputed"
            )
        payment.status = PaymentStatus.DISPUTED
        payment.escrow_status = EscrowStatus.DISPUTED
        payment.dispute_reason = reason.strip()
        payment.disputed_at = utc_now()
        record(
            timeline,
            TimelineEventType.PAYMENT_DISPUTED,
            "Payment disputed",
            payment.dispute_reason,
            actor_id,
            actor_role,
            {"payment_id": payment.id, "milestone_id": payment.milestone_id, "reason": reason},
        )
