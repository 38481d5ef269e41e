"""Payment domain model — pure dataclass, no SQLAlchemy dependency."""
from dataclasses import dataclass
from datetime import datetime

from src.fm_common.enums import EscrowStatus, PaymentStatus


@dataclass
class Payment:
    id: str
    order_id: str
    amount: int  # cents, as escrowed
    currency: str
    platform_fee: int  # cents
    worker_receives: int  # cents; platform_fee + worker_receives == amount - refunded_amount
    milestone_id: str | None = None
    description: str = ""
    status: PaymentStatus = PaymentStatus.PENDING
    escrow_status: EscrowStatus = EscrowStatus.HELD
    refunded_amount: int = 0
    transaction_id: str | None = None
    failure_reason: str | None = None
    dispute_reason: str | None = None
    created_at: datetime | None = None
    processed_at: datetime | None = None
    released_at: datetime | None = None
    refunded_at: datetime | None = None
    disputed_at: datetime | None = None

    @property
    def held_amount(self) -> int:
        """Cents still sitting in escrow for this payment."""
        if self.escrow_status != EscrowStatus.HELD or self.status == PaymentStatus.REFUNDED:
            return 0
        return self.amount - self.refunded_amount

    @property
    def is_releasable(self) -> bool:
        return self.escrow_status == EscrowStatus.HELD and self.status in (
            PaymentStatus.PENDING,
            PaymentStatus.PROCESSING,
            PaymentStatus.FAILED,
        )

    @property
    def is_release_requested(self) -> bool:
        return self.status in (PaymentStatus.PROCESSING, PaymentStatus.COMPLETED)
