"""Events exchanged over the event bus."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from .availability import AvailabilitySummary
    from .invoices import PaymentRecord


@dataclass(frozen=True)
class DaemonStateChange:
    """Published when a currency flips between usable and unusable."""
    crypto_code: str
    summary: "AvailabilitySummary"


@dataclass(frozen=True)
class ChainNotification:
    """Block or transaction notification from the daemon's notify hooks."""
    crypto_code: str
    block_hash: Optional[str] = None
    transaction_hash: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.crypto_code}: Tx Update New Block ({self.transaction_hash or ''}{self.block_hash or ''})"


@dataclass(frozen=True)
class NewBlock:
    """Published after a block notification has been reconciled."""
    payment_method_id: str


@dataclass(frozen=True)
class PaymentReceived:
    """A payment record was created for an invoice."""
    invoice_id: str
    payment: "PaymentRecord"
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass(frozen=True)
class InvoiceNeedsUpdate:
    """The invoice owner should re-evaluate totals and state."""
    invoice_id: str
