"""
Invoice store contract consumed by the reconciliation engine.

The invoice store is owned elsewhere; this module defines the projection the
engine reads (PendingInvoiceView), the record it writes (PaymentRecord) and
the narrow async interface it calls. InMemoryInvoiceStore implements the
interface for development and tests.
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Dict, List, Optional, Protocol, Sequence, Tuple

from .confirmation import PaymentStatus, SpeedPolicy

logger = logging.getLogger(__name__)


def payment_record_id(txid: str, account_index: int, subaddress_index: int) -> str:
    """Deterministic payment id used for idempotent upserts."""
    return f"{txid}#{account_index}#{subaddress_index}"


@dataclass
class PaymentRecord:
    """A wallet transfer credited to an invoice."""
    id: str
    invoice_id: str
    payment_method_id: str
    crypto_code: str
    destination: str
    tx_id: str
    account_index: int
    subaddress_index: int
    amount: Decimal
    status: PaymentStatus = PaymentStatus.PROCESSING
    confirmations: int = 0
    block_height: int = 0
    lock_time: int = 0
    settlement_threshold: Optional[int] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "invoice_id": self.invoice_id,
            "payment_method_id": self.payment_method_id,
            "crypto_code": self.crypto_code,
            "destination": self.destination,
            "tx_id": self.tx_id,
            "account_index": self.account_index,
            "subaddress_index": self.subaddress_index,
            "amount": str(self.amount),
            "status": self.status.value,
            "confirmations": self.confirmations,
            "block_height": self.block_height,
            "lock_time": self.lock_time,
            "settlement_threshold": self.settlement_threshold,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


@dataclass(frozen=True)
class PendingInvoiceView:
    """Projection of a monitored invoice for one payment method."""
    invoice_id: str
    destination: str
    account_index: int
    address_index: int
    amount_due: Decimal
    speed_policy: SpeedPolicy = SpeedPolicy.MEDIUM_SPEED
    settlement_threshold: Optional[int] = None
    prompt_activated: bool = True
    payments: Tuple[PaymentRecord, ...] = ()

    def find_payment(self, payment_id: str) -> Optional[PaymentRecord]:
        for payment in self.payments:
            if payment.id == payment_id:
                return payment
        return None


class InvoiceStore(Protocol):
    """Narrow async interface onto the external invoice repository."""

    async def get_monitored_invoices(self, payment_method_id: str) -> List[PendingInvoiceView]:
        """Invoices still awaiting payment through this payment method."""
        ...

    async def get_invoice_from_address(
        self, payment_method_id: str, address: str
    ) -> Optional[PendingInvoiceView]:
        """Invoice owning a destination address, if any."""
        ...

    async def add_payment(self, payment: PaymentRecord) -> Optional[PaymentRecord]:
        """Insert a new payment; returns None if the id already exists."""
        ...

    async def update_payments(self, payments: Sequence[PaymentRecord]) -> None:
        """Upsert changed payments."""
        ...

    async def activate_invoice_payment_method(self, invoice_id: str, payment_method_id: str) -> None:
        """Activate the invoice's prompt for the payment method."""
        ...


@dataclass
class _StoredInvoice:
    invoice_id: str
    payment_method_id: str
    destination: str
    account_index: int
    address_index: int
    amount_due: Decimal
    speed_policy: SpeedPolicy
    settlement_threshold: Optional[int]
    prompt_activated: bool
    monitored: bool = True


class InMemoryInvoiceStore:
    """Dictionary-backed InvoiceStore.

    Payments are copied on the way in and out so callers cannot mutate stored
    state without going through update_payments.
    """

    def __init__(self) -> None:
        self._invoices: Dict[str, _StoredInvoice] = {}
        self._payments: Dict[str, Dict[str, PaymentRecord]] = {}
        self._lock = asyncio.Lock()

    def add_invoice(
        self,
        invoice_id: str,
        payment_method_id: str,
        destination: str,
        account_index: int = 0,
        address_index: int = 0,
        amount_due: Decimal = Decimal("0"),
        speed_policy: SpeedPolicy = SpeedPolicy.MEDIUM_SPEED,
        settlement_threshold: Optional[int] = None,
        prompt_activated: bool = True,
    ) -> None:
        self._invoices[invoice_id] = _StoredInvoice(
            invoice_id=invoice_id,
            payment_method_id=payment_method_id,
            destination=destination,
            account_index=account_index,
            address_index=address_index,
            amount_due=Decimal(amount_due),
            speed_policy=speed_policy,
            settlement_threshold=settlement_threshold,
            prompt_activated=prompt_activated,
        )
        self._payments.setdefault(invoice_id, {})

    def set_monitored(self, invoice_id: str, monitored: bool) -> None:
        self._invoices[invoice_id].monitored = monitored

    def payments_for(self, invoice_id: str) -> List[PaymentRecord]:
        return [dataclasses.replace(p) for p in self._payments.get(invoice_id, {}).values()]

    def is_activated(self, invoice_id: str) -> bool:
        return self._invoices[invoice_id].prompt_activated

    def _view(self, stored: _StoredInvoice) -> PendingInvoiceView:
        return PendingInvoiceView(
            invoice_id=stored.invoice_id,
            destination=stored.destination,
            account_index=stored.account_index,
            address_index=stored.address_index,
            amount_due=stored.amount_due,
            speed_policy=stored.speed_policy,
            settlement_threshold=stored.settlement_threshold,
            prompt_activated=stored.prompt_activated,
            payments=tuple(self.payments_for(stored.invoice_id)),
        )

    async def get_monitored_invoices(self, payment_method_id: str) -> List[PendingInvoiceView]:
        return [
            self._view(stored)
            for stored in self._invoices.values()
            if stored.monitored and stored.payment_method_id == payment_method_id
        ]

    async def get_invoice_from_address(
        self, payment_method_id: str, address: str
    ) -> Optional[PendingInvoiceView]:
        for stored in self._invoices.values():
            if stored.payment_method_id == payment_method_id and stored.destination == address:
                return self._view(stored)
        return None

    async def add_payment(self, payment: PaymentRecord) -> Optional[PaymentRecord]:
        async with self._lock:
            payments = self._payments.setdefault(payment.invoice_id, {})
            if payment.id in payments:
                return None
            payments[payment.id] = dataclasses.replace(payment)
            return dataclasses.replace(payment)

    async def update_payments(self, payments: Sequence[PaymentRecord]) -> None:
        async with self._lock:
            for payment in payments:
                self._payments.setdefault(payment.invoice_id, {})[payment.id] = dataclasses.replace(payment)

    async def activate_invoice_payment_method(self, invoice_id: str, payment_method_id: str) -> None:
        stored = self._invoices.get(invoice_id)
        if stored is None or stored.payment_method_id != payment_method_id:
            logger.debug(f"Cannot activate {payment_method_id} on unknown invoice {invoice_id}")
            return
        stored.prompt_activated = True
