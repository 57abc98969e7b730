"""
Payment reconciliation between wallet transfers and pending invoices.

The engine is event driven. It reacts to:
- DaemonStateChange: a currency became usable, so re-scan pending invoices
- ChainNotification with a block hash: re-scan pending invoices
- ChainNotification with a transaction hash: resolve that one transaction

Every path funnels into one create-or-update step keyed by the deterministic
payment id ``{txid}#{account}#{subaddress}``, so overlapping passes for the
same currency converge instead of double-crediting.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Set, Tuple

from .availability import AvailabilityTracker
from .config import payment_method_id
from .confirmation import PaymentStatus, payment_status
from .event_bus import EventBus
from .events import (
    ChainNotification,
    DaemonStateChange,
    InvoiceNeedsUpdate,
    NewBlock,
    PaymentReceived,
)
from .exceptions import DataMismatchError, RPCRejectedError
from .invoices import InvoiceStore, PaymentRecord, PendingInvoiceView, payment_record_id
from .logging_config import LogContext
from .money import to_decimal
from .rpc_client import RpcClientRegistry
from .rpc_models import GetTransferByTxIdResponse, Transfer, TransferDestination

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationResult:
    """Outcome of one reconciliation pass."""
    crypto_code: str
    created: List[PaymentRecord] = field(default_factory=list)
    updated: List[PaymentRecord] = field(default_factory=list)
    unmatched: int = 0
    failed_accounts: List[int] = field(default_factory=list)
    _records: Dict[str, PaymentRecord] = field(default_factory=dict, repr=False)
    _updated_ids: Set[str] = field(default_factory=set, repr=False)
    _touched: Dict[str, None] = field(default_factory=dict, repr=False)

    @property
    def touched_invoices(self) -> List[str]:
        """Invoice ids created or updated in this pass, in first-touch order."""
        return list(self._touched)

    def record_created(self, payment: PaymentRecord) -> None:
        self.created.append(payment)
        self._records[payment.id] = payment
        self._touched[payment.invoice_id] = None

    def record_updated(self, payment: PaymentRecord) -> None:
        self._records[payment.id] = payment
        if payment.id not in self._updated_ids:
            self._updated_ids.add(payment.id)
            self.updated.append(payment)
        self._touched[payment.invoice_id] = None

    def seen(self, payment_id: str) -> Optional[PaymentRecord]:
        return self._records.get(payment_id)


class ReconciliationEngine:
    """
    Matches wallet transfers to invoices and publishes ledger updates.

    Stateless between passes: all durable state lives in the invoice store,
    and every pass re-reads it.
    """

    def __init__(
        self,
        registry: RpcClientRegistry,
        tracker: AvailabilityTracker,
        invoice_store: InvoiceStore,
        event_bus: EventBus,
    ):
        self._registry = registry
        self._tracker = tracker
        self._invoice_store = invoice_store
        self._event_bus = event_bus
        self._subscribed = False

    def start(self) -> None:
        """Subscribe to availability and chain notifications."""
        if self._subscribed:
            return
        self._event_bus.subscribe(DaemonStateChange, self.handle_state_change)
        self._event_bus.subscribe(ChainNotification, self.handle_chain_notification)
        self._subscribed = True
        logger.info("Reconciliation engine subscribed to chain events")

    def stop(self) -> None:
        if not self._subscribed:
            return
        self._event_bus.unsubscribe(DaemonStateChange, self.handle_state_change)
        self._event_bus.unsubscribe(ChainNotification, self.handle_chain_notification)
        self._subscribed = False

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def handle_state_change(self, event: DaemonStateChange) -> None:
        code = event.crypto_code.upper()
        with LogContext(crypto_code=code, trigger="state_change"):
            if not self._tracker.is_available(code):
                logger.info(f"{code} just became unavailable")
                return
            logger.info(f"{code} just became available")
            try:
                await self.update_pending_payments(code)
            except Exception as e:
                logger.error(f"Reconciliation after {code} became available failed: {e}", exc_info=True)

    async def handle_chain_notification(self, event: ChainNotification) -> None:
        code = event.crypto_code.upper()
        if not self._tracker.is_available(code):
            logger.debug(f"Ignoring {event}: {code} is not available")
            return

        if event.block_hash:
            with LogContext(crypto_code=code, trigger="block"):
                await self.on_new_block(code)

        if event.transaction_hash:
            with LogContext(crypto_code=code, trigger="tx"):
                try:
                    await self.on_transaction_updated(code, event.transaction_hash)
                except Exception as e:
                    logger.error(
                        f"Reconciliation of transaction {event.transaction_hash} failed: {e}",
                        exc_info=True,
                    )

    async def on_new_block(self, crypto_code: str) -> None:
        try:
            await self.update_pending_payments(crypto_code)
        except Exception as e:
            logger.error(f"Reconciliation on new {crypto_code} block failed: {e}", exc_info=True)
        await self._event_bus.publish(NewBlock(payment_method_id=payment_method_id(crypto_code)))

    # ------------------------------------------------------------------
    # Bulk path
    # ------------------------------------------------------------------

    async def update_pending_payments(self, crypto_code: str) -> ReconciliationResult:
        """Re-scan every monitored invoice of a currency against the wallet."""
        code = crypto_code.upper()
        pmid = payment_method_id(code)
        result = ReconciliationResult(crypto_code=code)

        invoices = await self._invoice_store.get_monitored_invoices(pmid)
        invoices = [invoice for invoice in invoices if invoice.prompt_activated]
        if not invoices:
            return result

        # (destination, txid) -> owning invoice, for transfers already credited
        existing: Dict[Tuple[str, str], PendingInvoiceView] = {}
        by_destination: Dict[str, PendingInvoiceView] = {}
        account_queries: Dict[int, Set[int]] = {}

        for invoice in invoices:
            by_destination.setdefault(invoice.destination, invoice)
            account_queries.setdefault(invoice.account_index, set()).add(invoice.address_index)
            for payment in invoice.payments:
                if payment.payment_method_id != pmid:
                    continue
                existing[(payment.destination, payment.tx_id)] = invoice
                account_queries.setdefault(payment.account_index, set()).add(payment.subaddress_index)

        wallet = self._registry.wallet(code)
        accounts = list(account_queries)
        responses = await asyncio.gather(
            *(wallet.get_transfers(account, account_queries[account]) for account in accounts),
            return_exceptions=True,
        )

        for account, response in zip(accounts, responses):
            if isinstance(response, BaseException):
                if not isinstance(response, Exception):
                    raise response
                logger.warning(f"get_transfers for {code} account {account} failed: {response}")
                result.failed_accounts.append(account)
                continue

            for transfer in response.incoming:
                invoice = existing.get((transfer.address, transfer.txid)) or by_destination.get(transfer.address)
                if invoice is None:
                    result.unmatched += 1
                    logger.debug(
                        f"{DataMismatchError.error_code}: transfer {transfer.txid} to "
                        f"{transfer.address} matches no monitored invoice"
                    )
                    continue
                await self._handle_transfer(code, invoice, transfer, result)

        await self._flush(result)
        return result

    # ------------------------------------------------------------------
    # Single transaction path
    # ------------------------------------------------------------------

    async def on_transaction_updated(self, crypto_code: str, transaction_hash: str) -> ReconciliationResult:
        """Resolve one transaction and credit each invoice it pays."""
        code = crypto_code.upper()
        pmid = payment_method_id(code)
        result = ReconciliationResult(crypto_code=code)

        response = await self._get_transfer_by_txid(code, transaction_hash)
        if response is None:
            logger.debug(f"Transaction {transaction_hash} not found in {code} wallet")
            return result

        grouped: Dict[str, List[TransferDestination]] = {}
        for destination in response.destinations:
            grouped.setdefault(destination.address, []).append(destination)

        for address, destinations in grouped.items():
            invoice = await self._invoice_store.get_invoice_from_address(pmid, address)
            if invoice is None:
                result.unmatched += 1
                logger.debug(f"{DataMismatchError.error_code}: no invoice owns {code} address {address}")
                continue

            first = destinations[0]
            transfer = Transfer(
                address=address,
                txid=response.transfer.txid or transaction_hash,
                amount=sum(d.amount for d in destinations),
                account_index=first.account_index,
                subaddress_index=first.subaddress_index,
                confirmations=response.transfer.confirmations,
                block_height=response.transfer.block_height,
                unlock_time=response.transfer.unlock_time,
            )
            await self._handle_transfer(code, invoice, transfer, result)

        await self._flush(result)
        return result

    async def _get_transfer_by_txid(
        self, crypto_code: str, transaction_hash: str
    ) -> Optional[GetTransferByTxIdResponse]:
        """Try each wallet account in turn; unscoped when the wallet has none."""
        wallet = self._registry.wallet(crypto_code)
        accounts = await wallet.get_accounts()
        account_indices: List[Optional[int]] = [a.account_index for a in accounts.subaddress_accounts]
        if not account_indices:
            account_indices.append(None)

        for account_index in account_indices:
            try:
                return await wallet.get_transfer_by_txid(transaction_hash, account_index)
            except RPCRejectedError as e:
                logger.debug(f"Transaction {transaction_hash} not in account {account_index}: {e.rpc_message}")
        return None

    # ------------------------------------------------------------------
    # Create / update
    # ------------------------------------------------------------------

    async def _handle_transfer(
        self,
        crypto_code: str,
        invoice: PendingInvoiceView,
        transfer: Transfer,
        result: ReconciliationResult,
    ) -> None:
        pmid = payment_method_id(crypto_code)
        divisibility = self._registry.endpoint(crypto_code).divisibility
        payment_id = payment_record_id(transfer.txid, transfer.account_index, transfer.subaddress_index)
        status = payment_status(
            transfer.confirmations,
            transfer.unlock_time,
            invoice.speed_policy,
            invoice.settlement_threshold,
        )

        existing = result.seen(payment_id) or invoice.find_payment(payment_id)
        if existing is not None:
            # Settled is final; later observations only refresh the details
            if existing.status != PaymentStatus.SETTLED:
                existing.status = status
            existing.confirmations = transfer.confirmations
            existing.block_height = transfer.block_height
            existing.lock_time = transfer.unlock_time
            existing.settlement_threshold = invoice.settlement_threshold
            existing.updated_at = datetime.now(timezone.utc)
            result.record_updated(existing)
            return

        payment = PaymentRecord(
            id=payment_id,
            invoice_id=invoice.invoice_id,
            payment_method_id=pmid,
            crypto_code=crypto_code,
            destination=transfer.address,
            tx_id=transfer.txid,
            account_index=transfer.account_index,
            subaddress_index=transfer.subaddress_index,
            amount=to_decimal(transfer.amount, divisibility),
            status=status,
            confirmations=transfer.confirmations,
            block_height=transfer.block_height,
            lock_time=transfer.unlock_time,
            settlement_threshold=invoice.settlement_threshold,
        )

        stored = await self._invoice_store.add_payment(payment)
        if stored is None:
            logger.debug(f"Payment {payment_id} already recorded by a concurrent pass")
            return

        result.record_created(stored)
        await self._received_payment(invoice, stored)

    async def _received_payment(self, invoice: PendingInvoiceView, payment: PaymentRecord) -> None:
        logger.info(
            f"Invoice {invoice.invoice_id} received payment {payment.amount} "
            f"{payment.crypto_code} {payment.id} ({payment.status.value})"
        )

        if not invoice.prompt_activated and invoice.amount_due > 0:
            await self._invoice_store.activate_invoice_payment_method(
                invoice.invoice_id, payment.payment_method_id
            )

        await self._event_bus.publish(PaymentReceived(invoice_id=invoice.invoice_id, payment=payment))

    async def _flush(self, result: ReconciliationResult) -> None:
        """Persist queued updates, then notify each touched invoice once."""
        if result.updated:
            await self._invoice_store.update_payments(result.updated)

        for invoice_id in result.touched_invoices:
            await self._event_bus.publish(InvoiceNeedsUpdate(invoice_id=invoice_id))

        if result.created or result.updated:
            logger.info(
                f"{result.crypto_code} reconciliation: {len(result.created)} created, "
                f"{len(result.updated)} updated, {result.unmatched} unmatched"
            )
