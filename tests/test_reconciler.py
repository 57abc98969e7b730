"""Tests for matching wallet transfers to invoices."""
from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest
import pytest_asyncio

from cryptonote_pay.confirmation import PaymentStatus, SpeedPolicy
from cryptonote_pay.events import (
    ChainNotification,
    DaemonStateChange,
    InvoiceNeedsUpdate,
    NewBlock,
    PaymentReceived,
)
from cryptonote_pay.invoices import payment_record_id
from cryptonote_pay.reconciler import ReconciliationEngine

from rpc_helpers import WALLET_HOST, make_healthy, make_unreachable

PMID = "XMR-CHAIN"


def _transfer(address="addrA", txid="tx1", amount=4200000000, account=0, subaddress=1,
              confirmations=0, height=1000, unlock_time=0):
    return {
        "address": address,
        "txid": txid,
        "amount": amount,
        "subaddr_index": {"major": account, "minor": subaddress},
        "confirmations": confirmations,
        "height": height,
        "unlock_time": unlock_time,
    }


def _serve_transfers(rpc_server, transfers_by_account):
    def get_transfers(params):
        return {"in": transfers_by_account.get(params["account_index"], [])}
    rpc_server.on(WALLET_HOST, "get_transfers", get_transfers)


@pytest_asyncio.fixture
async def usable_tracker(rpc_server, tracker):
    make_healthy(rpc_server)
    await tracker.update_summary("XMR")
    return tracker


@pytest.fixture
def engine(registry, tracker, invoice_store, event_bus):
    return ReconciliationEngine(registry, tracker, invoice_store, event_bus)


@pytest.fixture
def recorder(make_recorder):
    return make_recorder(PaymentReceived, InvoiceNeedsUpdate, NewBlock)


class TestBulkReconciliation:
    @pytest.mark.asyncio
    async def test_high_speed_payment_settles_at_zero_confirmations(
        self, rpc_server, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", account_index=0, address_index=1,
                                  amount_due=Decimal("4.2"), speed_policy=SpeedPolicy.HIGH_SPEED)
        _serve_transfers(rpc_server, {0: [_transfer()]})

        result = await engine.update_pending_payments("xmr")
        await event_bus.wait_for_background_tasks(timeout=1)

        assert len(result.created) == 1
        [payment] = invoice_store.payments_for("inv1")
        assert payment.id == "tx1#0#1"
        assert payment.status == PaymentStatus.SETTLED
        assert payment.amount == Decimal("4.2")
        assert payment.block_height == 1000
        assert payment.payment_method_id == PMID
        assert [type(e) for e in recorder.events] == [PaymentReceived, InvoiceNeedsUpdate]
        assert recorder.events[0].payment.id == "tx1#0#1"

    @pytest.mark.asyncio
    async def test_medium_speed_zero_confirmations_is_processing(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("1"),
                                  speed_policy=SpeedPolicy.MEDIUM_SPEED)
        _serve_transfers(rpc_server, {0: [_transfer(confirmations=0)]})

        await engine.update_pending_payments("XMR")

        [payment] = invoice_store.payments_for("inv1")
        assert payment.status == PaymentStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_same_transfer_twice_yields_one_record(
        self, rpc_server, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("4.2"),
                                  speed_policy=SpeedPolicy.LOW_SPEED)
        transfers = {0: [_transfer(confirmations=0)]}
        _serve_transfers(rpc_server, transfers)
        await engine.update_pending_payments("XMR")

        transfers[0] = [_transfer(confirmations=3)]
        result = await engine.update_pending_payments("XMR")
        await event_bus.wait_for_background_tasks(timeout=1)

        [payment] = invoice_store.payments_for("inv1")
        assert payment.confirmations == 3
        assert payment.status == PaymentStatus.PROCESSING
        assert result.created == []
        assert [p.id for p in result.updated] == ["tx1#0#1"]
        assert len(recorder.of_type(PaymentReceived)) == 1
        assert len(recorder.of_type(InvoiceNeedsUpdate)) == 2

    @pytest.mark.asyncio
    async def test_overlapping_passes_create_one_record(
        self, rpc_server, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("4.2"),
                                  speed_policy=SpeedPolicy.HIGH_SPEED)
        _serve_transfers(rpc_server, {0: [_transfer()]})

        await asyncio.gather(
            engine.update_pending_payments("XMR"),
            engine.update_pending_payments("XMR"),
        )
        await event_bus.wait_for_background_tasks(timeout=1)

        assert [p.id for p in invoice_store.payments_for("inv1")] == ["tx1#0#1"]
        assert len(recorder.of_type(PaymentReceived)) == 1

    @pytest.mark.asyncio
    async def test_settled_payment_is_never_downgraded(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("4.2"),
                                  speed_policy=SpeedPolicy.HIGH_SPEED)
        transfers = {0: [_transfer(confirmations=0)]}
        _serve_transfers(rpc_server, transfers)
        await engine.update_pending_payments("XMR")

        # Merchant switched the invoice to a slower policy meanwhile
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("4.2"),
                                  speed_policy=SpeedPolicy.LOW_SPEED)
        transfers[0] = [_transfer(confirmations=1)]
        await engine.update_pending_payments("XMR")

        [payment] = invoice_store.payments_for("inv1")
        assert payment.status == PaymentStatus.SETTLED
        assert payment.confirmations == 1

    @pytest.mark.asyncio
    async def test_unmatched_transfer_creates_nothing(
        self, rpc_server, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("1"))
        _serve_transfers(rpc_server, {0: [_transfer(address="change-address")]})

        result = await engine.update_pending_payments("XMR")
        await event_bus.wait_for_background_tasks(timeout=1)

        assert result.unmatched == 1
        assert invoice_store.payments_for("inv1") == []
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_zero_transfers_is_not_negative_evidence(
        self, rpc_server, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("1"))
        _serve_transfers(rpc_server, {})

        result = await engine.update_pending_payments("XMR")
        await event_bus.wait_for_background_tasks(timeout=1)

        assert (result.created, result.updated, result.unmatched) == ([], [], 0)
        assert recorder.events == []
        assert invoice_store.is_activated("inv1")

    @pytest.mark.asyncio
    async def test_one_get_transfers_call_per_account(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", account_index=0, address_index=1)
        invoice_store.add_invoice("inv2", PMID, "addrB", account_index=0, address_index=2)
        invoice_store.add_invoice("inv3", PMID, "addrC", account_index=1, address_index=1)
        _serve_transfers(rpc_server, {})

        await engine.update_pending_payments("XMR")

        calls = sorted(rpc_server.calls_to("get_transfers"), key=lambda p: p["account_index"])
        assert calls == [
            {"in": True, "account_index": 0, "subaddr_indices": [1, 2]},
            {"in": True, "account_index": 1, "subaddr_indices": [1]},
        ]

    @pytest.mark.asyncio
    async def test_partial_payments_get_separate_records_and_one_update_event(
        self, rpc_server, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("3"))
        _serve_transfers(rpc_server, {0: [
            _transfer(txid="tx1", amount=1_000_000_000),
            _transfer(txid="tx2", amount=2_000_000_000),
        ]})

        await engine.update_pending_payments("XMR")
        await event_bus.wait_for_background_tasks(timeout=1)

        payments = sorted(invoice_store.payments_for("inv1"), key=lambda p: p.id)
        assert [(p.id, p.amount) for p in payments] == [
            ("tx1#0#1", Decimal("1")),
            ("tx2#0#1", Decimal("2")),
        ]
        assert len(recorder.of_type(PaymentReceived)) == 2
        assert [e.invoice_id for e in recorder.of_type(InvoiceNeedsUpdate)] == ["inv1"]

    @pytest.mark.asyncio
    async def test_failed_account_does_not_block_others(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", account_index=0, address_index=1)
        invoice_store.add_invoice("inv2", PMID, "addrB", account_index=1, address_index=1)

        def get_transfers(params):
            if params["account_index"] == 0:
                return {"__error__": {"code": -1, "message": "account index is out of bound"}}
            return {"in": [_transfer(address="addrB", account=1)]}

        rpc_server.on(WALLET_HOST, "get_transfers", get_transfers)

        result = await engine.update_pending_payments("XMR")

        assert result.failed_accounts == [0]
        assert [p.invoice_id for p in result.created] == ["inv2"]

    @pytest.mark.asyncio
    async def test_inactive_prompts_are_skipped(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, prompt_activated=False)
        _serve_transfers(rpc_server, {0: [_transfer()]})

        result = await engine.update_pending_payments("XMR")

        assert rpc_server.calls_to("get_transfers") == []
        assert result.created == []

    @pytest.mark.asyncio
    async def test_other_payment_methods_are_ignored(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", "BDX-CHAIN", "addrA", address_index=1)
        _serve_transfers(rpc_server, {0: [_transfer()]})

        result = await engine.update_pending_payments("XMR")

        assert result.created == []
        assert invoice_store.payments_for("inv1") == []


class TestSingleTransaction:
    def _serve_tx(self, rpc_server, destinations, confirmations=2, accounts=(0,)):
        rpc_server.on(WALLET_HOST, "get_accounts", {
            "subaddress_accounts": [{"account_index": a} for a in accounts],
        })

        def get_transfer_by_txid(params):
            if params.get("account_index", 0) != destinations[0].get("account", 0):
                return {"__error__": {"code": -8, "message": "Transaction not found."}}
            return {
                "transfer": _transfer(txid=params["txid"], confirmations=confirmations),
                "transfers": [
                    {"address": d["address"], "amount": d["amount"],
                     "subaddr_index": {"major": d.get("account", 0), "minor": d["subaddress"]}}
                    for d in destinations
                ],
            }

        rpc_server.on(WALLET_HOST, "get_transfer_by_txid", get_transfer_by_txid)

    @pytest.mark.asyncio
    async def test_credits_each_invoice_paid_by_transaction(
        self, rpc_server, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("1"),
                                  speed_policy=SpeedPolicy.MEDIUM_SPEED)
        invoice_store.add_invoice("inv2", PMID, "addrB", address_index=2, amount_due=Decimal("2"),
                                  speed_policy=SpeedPolicy.MEDIUM_SPEED)
        self._serve_tx(rpc_server, [
            {"address": "addrA", "amount": 1_000_000_000, "subaddress": 1},
            {"address": "addrB", "amount": 2_000_000_000, "subaddress": 2},
        ])

        result = await engine.on_transaction_updated("XMR", "txabc")
        await event_bus.wait_for_background_tasks(timeout=1)

        assert sorted(p.id for p in result.created) == ["txabc#0#1", "txabc#0#2"]
        [paid_b] = invoice_store.payments_for("inv2")
        assert paid_b.amount == Decimal("2")
        assert paid_b.status == PaymentStatus.SETTLED
        assert sorted(e.invoice_id for e in recorder.of_type(InvoiceNeedsUpdate)) == ["inv1", "inv2"]

    @pytest.mark.asyncio
    async def test_tries_accounts_until_found(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", account_index=2, address_index=1)
        self._serve_tx(rpc_server, [{"address": "addrA", "amount": 5, "account": 2, "subaddress": 1}],
                       accounts=(0, 1, 2, 3))

        result = await engine.on_transaction_updated("XMR", "txabc")

        assert [p.id for p in result.created] == ["txabc#2#1"]
        assert [p.get("account_index") for p in rpc_server.calls_to("get_transfer_by_txid")] == [0, 1, 2]

    @pytest.mark.asyncio
    async def test_unscoped_lookup_without_accounts(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1)
        self._serve_tx(rpc_server, [{"address": "addrA", "amount": 5, "subaddress": 1}], accounts=())

        result = await engine.on_transaction_updated("XMR", "txabc")

        assert len(result.created) == 1
        assert "account_index" not in rpc_server.calls_to("get_transfer_by_txid")[0]

    @pytest.mark.asyncio
    async def test_unknown_transaction_is_ignored(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1)
        rpc_server.on(WALLET_HOST, "get_accounts", {"subaddress_accounts": [{"account_index": 0}]})
        rpc_server.reject(WALLET_HOST, "get_transfer_by_txid", "Transaction not found.", code=-8)

        result = await engine.on_transaction_updated("XMR", "txabc")

        assert result.created == []
        assert invoice_store.payments_for("inv1") == []

    @pytest.mark.asyncio
    async def test_payment_activates_inactive_prompt(
        self, rpc_server, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("1"),
                                  prompt_activated=False)
        self._serve_tx(rpc_server, [{"address": "addrA", "amount": 1_000_000_000, "subaddress": 1}])

        await engine.on_transaction_updated("XMR", "txabc")
        await event_bus.wait_for_background_tasks(timeout=1)

        assert invoice_store.is_activated("inv1")
        assert len(recorder.of_type(PaymentReceived)) == 1

    @pytest.mark.asyncio
    async def test_bulk_and_single_paths_converge(self, rpc_server, engine, invoice_store):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("4.2"))
        _serve_transfers(rpc_server, {0: [_transfer(txid="txabc", confirmations=2)]})
        self._serve_tx(rpc_server, [{"address": "addrA", "amount": 4200000000, "subaddress": 1}],
                       confirmations=5)

        await engine.update_pending_payments("XMR")
        result = await engine.on_transaction_updated("XMR", "txabc")

        [payment] = invoice_store.payments_for("inv1")
        assert payment.id == payment_record_id("txabc", 0, 1)
        assert payment.confirmations == 5
        assert result.created == []


class TestEventHandling:
    @pytest.mark.asyncio
    async def test_block_notification_reconciles_and_publishes_new_block(
        self, rpc_server, usable_tracker, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1, amount_due=Decimal("4.2"))
        _serve_transfers(rpc_server, {0: [_transfer()]})
        engine.start()

        await event_bus.publish(ChainNotification(crypto_code="xmr", block_hash="blk1"))
        await event_bus.wait_for_background_tasks(timeout=1)

        assert len(invoice_store.payments_for("inv1")) == 1
        assert recorder.of_type(NewBlock) == [NewBlock(payment_method_id=PMID)]

    @pytest.mark.asyncio
    async def test_notifications_ignored_while_unavailable(
        self, rpc_server, tracker, engine, invoice_store, event_bus, recorder
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1)
        _serve_transfers(rpc_server, {0: [_transfer()]})
        engine.start()

        await event_bus.publish(ChainNotification(crypto_code="XMR", block_hash="blk1"))
        await event_bus.wait_for_background_tasks(timeout=1)

        assert rpc_server.calls_to("get_transfers") == []
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_becoming_available_triggers_bulk_pass(
        self, rpc_server, tracker, engine, invoice_store, event_bus
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1)
        _serve_transfers(rpc_server, {0: [_transfer()]})
        engine.start()

        make_healthy(rpc_server)
        await tracker.update_summary("XMR")
        await event_bus.wait_for_background_tasks(timeout=1)

        assert len(invoice_store.payments_for("inv1")) == 1

    @pytest.mark.asyncio
    async def test_failed_pass_is_logged_not_raised(
        self, rpc_server, usable_tracker, engine, invoice_store, event_bus, recorder, caplog
    ):
        invoice_store.add_invoice("inv1", PMID, "addrA", address_index=1)
        make_unreachable(rpc_server, WALLET_HOST, "get_accounts")
        engine.start()

        await event_bus.publish(ChainNotification(crypto_code="XMR", transaction_hash="txabc"))
        await event_bus.wait_for_background_tasks(timeout=1)

        assert "Reconciliation of transaction txabc failed" in caplog.text
        assert recorder.events == []

    @pytest.mark.asyncio
    async def test_stop_unsubscribes(self, rpc_server, usable_tracker, engine, event_bus):
        _serve_transfers(rpc_server, {})
        engine.start()
        engine.stop()

        await event_bus.publish(
            DaemonStateChange(crypto_code="XMR", summary=usable_tracker.get_summary("XMR")),
            fire_and_forget=False,
        )

        assert rpc_server.calls_to("get_transfers") == []
