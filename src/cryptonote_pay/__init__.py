"""
cryptonote-pay: Monero-family (CryptoNote) payment monitoring.

Watches daemon and wallet RPC health, reconciles incoming wallet transfers
against pending invoices, and publishes payment events.
"""

from .availability import AvailabilitySummary, AvailabilityTracker, PollSchedule, SummaryUpdater
from .config import CryptonoteSettings, CurrencyEndpoint, load_currency_endpoints, payment_method_id
from .confirmation import PaymentStatus, SpeedPolicy, payment_status, required_confirmations
from .event_bus import EventBus
from .events import ChainNotification, DaemonStateChange, InvoiceNeedsUpdate, NewBlock, PaymentReceived
from .exceptions import (
    CryptonotePayError,
    DataMismatchError,
    PaymentMethodUnavailableError,
    RPCError,
    RPCRejectedError,
    RPCUnavailableError,
    UnknownCurrencyError,
    WalletOperationError,
)
from .invoices import InMemoryInvoiceStore, InvoiceStore, PaymentRecord, PendingInvoiceView
from .money import to_decimal, to_units
from .reconciler import ReconciliationEngine, ReconciliationResult
from .rpc_client import DaemonRpcClient, JsonRpcClient, RpcClientRegistry, WalletRpcClient

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "AvailabilitySummary",
    "AvailabilityTracker",
    "ChainNotification",
    "CryptonotePayError",
    "CryptonoteSettings",
    "CurrencyEndpoint",
    "DaemonRpcClient",
    "DaemonStateChange",
    "DataMismatchError",
    "EventBus",
    "InMemoryInvoiceStore",
    "InvoiceNeedsUpdate",
    "InvoiceStore",
    "JsonRpcClient",
    "NewBlock",
    "PaymentMethodUnavailableError",
    "PaymentReceived",
    "PaymentRecord",
    "PaymentStatus",
    "PendingInvoiceView",
    "PollSchedule",
    "RPCError",
    "RPCRejectedError",
    "RPCUnavailableError",
    "ReconciliationEngine",
    "ReconciliationResult",
    "RpcClientRegistry",
    "SpeedPolicy",
    "SummaryUpdater",
    "UnknownCurrencyError",
    "WalletOperationError",
    "WalletRpcClient",
    "load_currency_endpoints",
    "payment_method_id",
    "payment_status",
    "to_decimal",
    "to_units",
]
