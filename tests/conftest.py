from __future__ import annotations

from types import MappingProxyType
from typing import Callable

import httpx
import pytest

from cryptonote_pay.availability import AvailabilityTracker
from cryptonote_pay.config import CurrencyEndpoint
from cryptonote_pay.event_bus import EventBus
from cryptonote_pay.invoices import InMemoryInvoiceStore
from cryptonote_pay.rpc_client import RpcClientRegistry

from rpc_helpers import DAEMON_URI, WALLET_URI, EventRecorder, FakeRpcServer


@pytest.fixture
def rpc_server() -> FakeRpcServer:
    return FakeRpcServer()


@pytest.fixture
def http_client(rpc_server: FakeRpcServer) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(rpc_server.handle))


@pytest.fixture
def endpoints():
    return MappingProxyType({
        "XMR": CurrencyEndpoint(crypto_code="XMR", daemon_uri=DAEMON_URI, wallet_uri=WALLET_URI),
    })


@pytest.fixture
def registry(endpoints, http_client) -> RpcClientRegistry:
    return RpcClientRegistry(endpoints, http_client=http_client)


@pytest.fixture
def event_bus() -> EventBus:
    return EventBus()


@pytest.fixture
def tracker(registry, event_bus) -> AvailabilityTracker:
    return AvailabilityTracker(registry, event_bus)


@pytest.fixture
def invoice_store() -> InMemoryInvoiceStore:
    return InMemoryInvoiceStore()


@pytest.fixture
def make_recorder(event_bus) -> Callable[..., EventRecorder]:
    def _make(*event_types: type) -> EventRecorder:
        return EventRecorder(event_bus, *event_types)
    return _make
