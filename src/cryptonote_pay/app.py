"""Application composition root."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Dict, Mapping, Optional

import httpx
from fastapi import FastAPI

from . import api
from .availability import AvailabilityTracker, PollSchedule, SummaryUpdater
from .config import CryptonoteSettings, load_currency_endpoints
from .event_bus import EventBus
from .invoices import InMemoryInvoiceStore, InvoiceStore
from .logging_config import configure_logging
from .payment_handler import PaymentMethodHandler
from .reconciler import ReconciliationEngine
from .rpc_client import RpcClientRegistry
from .sync_status import SyncSummaryProvider
from .wallet_service import InMemoryWalletStateRepository, WalletService, WalletStateRepository

logger = logging.getLogger("cryptonote_pay")


@dataclass
class Services:
    """Long-lived components shared by the application."""
    settings: CryptonoteSettings
    registry: RpcClientRegistry
    event_bus: EventBus
    tracker: AvailabilityTracker
    engine: ReconciliationEngine
    updater: SummaryUpdater
    sync_status: SyncSummaryProvider
    invoice_store: InvoiceStore
    wallets: Dict[str, WalletService] = field(default_factory=dict)
    payment_handlers: Dict[str, PaymentMethodHandler] = field(default_factory=dict)

    async def start(self) -> None:
        self.engine.start()
        for wallet in self.wallets.values():
            await wallet.start()
        await self.updater.start()
        logger.info(f"Started cryptonote-pay for {', '.join(self.registry.crypto_codes) or 'no currencies'}")

    async def stop(self) -> None:
        await self.updater.stop()
        for wallet in self.wallets.values():
            try:
                await wallet.stop()
            except Exception as e:
                logger.warning(f"Failed to stop {wallet.crypto_code} wallet service: {e}")
        self.engine.stop()
        await self.event_bus.cancel_background_tasks()
        await self.registry.close()
        logger.info("Stopped cryptonote-pay")


def build_services(
    settings: Optional[CryptonoteSettings] = None,
    invoice_store: Optional[InvoiceStore] = None,
    wallet_state_repository: Optional[WalletStateRepository] = None,
    environ: Optional[Mapping[str, str]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> Services:
    settings = settings or CryptonoteSettings()
    endpoints = load_currency_endpoints(settings, environ)
    registry = RpcClientRegistry(
        endpoints,
        timeout_seconds=settings.rpc_timeout_seconds,
        http_client=http_client,
    )
    event_bus = EventBus()
    tracker = AvailabilityTracker(registry, event_bus)
    invoice_store = invoice_store if invoice_store is not None else InMemoryInvoiceStore()
    wallet_state_repository = wallet_state_repository or InMemoryWalletStateRepository()

    services = Services(
        settings=settings,
        registry=registry,
        event_bus=event_bus,
        tracker=tracker,
        engine=ReconciliationEngine(registry, tracker, invoice_store, event_bus),
        updater=SummaryUpdater(
            tracker,
            registry,
            PollSchedule(
                fast_seconds=settings.fast_poll_seconds,
                steady_seconds=settings.steady_poll_seconds,
            ),
        ),
        sync_status=SyncSummaryProvider(tracker),
        invoice_store=invoice_store,
    )
    for code in registry.crypto_codes:
        services.wallets[code] = WalletService(code, registry, tracker, wallet_state_repository)
        services.payment_handlers[code] = PaymentMethodHandler(code, registry, tracker)
    return services


def create_app(
    settings: Optional[CryptonoteSettings] = None,
    invoice_store: Optional[InvoiceStore] = None,
    wallet_state_repository: Optional[WalletStateRepository] = None,
    environ: Optional[Mapping[str, str]] = None,
    http_client: Optional[httpx.AsyncClient] = None,
) -> FastAPI:
    settings = settings or CryptonoteSettings()
    configure_logging(level=settings.log_level, json_format=settings.log_json)

    services = build_services(
        settings=settings,
        invoice_store=invoice_store,
        wallet_state_repository=wallet_state_repository,
        environ=environ,
        http_client=http_client,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await services.start()
        try:
            yield
        finally:
            await services.stop()

    app = FastAPI(title="cryptonote-pay", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    deps = api.CallbackDeps(event_bus=services.event_bus, sync_status=services.sync_status)
    app.dependency_overrides[api.get_deps] = lambda: deps
    app.include_router(api.router, prefix=settings.callback_prefix)
    return app
