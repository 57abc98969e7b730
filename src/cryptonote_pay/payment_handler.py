"""Payment prompt preparation for CryptoNote invoices."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .availability import AvailabilityTracker
from .config import get_network, payment_method_id
from .exceptions import PaymentMethodUnavailableError
from .money import to_decimal
from .rpc_client import RpcClientRegistry

logger = logging.getLogger(__name__)

# Typical transaction size used to turn a per-byte fee into a network fee
FEE_ESTIMATE_BYTES = 100


@dataclass(frozen=True)
class PaymentPrompt:
    """Where and how an invoice should be paid."""
    payment_method_id: str
    crypto_code: str
    destination: str
    account_index: int
    address_index: int
    payment_method_fee: Decimal
    settlement_threshold: Optional[int] = None
    divisibility: int = 9


class PaymentMethodHandler:
    """Reserves a fresh subaddress per invoice and quotes the network fee."""

    def __init__(
        self,
        crypto_code: str,
        registry: RpcClientRegistry,
        tracker: AvailabilityTracker,
    ):
        self._crypto_code = crypto_code.upper()
        self._registry = registry
        self._tracker = tracker
        self._network = get_network(self._crypto_code)

    @property
    def payment_method_id(self) -> str:
        return payment_method_id(self._crypto_code)

    def is_ready(self) -> bool:
        return self._registry.is_configured(self._crypto_code) and self._tracker.is_available(self._crypto_code)

    async def configure_prompt(
        self,
        invoice_id: str,
        account_index: int,
        settlement_threshold: Optional[int] = None,
    ) -> PaymentPrompt:
        """
        Prepare a payment prompt for an invoice.

        Raises:
            PaymentMethodUnavailableError: RPC not configured or not usable
        """
        if not self._registry.is_configured(self._crypto_code):
            raise PaymentMethodUnavailableError(
                f"CRYPTONOTE_{self._crypto_code}_WALLET_DAEMON_URI or "
                f"CRYPTONOTE_{self._crypto_code}_DAEMON_URI isn't configured"
            )
        if not self._tracker.is_available(self._crypto_code):
            raise PaymentMethodUnavailableError("Node or wallet not available")

        daemon = self._registry.daemon(self._crypto_code)
        wallet = self._registry.wallet(self._crypto_code)
        fee, address = await asyncio.gather(
            daemon.get_fee_estimate(),
            wallet.create_address(account_index, label=f"btcpay invoice #{invoice_id}"),
        )

        divisibility = self._registry.endpoint(self._crypto_code).divisibility
        logger.info(f"Reserved {self._crypto_code} subaddress {account_index}/{address.address_index} for invoice {invoice_id}")
        return PaymentPrompt(
            payment_method_id=self.payment_method_id,
            crypto_code=self._crypto_code,
            destination=address.address,
            account_index=account_index,
            address_index=address.address_index,
            payment_method_fee=to_decimal(fee.fee_per_byte * FEE_ESTIMATE_BYTES, divisibility),
            settlement_threshold=settlement_threshold,
            divisibility=divisibility,
        )

    def payment_link(self, destination: str, amount_due: Decimal) -> str:
        """Wallet URI such as ``monero:4A...?tx_amount=1.5``."""
        return f"{self._network.uri_scheme}:{destination}?tx_amount={Decimal(amount_due):f}"
