"""
Wallet lifecycle management.

A wallet RPC process serves a single open wallet. This service opens,
closes and creates (view-only, from keys) that wallet, and remembers which
wallet is active so it can be reopened on restart.
"""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Optional, Protocol

from .availability import AvailabilityTracker
from .exceptions import RPCError, RPCRejectedError, WalletOperationError
from .rpc_client import RpcClientRegistry
from .rpc_models import CreateAccountResponse, GetAccountsResponse

logger = logging.getLogger(__name__)

WALLET_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]+$")
MAX_WALLET_NAME_LENGTH = 64


def is_valid_wallet_name(wallet_name: Optional[str]) -> bool:
    return (
        bool(wallet_name)
        and bool(wallet_name.strip())
        and len(wallet_name) <= MAX_WALLET_NAME_LENGTH
        and WALLET_NAME_PATTERN.match(wallet_name) is not None
    )


@dataclass(frozen=True)
class WalletState:
    """Active wallet of one currency."""
    active_wallet_name: Optional[str] = None
    active_wallet_password: Optional[str] = None
    last_activated_at: Optional[datetime] = None
    last_activated_by_store_id: Optional[str] = None
    is_connected: bool = False

    @property
    def is_initialized(self) -> bool:
        return bool(self.active_wallet_name)


class WalletStateRepository(Protocol):
    """Persistence for the active wallet state."""

    async def get_wallet_state(self, crypto_code: str) -> Optional[WalletState]:
        ...

    async def save_wallet_state(self, crypto_code: str, state: WalletState) -> None:
        ...


class InMemoryWalletStateRepository:
    def __init__(self) -> None:
        self._states: dict[str, WalletState] = {}

    async def get_wallet_state(self, crypto_code: str) -> Optional[WalletState]:
        return self._states.get(crypto_code.upper())

    async def save_wallet_state(self, crypto_code: str, state: WalletState) -> None:
        self._states[crypto_code.upper()] = state


class WalletService:
    """Opens, closes and creates the wallet served by one currency's wallet RPC."""

    def __init__(
        self,
        crypto_code: str,
        registry: RpcClientRegistry,
        tracker: AvailabilityTracker,
        state_repository: WalletStateRepository,
    ):
        self._crypto_code = crypto_code.upper()
        self._registry = registry
        self._tracker = tracker
        self._state_repository = state_repository
        self._state = WalletState()

    @property
    def crypto_code(self) -> str:
        return self._crypto_code

    @property
    def state(self) -> WalletState:
        return self._state

    async def start(self) -> None:
        """Reopen the previously active wallet, if any."""
        if not self._registry.is_configured(self._crypto_code):
            logger.warning(f"{self._crypto_code} RPC not configured")
            return

        saved = await self._state_repository.get_wallet_state(self._crypto_code)
        if saved is None or not saved.is_initialized:
            return

        self._state = replace(saved, is_connected=False)
        if await self.open_wallet(saved.active_wallet_name, saved.active_wallet_password or ""):
            self._state = replace(self._state, is_connected=True)
            logger.info(f"Successfully opened wallet '{saved.active_wallet_name}' on startup")

    async def stop(self) -> None:
        if self._state.is_connected:
            await self.close_wallet()

    async def open_wallet(self, filename: str, password: str) -> bool:
        """Open a wallet file and refresh availability. Returns False on failure."""
        try:
            await self._registry.wallet(self._crypto_code).open_wallet(filename, password)
        except RPCError as e:
            logger.error(f"Failed to open wallet '{filename}': {e.message}")
            return False
        await self._tracker.update_summary(self._crypto_code)
        return True

    async def close_wallet(self) -> bool:
        try:
            await self._registry.wallet(self._crypto_code).close_wallet()
        except RPCError as e:
            logger.error(f"Failed to close {self._crypto_code} wallet: {e.message}")
            return False
        self._state = replace(self._state, is_connected=False)
        await self._tracker.mark_wallet_closed(self._crypto_code)
        logger.info(f"Closed wallet '{self._state.active_wallet_name}'")
        return True

    async def set_active_wallet(self, wallet_name: str, password: str, changed_by_store_id: str) -> bool:
        """Switch the wallet RPC to another wallet file and persist the choice."""
        if self._state.is_connected:
            await self.close_wallet()

        if not await self.open_wallet(wallet_name, password):
            return False

        await self._activate(wallet_name, password, changed_by_store_id)
        return True

    async def create_wallet_from_keys(
        self,
        wallet_name: str,
        primary_address: str,
        private_view_key: str,
        password: str,
        restore_height: int = 0,
        created_by_store_id: Optional[str] = None,
    ) -> WalletState:
        """
        Create a view-only wallet and make it active.

        Raises:
            WalletOperationError: Invalid name, or the wallet RPC refused the
                keys. The message is meant for the merchant; not retried.
        """
        if not is_valid_wallet_name(wallet_name):
            raise WalletOperationError(
                "Invalid wallet name. Only alphanumeric characters, dashes, and "
                f"underscores are allowed (max {MAX_WALLET_NAME_LENGTH} characters)."
            )

        wallet = self._registry.wallet(self._crypto_code)
        logger.info(f"Creating wallet '{wallet_name}' for store {created_by_store_id}")
        try:
            await wallet.generate_from_keys(
                filename=wallet_name,
                address=primary_address,
                view_key=private_view_key,
                password=password,
                restore_height=restore_height,
            )
        except RPCRejectedError as e:
            logger.error(f"Failed to create wallet '{wallet_name}': {e.rpc_message}")
            raise WalletOperationError(e.rpc_message, details={"wallet_name": wallet_name}) from e
        except RPCError as e:
            logger.error(f"Failed to create wallet '{wallet_name}': {e.message}")
            raise WalletOperationError(
                f"{self._crypto_code} wallet RPC is unavailable", details={"wallet_name": wallet_name}
            ) from e

        await self._activate(wallet_name, password, created_by_store_id)
        try:
            await self._tracker.update_summary(self._crypto_code)
        except Exception as e:
            logger.warning(f"Failed to update summary after wallet creation, will update on next cycle: {e}")
        return self._state

    async def _activate(self, wallet_name: str, password: str, store_id: Optional[str]) -> None:
        self._state = WalletState(
            active_wallet_name=wallet_name,
            active_wallet_password=password,
            last_activated_at=datetime.now(timezone.utc),
            last_activated_by_store_id=store_id,
            is_connected=True,
        )
        await self._state_repository.save_wallet_state(self._crypto_code, self._state)
        logger.info(f"Active wallet changed to '{wallet_name}' by store {store_id}")

    async def clear_wallet_state(self) -> None:
        self._state = WalletState()
        await self._state_repository.save_wallet_state(self._crypto_code, self._state)

    async def get_accounts(self) -> Optional[GetAccountsResponse]:
        """Wallet accounts, or None while the wallet is not available."""
        summary = self._tracker.get_summary(self._crypto_code)
        if summary is None or not summary.wallet_available:
            return None
        try:
            return await self._registry.wallet(self._crypto_code).get_accounts()
        except RPCError as e:
            logger.warning(f"get_accounts failed for {self._crypto_code}: {e.message}")
            return None

    async def create_account(self, label: str) -> CreateAccountResponse:
        """Allocate a new subaccount; propagates RPC errors to the caller."""
        return await self._registry.wallet(self._crypto_code).create_account(label)
