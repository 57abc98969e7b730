"""
JSON-RPC client for CryptoNote daemons and wallets.

Features:
- One stateless request/response call per invocation, no retries
- Unavailable (transport) vs rejected (JSON-RPC error) classification
- Optional HTTP digest credentials for the daemon
- Typed helpers for the daemon and wallet methods this service uses
- Immutable per-currency client registry built once at startup
"""
from __future__ import annotations

import logging
import time
from types import MappingProxyType
from typing import Any, Dict, Iterable, List, Mapping, Optional

import httpx

from .config import CurrencyEndpoint
from .exceptions import RPCRejectedError, RPCUnavailableError, UnknownCurrencyError
from .rpc_models import (
    CreateAccountResponse,
    CreateAddressResponse,
    FeeEstimate,
    GenerateFromKeysResponse,
    GetAccountsResponse,
    GetHeightResponse,
    GetInfoResponse,
    GetTransferByTxIdResponse,
    GetTransfersResponse,
)

logger = logging.getLogger(__name__)


class JsonRpcClient:
    """
    Minimal JSON-RPC 2.0 client over HTTP.

    Retry policy belongs to the caller: some commands (``generate_from_keys``,
    ``create_address``) are not idempotent.
    """

    def __init__(
        self,
        url: str,
        username: Optional[str] = None,
        password: Optional[str] = None,
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._url = url.rstrip("/") + "/json_rpc"
        self._auth = httpx.DigestAuth(username, password) if username and password else None
        self._timeout = timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None
        self._request_id = 0

    @property
    def url(self) -> str:
        return self._url

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                timeout=httpx.Timeout(self._timeout, connect=10.0),
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._http_client

    async def call(self, method: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Make a JSON-RPC call.

        Args:
            method: RPC method name
            params: Method parameters

        Returns:
            The ``result`` object (empty dict when the method returns none)

        Raises:
            RPCUnavailableError: Connection failure, timeout, bad HTTP status
                or an undecodable body
            RPCRejectedError: The endpoint returned a JSON-RPC error object
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": str(self._request_id),
            "method": method,
            "params": params or {},
        }

        start_time = time.time()
        try:
            response = await self._get_client().post(
                self._url,
                json=payload,
                headers={"Content-Type": "application/json"},
                auth=self._auth,
            )
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            latency_ms = (time.time() - start_time) * 1000
            logger.warning(f"RPC {method} to {self._url} failed after {latency_ms:.0f}ms: {e!r}")
            raise RPCUnavailableError(str(e) or type(e).__name__, url=self._url, method=method) from e
        except ValueError as e:
            raise RPCUnavailableError(
                f"Invalid JSON-RPC response: {e}", url=self._url, method=method
            ) from e

        latency_ms = (time.time() - start_time) * 1000

        if not isinstance(body, dict):
            raise RPCUnavailableError("Invalid JSON-RPC response envelope", url=self._url, method=method)

        error = body.get("error")
        if error:
            if isinstance(error, dict):
                rpc_message = str(error.get("message", error))
                code = error.get("code")
            else:
                rpc_message, code = str(error), None
            logger.debug(f"RPC {method} to {self._url} rejected: {rpc_message}")
            raise RPCRejectedError(rpc_message, code=code, url=self._url, method=method)

        result = body.get("result") or {}
        if not isinstance(result, dict):
            raise RPCUnavailableError("Invalid JSON-RPC result", url=self._url, method=method)

        logger.debug(f"RPC {method} to {self._url} succeeded in {latency_ms:.0f}ms")
        return result

    async def close(self) -> None:
        """Close HTTP client if this instance created it."""
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None

    async def __aenter__(self) -> "JsonRpcClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


class DaemonRpcClient(JsonRpcClient):
    """Daemon (node) endpoint."""

    async def get_info(self) -> GetInfoResponse:
        return GetInfoResponse.from_dict(await self.call("get_info"))

    async def get_fee_estimate(self) -> FeeEstimate:
        return FeeEstimate.from_dict(await self.call("get_fee_estimate"))


class WalletRpcClient(JsonRpcClient):
    """Wallet RPC endpoint; one open wallet per wallet-rpc process."""

    async def get_height(self) -> GetHeightResponse:
        return GetHeightResponse.from_dict(await self.call("get_height"))

    async def get_accounts(self) -> GetAccountsResponse:
        return GetAccountsResponse.from_dict(await self.call("get_accounts"))

    async def get_transfers(
        self,
        account_index: int,
        subaddress_indices: Iterable[int],
    ) -> GetTransfersResponse:
        """Incoming transfers for one account, filtered by subaddress set."""
        result = await self.call(
            "get_transfers",
            {
                "in": True,
                "account_index": account_index,
                "subaddr_indices": sorted(set(subaddress_indices)),
            },
        )
        return GetTransfersResponse.from_dict(result)

    async def get_transfer_by_txid(
        self,
        txid: str,
        account_index: Optional[int] = None,
    ) -> GetTransferByTxIdResponse:
        params: Dict[str, Any] = {"txid": txid}
        if account_index is not None:
            params["account_index"] = account_index
        return GetTransferByTxIdResponse.from_dict(await self.call("get_transfer_by_txid", params))

    async def create_address(self, account_index: int, label: str = "") -> CreateAddressResponse:
        result = await self.call("create_address", {"account_index": account_index, "label": label})
        return CreateAddressResponse.from_dict(result)

    async def create_account(self, label: str = "") -> CreateAccountResponse:
        return CreateAccountResponse.from_dict(await self.call("create_account", {"label": label}))

    async def generate_from_keys(
        self,
        filename: str,
        address: str,
        view_key: str,
        password: str,
        restore_height: int = 0,
    ) -> GenerateFromKeysResponse:
        result = await self.call(
            "generate_from_keys",
            {
                "restore_height": restore_height,
                "filename": filename,
                "address": address,
                "viewkey": view_key,
                "password": password,
            },
        )
        return GenerateFromKeysResponse.from_dict(result)

    async def open_wallet(self, filename: str, password: str) -> None:
        await self.call("open_wallet", {"filename": filename, "password": password})

    async def close_wallet(self) -> None:
        await self.call("close_wallet")


class RpcClientRegistry:
    """
    Daemon and wallet clients per currency.

    Built once from the endpoint map and never mutated afterwards.
    """

    def __init__(
        self,
        endpoints: Mapping[str, CurrencyEndpoint],
        timeout_seconds: float = 30.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self._endpoints = MappingProxyType(
            {code.upper(): endpoint for code, endpoint in endpoints.items()}
        )
        self._daemons: Mapping[str, DaemonRpcClient] = MappingProxyType({
            code: DaemonRpcClient(
                endpoint.daemon_uri,
                username=endpoint.username,
                password=endpoint.password,
                timeout_seconds=timeout_seconds,
                http_client=http_client,
            )
            for code, endpoint in self._endpoints.items()
        })
        self._wallets: Mapping[str, WalletRpcClient] = MappingProxyType({
            code: WalletRpcClient(
                endpoint.wallet_uri,
                timeout_seconds=timeout_seconds,
                http_client=http_client,
            )
            for code, endpoint in self._endpoints.items()
        })
        logger.info(f"Initialized RPC clients for {', '.join(self._endpoints) or 'no currencies'}")

    @property
    def endpoints(self) -> Mapping[str, CurrencyEndpoint]:
        return self._endpoints

    @property
    def crypto_codes(self) -> List[str]:
        return list(self._endpoints)

    def is_configured(self, crypto_code: str) -> bool:
        code = crypto_code.upper()
        return code in self._daemons and code in self._wallets

    def endpoint(self, crypto_code: str) -> CurrencyEndpoint:
        try:
            return self._endpoints[crypto_code.upper()]
        except KeyError:
            raise UnknownCurrencyError(crypto_code) from None

    def daemon(self, crypto_code: str) -> DaemonRpcClient:
        try:
            return self._daemons[crypto_code.upper()]
        except KeyError:
            raise UnknownCurrencyError(crypto_code) from None

    def wallet(self, crypto_code: str) -> WalletRpcClient:
        try:
            return self._wallets[crypto_code.upper()]
        except KeyError:
            raise UnknownCurrencyError(crypto_code) from None

    async def close(self) -> None:
        """Close all clients."""
        for client in list(self._daemons.values()) + list(self._wallets.values()):
            await client.close()
