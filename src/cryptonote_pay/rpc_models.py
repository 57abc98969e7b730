"""
Typed views over daemon and wallet JSON-RPC responses.

Only the fields this service reads are modelled; everything else in the
response is ignored.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass(frozen=True)
class SubaddressIndex:
    """Wallet-internal (account, subaddress) pair."""
    major: int = 0
    minor: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SubaddressIndex":
        data = data or {}
        return cls(major=int(data.get("major", 0)), minor=int(data.get("minor", 0)))


@dataclass(frozen=True)
class GetInfoResponse:
    """Daemon ``get_info``."""
    height: int
    target_height: int
    busy_syncing: bool

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GetInfoResponse":
        height = int(data.get("height", 0))
        # target_height is 0 once the daemon has caught up
        target_height = int(data.get("target_height") or 0) or height
        return cls(
            height=height,
            target_height=target_height,
            busy_syncing=bool(data.get("busy_syncing", False)),
        )


@dataclass(frozen=True)
class GetHeightResponse:
    """Wallet ``get_height``."""
    height: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GetHeightResponse":
        return cls(height=int(data.get("height", 0)))


@dataclass(frozen=True)
class FeeEstimate:
    """Daemon ``get_fee_estimate``; ``fee`` is atomic units per byte."""
    fee_per_byte: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeeEstimate":
        return cls(fee_per_byte=int(data.get("fee", 0)))


@dataclass(frozen=True)
class Transfer:
    """One incoming transfer as reported by the wallet."""
    address: str
    txid: str
    amount: int
    account_index: int
    subaddress_index: int
    confirmations: int = 0
    block_height: int = 0
    unlock_time: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Transfer":
        index = SubaddressIndex.from_dict(data.get("subaddr_index"))
        return cls(
            address=data.get("address", ""),
            txid=data.get("txid", ""),
            amount=int(data.get("amount", 0)),
            account_index=index.major,
            subaddress_index=index.minor,
            confirmations=int(data.get("confirmations") or 0),
            block_height=int(data.get("height") or 0),
            unlock_time=int(data.get("unlock_time") or 0),
        )


@dataclass(frozen=True)
class GetTransfersResponse:
    """Wallet ``get_transfers`` restricted to incoming transfers."""
    incoming: List[Transfer] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GetTransfersResponse":
        data = data or {}
        return cls(incoming=[Transfer.from_dict(t) for t in data.get("in") or []])


@dataclass(frozen=True)
class TransferDestination:
    """Per-address split of a transaction (``get_transfer_by_txid`` ``transfers``)."""
    address: str
    amount: int
    account_index: int
    subaddress_index: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TransferDestination":
        index = SubaddressIndex.from_dict(data.get("subaddr_index"))
        return cls(
            address=data.get("address", ""),
            amount=int(data.get("amount", 0)),
            account_index=index.major,
            subaddress_index=index.minor,
        )


@dataclass(frozen=True)
class GetTransferByTxIdResponse:
    """Wallet ``get_transfer_by_txid``."""
    transfer: Transfer
    destinations: List[TransferDestination] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GetTransferByTxIdResponse":
        transfer = Transfer.from_dict(data.get("transfer") or {})
        entries = data.get("transfers") or [data.get("transfer") or {}]
        return cls(
            transfer=transfer,
            destinations=[TransferDestination.from_dict(t) for t in entries],
        )


@dataclass(frozen=True)
class SubaddressAccount:
    """Entry of ``get_accounts``."""
    account_index: int
    base_address: str = ""
    label: str = ""
    balance: int = 0
    unlocked_balance: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubaddressAccount":
        return cls(
            account_index=int(data.get("account_index", 0)),
            base_address=data.get("base_address", ""),
            label=data.get("label", ""),
            balance=int(data.get("balance", 0)),
            unlocked_balance=int(data.get("unlocked_balance", 0)),
        )


@dataclass(frozen=True)
class GetAccountsResponse:
    subaddress_accounts: List[SubaddressAccount] = field(default_factory=list)
    total_balance: int = 0
    total_unlocked_balance: int = 0

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GetAccountsResponse":
        data = data or {}
        return cls(
            subaddress_accounts=[
                SubaddressAccount.from_dict(a) for a in data.get("subaddress_accounts") or []
            ],
            total_balance=int(data.get("total_balance", 0)),
            total_unlocked_balance=int(data.get("total_unlocked_balance", 0)),
        )


@dataclass(frozen=True)
class CreateAddressResponse:
    address: str
    address_index: int

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateAddressResponse":
        return cls(address=data.get("address", ""), address_index=int(data.get("address_index", 0)))


@dataclass(frozen=True)
class CreateAccountResponse:
    account_index: int
    address: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CreateAccountResponse":
        return cls(account_index=int(data.get("account_index", 0)), address=data.get("address", ""))


@dataclass(frozen=True)
class GenerateFromKeysResponse:
    address: str
    info: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "GenerateFromKeysResponse":
        data = data or {}
        return cls(address=data.get("address", ""), info=data.get("info", ""))
