"""
Configuration management for cryptonote-pay.

Provides:
- Service settings loaded from CRYPTONOTE_* environment variables
- Per-currency daemon / wallet RPC endpoints
- Known network parameters (URI scheme, divisibility)
"""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from types import MappingProxyType
from typing import Dict, List, Mapping, Optional

from pydantic import field_validator
from pydantic_settings import BaseSettings

logger = logging.getLogger(__name__)

ENV_PREFIX = "CRYPTONOTE_"
DEFAULT_DIVISIBILITY = 9


@dataclass(frozen=True)
class NetworkInfo:
    """Static parameters of a supported coin."""
    crypto_code: str
    display_name: str
    uri_scheme: str
    divisibility: int = DEFAULT_DIVISIBILITY


KNOWN_NETWORKS: Dict[str, NetworkInfo] = {
    "XMR": NetworkInfo(crypto_code="XMR", display_name="Monero", uri_scheme="monero"),
    "BDX": NetworkInfo(crypto_code="BDX", display_name="Beldex", uri_scheme="beldex"),
}


def get_network(crypto_code: str) -> NetworkInfo:
    """Look up network parameters, falling back to defaults for unknown coins."""
    code = crypto_code.upper()
    network = KNOWN_NETWORKS.get(code)
    if network is None:
        network = NetworkInfo(
            crypto_code=code,
            display_name=code,
            uri_scheme=code.lower(),
        )
    return network


@dataclass(frozen=True)
class CurrencyEndpoint:
    """One configured coin: daemon and wallet RPC locations."""
    crypto_code: str
    daemon_uri: str
    wallet_uri: str
    username: Optional[str] = None
    password: Optional[str] = None
    wallet_directory: Optional[str] = None
    divisibility: int = DEFAULT_DIVISIBILITY

    @property
    def payment_method_id(self) -> str:
        return payment_method_id(self.crypto_code)

    @property
    def has_credentials(self) -> bool:
        return self.username is not None and self.password is not None


def payment_method_id(crypto_code: str) -> str:
    """On-chain payment method id for a currency, e.g. ``XMR-CHAIN``."""
    return f"{crypto_code.upper()}-CHAIN"


class CryptonoteSettings(BaseSettings):
    """Service settings."""

    # Comma-separated currency codes to enable
    currencies: str = "XMR"

    # Availability polling
    fast_poll_seconds: float = 10.0
    steady_poll_seconds: float = 60.0

    # RPC transport
    rpc_timeout_seconds: float = 30.0

    # Logging
    log_level: str = "INFO"
    log_json: bool = False

    # HTTP callback routes
    callback_prefix: str = "/cryptonote"

    class Config:
        env_prefix = ENV_PREFIX
        env_file = ".env"
        extra = "ignore"

    @field_validator("fast_poll_seconds", "steady_poll_seconds", "rpc_timeout_seconds")
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("interval must be positive")
        return v

    @property
    def currency_codes(self) -> List[str]:
        """Configured codes, upper-cased and de-duplicated in order."""
        codes: List[str] = []
        for raw in self.currencies.split(","):
            code = raw.strip().upper()
            if code and code not in codes:
                codes.append(code)
        return codes


def _get_env(
    environ: Mapping[str, str],
    crypto_code: str,
    key: str,
) -> Optional[str]:
    """Read ``CRYPTONOTE_{CODE}_{KEY}``; empty strings count as unset."""
    value = environ.get(f"{ENV_PREFIX}{crypto_code}_{key}")
    if value is None or not value.strip():
        return None
    return value.strip()


def load_currency_endpoints(
    settings: CryptonoteSettings,
    environ: Optional[Mapping[str, str]] = None,
) -> Mapping[str, CurrencyEndpoint]:
    """
    Build the immutable currency -> endpoint map.

    Currencies missing either the daemon or the wallet URI are disabled
    with a warning rather than failing startup.
    """
    env = os.environ if environ is None else environ
    endpoints: Dict[str, CurrencyEndpoint] = {}

    for code in settings.currency_codes:
        daemon_uri = _get_env(env, code, "DAEMON_URI")
        wallet_uri = _get_env(env, code, "WALLET_DAEMON_URI")

        if daemon_uri is None or wallet_uri is None:
            if daemon_uri is None:
                logger.warning(f"{ENV_PREFIX}{code}_DAEMON_URI is not configured")
            if wallet_uri is None:
                logger.warning(f"{ENV_PREFIX}{code}_WALLET_DAEMON_URI is not configured")
            logger.warning(f"{code} got disabled as it is not fully configured.")
            continue

        endpoints[code] = CurrencyEndpoint(
            crypto_code=code,
            daemon_uri=daemon_uri,
            wallet_uri=wallet_uri,
            username=_get_env(env, code, "DAEMON_USERNAME"),
            password=_get_env(env, code, "DAEMON_PASSWORD"),
            wallet_directory=_get_env(env, code, "WALLET_DAEMON_WALLETDIR"),
            divisibility=get_network(code).divisibility,
        )
        logger.info(f"Configured {code}: daemon={daemon_uri} wallet={wallet_uri}")

    return MappingProxyType(endpoints)
