"""Exception hierarchy for cryptonote-pay.

All errors inherit from CryptonotePayError, which carries:
- error_code: Machine-readable error code (e.g., "RPC_UNAVAILABLE")
- message: Human-readable error message
- details: Optional additional context dictionary
- to_dict(): Convert to API response format

RPC failures are split in two:
- RPCUnavailableError: the endpoint could not be reached (connection, timeout,
  bad HTTP status). Drives availability flips; retried on the next poll.
- RPCRejectedError: the endpoint answered with a JSON-RPC error object.
  Surfaced to the caller and never retried automatically.
"""
from __future__ import annotations

from typing import Any, Optional


class CryptonotePayError(Exception):
    """Base exception for all cryptonote-pay errors."""

    error_code: str = "CRYPTONOTE_PAY_ERROR"

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if error_code:
            self.error_code = error_code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to API response format."""
        result = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class UnknownCurrencyError(CryptonotePayError):
    """Currency code is not configured."""

    error_code = "UNKNOWN_CURRENCY"

    def __init__(self, crypto_code: str) -> None:
        super().__init__(
            f"Currency {crypto_code} is not configured",
            details={"crypto_code": crypto_code},
        )
        self.crypto_code = crypto_code


# =============================================================================
# RPC Errors
# =============================================================================

class RPCError(CryptonotePayError):
    """Base class for JSON-RPC failures."""

    error_code = "RPC_ERROR"

    def __init__(
        self,
        message: str,
        url: Optional[str] = None,
        method: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        if url:
            details["url"] = url
        if method:
            details["method"] = method
        super().__init__(message, details=details)
        self.url = url
        self.method = method


class RPCUnavailableError(RPCError):
    """Endpoint unreachable: connection refused, timeout or bad HTTP status."""

    error_code = "RPC_UNAVAILABLE"


class RPCRejectedError(RPCError):
    """Endpoint returned a structured JSON-RPC error object."""

    error_code = "RPC_REJECTED"

    def __init__(
        self,
        rpc_message: str,
        code: Optional[int] = None,
        url: Optional[str] = None,
        method: Optional[str] = None,
    ) -> None:
        details: dict[str, Any] = {"rpc_error": rpc_message}
        if code is not None:
            details["rpc_code"] = code
        super().__init__(
            f"RPC {method or 'call'} rejected: {rpc_message}",
            url=url,
            method=method,
            details=details,
        )
        self.code = code
        self.rpc_message = rpc_message


# =============================================================================
# Reconciliation & Wallet Errors
# =============================================================================

class DataMismatchError(CryptonotePayError):
    """A transfer references an invoice or account that cannot be resolved.

    Expected background noise from unrelated wallet activity; logged at debug.
    """

    error_code = "DATA_MISMATCH"


class WalletOperationError(CryptonotePayError):
    """Wallet lifecycle call failed; message is safe to show to a merchant."""

    error_code = "WALLET_OPERATION_FAILED"


class PaymentMethodUnavailableError(CryptonotePayError):
    """Payment prompt requested while the currency is unconfigured or unusable."""

    error_code = "PAYMENT_METHOD_UNAVAILABLE"
