"""Tests for logging context propagation."""
import json
import logging

from cryptonote_pay.logging_config import (
    CurrencyContextFilter,
    LogContext,
    StructuredFormatter,
    crypto_code_var,
)


def _record(message="hello"):
    return logging.LogRecord("cryptonote_pay.test", logging.INFO, __file__, 1, message, None, None)


def test_log_context_sets_and_resets_currency():
    assert crypto_code_var.get() is None
    with LogContext(crypto_code="XMR", trigger="block"):
        record = _record()
        CurrencyContextFilter().filter(record)
        assert record.crypto_code == "XMR"
        assert record.trigger == "block"
    assert crypto_code_var.get() is None


def test_structured_formatter_emits_json():
    with LogContext(crypto_code="BDX"):
        record = _record("payment received")
        CurrencyContextFilter().filter(record)
        data = json.loads(StructuredFormatter().format(record))

    assert data["message"] == "payment received"
    assert data["crypto_code"] == "BDX"
    assert data["level"] == "INFO"
