"""
Settlement confirmation policy.

A payment is settled once its confirmation count reaches the required
number. The coin's unlock time dominates every merchant setting; after that
an explicit per-invoice threshold wins over the invoice speed policy.
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class SpeedPolicy(str, Enum):
    """Invoice speed policy chosen by the merchant."""
    HIGH_SPEED = "HighSpeed"
    MEDIUM_SPEED = "MediumSpeed"
    LOW_MEDIUM_SPEED = "LowMediumSpeed"
    LOW_SPEED = "LowSpeed"


class PaymentStatus(str, Enum):
    """Settlement status of a payment record."""
    PROCESSING = "Processing"
    SETTLED = "Settled"


SPEED_POLICY_CONFIRMATIONS = {
    SpeedPolicy.HIGH_SPEED: 0,
    SpeedPolicy.MEDIUM_SPEED: 1,
    SpeedPolicy.LOW_MEDIUM_SPEED: 2,
    SpeedPolicy.LOW_SPEED: 6,
}

# Unknown or missing policies are treated as the slowest one
DEFAULT_REQUIRED_CONFIRMATIONS = 6


def required_confirmations(
    confirmations: int,
    lock_time: int,
    speed_policy: Optional[SpeedPolicy | str],
    threshold_override: Optional[int] = None,
) -> int:
    """
    Confirmations required before a payment counts as settled.

    Args:
        confirmations: Confirmations observed so far
        lock_time: Unlock time reported for the transfer
        speed_policy: Invoice speed policy
        threshold_override: Explicit per-invoice settlement threshold

    Returns:
        ``lock_time - confirmations`` while still locked, else the override,
        else the speed-policy default.
    """
    if confirmations < lock_time:
        return lock_time - confirmations
    if threshold_override is not None:
        return threshold_override
    try:
        policy = SpeedPolicy(speed_policy) if speed_policy is not None else None
    except ValueError:
        policy = None
    return SPEED_POLICY_CONFIRMATIONS.get(policy, DEFAULT_REQUIRED_CONFIRMATIONS)


def is_settled(
    confirmations: int,
    lock_time: int,
    speed_policy: Optional[SpeedPolicy | str],
    threshold_override: Optional[int] = None,
) -> bool:
    required = required_confirmations(confirmations, lock_time, speed_policy, threshold_override)
    return confirmations >= required


def payment_status(
    confirmations: int,
    lock_time: int,
    speed_policy: Optional[SpeedPolicy | str],
    threshold_override: Optional[int] = None,
) -> PaymentStatus:
    if is_settled(confirmations, lock_time, speed_policy, threshold_override):
        return PaymentStatus.SETTLED
    return PaymentStatus.PROCESSING
