"""
Daemon and wallet availability tracking.

Features:
- Independent daemon (``get_info``) and wallet (``get_height``) health polls
- Immutable summaries replaced atomically per currency
- State-change events only when the usable flag flips
- Per-currency polling loops with fast retry while unusable
"""
from __future__ import annotations

import asyncio
import dataclasses
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from .event_bus import EventBus
from .events import DaemonStateChange
from .exceptions import RPCError
from .rpc_client import RpcClientRegistry

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AvailabilitySummary:
    """Point-in-time health of one currency's daemon and wallet."""
    synced: bool = False
    current_height: int = 0
    target_height: int = 0
    wallet_height: int = 0
    daemon_available: bool = False
    wallet_available: bool = False
    updated_at: Optional[datetime] = None

    @property
    def usable(self) -> bool:
        return self.synced and self.wallet_available

    def to_dict(self) -> dict:
        return {
            "synced": self.synced,
            "current_height": self.current_height,
            "target_height": self.target_height,
            "wallet_height": self.wallet_height,
            "daemon_available": self.daemon_available,
            "wallet_available": self.wallet_available,
            "usable": self.usable,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }


class AvailabilityTracker:
    """
    Tracks whether each currency's daemon+wallet pair is usable.

    Summaries are frozen and swapped whole, so readers never observe a
    partially updated summary.
    """

    def __init__(self, registry: RpcClientRegistry, event_bus: EventBus):
        self._registry = registry
        self._event_bus = event_bus
        self._summaries: Dict[str, AvailabilitySummary] = {
            code: AvailabilitySummary() for code in registry.crypto_codes
        }

    @property
    def summaries(self) -> Mapping[str, AvailabilitySummary]:
        """Read-only live view of the current summaries."""
        return MappingProxyType(self._summaries)

    def get_summary(self, crypto_code: str) -> Optional[AvailabilitySummary]:
        return self._summaries.get(crypto_code.upper())

    def is_available(self, crypto_code: str) -> bool:
        summary = self._summaries.get(crypto_code.upper())
        return summary is not None and summary.usable

    async def _poll_daemon(self, crypto_code: str) -> dict:
        try:
            info = await self._registry.daemon(crypto_code).get_info()
            state = {
                "daemon_available": True,
                "synced": not info.busy_syncing,
                "current_height": info.height,
                "target_height": info.target_height,
            }
        except RPCError as e:
            logger.warning(f"{crypto_code} daemon unavailable: {e.message}")
            return {"daemon_available": False, "synced": False}
        except Exception as e:
            logger.warning(f"{crypto_code} daemon returned an unusable get_info response: {e!r}")
            return {"daemon_available": False, "synced": False}
        return state

    async def _poll_wallet(self, crypto_code: str) -> dict:
        try:
            height = await self._registry.wallet(crypto_code).get_height()
            state = {"wallet_available": True, "wallet_height": height.height}
        except RPCError as e:
            logger.warning(f"{crypto_code} wallet unavailable: {e.message}")
            return {"wallet_available": False}
        except Exception as e:
            logger.warning(f"{crypto_code} wallet returned an unusable get_height response: {e!r}")
            return {"wallet_available": False}
        return state

    async def update_summary(self, crypto_code: str) -> Optional[AvailabilitySummary]:
        """
        Poll daemon and wallet and replace the summary.

        Returns:
            The new summary, or None if the currency is not configured
        """
        code = crypto_code.upper()
        if not self._registry.is_configured(code):
            return None

        daemon_state, wallet_state = await asyncio.gather(
            self._poll_daemon(code),
            self._poll_wallet(code),
        )
        summary = AvailabilitySummary(
            updated_at=datetime.now(timezone.utc),
            **daemon_state,
            **wallet_state,
        )
        await self._replace(code, summary)
        return summary

    async def mark_wallet_closed(self, crypto_code: str) -> Optional[AvailabilitySummary]:
        """Record that the wallet was closed without waiting for the next poll."""
        code = crypto_code.upper()
        current = self._summaries.get(code)
        if current is None:
            return None
        summary = dataclasses.replace(
            current,
            wallet_available=False,
            updated_at=datetime.now(timezone.utc),
        )
        await self._replace(code, summary)
        return summary

    async def _replace(self, crypto_code: str, summary: AvailabilitySummary) -> None:
        previous = self._summaries.get(crypto_code)
        self._summaries[crypto_code] = summary

        was_usable = previous.usable if previous is not None else False
        if was_usable != summary.usable:
            logger.info(
                f"{crypto_code} became {'available' if summary.usable else 'unavailable'} "
                f"(synced={summary.synced}, wallet_available={summary.wallet_available})"
            )
            await self._event_bus.publish(DaemonStateChange(crypto_code=crypto_code, summary=summary))


@dataclass
class PollSchedule:
    """Polling cadence: fast retry while unusable, slow while usable."""
    fast_seconds: float = 10.0
    steady_seconds: float = 60.0

    def next_delay(self, usable: bool) -> float:
        return self.steady_seconds if usable else self.fast_seconds


class SummaryUpdater:
    """Runs one availability polling loop per configured currency."""

    def __init__(
        self,
        tracker: AvailabilityTracker,
        registry: RpcClientRegistry,
        schedule: Optional[PollSchedule] = None,
    ):
        self._tracker = tracker
        self._registry = registry
        self._schedule = schedule or PollSchedule()
        self._stop_event = asyncio.Event()
        self._tasks: Dict[str, asyncio.Task] = {}

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks.values())

    async def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        for code in self._registry.crypto_codes:
            self._tasks[code] = asyncio.create_task(self._loop(code), name=f"summary-updater-{code}")

    async def stop(self) -> None:
        """Signal all loops to exit and wait for them."""
        self._stop_event.set()
        tasks = list(self._tasks.values())
        if tasks:
            # Loops blocked in an RPC call get one fast interval before cancellation
            _, pending = await asyncio.wait(tasks, timeout=self._schedule.fast_seconds)
            for task in pending:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
        self._tasks.clear()

    async def _sleep(self, seconds: float) -> None:
        """Sleep, waking early when stop is requested."""
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            pass

    async def _loop(self, crypto_code: str) -> None:
        logger.info(f"Starting availability polling for {crypto_code}")
        while not self._stop_event.is_set():
            try:
                await self._tracker.update_summary(crypto_code)
                delay = self._schedule.next_delay(self._tracker.is_available(crypto_code))
            except Exception as e:
                logger.error(f"Unhandled exception in summary updater ({crypto_code}): {e}", exc_info=True)
                delay = self._schedule.fast_seconds
            await self._sleep(delay)
        logger.info(f"Stopped availability polling for {crypto_code}")
