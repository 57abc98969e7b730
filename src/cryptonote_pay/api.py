"""Daemon notify callbacks and sync status endpoint."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from fastapi import APIRouter, Depends, Query, status

from .event_bus import EventBus
from .events import ChainNotification
from .sync_status import SyncSummaryProvider

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cryptonote-callbacks"])


@dataclass
class CallbackDeps:
    event_bus: EventBus
    sync_status: SyncSummaryProvider


def get_deps() -> CallbackDeps:
    raise NotImplementedError("Dependency override required")


def _publish(deps: CallbackDeps, event: ChainNotification) -> None:
    logger.debug(f"Received {event}")
    deps.event_bus.publish_nowait(event)


@router.get("/block", status_code=status.HTTP_200_OK)
async def on_new_block(
    hash: str = Query(...),
    crypto_code: str = Query(..., alias="cryptoCode"),
    deps: CallbackDeps = Depends(get_deps),
) -> dict[str, Any]:
    _publish(deps, ChainNotification(crypto_code=crypto_code.upper(), block_hash=hash))
    return {}


@router.get("/tx", status_code=status.HTTP_200_OK)
async def on_transaction(
    hash: str = Query(...),
    crypto_code: str = Query(..., alias="cryptoCode"),
    deps: CallbackDeps = Depends(get_deps),
) -> dict[str, Any]:
    _publish(deps, ChainNotification(crypto_code=crypto_code.upper(), transaction_hash=hash))
    return {}


@router.get("/status")
async def sync_status(deps: CallbackDeps = Depends(get_deps)) -> dict[str, Any]:
    statuses = deps.sync_status.get_statuses()
    return {
        "all_available": deps.sync_status.all_available(),
        "statuses": [s.to_dict() for s in statuses],
    }
