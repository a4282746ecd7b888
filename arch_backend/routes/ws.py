"""
WebSocket stream of an arch's real-time events.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status

from arch_backend.db import PostgresDbClient
from arch_backend.dependencies import (
    Clock,
    get_clock,
    get_db_client,
    get_event_bus,
    resolve_session_user,
)
from arch_backend.membership import is_member
from arch_backend.realtime import EventBus

logger = logging.getLogger(__name__)

router = APIRouter()


async def _forward(websocket: WebSocket, events: EventBus, arch_id: str) -> None:
    async for message in events.subscribe(arch_id):
        await websocket.send_json(message)


@router.websocket("/ws/arches/{arch_id}")
async def arch_events(
    websocket: WebSocket,
    arch_id: str,
    token: Optional[str] = Query(default=None),
    db: PostgresDbClient = Depends(get_db_client),
    events: EventBus = Depends(get_event_bus),
    clock: Clock = Depends(get_clock),
):
    user = resolve_session_user(db, token, clock())
    arch = db.get_arch(arch_id) if user else None
    if user is None or arch is None or not is_member(arch, user.user_id):
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    await websocket.send_json(
        {"event": "connected", "archId": arch_id, "data": {"userId": user.user_id}}
    )
    logger.info("User %s subscribed to arch %s", user.user_id, arch_id)

    forward = asyncio.create_task(_forward(websocket, events, arch_id))
    try:
        # Clients do not send anything meaningful; reading detects disconnects.
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        logger.info("User %s unsubscribed from arch %s", user.user_id, arch_id)
    finally:
        forward.cancel()
        try:
            await forward
        except (asyncio.CancelledError, WebSocketDisconnect):
            pass
        except Exception:
            logger.exception("Event stream for arch %s failed", arch_id)
