"""
Realtime API Routes
WebSocket push of conversation updates to agent sessions.
"""

import asyncio
from typing import Annotated

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
import structlog

from inbox_hub.dependencies import get_broadcaster
from inbox_hub.services.realtime_broadcaster import RealtimeBroadcaster

logger = structlog.get_logger()
router = APIRouter(tags=["realtime"])


async def _wait_for_disconnect(websocket: WebSocket) -> None:
    # the channel is push-only; inbound frames are discarded
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return


@router.websocket("/realtime")
async def realtime_events(
        websocket: WebSocket,
        broadcaster: Annotated[RealtimeBroadcaster, Depends(get_broadcaster)],
        tenant_id: str = Query(..., min_length=1),
):
    """
    Stream a tenant's realtime events as JSON text frames.

    A session that falls behind is closed with code 1013; the client is
    expected to re-fetch state and reconnect.
    """
    # subscribed before accept so no event published after the handshake is missed
    subscription = broadcaster.subscribe(tenant_id)
    disconnected = None

    try:
        await websocket.accept()
        disconnected = asyncio.create_task(_wait_for_disconnect(websocket))
        while True:
            next_event = asyncio.create_task(subscription.get())
            done, _ = await asyncio.wait({next_event, disconnected}, return_when=asyncio.FIRST_COMPLETED)
            if next_event not in done:
                next_event.cancel()
                break

            event = next_event.result()
            if event is None:
                await websocket.close(code=status.WS_1013_TRY_AGAIN_LATER)
                break
            await websocket.send_text(event.model_dump_json())
    except WebSocketDisconnect:
        pass
    finally:
        if disconnected is not None:
            disconnected.cancel()
        broadcaster.unsubscribe(subscription)
        logger.info("Realtime session ended", tenant_id=tenant_id, subscription_id=subscription.id)
