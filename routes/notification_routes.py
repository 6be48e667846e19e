"""
Professor-facing live notifications.

Connect: WS /ws/assignments?token=<jwt>            (assignment created/updated)
         WS /ws/assignments/{assignment_id}?token=<jwt>  (submissions)
"""

import asyncio
import logging
from fastapi import APIRouter, Query, WebSocket

from errors import ServiceError
from utils.identity import decode_token, ensure_professor, resolve_identity
from utils.notifier import ASSIGNMENTS_CHANNEL, CLOSED, assignment_channel

logger = logging.getLogger("notification_routes")

router = APIRouter(prefix="/ws", tags=["Notifications"])

# Policy violation; the client may not reconnect with the same token
POLICY_VIOLATION = 1008
# Listener fell behind and was dropped; the client may reconnect
TRY_AGAIN_LATER = 1013


async def _forward(websocket: WebSocket, queue, channel: str) -> None:
    while True:
        message = await queue.get()
        if message is CLOSED:
            logger.info(f"Closing slow listener on {channel}")
            await websocket.close(code=TRY_AGAIN_LATER)
            return
        await websocket.send_json(message)


async def _stream(websocket: WebSocket, channel: str, token: str) -> None:
    try:
        professor = ensure_professor(resolve_identity(decode_token(token)))
    except ServiceError as e:
        logger.info(f"Refused listener on {channel}: {e.code}")
        await websocket.close(code=POLICY_VIOLATION)
        return

    hub = websocket.app.state.notifier
    # Registered before the handshake completes so no event after accept is missed
    queue = await hub.register(channel)
    sender = None
    try:
        await websocket.accept()
        logger.info(f"Listener {professor.subject_id} joined {channel}")
        sender = asyncio.create_task(_forward(websocket, queue, channel))
        # Client frames carry nothing; reading them is how a disconnect is seen
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
        logger.info(f"Listener {professor.subject_id} left {channel}")
    finally:
        if sender is not None:
            sender.cancel()
        await hub.unregister(channel, queue)


@router.websocket("/assignments")
async def assignments_feed(websocket: WebSocket, token: str = Query(...)):
    await _stream(websocket, ASSIGNMENTS_CHANNEL, token)


@router.websocket("/assignments/{assignment_id}")
async def submissions_feed(websocket: WebSocket, assignment_id: int, token: str = Query(...)):
    await _stream(websocket, assignment_channel(assignment_id), token)
