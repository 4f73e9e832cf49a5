import asyncio
import logging
from typing import Optional
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect

from timechat.common import user_from_token
from timechat.core.exceptions import AuthenticationError
from timechat.core.websocket.event_router import ConnectionHandle, event_router
from timechat.core.websocket.message_handler import EventHandler
from timechat.database import AsyncSessionLocal
from timechat.schemas.websocket import WebSocketMessageType

# Set up the logger
logger = logging.getLogger(__name__)

# Create router for WebSocket endpoints
router = APIRouter(tags=["web-socket"])


def _error(message: str) -> dict:
    return {"type": WebSocketMessageType.ERROR.value, "code": "validation_error", "message": message}


async def _pump(websocket: WebSocket, handle: ConnectionHandle, handler: EventHandler):
    """
    Write queued events to the socket in the order they were published.

    A failed send unregisters the connection so nothing keeps queueing for it.
    """
    while True:
        event = await handle.next_event()
        try:
            await websocket.send_json(event)
        except Exception as e:
            logger.warning(f"WebSocket send failed for user {handle.user_id}: {e}")
            await handler.disconnect(handle)
            return


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: Optional[str] = Query(default=None)):
    """
    Main WebSocket endpoint for user connections.

    Flow:
        1. Resolves the bearer token passed as ``?token=``
        2. Waits for ``setup`` and answers ``connected``
        3. Dispatches events until disconnection
        4. Drops the connection from the router, marking the user offline
           when it was their last one
    """
    try:
        async with AsyncSessionLocal() as db:
            user = await user_from_token(db, token)
    except AuthenticationError as e:
        logger.warning(f"Rejected WebSocket connection: {e.message}")
        await websocket.close(code=1008)
        return

    await websocket.accept()
    handler = EventHandler(event_router, AsyncSessionLocal)
    handle = None
    writer = None

    try:
        while handle is None:
            try:
                data = await websocket.receive_json()
            except ValueError:
                await websocket.send_json(_error("Frames must be JSON objects"))
                continue
            if not isinstance(data, dict) or data.get("type") != WebSocketMessageType.SETUP:
                await websocket.send_json(_error("Send setup first"))
                continue
            if data.get("id") and data["id"] != user.id:
                await websocket.send_json(_error("setup id does not match the token"))
                continue
            handle = await handler.setup(user, websocket)

        writer = asyncio.create_task(_pump(websocket, handle, handler))
        logger.info(f"WebSocket connected for user {user.id}")

        # Main message processing loop
        while True:
            try:
                data = await websocket.receive_json()
            except ValueError:
                handle.deliver(_error("Frames must be JSON objects"))
                continue
            if not isinstance(data, dict):
                handle.deliver(_error("Frames must be JSON objects"))
                continue
            await handler.handle_event(handle, data)

    except WebSocketDisconnect:
        logger.info(f"User {user.id} disconnected from WebSocket")
    except Exception:
        logger.exception(f"Error during WebSocket connection for user {user.id}")
        await websocket.close(code=1011)
    finally:
        if writer is not None:
            writer.cancel()
        if handle is not None:
            await handler.disconnect(handle)
