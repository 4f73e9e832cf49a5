import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from timechat.core.exceptions import ChatServiceError, ForbiddenError, NotFoundError, ValidationError
from timechat.core.websocket.event_router import ConnectionHandle, EventRouter
from timechat.database import AsyncSessionLocal
from timechat.models import Message, User
from timechat.schemas.websocket import WebSocketMessageType
from timechat.services.chat_service import get_chat_for_member
from timechat.services.projections import messages_out
from timechat.services.user_service import set_presence

# Set up the logger
logger = logging.getLogger(__name__)


def _chat_id_of(event: dict) -> str:
    chat_id = event.get("chat_id") or event.get("room_id")
    if not chat_id:
        raise ValidationError("chat_id is required")
    return chat_id


class EventHandler:
    """
    Handles named socket events for one authenticated user and pushes the
    results through the event router.
    """

    def __init__(self, router: EventRouter, session_factory: Optional[async_sessionmaker] = None):
        """
        Args:
            router (EventRouter): Fan-out registry shared by the process
            session_factory: Factory for short-lived database sessions
        """
        self.router = router
        self.session_factory = session_factory or AsyncSessionLocal
        # Map event types to their handler functions
        self.handlers: Dict[str, Callable] = {
            WebSocketMessageType.JOIN_CHAT: self.handle_join_chat,
            WebSocketMessageType.LEAVE_CHAT: self.handle_leave_chat,
            WebSocketMessageType.NEW_MESSAGE: self.handle_new_message,
            WebSocketMessageType.TYPING: self.handle_typing,
            WebSocketMessageType.STOP_TYPING: self.handle_stop_typing,
            WebSocketMessageType.USER_ONLINE: self.handle_user_online,
            WebSocketMessageType.USER_OFFLINE: self.handle_user_offline,
        }

    async def setup(self, user: User, connection: Any = None) -> ConnectionHandle:
        """
        Register the connection, record the user online and acknowledge it with ``connected``.

        Other connections hear ``user status`` online only for the user's
        first live connection.
        """
        first_connection = not self.router.is_online(user.id)
        handle = await self.router.register_connection(user.id, user.name, connection)
        handle.deliver({"type": WebSocketMessageType.CONNECTED.value, "user_id": user.id})

        async with self.session_factory() as db:
            await set_presence(db, user.id, True)
        if first_connection:
            await self.router.publish_presence(user.id, True)
        return handle

    async def handle_event(self, handle: ConnectionHandle, event: dict) -> None:
        """
        Route an incoming event to its handler.

        Service errors are reported back to the sending connection as an
        ``error`` event; the connection stays open.
        """
        event_type = event.get("type")
        handler = self.handlers.get(event_type)
        if handler is None:
            logger.warning(f"Unsupported event type: {event_type}")
            self._reject(handle, event_type, ValidationError(f"Unsupported event type: {event_type}"))
            return

        try:
            await handler(handle, event)
        except ChatServiceError as e:
            logger.warning(f"Rejected {event_type} from user {handle.user_id}: {e.message}")
            self._reject(handle, event_type, e)

    @staticmethod
    def _reject(handle: ConnectionHandle, event_type: Optional[str], error: ChatServiceError) -> None:
        handle.deliver({
            "type": WebSocketMessageType.ERROR.value,
            "event": event_type,
            "code": error.code,
            "message": error.message,
        })

    async def handle_join_chat(self, handle: ConnectionHandle, event: dict) -> None:
        chat_id = _chat_id_of(event)
        async with self.session_factory() as db:
            await get_chat_for_member(db, chat_id, handle.user_id)
        await self.router.join_room(handle, chat_id)

    async def handle_leave_chat(self, handle: ConnectionHandle, event: dict) -> None:
        await self.router.leave_room(handle, _chat_id_of(event))

    async def handle_new_message(self, handle: ConnectionHandle, event: dict) -> None:
        """
        Fan out a message the client already stored through the REST API.

        The payload is only trusted for the message id; the message, its room
        and the sender's membership are re-read from storage.
        """
        payload = event.get("message") or {}
        message_id = payload.get("id") if isinstance(payload, dict) else None
        if not message_id:
            raise ValidationError("message.id is required")

        async with self.session_factory() as db:
            result = await db.execute(select(Message).where(Message.id == message_id))
            message = result.scalar_one_or_none()
            if message is None:
                raise NotFoundError("Message not found")
            if message.sender_id != handle.user_id:
                raise ForbiddenError("You can only broadcast your own messages")
            chat = await get_chat_for_member(db, message.chat_id, handle.user_id)
            [out] = await messages_out(db, [message])

        await self.router.publish_message(
            chat.id,
            out.model_dump(mode="json"),
            chat.member_ids,
            exclude_user_id=handle.user_id,
        )

    @staticmethod
    def _joined_room_of(handle: ConnectionHandle, event: dict) -> str:
        # Membership was checked against storage when the room was joined
        chat_id = _chat_id_of(event)
        if chat_id not in handle.rooms:
            raise ForbiddenError("Join the chat before sending typing events")
        return chat_id

    async def handle_typing(self, handle: ConnectionHandle, event: dict) -> None:
        chat_id = self._joined_room_of(handle, event)
        await self.router.publish_typing(chat_id, handle.user_id, handle.display_name, True)

    async def handle_stop_typing(self, handle: ConnectionHandle, event: dict) -> None:
        chat_id = self._joined_room_of(handle, event)
        await self.router.publish_typing(chat_id, handle.user_id, handle.display_name, False)

    async def handle_user_online(self, handle: ConnectionHandle, event: dict) -> None:
        async with self.session_factory() as db:
            await set_presence(db, handle.user_id, True)
        await self.router.publish_presence(handle.user_id, True)

    async def handle_user_offline(self, handle: ConnectionHandle, event: dict) -> None:
        async with self.session_factory() as db:
            await set_presence(db, handle.user_id, False)
        await self.router.publish_presence(handle.user_id, False)

    async def disconnect(self, handle: ConnectionHandle) -> None:
        """Drop the connection; persist the user offline when it was their last one."""
        if await self.router.on_disconnect(handle):
            async with self.session_factory() as db:
                await set_presence(db, handle.user_id, False)
