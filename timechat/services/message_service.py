import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.core.exceptions import ExpiredError, ForbiddenError, NotFoundError, ValidationError
from timechat.models import Chat, Message, MessageRead
from timechat.schemas.message import AttachmentMessageInput, MessageInput, MessageType, TextMessageInput
from timechat.services.chat_service import (
    get_chat_for_member,
    is_expired,
    load_chat,
    room_lock,
    run_membership_change,
)
from timechat.services.user_service import get_users_by_ids
from timechat.utils.time_utils import utcnow

logger = logging.getLogger(__name__)


def _build_message(chat_id: str, sender_id: str, message_input: MessageInput, now: datetime) -> Message:
    if isinstance(message_input, TextMessageInput):
        content = (message_input.content or "").strip()
        if not content:
            raise ValidationError("Message content cannot be empty")
        return Message(
            chat_id=chat_id,
            sender_id=sender_id,
            message_type=MessageType.TEXT,
            content=content,
            created_at=now,
        )

    if isinstance(message_input, AttachmentMessageInput):
        caption = (message_input.content or "").strip()
        return Message(
            chat_id=chat_id,
            sender_id=sender_id,
            message_type=MessageType.for_mime(message_input.mime_type),
            content=caption or f"📎 {message_input.file_name}",
            file_url=message_input.blob_ref,
            file_name=message_input.file_name,
            file_type=message_input.mime_type,
            file_size=message_input.size,
            created_at=now,
        )

    raise ValidationError("Unsupported message kind")


async def _append_message(db: AsyncSession, chat: Chat, message: Message, now: datetime) -> Message:
    message.readers = [MessageRead(user_id=message.sender_id, read_at=now)]
    db.add(message)
    await db.flush()
    chat.latest_message_id = message.id
    chat.updated_at = now
    await db.commit()
    return message


async def send_message(
    db: AsyncSession,
    chat_id: str,
    sender_id: str,
    message_input: MessageInput,
    now: Optional[datetime] = None,
) -> Message:
    """
    Persist a text or attachment message and make it the room's latest message.

    The sender counts as having read their own message. Fan-out to connected
    clients is the caller's job.

    Raises:
        NotFoundError: Room missing or inactive
        ForbiddenError: Sender is not a member
        ExpiredError: Room is past its expiry
        ValidationError: Blank text message
    """
    now = now or utcnow()

    async def attempt() -> Message:
        chat = await load_chat(db, chat_id, for_update=True)
        if chat is None:
            raise NotFoundError("Chat not found")
        if not chat.is_member(sender_id):
            raise ForbiddenError("You are not a member of this chat")
        if is_expired(chat, now):
            raise ExpiredError("Chat has expired")
        message = _build_message(chat_id, sender_id, message_input, now)
        return await _append_message(db, chat, message, now)

    async with room_lock(chat_id):
        message = await run_membership_change(db, attempt)
    logger.info(f"Message {message.id} ({message.message_type.value}) sent to chat {chat_id}")
    return message


async def post_system_message(
    db: AsyncSession, chat_id: str, actor_id: str, content: str, now: Optional[datetime] = None
) -> Message:
    """Record a server-generated notice such as a join or a leave."""
    now = now or utcnow()

    async def attempt() -> Message:
        chat = await load_chat(db, chat_id, for_update=True)
        if chat is None:
            raise NotFoundError("Chat not found")
        message = Message(
            chat_id=chat_id,
            sender_id=actor_id,
            message_type=MessageType.SYSTEM,
            content=content,
            created_at=now,
        )
        return await _append_message(db, chat, message, now)

    async with room_lock(chat_id):
        return await run_membership_change(db, attempt)


async def list_messages(db: AsyncSession, chat_id: str, actor_id: str) -> List[Message]:
    await get_chat_for_member(db, chat_id, actor_id)
    result = await db.execute(
        select(Message).where(Message.chat_id == chat_id).order_by(Message.created_at.asc())
    )
    return list(result.scalars().all())


async def mark_read(db: AsyncSession, chat_id: str, actor_id: str, now: Optional[datetime] = None) -> int:
    """
    Add the actor to the reader set of every message in the room.

    Returns:
        int: How many messages were newly marked
    """
    now = now or utcnow()
    await get_chat_for_member(db, chat_id, actor_id)

    stmt = (
        select(Message.id)
        .outerjoin(
            MessageRead,
            and_(MessageRead.message_id == Message.id, MessageRead.user_id == actor_id),
        )
        .where(Message.chat_id == chat_id, MessageRead.message_id.is_(None))
    )
    unread_ids = list((await db.execute(stmt)).scalars().all())
    if not unread_ids:
        return 0

    db.add_all([MessageRead(message_id=mid, user_id=actor_id, read_at=now) for mid in unread_ids])
    await db.commit()
    return len(unread_ids)


async def export_history(db: AsyncSession, chat_id: str, actor_id: str, now: Optional[datetime] = None) -> dict:
    """
    Build a downloadable JSON snapshot of a room's conversation.

    Returns:
        dict: Room name, export metadata, participants and every message
            with its sender name, content, timestamp and attachment info
    """
    now = now or utcnow()
    chat = await get_chat_for_member(db, chat_id, actor_id)
    messages = await list_messages(db, chat_id, actor_id)

    user_ids = set(chat.member_ids) | {m.sender_id for m in messages} | {actor_id}
    users = {u.id: u for u in await get_users_by_ids(db, list(user_ids))}

    def name_of(user_id: str) -> str:
        user = users.get(user_id)
        return user.name if user else "Unknown"

    return {
        "chat_name": chat.chat_name,
        "exported_at": now.isoformat(),
        "exported_by": name_of(actor_id),
        "participants": [name_of(uid) for uid in chat.member_ids],
        "message_count": len(messages),
        "messages": [
            {
                "sender": name_of(m.sender_id),
                "content": m.content,
                "message_type": m.message_type.value,
                "timestamp": m.created_at.isoformat(),
                "has_attachment": m.has_attachment,
                "attachment_name": m.file_name,
            }
            for m in messages
        ],
    }
