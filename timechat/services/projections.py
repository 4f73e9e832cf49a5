"""Read-side projections.

Every response and realtime payload is assembled here from identifiers, so
no model has to embed another one.
"""
import logging
from datetime import datetime
from typing import Dict, Iterable, List, Optional
from urllib.parse import quote

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.models import Chat, InviteCode, Message, User
from timechat.schemas.chat import ChatOut, MemberSummary
from timechat.schemas.invite_code import InviteCodeOut
from timechat.schemas.message import AttachmentOut, MessageOut, SenderSummary
from timechat.schemas.users import UserOut
from timechat.services.user_service import get_users_by_ids
from timechat.utils.time_utils import remaining

logger = logging.getLogger(__name__)


def avatar_for(user: User) -> str:
    if user.pic:
        return user.pic
    return f"https://ui-avatars.com/api/?name={quote(user.name)}&background=random"


def user_out(user: User) -> UserOut:
    return UserOut(
        id=user.id,
        name=user.name,
        email=user.email,
        avatar=avatar_for(user),
        is_online=bool(user.is_online),
        last_seen=user.last_seen,
    )


def sender_summary(user: User) -> SenderSummary:
    return SenderSummary(id=user.id, name=user.name, email=user.email, avatar=avatar_for(user))


def message_out(message: Message, sender: Optional[User] = None) -> MessageOut:
    attachment = None
    if message.has_attachment:
        attachment = AttachmentOut(
            url=message.file_url,
            name=message.file_name,
            mime_type=message.file_type,
            size=message.file_size,
        )
    return MessageOut(
        id=message.id,
        chat_id=message.chat_id,
        sender=sender_summary(sender) if sender else None,
        sender_id=message.sender_id,
        content=message.content or "",
        message_type=message.message_type,
        attachment=attachment,
        read_by=message.reader_ids,
        created_at=message.created_at,
    )


async def _users_by_id(db: AsyncSession, user_ids: Iterable[str]) -> Dict[str, User]:
    users = await get_users_by_ids(db, list(set(user_ids)))
    return {u.id: u for u in users}


async def messages_out(db: AsyncSession, messages: List[Message]) -> List[MessageOut]:
    senders = await _users_by_id(db, (m.sender_id for m in messages))
    return [message_out(m, senders.get(m.sender_id)) for m in messages]


async def chats_out(
    db: AsyncSession, chats: List[Chat], now: Optional[datetime] = None
) -> List[ChatOut]:
    user_ids = {uid for chat in chats for uid in chat.member_ids}
    users = await _users_by_id(db, user_ids)

    latest_ids = [c.latest_message_id for c in chats if c.latest_message_id]
    latest: Dict[str, MessageOut] = {}
    if latest_ids:
        result = await db.execute(select(Message).where(Message.id.in_(latest_ids)))
        for item in await messages_out(db, list(result.scalars().all())):
            latest[item.id] = item

    out = []
    for chat in chats:
        left = remaining(chat.expires_at, now)
        out.append(ChatOut(
            id=chat.id,
            chat_name=chat.chat_name,
            is_group_chat=chat.is_group_chat,
            group_admin_id=chat.group_admin_id,
            users=[
                MemberSummary(id=u.id, name=u.name, avatar=avatar_for(u), is_online=bool(u.is_online))
                for u in (users.get(uid) for uid in chat.member_ids)
                if u is not None
            ],
            max_members=chat.max_members,
            latest_message=latest.get(chat.latest_message_id),
            expires_at=chat.expires_at,
            time_remaining_seconds=int(left.total_seconds()) if left is not None else None,
            created_at=chat.created_at,
            updated_at=chat.updated_at,
        ))
    return out


async def chat_out(
    db: AsyncSession, chat: Chat, join_code: Optional[str] = None, now: Optional[datetime] = None
) -> ChatOut:
    [item] = await chats_out(db, [chat], now)
    item.join_code = join_code
    return item


async def invite_codes_out(
    db: AsyncSession, codes: List[InviteCode], chat: Optional[Chat] = None
) -> List[InviteCodeOut]:
    creators = await _users_by_id(db, (c.created_by for c in codes))
    out = []
    for code in codes:
        creator = creators.get(code.created_by)
        out.append(InviteCodeOut(
            id=code.id,
            code=code.code,
            chat_id=code.chat_id,
            chat_name=chat.chat_name if chat is not None and chat.id == code.chat_id else None,
            created_by=code.created_by,
            created_by_name=creator.name if creator else "Unknown",
            expires_at=code.expires_at,
            is_active=code.is_active,
            usage_count=code.usage_count,
            max_uses=code.max_uses,
            created_at=code.created_at,
        ))
    return out


async def invite_code_out(db: AsyncSession, code: InviteCode, chat: Optional[Chat] = None) -> InviteCodeOut:
    [item] = await invite_codes_out(db, [code], chat)
    return item
