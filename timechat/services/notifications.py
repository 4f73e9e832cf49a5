"""Glue between persisted messages and the realtime event router."""
import logging
from typing import Iterable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from timechat.core.websocket.event_router import EventRouter, event_router
from timechat.models import Message
from timechat.schemas.message import MessageOut
from timechat.services.message_service import post_system_message
from timechat.services.projections import messages_out

logger = logging.getLogger(__name__)


async def broadcast_message(
    db: AsyncSession,
    message: Message,
    member_ids: Iterable[str],
    exclude_user_id: Optional[str] = None,
    router: Optional[EventRouter] = None,
) -> MessageOut:
    [out] = await messages_out(db, [message])
    await (router or event_router).publish_message(
        message.chat_id, out.model_dump(mode="json"), list(member_ids), exclude_user_id=exclude_user_id
    )
    return out


async def announce(
    db: AsyncSession,
    chat_id: str,
    actor_id: str,
    content: str,
    member_ids: Iterable[str],
    router: Optional[EventRouter] = None,
) -> MessageOut:
    """Store a system notice in the room and push it to its members."""
    message = await post_system_message(db, chat_id, actor_id, content)
    return await broadcast_message(db, message, member_ids, router=router)


async def drop_membership(
    chat_id: str, user_id: str, room_deleted: bool, router: Optional[EventRouter] = None
) -> None:
    """Stop room events reaching a user who left; a deleted room loses its topic entirely."""
    router = router or event_router
    if room_deleted:
        await router.close_room(chat_id)
    else:
        await router.evict(user_id, chat_id)
