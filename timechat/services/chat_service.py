import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, List, Optional, TypeVar

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from timechat.config import settings
from timechat.core.exceptions import (
    AlreadyMemberError,
    ConflictError,
    ExpiredError,
    ForbiddenError,
    InvalidOperationError,
    NotFoundError,
    RoomFullError,
    ValidationError,
)
from timechat.core.websocket.event_router import EventRouter, event_router
from timechat.database import AsyncSessionLocal
from timechat.models import Chat, ChatMember, InviteCode, InviteCodeRedemption, Message, MessageRead
from timechat.services.user_service import get_users_by_ids, require_user
from timechat.utils.time_utils import ensure_utc, remaining, utcnow

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_CHAT_NAME_LENGTH = 100
MEMBERSHIP_RETRY_ATTEMPTS = 5

# Marker for "use the configured room lifetime"; None means "never expires"
DEFAULT_TTL = object()

_room_locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
_global_chat_lock = asyncio.Lock()


@dataclass
class MembershipRemoval:
    chat_id: str
    room_deleted: bool
    chat: Optional[Chat] = None
    new_admin_id: Optional[str] = None


def room_lock(chat_id: str) -> asyncio.Lock:
    """
    Per-room mutex serializing membership changes inside this process.

    Locks are dropped from the registry once nobody holds a reference.
    """
    lock = _room_locks.get(chat_id)
    if lock is None:
        lock = asyncio.Lock()
        _room_locks[chat_id] = lock
    return lock


async def run_membership_change(db: AsyncSession, operation: Callable[[], Awaitable[T]]) -> T:
    """
    Run a read-modify-write on a room, retrying when the room's version moved.

    The room row carries a version counter checked on flush; a concurrent
    writer in another process makes our UPDATE match zero rows, which surfaces
    as ``StaleDataError``. The session is rolled back and the operation re-read
    from scratch.

    Raises:
        ConflictError: If the room kept changing for every attempt
    """
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StaleDataError),
            stop=stop_after_attempt(MEMBERSHIP_RETRY_ATTEMPTS),
            wait=wait_random(0, 0.05),
            reraise=True,
        ):
            with attempt:
                try:
                    return await operation()
                except StaleDataError:
                    await db.rollback()
                    logger.info("Chat changed concurrently, retrying membership change")
                    raise
    except StaleDataError:
        raise ConflictError("Chat membership changed concurrently, try again")


def _clean_chat_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Chat name is required")
    if len(name) > MAX_CHAT_NAME_LENGTH:
        raise ValidationError(f"Chat name cannot exceed {MAX_CHAT_NAME_LENGTH} characters")
    return name


def _dedupe(ids: List[str]) -> List[str]:
    seen = set()
    out = []
    for item in ids:
        if item and item not in seen:
            seen.add(item)
            out.append(item)
    return out


def time_remaining(chat: Chat, now: Optional[datetime] = None) -> Optional[timedelta]:
    """Time left before the room expires, clamped at zero; None for a room that never expires."""
    return remaining(chat.expires_at, now)


def is_expired(chat: Chat, now: Optional[datetime] = None) -> bool:
    if chat.expires_at is None:
        return False
    return ensure_utc(now or utcnow()) > ensure_utc(chat.expires_at)


async def load_chat(db: AsyncSession, chat_id: str, for_update: bool = False) -> Optional[Chat]:
    """
    Fetch an active room, always refreshing whatever the session already holds.

    ``for_update`` takes a row lock on backends that support it.
    """
    stmt = (
        select(Chat)
        .where(Chat.id == chat_id, Chat.is_active.is_(True))
        .execution_options(populate_existing=True)
    )
    if for_update:
        stmt = stmt.with_for_update()
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


async def get_chat(db: AsyncSession, chat_id: str) -> Chat:
    chat = await load_chat(db, chat_id)
    if chat is None:
        raise NotFoundError("Chat not found")
    return chat


async def get_chat_for_member(db: AsyncSession, chat_id: str, user_id: str) -> Chat:
    chat = await get_chat(db, chat_id)
    if not chat.is_member(user_id):
        raise ForbiddenError("You are not a member of this chat")
    return chat


async def create_room(
    db: AsyncSession,
    creator_id: str,
    name: str,
    member_ids: Optional[List[str]] = None,
    is_group: bool = True,
    ttl=DEFAULT_TTL,
    now: Optional[datetime] = None,
) -> Chat:
    """
    Create a chat room with the creator as its first member and admin.

    Args:
        db (AsyncSession): Database session
        creator_id (str): User creating the room
        name (str): Display name, 1 to 100 characters after trimming
        member_ids (List[str]): Other members; duplicates and the creator are folded away
        is_group (bool): Requested kind; a room of more than two members is always a group
        ttl (timedelta | None): Lifetime; omitted means the configured default and
            None is only accepted for the reserved global room
        now (datetime): Creation instant, defaults to the current time

    Returns:
        Chat: The persisted room

    Raises:
        ValidationError: Blank/too long name, bad direct-chat size or a null ttl on an ordinary room
        NotFoundError: If any member does not exist
        RoomFullError: If the initial members already exceed the cap
    """
    name = _clean_chat_name(name)
    members = _dedupe([creator_id, *(member_ids or [])])

    found = {u.id for u in await get_users_by_ids(db, members)}
    if any(uid not in found for uid in members):
        raise NotFoundError("User not found")

    is_group = is_group or len(members) > 2
    if not is_group and len(members) != 2:
        raise ValidationError("A direct chat needs exactly two distinct members")
    if len(members) > settings.max_chat_members:
        raise RoomFullError(f"A chat cannot have more than {settings.max_chat_members} members")

    if ttl is DEFAULT_TTL:
        ttl = timedelta(hours=settings.chat_ttl_hours)
    elif ttl is None and name != settings.global_chat_name:
        raise ValidationError("Only the global chat can be created without an expiry")

    now = now or utcnow()
    chat = Chat(
        chat_name=name,
        is_group_chat=is_group,
        group_admin_id=creator_id,
        max_members=settings.max_chat_members,
        expires_at=now + ttl if ttl is not None else None,
        is_active=True,
        created_at=now,
        updated_at=now,
    )
    chat.members = [
        ChatMember(user_id=uid, position=position, joined_at=now)
        for position, uid in enumerate(members)
    ]
    db.add(chat)
    await db.commit()

    logger.info(
        f"Created {'group' if is_group else 'direct'} chat {chat.id} with {len(members)} members, "
        f"expires_at={chat.expires_at}"
    )
    return chat


async def create_or_get_direct_chat(
    db: AsyncSession, user_id: str, other_user_id: str, now: Optional[datetime] = None
) -> Chat:
    """Return the live direct chat between two users, creating it if needed."""
    if not other_user_id:
        raise ValidationError("user_id is required")
    if other_user_id == user_id:
        raise ValidationError("Cannot start a direct chat with yourself")
    other = await require_user(db, other_user_id)

    stmt = (
        select(Chat)
        .join(ChatMember, ChatMember.chat_id == Chat.id)
        .where(
            Chat.is_group_chat.is_(False),
            Chat.is_active.is_(True),
            ChatMember.user_id == user_id,
        )
        .order_by(Chat.created_at.desc())
    )
    result = await db.execute(stmt)
    pair = {user_id, other_user_id}
    for chat in result.scalars().unique().all():
        if set(chat.member_ids) == pair and not is_expired(chat, now):
            return chat

    return await create_room(db, user_id, other.name, [other_user_id], is_group=False, now=now)


def append_member(chat: Chat, user_id: str, now: datetime) -> ChatMember:
    if chat.is_member(user_id):
        raise AlreadyMemberError("User is already a member of this chat")
    if len(chat.members) >= chat.max_members:
        raise RoomFullError("Chat has reached its maximum member limit")
    member = ChatMember(chat_id=chat.id, user_id=user_id, position=chat.next_position(), joined_at=now)
    chat.members.append(member)
    # Touching the row bumps its version, which is what guards the membership
    chat.updated_at = now
    return member


async def add_member(
    db: AsyncSession,
    chat_id: str,
    user_id: str,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Chat:
    """
    Append a member to a group room.

    ``actor_id`` is the user requesting the change; when given it must be the
    room admin. Internal callers (global room join) pass None.
    """
    now = now or utcnow()

    async def attempt() -> Chat:
        chat = await load_chat(db, chat_id, for_update=True)
        if chat is None:
            raise NotFoundError("Chat not found")
        if not chat.is_group_chat:
            raise InvalidOperationError("Members cannot be added to a direct chat")
        if actor_id is not None and chat.group_admin_id != actor_id:
            raise ForbiddenError("Only admins can add members")
        if is_expired(chat, now):
            raise ExpiredError("Chat has expired")
        await require_user(db, user_id)
        append_member(chat, user_id, now)
        await db.commit()
        return chat

    async with room_lock(chat_id):
        chat = await run_membership_change(db, attempt)
    logger.info(f"Added user {user_id} to chat {chat_id}")
    return chat


async def remove_member(
    db: AsyncSession,
    chat_id: str,
    user_id: str,
    actor_id: Optional[str] = None,
    now: Optional[datetime] = None,
) -> MembershipRemoval:
    """
    Remove a member, handing the admin role on and deleting the room when it empties.

    A user always may remove themselves; removing someone else requires
    ``actor_id`` to be the admin of a group room. Leaving a direct chat
    deletes it, since its membership can never shrink to one.
    """
    now = now or utcnow()

    async def attempt() -> MembershipRemoval:
        chat = await load_chat(db, chat_id, for_update=True)
        if chat is None:
            raise NotFoundError("Chat not found")
        if actor_id is not None and actor_id != user_id:
            if not chat.is_group_chat:
                raise InvalidOperationError("Members cannot be removed from a direct chat")
            if chat.group_admin_id != actor_id:
                raise ForbiddenError("Only admins can remove members")

        member = chat.find_member(user_id)
        if member is None:
            raise NotFoundError("User is not a member of this chat")

        if not chat.is_group_chat or len(chat.members) == 1:
            await purge_chat(db, chat.id)
            await db.commit()
            return MembershipRemoval(chat_id=chat_id, room_deleted=True)

        chat.members.remove(member)
        new_admin_id = None
        if chat.group_admin_id == user_id:
            new_admin_id = chat.members[0].user_id
            chat.group_admin_id = new_admin_id
        chat.updated_at = now
        await db.commit()
        return MembershipRemoval(chat_id=chat_id, room_deleted=False, chat=chat, new_admin_id=new_admin_id)

    async with room_lock(chat_id):
        removal = await run_membership_change(db, attempt)

    if removal.room_deleted:
        logger.info(f"User {user_id} left chat {chat_id}; chat deleted")
    elif removal.new_admin_id:
        logger.info(f"User {user_id} left chat {chat_id}; admin is now {removal.new_admin_id}")
    else:
        logger.info(f"Removed user {user_id} from chat {chat_id}")
    return removal


async def rename_room(
    db: AsyncSession, chat_id: str, actor_id: str, new_name: str, now: Optional[datetime] = None
) -> Chat:
    new_name = _clean_chat_name(new_name)
    now = now or utcnow()

    async def attempt() -> Chat:
        chat = await load_chat(db, chat_id, for_update=True)
        if chat is None:
            raise NotFoundError("Chat not found")
        if not chat.is_group_chat:
            raise InvalidOperationError("Direct chats cannot be renamed")
        if chat.group_admin_id != actor_id:
            raise ForbiddenError("Only admins can rename the chat")
        chat.chat_name = new_name
        chat.updated_at = now
        await db.commit()
        return chat

    async with room_lock(chat_id):
        return await run_membership_change(db, attempt)


async def join_global_chat(db: AsyncSession, user_id: str, now: Optional[datetime] = None) -> Chat:
    """Find or create the never-expiring global room and make the user a member of it."""
    async with _global_chat_lock:
        result = await db.execute(
            select(Chat)
            .where(
                Chat.chat_name == settings.global_chat_name,
                Chat.is_group_chat.is_(True),
                Chat.is_active.is_(True),
                Chat.expires_at.is_(None),
            )
            .order_by(Chat.created_at)
            .limit(1)
        )
        chat = result.scalar_one_or_none()
        if chat is None:
            return await create_room(db, user_id, settings.global_chat_name, [], is_group=True, ttl=None, now=now)

    if chat.is_member(user_id):
        return chat
    try:
        return await add_member(db, chat.id, user_id, now=now)
    except AlreadyMemberError:
        return await get_chat(db, chat.id)


async def list_user_chats(db: AsyncSession, user_id: str, now: Optional[datetime] = None) -> List[Chat]:
    """Active, unexpired rooms containing the user, most recently updated first."""
    now = now or utcnow()
    stmt = (
        select(Chat)
        .join(ChatMember, ChatMember.chat_id == Chat.id)
        .where(
            ChatMember.user_id == user_id,
            Chat.is_active.is_(True),
            or_(Chat.expires_at.is_(None), Chat.expires_at > now),
        )
        .order_by(Chat.updated_at.desc())
    )
    result = await db.execute(stmt)
    return list(result.scalars().unique().all())


async def purge_chat(db: AsyncSession, chat_id: str) -> None:
    """
    Delete a room together with everything it owns.

    Children go first so the statements also work on backends without
    cascading foreign keys. The caller commits.
    """
    message_ids = select(Message.id).where(Message.chat_id == chat_id)
    code_ids = select(InviteCode.id).where(InviteCode.chat_id == chat_id)

    await db.execute(delete(MessageRead).where(MessageRead.message_id.in_(message_ids)))
    await db.execute(delete(Message).where(Message.chat_id == chat_id))
    await db.execute(delete(InviteCodeRedemption).where(InviteCodeRedemption.invite_code_id.in_(code_ids)))
    await db.execute(delete(InviteCode).where(InviteCode.chat_id == chat_id))
    await db.execute(delete(ChatMember).where(ChatMember.chat_id == chat_id))
    await db.execute(delete(Chat).where(Chat.id == chat_id))


async def sweep_expired(
    session_factory: Optional[async_sessionmaker] = None,
    now: Optional[datetime] = None,
    router: Optional[EventRouter] = None,
) -> int:
    """
    Delete every room whose expiry has passed, then deactivate lapsed invite codes.

    Each room is removed in its own transaction; a failure on one room is
    logged and the sweep moves on to the next. Live connections subscribed
    to a removed room are unsubscribed from its topic.

    Returns:
        int: Number of rooms removed
    """
    session_factory = session_factory or AsyncSessionLocal
    router = router or event_router
    now = now or utcnow()

    async with session_factory() as db:
        result = await db.execute(
            select(Chat.id).where(Chat.expires_at.is_not(None), Chat.expires_at < now)
        )
        expired_ids = list(result.scalars().all())

    removed = 0
    for chat_id in expired_ids:
        try:
            async with room_lock(chat_id):
                async with session_factory() as db:
                    await purge_chat(db, chat_id)
                    await db.commit()
            removed += 1
            await router.close_room(chat_id)
        except Exception:
            logger.exception(f"Failed to remove expired chat {chat_id}")

    async with session_factory() as db:
        result = await db.execute(
            update(InviteCode)
            .where(InviteCode.is_active.is_(True), InviteCode.expires_at < now)
            .values(is_active=False)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        deactivated = result.rowcount or 0

    if removed or deactivated or expired_ids:
        logger.info(
            f"Cleanup sweep removed {removed}/{len(expired_ids)} expired chats "
            f"and deactivated {deactivated} expired invite codes"
        )
    return removed
