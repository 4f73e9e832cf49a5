import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt

from timechat.config import settings
from timechat.core.exceptions import (
    CodeSpaceExhaustedError,
    ExpiredError,
    ForbiddenError,
    NotFoundError,
)
from timechat.models import Chat, InviteCode, InviteCodeRedemption
from timechat.services.chat_service import (
    append_member,
    get_chat,
    is_expired,
    load_chat,
    room_lock,
    run_membership_change,
)
from timechat.services.code_generator import generate_unique_code
from timechat.utils.time_utils import earliest, ensure_utc, utcnow

logger = logging.getLogger(__name__)

# Another request may claim the same token between our check and our insert
MINT_ATTEMPTS = 3


@dataclass
class RedeemResult:
    chat: Chat
    joined: bool
    invite_code: InviteCode


def normalize_code(code: str) -> str:
    return (code or "").strip().upper()


async def _mint(
    db: AsyncSession,
    chat: Chat,
    actor_id: str,
    expires_at: datetime,
    max_uses: Optional[int],
    supersede_all: bool,
) -> InviteCode:
    """
    Deactivate the superseded codes and insert a fresh one in one transaction.

    A unique violation on the active-code index means a concurrent request
    took the same token; the transaction is rolled back and redone.
    """
    try:
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(IntegrityError),
            stop=stop_after_attempt(MINT_ATTEMPTS),
            reraise=True,
        ):
            with attempt:
                try:
                    stale = update(InviteCode).where(
                        InviteCode.chat_id == chat.id, InviteCode.is_active.is_(True)
                    )
                    if not supersede_all:
                        stale = stale.where(InviteCode.created_by == actor_id)
                    await db.execute(stale.values(is_active=False).execution_options(synchronize_session=False))
                    await db.flush()

                    invite_code = InviteCode(
                        code=await generate_unique_code(db),
                        chat_id=chat.id,
                        created_by=actor_id,
                        expires_at=expires_at,
                        is_active=True,
                        usage_count=0,
                        max_uses=max_uses,
                    )
                    db.add(invite_code)
                    await db.commit()
                    return invite_code
                except IntegrityError:
                    await db.rollback()
                    logger.warning(f"Invite code collided on insert for chat {chat.id}, retrying")
                    raise
    except IntegrityError:
        raise CodeSpaceExhaustedError("Could not allocate a unique invite code, try again later")


async def generate_invite_code(
    db: AsyncSession,
    chat_id: str,
    actor_id: str,
    ttl_minutes: Optional[int] = None,
    max_uses: Optional[int] = None,
    now: Optional[datetime] = None,
) -> InviteCode:
    """
    Mint an invite code for a room on behalf of one of its members.

    The code never outlives its room: ``expires_at`` is clamped to the room's
    expiry. The actor's own previously active codes for the room are
    deactivated, so each member holds at most one live code per room.

    Args:
        db (AsyncSession): Database session
        chat_id (str): Room the code admits to
        actor_id (str): Member requesting the code
        ttl_minutes (int): Lifetime, defaults to ``settings.invite_code_ttl_minutes``
        max_uses (int): Redemption cap, None for unlimited
        now (datetime): Reference instant, defaults to the current time

    Raises:
        NotFoundError: If the room is missing or inactive
        ForbiddenError: If the actor is not a member
        ExpiredError: If the room is already expired
        CodeSpaceExhaustedError: If no free token could be drawn
    """
    now = now or utcnow()
    chat = await get_chat(db, chat_id)
    if not chat.is_member(actor_id):
        raise ForbiddenError("Only chat members can create invite codes")
    if is_expired(chat, now):
        raise ExpiredError("Chat has expired")

    ttl = timedelta(minutes=ttl_minutes or settings.invite_code_ttl_minutes)
    expires_at = earliest(now + ttl, chat.expires_at)

    invite_code = await _mint(db, chat, actor_id, expires_at, max_uses, supersede_all=False)
    logger.info(f"Generated invite code {invite_code.id} for chat {chat_id}, expires_at={expires_at}")
    return invite_code


async def regenerate_invite_code(
    db: AsyncSession,
    chat_id: str,
    actor_id: str,
    ttl_minutes: Optional[int] = None,
    max_uses: Optional[int] = None,
    now: Optional[datetime] = None,
) -> InviteCode:
    """
    Replace every active code of the room with a single new one. Admin only.

    Without ``ttl_minutes`` the new code lives as long as the room; a room
    that never expires falls back to the default code lifetime.
    """
    now = now or utcnow()
    chat = await get_chat(db, chat_id)
    if chat.group_admin_id != actor_id:
        raise ForbiddenError("Only admins can regenerate the invite code")
    if is_expired(chat, now):
        raise ExpiredError("Chat has expired")

    if ttl_minutes:
        expires_at = earliest(now + timedelta(minutes=ttl_minutes), chat.expires_at)
    elif chat.expires_at is not None:
        expires_at = ensure_utc(chat.expires_at)
    else:
        expires_at = now + timedelta(minutes=settings.invite_code_ttl_minutes)

    invite_code = await _mint(db, chat, actor_id, expires_at, max_uses, supersede_all=True)
    logger.info(f"Regenerated invite code for chat {chat_id}; previous codes deactivated")
    return invite_code


async def _find_active_code(db: AsyncSession, code: str) -> Optional[InviteCode]:
    result = await db.execute(
        select(InviteCode)
        .where(InviteCode.code == code, InviteCode.is_active.is_(True))
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def redeem_invite_code(
    db: AsyncSession, code: str, user_id: str, now: Optional[datetime] = None
) -> RedeemResult:
    """
    Join a room with an invite code.

    Redeeming a code for a room the user already belongs to succeeds without
    touching the usage counter. Otherwise the membership append and the
    counter increment commit together; the increment is conditional on the
    counter still being under ``max_uses``, so concurrent redemptions cannot
    overshoot the cap.

    Raises:
        NotFoundError: Unknown/inactive code, or its room is gone
        ExpiredError: Code expired or used up, or its room expired
        RoomFullError: The room is at capacity
    """
    now = now or utcnow()
    code = normalize_code(code)
    if not code:
        raise NotFoundError("Invalid invite code")

    found = await _find_active_code(db, code)
    if found is None:
        raise NotFoundError("Invalid invite code")
    chat_id = found.chat_id

    async def attempt() -> RedeemResult:
        invite_code = await _find_active_code(db, code)
        if invite_code is None or invite_code.chat_id != chat_id:
            raise NotFoundError("Invalid invite code")
        if not invite_code.is_valid(now):
            raise ExpiredError("Invite code has expired or reached its maximum uses")

        chat = await load_chat(db, chat_id, for_update=True)
        if chat is None:
            raise NotFoundError("Chat not found or inactive")
        if is_expired(chat, now):
            raise ExpiredError("Chat has expired")

        if chat.is_member(user_id):
            return RedeemResult(chat=chat, joined=False, invite_code=invite_code)

        append_member(chat, user_id, now)
        await db.flush()

        claimed = await db.execute(
            update(InviteCode)
            .where(
                InviteCode.id == invite_code.id,
                InviteCode.is_active.is_(True),
                or_(InviteCode.max_uses.is_(None), InviteCode.usage_count < InviteCode.max_uses),
            )
            .values(usage_count=InviteCode.usage_count + 1)
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await db.rollback()
            raise ExpiredError("Invite code has expired or reached its maximum uses")

        db.add(InviteCodeRedemption(invite_code_id=invite_code.id, user_id=user_id, used_at=now))
        await db.commit()
        await db.refresh(invite_code)
        return RedeemResult(chat=chat, joined=True, invite_code=invite_code)

    async with room_lock(chat_id):
        result = await run_membership_change(db, attempt)

    if result.joined:
        logger.info(f"User {user_id} joined chat {chat_id} with invite code {result.invite_code.id}")
    else:
        logger.info(f"User {user_id} redeemed invite code for chat {chat_id} they already belong to")
    return result


async def deactivate_invite_code(db: AsyncSession, code_id: str, actor_id: str) -> InviteCode:
    """Switch a code off. Allowed for the code's creator and the room admin."""
    result = await db.execute(select(InviteCode).where(InviteCode.id == code_id))
    invite_code = result.scalar_one_or_none()
    if invite_code is None:
        raise NotFoundError("Invite code not found")

    if invite_code.created_by != actor_id:
        chat = await load_chat(db, invite_code.chat_id)
        if chat is None or chat.group_admin_id != actor_id:
            raise ForbiddenError("Only the code creator or the chat admin can deactivate this code")

    invite_code.is_active = False
    await db.commit()
    logger.info(f"Deactivated invite code {code_id}")
    return invite_code


async def list_active_codes(
    db: AsyncSession, chat_id: str, actor_id: str, now: Optional[datetime] = None
) -> List[InviteCode]:
    """Active, unexpired codes of a room, newest first. Members only."""
    now = now or utcnow()
    chat = await get_chat(db, chat_id)
    if not chat.is_member(actor_id):
        raise ForbiddenError("Only chat members can view invite codes")

    result = await db.execute(
        select(InviteCode)
        .where(
            InviteCode.chat_id == chat_id,
            InviteCode.is_active.is_(True),
            InviteCode.expires_at > now,
        )
        .order_by(InviteCode.created_at.desc())
    )
    return list(result.scalars().all())
