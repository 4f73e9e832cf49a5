import logging
import secrets
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from tenacity import RetryError, retry, retry_if_exception_type, stop_after_attempt

from timechat.config import settings
from timechat.core.exceptions import CodeSpaceExhaustedError
from timechat.models.invite_code import InviteCode

logger = logging.getLogger(__name__)


class CodeCollision(Exception):
    """Drawn token is already held by an active invite code."""


def generate_code(length: Optional[int] = None) -> str:
    """
    Draw a random invite token.

    Args:
        length (int): Token length, defaults to ``settings.invite_code_length``

    Returns:
        str: Token drawn uniformly from the configured uppercase-alphanumeric alphabet
    """
    length = length or settings.invite_code_length
    alphabet = settings.invite_code_alphabet
    return "".join(secrets.choice(alphabet) for _ in range(length))


async def is_code_unique(db: AsyncSession, code: str) -> bool:
    """True when no *active* invite code holds this token."""
    stmt = select(InviteCode.id).where(InviteCode.code == code, InviteCode.is_active.is_(True)).limit(1)
    result = await db.execute(stmt)
    return result.scalar_one_or_none() is None


@retry(
    retry=retry_if_exception_type(CodeCollision),
    stop=stop_after_attempt(settings.invite_code_max_attempts),
)
async def _draw_unique_code(db: AsyncSession, length: Optional[int]) -> str:
    candidate = generate_code(length)
    if not await is_code_unique(db, candidate):
        logger.debug(f"Invite code collision on {candidate}, drawing again")
        raise CodeCollision(candidate)
    return candidate


async def generate_unique_code(db: AsyncSession, length: Optional[int] = None) -> str:
    """
    Draw tokens until one is free among active codes.

    Raises:
        CodeSpaceExhaustedError: If every attempt up to the configured cap collided
    """
    try:
        return await _draw_unique_code(db, length)
    except RetryError:
        logger.error(
            f"Invite code space exhausted after {settings.invite_code_max_attempts} attempts"
        )
        raise CodeSpaceExhaustedError("Could not allocate a unique invite code, try again later")
