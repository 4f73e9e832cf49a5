import asyncio
import logging
from typing import List, Optional

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.core.exceptions import AuthenticationError, ConflictError, NotFoundError, ValidationError
from timechat.core.security import create_access_token, hash_password, verify_password
from timechat.models import User
from timechat.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

MAX_NAME_LENGTH = 50


def _clean_name(name: Optional[str]) -> str:
    name = (name or "").strip()
    if not name:
        raise ValidationError("Name must be a non-empty string")
    if len(name) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name cannot exceed {MAX_NAME_LENGTH} characters")
    return name


async def get_user_by_id(db: AsyncSession, user_id: str) -> Optional[User]:
    """
    Retrieve a user by their unique identifier.

    Args:
        db: AsyncSession - Database session for executing queries
        user_id: str - Unique identifier of the user

    Returns:
        Optional[User]: User object if found, None otherwise
    """
    result = await db.execute(select(User).where(User.id == user_id))
    return result.scalar_one_or_none()


async def get_user_by_email(db: AsyncSession, email: str) -> Optional[User]:
    result = await db.execute(select(User).where(User.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def get_users_by_ids(db: AsyncSession, user_ids: List[str]) -> List[User]:
    if not user_ids:
        return []
    result = await db.execute(select(User).where(User.id.in_(user_ids)))
    return list(result.scalars().all())


async def require_user(db: AsyncSession, user_id: str) -> User:
    user = await get_user_by_id(db, user_id)
    if user is None:
        raise NotFoundError("User not found")
    return user


async def register_user(
    db: AsyncSession, name: str, email: str, password: str, pic: Optional[str] = None
) -> tuple[User, str]:
    """
    Create an account and issue its first access token.

    Raises:
        ValidationError: On a blank/too long name or short password
        ConflictError: If the email is already registered
    """
    name = _clean_name(name)
    email = (email or "").strip().lower()
    if not email or not password:
        raise ValidationError("Please provide all required fields")
    if len(password) < 6:
        raise ValidationError("Password must be at least 6 characters")

    if await get_user_by_email(db, email):
        raise ConflictError("User with this email already exists")

    password_hash = await asyncio.to_thread(hash_password, password)
    user = User(name=name, email=email, password_hash=password_hash, pic=pic)
    db.add(user)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise ConflictError("User with this email already exists")
    await db.refresh(user)

    logger.info(f"Registered user {user.id}")
    return user, create_access_token(user.id)


async def authenticate_user(db: AsyncSession, email: str, password: str) -> tuple[User, str]:
    """Check credentials, mark the user online and issue a token."""
    user = await get_user_by_email(db, email or "")
    if user is None:
        raise AuthenticationError("Invalid email or password")

    if not await asyncio.to_thread(verify_password, password or "", user.password_hash):
        raise AuthenticationError("Invalid email or password")

    user.is_online = True
    user.last_seen = utcnow()
    await db.commit()

    logger.info(f"User {user.id} logged in")
    return user, create_access_token(user.id)


async def set_presence(db: AsyncSession, user_id: str, is_online: bool) -> Optional[User]:
    user = await get_user_by_id(db, user_id)
    if user is None:
        return None
    user.is_online = is_online
    user.last_seen = utcnow()
    await db.commit()
    return user


async def logout_user(db: AsyncSession, user: User) -> None:
    await set_presence(db, user.id, False)
    logger.info(f"User {user.id} logged out")


async def update_profile(
    db: AsyncSession, user: User, name: Optional[str] = None, pic: Optional[str] = None
) -> User:
    if name is not None:
        user.name = _clean_name(name)
    if pic:
        user.pic = pic
    await db.commit()
    await db.refresh(user)
    return user


async def search_users(db: AsyncSession, actor_id: str, query: str, limit: int = 10) -> List[User]:
    """Case-insensitive substring search on name or email, excluding the caller."""
    query = (query or "").strip()
    if not query:
        return []
    pattern = f"%{query.lower()}%"
    stmt = (
        select(User)
        .where(
            User.id != actor_id,
            or_(User.name.ilike(pattern), User.email.ilike(pattern)),
        )
        .order_by(User.name)
        .limit(limit)
    )
    result = await db.execute(stmt)
    return list(result.scalars().all())
