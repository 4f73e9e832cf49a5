import logging
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.common import get_current_user
from timechat.init_db import get_db
from timechat.models import User
from timechat.schemas.users import UserOut
from timechat.services.projections import user_out
from timechat.services.user_service import require_user, search_users

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/users", tags=["users"])


@router.get("", response_model=List[UserOut])
async def search_users_api(
    search: str = Query(default=""),
    limit: int = Query(default=10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Find other users by a case-insensitive match on name or email."""
    users = await search_users(db, current_user.id, search, limit)
    return [user_out(u) for u in users]


@router.get("/{user_id}", response_model=UserOut)
async def get_user_api(
    user_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return user_out(await require_user(db, user_id))
