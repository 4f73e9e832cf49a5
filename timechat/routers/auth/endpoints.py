import logging
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.common import get_current_user
from timechat.init_db import get_db
from timechat.models import User
from timechat.schemas.users import AuthResponse, LoginRequest, ProfileUpdateRequest, RegisterRequest, UserOut
from timechat.services.projections import user_out
from timechat.services.user_service import authenticate_user, logout_user, register_user, update_profile

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register_api(request: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """
    Create an account and return it with an access token.

    Raises:
        ValidationError: Blank name or short password
        ConflictError: Email already registered
    """
    user, token = await register_user(db, request.name, request.email, request.password, request.pic)
    return AuthResponse(token=token, user=user_out(user))


@router.post("/login", response_model=AuthResponse)
async def login_api(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    user, token = await authenticate_user(db, request.email, request.password)
    return AuthResponse(token=token, user=user_out(user))


@router.post("/logout")
async def logout_api(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await logout_user(db, current_user)
    return {"message": "Logged out successfully"}


@router.put("/profile", response_model=UserOut)
async def update_profile_api(
    request: ProfileUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await update_profile(db, current_user, request.name, request.pic)
    return user_out(user)
