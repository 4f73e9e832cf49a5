import logging
from datetime import timedelta
from typing import List, Optional, Union
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.common import get_current_user
from timechat.init_db import get_db
from timechat.models import User
from timechat.schemas.chat import ChatOut, ChatRename, DirectChatCreate, GroupChatCreate, LeaveResponse, MemberChange
from timechat.schemas.invite_code import InviteCodeOut, InviteCodeRegenerate
from timechat.services.chat_service import (
    DEFAULT_TTL,

    add_member,
    create_or_get_direct_chat,
    create_room,
    get_chat_for_member,
    join_global_chat,
    list_user_chats,
    remove_member,
    rename_room,
)
from timechat.services.invite_code_service import regenerate_invite_code
from timechat.services.notifications import announce, drop_membership
from timechat.services.projections import chat_out, chats_out, invite_code_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chats", tags=["chats"])


@router.post("", response_model=ChatOut)
async def access_direct_chat_api(
    request: DirectChatCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Open the direct chat with another user, creating it on first use."""
    chat = await create_or_get_direct_chat(db, current_user.id, request.user_id)
    return await chat_out(db, chat)


@router.post("/group", response_model=ChatOut, status_code=201)
async def create_group_chat_api(
    request: GroupChatCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a group room and mint its first invite code.

    The code lives as long as the room and is returned as ``join_code``.
    """
    ttl = timedelta(hours=request.ttl_hours) if request.ttl_hours else DEFAULT_TTL
    chat = await create_room(db, current_user.id, request.name, request.users, is_group=True, ttl=ttl)
    invite_code = await regenerate_invite_code(db, chat.id, current_user.id)
    return await chat_out(db, chat, join_code=invite_code.code)


@router.post("/global", response_model=ChatOut)
async def join_global_chat_api(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    chat = await join_global_chat(db, current_user.id)
    return await chat_out(db, chat)


@router.get("", response_model=List[ChatOut])
async def list_chats_api(
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    chats = await list_user_chats(db, current_user.id)
    return await chats_out(db, chats)


@router.get("/{chat_id}", response_model=ChatOut)
async def get_chat_api(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    chat = await get_chat_for_member(db, chat_id, current_user.id)
    return await chat_out(db, chat)


@router.post("/{chat_id}/leave", response_model=LeaveResponse)
async def leave_chat_api(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    removal = await remove_member(db, chat_id, current_user.id, actor_id=current_user.id)
    await drop_membership(chat_id, current_user.id, removal.room_deleted)
    if removal.room_deleted:
        return LeaveResponse(message="You left the chat; it had no other members and was deleted", room_deleted=True)
    await announce(db, chat_id, current_user.id, f"{current_user.name} left the chat", removal.chat.member_ids)
    return LeaveResponse(message="You left the chat", room_deleted=False)


@router.put("/{chat_id}", response_model=ChatOut)
async def rename_chat_api(
    chat_id: str,
    request: ChatRename,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    chat = await rename_room(db, chat_id, current_user.id, request.chat_name)
    return await chat_out(db, chat)


@router.put("/{chat_id}/add", response_model=ChatOut)
async def add_member_api(
    chat_id: str,
    request: MemberChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    chat = await add_member(db, chat_id, request.user_id, actor_id=current_user.id)
    return await chat_out(db, chat)


@router.put("/{chat_id}/remove", response_model=Union[ChatOut, LeaveResponse])
async def remove_member_api(
    chat_id: str,
    request: MemberChange,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    removal = await remove_member(db, chat_id, request.user_id, actor_id=current_user.id)
    await drop_membership(chat_id, request.user_id, removal.room_deleted)
    if removal.room_deleted:
        return LeaveResponse(message="Chat deleted", room_deleted=True)
    return await chat_out(db, removal.chat)


@router.post("/{chat_id}/invite-code", response_model=InviteCodeOut, status_code=201)
async def regenerate_invite_code_api(
    chat_id: str,
    request: Optional[InviteCodeRegenerate] = None,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Replace every active code of the room with a new one. Admin only."""
    request = request or InviteCodeRegenerate()
    invite_code = await regenerate_invite_code(
        db, chat_id, current_user.id, ttl_minutes=request.ttl_minutes, max_uses=request.max_uses
    )
    chat = await get_chat_for_member(db, chat_id, current_user.id)
    return await invite_code_out(db, invite_code, chat)
