import logging
from typing import List
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.common import get_current_user
from timechat.init_db import get_db
from timechat.models import User
from timechat.schemas.invite_code import InviteCodeCreate, InviteCodeOut, InviteCodeRedeem, RedeemResponse
from timechat.services.chat_service import get_chat
from timechat.services.invite_code_service import (
    deactivate_invite_code,
    generate_invite_code,
    list_active_codes,
    redeem_invite_code,
)
from timechat.services.notifications import announce
from timechat.services.projections import chat_out, invite_code_out, invite_codes_out

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/invite-codes", tags=["invite-codes"])


@router.post("", response_model=InviteCodeOut, status_code=201)
async def generate_invite_code_api(
    request: InviteCodeCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Mint an invite code for a chat the caller belongs to.

    The code expires after ``ttl_minutes`` or with the chat, whichever comes first.
    """
    invite_code = await generate_invite_code(
        db, request.chat_id, current_user.id, ttl_minutes=request.ttl_minutes, max_uses=request.max_uses
    )
    chat = await get_chat(db, request.chat_id)
    return await invite_code_out(db, invite_code, chat)


@router.post("/redeem", response_model=RedeemResponse)
async def redeem_invite_code_api(
    request: InviteCodeRedeem,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    result = await redeem_invite_code(db, request.code, current_user.id)
    if result.joined:
        await announce(
            db,
            result.chat.id,
            current_user.id,
            f"{current_user.name} joined the chat via invite code",
            result.chat.member_ids,
        )
        message = f"Successfully joined {result.chat.chat_name}"
    else:
        message = f"Welcome back to {result.chat.chat_name}"
    chat = await get_chat(db, result.chat.id)
    return RedeemResponse(message=message, joined=result.joined, chat=await chat_out(db, chat))


@router.get("", response_model=List[InviteCodeOut])
async def list_invite_codes_api(
    room: str = Query(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    codes = await list_active_codes(db, room, current_user.id)
    chat = await get_chat(db, room)
    return await invite_codes_out(db, codes, chat)


@router.delete("/{code_id}")
async def deactivate_invite_code_api(
    code_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await deactivate_invite_code(db, code_id, current_user.id)
    return {"message": "Invite code deactivated"}
