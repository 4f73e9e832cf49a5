import logging
import re
from typing import List, Optional
from fastapi import APIRouter, Depends, File, Form, UploadFile
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from timechat.common import get_current_user
from timechat.init_db import get_db
from timechat.models import User
from timechat.schemas.message import MarkReadResponse, MessageOut, SendMessageRequest
from timechat.services.chat_service import get_chat
from timechat.services.message_service import export_history, list_messages, mark_read, send_message
from timechat.services.notifications import broadcast_message
from timechat.services.projections import messages_out
from timechat.services.upload_service import store_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/messages", tags=["messages"])


async def _send_and_broadcast(db: AsyncSession, chat_id: str, sender: User, message_input) -> MessageOut:
    message = await send_message(db, chat_id, sender.id, message_input)
    chat = await get_chat(db, chat_id)
    return await broadcast_message(db, message, chat.member_ids, exclude_user_id=sender.id)


@router.get("/{chat_id}", response_model=List[MessageOut])
async def list_messages_api(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    messages = await list_messages(db, chat_id, current_user.id)
    return await messages_out(db, messages)


@router.post("", response_model=MessageOut, status_code=201)
async def send_message_api(
    request: SendMessageRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Send a text message, or an attachment already stored elsewhere.

    Other members receive it over the socket; the sender gets it in the response.
    """
    return await _send_and_broadcast(db, request.chat_id, current_user, request.message)


@router.post("/file", response_model=MessageOut, status_code=201)
async def send_file_api(
    chat_id: str = Form(...),
    content: Optional[str] = Form(default=None),
    file: UploadFile = File(...),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Upload a file (image, voice note, video or document) and send it as a message."""
    attachment = await store_upload(file, caption=content)
    return await _send_and_broadcast(db, chat_id, current_user, attachment)


@router.put("/{chat_id}/read", response_model=MarkReadResponse)
async def mark_read_api(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return MarkReadResponse(marked=await mark_read(db, chat_id, current_user.id))


@router.get("/{chat_id}/download")
async def download_history_api(
    chat_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    history = await export_history(db, chat_id, current_user.id)
    safe_name = re.sub(r"[^A-Za-z0-9_-]+", "_", history["chat_name"]).strip("_") or "chat"
    return JSONResponse(
        content=history,
        headers={"Content-Disposition": f'attachment; filename="{safe_name}_history.json"'},
    )
