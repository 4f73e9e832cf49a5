import asyncio
import logging
import os
import uuid
from typing import Optional

from fastapi import UploadFile

from timechat.config import settings
from timechat.core.exceptions import ValidationError
from timechat.schemas.message import AttachmentMessageInput

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
UPLOAD_URL_PREFIX = "/uploads"


def _write_file(path: str, data: bytes) -> None:
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "wb") as fh:
        fh.write(data)


async def store_upload(upload: UploadFile, caption: Optional[str] = None) -> AttachmentMessageInput:
    """
    Save a multipart upload under ``settings.upload_dir`` with a random name.

    Args:
        upload (UploadFile): The incoming file
        caption (str): Optional message text sent alongside the file

    Returns:
        AttachmentMessageInput: Descriptor pointing at the stored file

    Raises:
        ValidationError: Missing file, disallowed MIME type or file over the size limit
    """
    if upload is None or not upload.filename:
        raise ValidationError("No file uploaded")

    mime_type = (upload.content_type or "").lower()
    if mime_type not in settings.allowed_upload_types:
        raise ValidationError(f"File type {mime_type or 'unknown'} is not allowed")

    data = bytearray()
    while True:
        chunk = await upload.read(CHUNK_SIZE)
        if not chunk:
            break
        data.extend(chunk)
        if len(data) > settings.max_upload_bytes:
            raise ValidationError(
                f"File exceeds the {settings.max_upload_bytes // (1024 * 1024)} MB limit"
            )

    extension = os.path.splitext(upload.filename)[1].lower()
    stored_name = f"{uuid.uuid4().hex}{extension}"
    await asyncio.to_thread(_write_file, os.path.join(settings.upload_dir, stored_name), bytes(data))
    logger.info(f"Stored upload {stored_name} ({mime_type}, {len(data)} bytes)")

    return AttachmentMessageInput(
        content=caption,
        blob_ref=f"{UPLOAD_URL_PREFIX}/{stored_name}",
        mime_type=mime_type,
        file_name=upload.filename,
        size=len(data),
    )
