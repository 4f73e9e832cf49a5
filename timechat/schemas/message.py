from pydantic import BaseModel, Field, field_validator
from datetime import datetime
from enum import Enum
from typing import Annotated, List, Literal, Optional, Union

class MessageType(str, Enum):
    """
    Attributes:
        TEXT: Plain text messages
        IMAGE: Image attachment
        VIDEO: Video attachment
        AUDIO: Voice note / audio attachment
        FILE: Generic file attachment
        SYSTEM: Server-generated notice (joins, leaves)
    """
    TEXT = "text"
    IMAGE = "image"
    VIDEO = "video"
    AUDIO = "audio"
    FILE = "file"
    SYSTEM = "system"

    @classmethod
    def for_mime(cls, mime_type: str) -> "MessageType":
        major = (mime_type or "").split("/", 1)[0].lower()
        if major == "image":
            return cls.IMAGE
        if major == "video":
            return cls.VIDEO
        if major == "audio":
            return cls.AUDIO
        return cls.FILE

class TextMessageInput(BaseModel):
    kind: Literal["text"] = "text"
    content: str

class AttachmentMessageInput(BaseModel):
    """
    Attributes:
        content: Optional caption
        blob_ref: URL or storage path of the already-stored file
        mime_type: MIME type reported at upload time
        file_name: Original file name
        size: Size in bytes
    """
    kind: Literal["attachment"] = "attachment"
    content: Optional[str] = None
    blob_ref: str
    mime_type: str
    file_name: str
    size: int = Field(ge=0)

MessageInput = Annotated[Union[TextMessageInput, AttachmentMessageInput], Field(discriminator="kind")]

class SendMessageRequest(BaseModel):
    chat_id: str
    message: MessageInput

    @field_validator("chat_id")
    @classmethod
    def chat_id_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("chat_id is required")
        return v

class SenderSummary(BaseModel):
    id: str
    name: str
    email: str
    avatar: str

class AttachmentOut(BaseModel):
    url: str
    name: Optional[str] = None
    mime_type: Optional[str] = None
    size: Optional[int] = None

class MessageOut(BaseModel):
    id: str
    chat_id: str
    sender: Optional[SenderSummary] = None
    sender_id: str
    content: str
    message_type: MessageType
    attachment: Optional[AttachmentOut] = None
    read_by: List[str] = []
    created_at: datetime

class MarkReadResponse(BaseModel):
    marked: int
