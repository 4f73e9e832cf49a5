from pydantic import BaseModel, Field
from typing import List, Optional
from datetime import datetime

from .message import MessageOut

class DirectChatCreate(BaseModel):
    user_id: str

class GroupChatCreate(BaseModel):
    name: str
    users: List[str] = []
    # Overrides the default room lifetime; omitted means the configured default
    ttl_hours: Optional[float] = Field(default=None, gt=0)

class ChatRename(BaseModel):
    chat_name: str

class MemberChange(BaseModel):
    user_id: str

class MemberSummary(BaseModel):
    id: str
    name: str
    avatar: str
    is_online: bool = False

class ChatOut(BaseModel):
    id: str
    chat_name: str
    is_group_chat: bool
    group_admin_id: Optional[str] = None
    users: List[MemberSummary]
    max_members: int
    latest_message: Optional[MessageOut] = None
    expires_at: Optional[datetime] = None
    time_remaining_seconds: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    join_code: Optional[str] = None

class LeaveResponse(BaseModel):
    message: str
    room_deleted: bool
