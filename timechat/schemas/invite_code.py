from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime

from .chat import ChatOut

class InviteCodeCreate(BaseModel):
    chat_id: str
    ttl_minutes: Optional[int] = Field(default=None, gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)

class InviteCodeRegenerate(BaseModel):
    ttl_minutes: Optional[int] = Field(default=None, gt=0)
    max_uses: Optional[int] = Field(default=None, ge=1)

class InviteCodeRedeem(BaseModel):
    code: str = Field(min_length=1)

class InviteCodeOut(BaseModel):
    id: str
    code: str
    chat_id: str
    chat_name: Optional[str] = None
    created_by: str
    created_by_name: Optional[str] = None
    expires_at: datetime
    is_active: bool
    usage_count: int
    max_uses: Optional[int] = None
    created_at: datetime

class RedeemResponse(BaseModel):
    message: str
    joined: bool
    chat: ChatOut
