import uuid
from datetime import datetime
from typing import Optional
from sqlalchemy import Column, String, Boolean, Integer, ForeignKey, Index, text
from sqlalchemy.orm import relationship

from timechat.database import Base
from timechat.models.types import UTCDateTime
from timechat.utils.time_utils import ensure_utc, utcnow

class InviteCode(Base):
    """
    Short-lived join code bound to one chat.

    The same token may exist many times in the table, but at most once among
    active rows (partial unique index).
    """
    __tablename__ = "invite_codes"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    code = Column(String(8), nullable=False, index=True)
    chat_id = Column(String, ForeignKey("chats.id"), nullable=False, index=True)
    created_by = Column(String, ForeignKey("users.id"), nullable=False)
    expires_at = Column(UTCDateTime, nullable=False, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    usage_count = Column(Integer, nullable=False, default=0)
    # Null means unlimited
    max_uses = Column(Integer, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    redemptions = relationship(
        "InviteCodeRedemption",
        order_by="InviteCodeRedemption.used_at",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index(
            "uq_invite_codes_active_code",
            "code",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )

    def is_valid(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        if not self.is_active:
            return False
        if ensure_utc(now) > ensure_utc(self.expires_at):
            return False
        if self.max_uses is not None and self.usage_count >= self.max_uses:
            return False
        return True

    def __repr__(self):
        return f"<InviteCode(id={self.id}, code={self.code}, chat_id={self.chat_id})>"


class InviteCodeRedemption(Base):
    __tablename__ = "invite_code_redemptions"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    invite_code_id = Column(String, ForeignKey("invite_codes.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False)
    used_at = Column(UTCDateTime, nullable=False, default=utcnow)
