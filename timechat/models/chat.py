import uuid
from typing import List, Optional
from sqlalchemy import Column, String, Boolean, Integer, ForeignKey
from sqlalchemy.orm import relationship

from timechat.database import Base
from timechat.models.types import UTCDateTime
from timechat.utils.time_utils import utcnow

class Chat(Base):
    """
    A chat room.

    Members are held by identifier only (``ChatMember`` rows, ordered by join
    position). ``version`` is bumped on every row update and checked by the
    ORM on flush, so two sessions that read the same membership cannot both
    write a change derived from it.
    """
    __tablename__ = "chats"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    chat_name = Column(String(100), nullable=False)
    is_group_chat = Column(Boolean, nullable=False, default=False)
    group_admin_id = Column(String, ForeignKey("users.id"), nullable=True)
    max_members = Column(Integer, nullable=False, default=50)
    latest_message_id = Column(String, nullable=True)
    # Null means the room never expires (reserved global room)
    expires_at = Column(UTCDateTime, nullable=True, index=True)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    members = relationship(
        "ChatMember",
        order_by="ChatMember.position",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def member_ids(self) -> List[str]:
        return [m.user_id for m in self.members]

    def is_member(self, user_id: str) -> bool:
        return any(m.user_id == user_id for m in self.members)

    def find_member(self, user_id: str) -> Optional["ChatMember"]:
        for member in self.members:
            if member.user_id == user_id:
                return member
        return None

    def next_position(self) -> int:
        return max((m.position for m in self.members), default=-1) + 1

    def __repr__(self):
        return f"<Chat(id={self.id}, chat_name={self.chat_name}, members={len(self.members)})>"


class ChatMember(Base):
    __tablename__ = "chat_members"

    chat_id = Column(String, ForeignKey("chats.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), primary_key=True, index=True)
    position = Column(Integer, nullable=False)
    joined_at = Column(UTCDateTime, nullable=False, default=utcnow)
