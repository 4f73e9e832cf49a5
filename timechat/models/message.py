import uuid
from sqlalchemy import Column, String, Integer, ForeignKey, Text, Index, Enum as SQLAlchemyEnum
from sqlalchemy.orm import relationship

from timechat.database import Base
from timechat.models.types import UTCDateTime
from timechat.schemas.message import MessageType
from timechat.utils.time_utils import utcnow

class Message(Base):
    __tablename__ = "messages"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    chat_id = Column(String, ForeignKey("chats.id"), nullable=False)
    sender_id = Column(String, ForeignKey("users.id"), nullable=False)

    message_type = Column(SQLAlchemyEnum(MessageType, name="chatmessagetype"), nullable=False, default=MessageType.TEXT)
    # May be empty when the message only carries an attachment
    content = Column(Text, nullable=False, default="")

    # Attachment descriptor
    file_url = Column(String, nullable=True)
    file_name = Column(String, nullable=True)
    file_type = Column(String, nullable=True)
    file_size = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, nullable=False, default=utcnow)

    readers = relationship(
        "MessageRead",
        lazy="selectin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        Index("ix_messages_chat_created", "chat_id", "created_at"),
    )

    @property
    def reader_ids(self):
        return [r.user_id for r in self.readers]

    @property
    def has_attachment(self) -> bool:
        return self.file_url is not None


class MessageRead(Base):
    __tablename__ = "message_reads"

    message_id = Column(String, ForeignKey("messages.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String, ForeignKey("users.id"), primary_key=True)
    read_at = Column(UTCDateTime, nullable=False, default=utcnow)
