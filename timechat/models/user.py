import uuid
from sqlalchemy import Column, String, Boolean

from timechat.database import Base
from timechat.models.types import UTCDateTime
from timechat.utils.time_utils import utcnow

class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True, index=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(50), nullable=False)
    # Always stored lowercase
    email = Column(String, unique=True, index=True, nullable=False)
    password_hash = Column(String, nullable=False)
    pic = Column(String, nullable=True)
    is_online = Column(Boolean, nullable=False, default=False)
    last_seen = Column(UTCDateTime, nullable=True)
    created_at = Column(UTCDateTime, nullable=False, default=utcnow)
    updated_at = Column(UTCDateTime, nullable=True, onupdate=utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email})>"
