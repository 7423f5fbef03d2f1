"""A chat thread owned by one user. Soft-deleted chats keep their rows and lose their name."""
import uuid
from sqlalchemy import Column, String, Boolean, DateTime, Integer, Index
from sqlalchemy.orm import relationship
from vetchat.database import Base
from vetchat.utils.clock import utcnow


class Chat(Base):
    __tablename__ = "chats"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String(255), nullable=False, default="")
    user_id = Column(String(255), nullable=False, index=True)  # identity provider subject
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    is_deleted = Column(Boolean, nullable=False, default=False)
    # Count of messages ever inserted; never decremented
    message_count = Column(Integer, nullable=False, default=0)

    messages = relationship("Message", back_populates="chat", lazy="select")

    __table_args__ = (Index("ix_chats_user_active", "user_id", "is_deleted", "created_at"),)
