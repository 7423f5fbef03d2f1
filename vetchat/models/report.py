"""Uploaded PDF report and the file it points at. Analysis is written once, after streaming."""
import uuid
from sqlalchemy import Column, String, Text, DateTime, Integer, ForeignKey
from vetchat.database import Base
from vetchat.utils.clock import utcnow


class StoredFile(Base):
    __tablename__ = "stored_files"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False, index=True)
    content_type = Column(String(100), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    path = Column(String(255), nullable=False)  # file name inside report_upload_dir
    created_at = Column(DateTime, nullable=False, default=utcnow)


class Report(Base):
    __tablename__ = "reports"

    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id = Column(String(255), nullable=False, index=True)
    chat_id = Column(String(36), ForeignKey("chats.id"), nullable=True, index=True)
    file_id = Column(String(36), ForeignKey("stored_files.id"), nullable=False)
    file_name = Column(String(255), nullable=False)
    mime_type = Column(String(100), nullable=False)
    size_bytes = Column(Integer, nullable=False)
    analysis = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    analyzed_at = Column(DateTime, nullable=True)
