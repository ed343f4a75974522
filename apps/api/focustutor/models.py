from datetime import datetime, timezone
from sqlalchemy import JSON, Column, DateTime, Index, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class ChatSessionRecord(Base):
    """Persisted moderation state of a tutoring chat session."""
    __tablename__ = "chat_sessions"

    session_id = Column(String(64), primary_key=True)
    phase = Column(String(16), nullable=False, default="discovery")  # discovery, focus
    substantive_message_count = Column(Integer, nullable=False, default=0)
    current_topic = Column(String(256))
    subject = Column(String(128), index=True)
    concepts_covered = Column(JSON, nullable=False, default=list)
    recent_messages = Column(JSON, nullable=False, default=list)  # bounded, newest last
    created_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), nullable=False)
    updated_at = Column(DateTime, default=lambda: datetime.now(timezone.utc), onupdate=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("ix_chat_sessions_subject_updated", "subject", "updated_at"),
    )
