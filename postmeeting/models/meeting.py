"""
Meeting-related database models.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, JSON
from postmeeting.models.base import Base


class MeetingRecord(Base):
    """Finalized meeting; one row per calendar event."""

    __tablename__ = 'past_meetings'

    id = Column(String(1024), primary_key=True)  # same as the event id
    event_id = Column(String(1024), nullable=True)
    account_id = Column(String(255), nullable=True)
    platform = Column(String(50), nullable=False)
    title = Column(String(1024), nullable=False)
    start = Column(DateTime(timezone=True), nullable=False, index=True)
    attendees = Column(JSON, nullable=False, default=list)
    transcript = Column(Text, nullable=True)
    bot_id = Column(String(255), nullable=True)
    has_recording = Column(Boolean, default=False)
    has_transcript = Column(Boolean, default=False)
    updated_at = Column(DateTime(timezone=True), nullable=True)

    def __repr__(self):
        return f"<MeetingRecord(id='{self.id}', platform='{self.platform}')>"
