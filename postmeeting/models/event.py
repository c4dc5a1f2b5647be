"""
Calendar event model.
"""
from sqlalchemy import Column, String, Text, Boolean, DateTime, JSON

from postmeeting.models.base import Base, utcnow


class CalendarEventRecord(Base):
    """Calendar event merged from the provider plus local notetaker state."""

    __tablename__ = 'calendar_events'

    id = Column(String(1024), primary_key=True)  # accountId:calendarId:eventId
    account_id = Column(String(255), nullable=False, index=True)
    title = Column(String(1024), nullable=False)
    start = Column(DateTime(timezone=True), nullable=False, index=True)
    end = Column(DateTime(timezone=True), nullable=False)
    attendees = Column(JSON, nullable=False, default=list)
    conferencing_url = Column(Text, nullable=True)
    platform = Column(String(50), nullable=False, default='unknown')  # zoom, meet, teams, unknown
    wants_notetaker = Column(Boolean, nullable=False, default=False)
    recall_bot_id = Column(String(255), nullable=True, index=True)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<CalendarEventRecord(id='{self.id}', title='{self.title}')>"
