"""
Recording bot tracking model.
"""
from sqlalchemy import Column, String, Text, DateTime
from postmeeting.models.base import Base


class TrackedBot(Base):
    """Mapping from a calendar event to the bot scheduled for it."""

    __tablename__ = 'tracked_bots'

    bot_id = Column(String(255), primary_key=True)
    event_key = Column(String(1024), nullable=False, unique=True, index=True)
    meeting_url = Column(Text, nullable=False)
    platform = Column(String(50), nullable=True)
    join_at = Column(DateTime(timezone=True), nullable=True)
    region = Column(String(50), nullable=True)
    status = Column(String(50), nullable=True)  # created, running, media_available
    updated_at = Column(DateTime(timezone=True), nullable=True, index=True)

    def __repr__(self):
        return f"<TrackedBot(bot_id='{self.bot_id}', event_key='{self.event_key}', status='{self.status}')>"
