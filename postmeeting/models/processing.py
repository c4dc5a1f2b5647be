"""
Processing log model.
"""
from sqlalchemy import Column, String, Integer, Text, DateTime, Float

from postmeeting.models.base import Base, utcnow


class ProcessingLog(Base):
    """Log of reconciliation cycles."""

    __tablename__ = 'processing_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    run_timestamp = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    status = Column(String(50), nullable=False)  # success, partial, failed
    events_seen = Column(Integer, default=0)
    bots_polled = Column(Integer, default=0)
    meetings_finalized = Column(Integer, default=0)
    content_generated = Column(Integer, default=0)
    errors_count = Column(Integer, default=0)
    duration_seconds = Column(Float, nullable=True)
    error_details = Column(Text, nullable=True)

    def __repr__(self):
        return f"<ProcessingLog(id={self.id}, run_timestamp='{self.run_timestamp}', status='{self.status}')>"
