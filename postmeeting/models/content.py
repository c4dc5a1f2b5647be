"""
Generated follow-up content models.
"""
from sqlalchemy import Column, String, Text, DateTime, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from postmeeting.models.base import Base, utcnow


class GeneratedContentRecord(Base):
    """Follow-up email and social drafts generated for a meeting."""

    __tablename__ = 'generated_content'

    meeting_id = Column(String(1024), primary_key=True)
    followup_subject = Column(Text, nullable=False, default='')
    followup_body = Column(Text, nullable=False, default='')
    provider = Column(String(50), nullable=False, default='rules')  # rules or openai
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    posts = relationship(
        "ContentPost",
        back_populates="parent",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="ContentPost.platform",
    )

    def __repr__(self):
        return f"<GeneratedContentRecord(meeting_id='{self.meeting_id}')>"


class ContentPost(Base):
    """One draft per social platform for a meeting."""

    __tablename__ = 'content_posts'
    __table_args__ = (UniqueConstraint('meeting_id', 'platform', name='uq_content_posts_meeting_platform'),)

    id = Column(String(64), primary_key=True)
    meeting_id = Column(
        String(1024),
        ForeignKey('generated_content.meeting_id', ondelete='CASCADE'),
        nullable=False,
        index=True,
    )
    platform = Column(String(50), nullable=False)  # linkedin or facebook
    content = Column(Text, nullable=False, default='')
    posted_at = Column(DateTime(timezone=True), nullable=True)
    external_id = Column(String(255), nullable=True)  # post id returned by the network

    parent = relationship("GeneratedContentRecord", back_populates="posts")

    def __repr__(self):
        return f"<ContentPost(meeting_id='{self.meeting_id}', platform='{self.platform}')>"
