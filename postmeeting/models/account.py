"""
Linked account models: calendar accounts and social network credentials.
"""
from sqlalchemy import Column, String, Text, DateTime

from postmeeting.models.base import Base, utcnow


class GoogleAccount(Base):
    """Google account whose calendars are synced."""

    __tablename__ = 'google_accounts'

    id = Column(String(255), primary_key=True, index=True)
    email = Column(String(255), nullable=False, unique=True, index=True)
    display_name = Column(String(255), nullable=True)
    tokens = Column(Text, nullable=False)  # Encrypted JSON token bundle
    expires_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<GoogleAccount(id='{self.id}', email='{self.email}')>"


class SocialToken(Base):
    """Access credential for one social network (one row per platform)."""

    __tablename__ = 'social_tokens'

    platform = Column(String(50), primary_key=True)  # 'linkedin' or 'facebook'
    access_token = Column(Text, nullable=False)  # Encrypted
    expires_at = Column(DateTime(timezone=True), nullable=True)
    member_id = Column(String(255), nullable=True)  # LinkedIn member id / Facebook user id
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    def __repr__(self):
        return f"<SocialToken(platform='{self.platform}', member_id='{self.member_id}')>"
