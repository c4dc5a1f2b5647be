"""
User-editable settings and automation templates.
"""
from sqlalchemy import Column, String, Integer, Text, Boolean
from postmeeting.models.base import Base


class SettingsRecord(Base):
    """Single-row table (id=1) holding the user-editable settings."""

    __tablename__ = 'app_settings'

    id = Column(Integer, primary_key=True)
    minutes_before_join = Column(Integer, nullable=True)
    window_days = Column(Integer, nullable=True)
    poll_seconds = Column(Integer, nullable=True)
    recall_region = Column(String(50), nullable=True)
    linkedin_target = Column(String(50), nullable=True)  # profile or organization
    linkedin_org_urn = Column(String(255), nullable=True)
    linkedin_org_name = Column(String(255), nullable=True)
    facebook_target = Column(String(50), nullable=True)  # page or profile
    facebook_page_id = Column(String(255), nullable=True)
    facebook_page_name = Column(String(255), nullable=True)

    def __repr__(self):
        return f"<SettingsRecord(poll_seconds={self.poll_seconds}, recall_region='{self.recall_region}')>"


class AutomationRecord(Base):
    """Post template configured for a social platform."""

    __tablename__ = 'automations'

    id = Column(String(64), primary_key=True)
    platform = Column(String(50), nullable=False)
    name = Column(String(255), nullable=True)
    enabled = Column(Boolean, default=True)
    template = Column(Text, nullable=True)
    description = Column(Text, nullable=True)

    def __repr__(self):
        return f"<AutomationRecord(id='{self.id}', platform='{self.platform}')>"
