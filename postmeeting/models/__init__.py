"""
Database models package.
Import all models here for easy access and Alembic auto-detection.
"""
from postmeeting.models.base import Base
from postmeeting.models.account import GoogleAccount, SocialToken
from postmeeting.models.event import CalendarEventRecord
from postmeeting.models.bot import TrackedBot
from postmeeting.models.meeting import MeetingRecord
from postmeeting.models.content import GeneratedContentRecord, ContentPost
from postmeeting.models.preferences import SettingsRecord, AutomationRecord
from postmeeting.models.processing import ProcessingLog

__all__ = [
    'Base',
    'GoogleAccount',
    'SocialToken',
    'CalendarEventRecord',
    'TrackedBot',
    'MeetingRecord',
    'GeneratedContentRecord',
    'ContentPost',
    'SettingsRecord',
    'AutomationRecord',
    'ProcessingLog',
]
