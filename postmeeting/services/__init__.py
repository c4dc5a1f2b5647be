"""Service exports for external providers, content generation and persistence."""
from postmeeting.services.content import ContentService
from postmeeting.services.google_calendar import GoogleCalendarService
from postmeeting.services.recall_service import RecallService
from postmeeting.services.scheduler import BotScheduler
from postmeeting.services.social_service import FacebookService, LinkedInService
from postmeeting.services.store import MeetingCache, MeetingStore
from postmeeting.services.summary_service import SummaryService

__all__ = [
    "BotScheduler",
    "ContentService",
    "FacebookService",
    "GoogleCalendarService",
    "LinkedInService",
    "MeetingCache",
    "MeetingStore",
    "RecallService",
    "SummaryService",
]
