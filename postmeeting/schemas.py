"""
Pydantic models for domain objects and request/response validation.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

Platform = Literal["zoom", "meet", "teams", "unknown"]
SocialPlatform = Literal["linkedin", "facebook"]
SOCIAL_PLATFORMS: List[str] = ["linkedin", "facebook"]


class Attendee(BaseModel):
    """Meeting attendee or bot-reported participant."""
    email: str
    name: Optional[str] = None


class CalendarEvent(BaseModel):
    """Calendar event as merged from the provider and local notetaker state."""
    id: str
    account_id: str
    title: str
    start: datetime
    end: datetime
    attendees: List[Attendee] = Field(default_factory=list)
    conferencing_url: Optional[str] = None
    platform: Platform = "unknown"
    wants_notetaker: bool = False
    recall_bot_id: Optional[str] = None


class TrackedBotInfo(BaseModel):
    """Bot scheduled for an event; event_key is the idempotency key."""
    bot_id: str
    event_key: str
    meeting_url: str
    platform: str = "unknown"
    join_at: Optional[datetime] = None
    region: Optional[str] = None
    status: Optional[str] = None
    updated_at: Optional[datetime] = None


class MediaStatus(BaseModel):
    """Recording/transcript availability for a finalized meeting."""
    bot_id: Optional[str] = None
    has_recording: bool = False
    has_transcript: bool = False
    updated_at: Optional[datetime] = None


class Meeting(BaseModel):
    """Finalized meeting record."""
    id: str
    event_id: str
    account_id: Optional[str] = None
    platform: str = "unknown"
    title: str
    start: datetime
    attendees: List[Attendee] = Field(default_factory=list)
    transcript: str = ""
    media: MediaStatus = Field(default_factory=MediaStatus)


class MeetingIndexEntry(BaseModel):
    """Lightweight meeting view used for dedup checks (no transcript body)."""
    id: str
    bot_id: Optional[str] = None
    has_recording: bool = False
    has_transcript: bool = False
    transcript_stored: bool = False


class FollowupEmail(BaseModel):
    subject: str
    body: str


class Post(BaseModel):
    """Draft or posted social content for one platform."""
    id: str
    platform: SocialPlatform
    content: str
    posted_at: Optional[datetime] = None
    external_id: Optional[str] = None


class GeneratedContent(BaseModel):
    """Follow-up email and per-platform drafts for a meeting."""
    meeting_id: str
    followup_email: FollowupEmail
    posts: List[Post] = Field(default_factory=list)
    provider: str = "rules"

    def post_for(self, platform: str) -> Optional[Post]:
        """Return the draft for a platform, if any."""
        return next((p for p in self.posts if p.platform == platform), None)


class Automation(BaseModel):
    """User-configured post template for a platform."""
    id: str
    platform: SocialPlatform
    name: str = ""
    enabled: bool = True
    template: str = ""
    description: Optional[str] = None


class AppSettings(BaseModel):
    """User-editable settings, read at the start of each cycle."""
    minutes_before_join: int = Field(default=5, ge=0)
    window_days: int = Field(default=45, ge=1)
    poll_seconds: int = Field(default=60, ge=15)
    recall_region: str = "us-east-1"
    linkedin_target: Literal["profile", "organization"] = "profile"
    linkedin_org_urn: Optional[str] = None
    linkedin_org_name: Optional[str] = None
    facebook_target: Literal["page", "profile"] = "page"
    facebook_page_id: Optional[str] = None
    facebook_page_name: Optional[str] = None


class TranscriptSummary(BaseModel):
    """Topic, key points and call-to-action derived from a transcript."""
    topic: str = ""
    key_points: List[str] = Field(default_factory=list)
    cta: str = ""

    @property
    def key_points_text(self) -> str:
        """Key points as a single line of bullets, the form used in templates."""
        return " ".join(f"• {point}" for point in self.key_points)


class ScheduleResult(BaseModel):
    """
    Outcome of a bot scheduling request.

    created/existing carry a bot_id; scheduling means another request for the
    same event is still in flight and the caller should retry; failed carries
    the error; skipped means there was nothing to schedule.
    """
    status: Literal["created", "existing", "scheduling", "failed", "skipped"]
    bot_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status in ("created", "existing")


class CycleStats(BaseModel):
    """Counters for one reconciliation cycle."""
    started_at: datetime
    events_seen: int = 0
    bots_polled: int = 0
    meetings_finalized: int = 0
    content_generated: int = 0
    errors_count: int = 0
    changed: bool = False
    status: str = "success"
    duration_seconds: float = 0.0


class PostableTarget(BaseModel):
    """Page or organization a social post can be published to."""
    id: str
    name: Optional[str] = None


class AccountInfo(BaseModel):
    id: str
    email: str
    display_name: Optional[str] = None


class SocialStatus(BaseModel):
    linkedin_connected: bool
    facebook_connected: bool


class StateResponse(BaseModel):
    """What observers poll to know when to re-render."""
    refresh_token: int
    running: bool
    last_cycle: Optional[CycleStats] = None


class HealthCheck(BaseModel):
    status: str
    database: str
    timestamp: str


class NotetakerToggle(BaseModel):
    enabled: bool


class DraftUpdate(BaseModel):
    content: str


class PublishRequest(BaseModel):
    content: Optional[str] = None
    target_id: Optional[str] = None


class TemplateRequest(BaseModel):
    prompt: str
    platform: SocialPlatform


class TemplateResponse(BaseModel):
    template: str
    provider: str


class EmailRequest(BaseModel):
    transcript: str


class EmailResponse(BaseModel):
    subject: str
    body: str
    provider: str


class ToggleResponse(BaseModel):
    event: CalendarEvent
    result: ScheduleResult
