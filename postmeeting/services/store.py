"""
Persistent store for accounts, calendar events, tracked bots, meetings and generated content.

MeetingStore is the only component that talks to the database. It owns a
read-through MeetingCache that is invalidated whenever a meeting is written.
"""
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Callable, Dict, List, Optional

from sqlalchemy import delete, func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from postmeeting.exceptions import DatabaseError, NotFoundError
from postmeeting.logging_config import get_logger
from postmeeting.models import (
    AutomationRecord,
    CalendarEventRecord,
    ContentPost,
    GeneratedContentRecord,
    GoogleAccount,
    MeetingRecord,
    ProcessingLog,
    SettingsRecord,
    SocialToken,
    TrackedBot,
)
from postmeeting.schemas import (
    AccountInfo,
    AppSettings,
    Attendee,
    Automation,
    CalendarEvent,
    CycleStats,
    FollowupEmail,
    GeneratedContent,
    MediaStatus,
    Meeting,
    MeetingIndexEntry,
    Post,
    TrackedBotInfo,
)
from postmeeting.services.encryption import decrypt_json, decrypt_token, encrypt_json, encrypt_token
from postmeeting.utils import parse_datetime, utcnow

logger = get_logger(__name__)

MEETING_LIST_LIMIT = 200
SETTINGS_ROW_ID = 1


class MeetingCache:
    """In-process mirror of finalized meetings."""

    def __init__(self):
        self._by_id: Dict[str, Meeting] = {}
        self._complete = False

    def get(self, meeting_id: str) -> Optional[Meeting]:
        return self._by_id.get(meeting_id)

    def put(self, meeting: Meeting) -> None:
        self._by_id[meeting.id] = meeting

    def all(self) -> Optional[List[Meeting]]:
        """Cached meeting list, newest first; None until the list has been loaded."""
        if not self._complete:
            return None
        return sorted(self._by_id.values(), key=lambda m: m.start, reverse=True)

    def fill(self, meetings: List[Meeting]) -> None:
        self._by_id = {m.id: m for m in meetings}
        self._complete = True

    def invalidate(self) -> None:
        self._by_id = {}
        self._complete = False


def _attendees(value: Any) -> List[Attendee]:
    return [Attendee(**a) for a in value or [] if isinstance(a, dict) and a.get("email")]


def _dump_attendees(attendees: List[Attendee]) -> List[Dict[str, Any]]:
    return [a.model_dump() for a in attendees]


def _event_from_row(row: CalendarEventRecord) -> CalendarEvent:
    start = parse_datetime(row.start)
    return CalendarEvent(
        id=row.id,
        account_id=row.account_id,
        title=row.title,
        start=start,
        end=parse_datetime(row.end) or start,
        attendees=_attendees(row.attendees),
        conferencing_url=row.conferencing_url,
        platform=row.platform or "unknown",
        wants_notetaker=bool(row.wants_notetaker),
        recall_bot_id=row.recall_bot_id,
    )


def _bot_from_row(row: TrackedBot) -> TrackedBotInfo:
    return TrackedBotInfo(
        bot_id=row.bot_id,
        event_key=row.event_key,
        meeting_url=row.meeting_url,
        platform=row.platform or "unknown",
        join_at=parse_datetime(row.join_at),
        region=row.region,
        status=row.status,
        updated_at=parse_datetime(row.updated_at),
    )


def _meeting_from_row(row: MeetingRecord) -> Meeting:
    return Meeting(
        id=row.id,
        event_id=row.event_id or row.id,
        account_id=row.account_id,
        platform=row.platform or "unknown",
        title=row.title,
        start=parse_datetime(row.start),
        attendees=_attendees(row.attendees),
        transcript=row.transcript or "",
        media=MediaStatus(
            bot_id=row.bot_id,
            has_recording=bool(row.has_recording),
            has_transcript=bool(row.has_transcript),
            updated_at=parse_datetime(row.updated_at),
        ),
    )


def _content_from_row(row: GeneratedContentRecord) -> GeneratedContent:
    return GeneratedContent(
        meeting_id=row.meeting_id,
        followup_email=FollowupEmail(subject=row.followup_subject or "", body=row.followup_body or ""),
        posts=[
            Post(
                id=p.id,
                platform=p.platform,
                content=p.content or "",
                posted_at=parse_datetime(p.posted_at),
                external_id=p.external_id,
            )
            for p in row.posts
        ],
        provider=row.provider or "rules",
    )


class MeetingStore:
    """Explicit store interface over the relational database."""

    def __init__(self, session_factory: Callable[[], AsyncSession]):
        self._session_factory = session_factory
        self.cache = MeetingCache()

    @asynccontextmanager
    async def _session(self) -> AsyncGenerator[AsyncSession, None]:
        """Session that commits on success and rolls back on error."""
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                logger.error("database_error", error=str(e), error_type=type(e).__name__)
                raise DatabaseError(str(e)) from e
            except Exception:
                await session.rollback()
                raise

    # ------------------------------------------------------------------
    # Settings and automations
    # ------------------------------------------------------------------

    async def get_settings(self) -> AppSettings:
        """User settings; defaults for anything never saved."""
        async with self._session() as session:
            row = await session.get(SettingsRecord, SETTINGS_ROW_ID)
            if row is None:
                return AppSettings()
            values = {
                field: getattr(row, field)
                for field in AppSettings.model_fields
                if getattr(row, field, None) is not None
            }
            return AppSettings(**values)

    async def save_settings(self, app_settings: AppSettings) -> AppSettings:
        async with self._session() as session:
            row = await session.get(SettingsRecord, SETTINGS_ROW_ID)
            if row is None:
                row = SettingsRecord(id=SETTINGS_ROW_ID)
                session.add(row)
            for field, value in app_settings.model_dump().items():
                setattr(row, field, value)
        logger.info("settings_saved", poll_seconds=app_settings.poll_seconds, recall_region=app_settings.recall_region)
        return app_settings

    async def list_automations(self) -> List[Automation]:
        async with self._session() as session:
            result = await session.execute(select(AutomationRecord).order_by(AutomationRecord.platform, AutomationRecord.id))
            return [
                Automation(
                    id=row.id,
                    platform=row.platform,
                    name=row.name or "",
                    enabled=True if row.enabled is None else bool(row.enabled),
                    template=row.template or "",
                    description=row.description,
                )
                for row in result.scalars().all()
            ]

    async def replace_automations(self, automations: List[Automation]) -> List[Automation]:
        """Replace the whole automation list."""
        async with self._session() as session:
            await session.execute(delete(AutomationRecord))
            for automation in automations:
                session.add(AutomationRecord(**automation.model_dump()))
        return automations

    # ------------------------------------------------------------------
    # Google accounts
    # ------------------------------------------------------------------

    async def list_google_accounts(self) -> List[AccountInfo]:
        async with self._session() as session:
            result = await session.execute(select(GoogleAccount).order_by(GoogleAccount.email))
            return [
                AccountInfo(id=row.id, email=row.email, display_name=row.display_name)
                for row in result.scalars().all()
            ]

    async def get_google_tokens(self, account_id: str) -> Dict[str, Any]:
        async with self._session() as session:
            row = await session.get(GoogleAccount, account_id)
            if row is None:
                raise NotFoundError(f"Google account {account_id} not found")
            return decrypt_json(row.tokens)

    async def save_google_account(self, email: str, display_name: Optional[str], tokens: Dict[str, Any]) -> AccountInfo:
        """Link (or re-link) a Google account. The account id is its email."""
        async with self._session() as session:
            row = await session.get(GoogleAccount, email)
            if row is None:
                row = GoogleAccount(id=email, email=email)
                session.add(row)
            row.display_name = display_name
            row.tokens = encrypt_json(tokens)
            row.expires_at = parse_datetime(tokens.get("expires_at"))
        logger.info("google_account_saved", account_id=email)
        return AccountInfo(id=email, email=email, display_name=display_name)

    async def update_google_tokens(self, account_id: str, tokens: Dict[str, Any]) -> None:
        async with self._session() as session:
            row = await session.get(GoogleAccount, account_id)
            if row is None:
                raise NotFoundError(f"Google account {account_id} not found")
            row.tokens = encrypt_json(tokens)
            row.expires_at = parse_datetime(tokens.get("expires_at"))

    async def delete_google_account(self, account_id: str) -> Dict[str, Any]:
        """
        Unlink an account.

        Returns:
            The account's tokens, so the caller can revoke them
        """
        async with self._session() as session:
            row = await session.get(GoogleAccount, account_id)
            if row is None:
                raise NotFoundError(f"Google account {account_id} not found")
            tokens = decrypt_json(row.tokens)
            await session.delete(row)
        logger.info("google_account_deleted", account_id=account_id)
        return tokens

    # ------------------------------------------------------------------
    # Calendar events
    # ------------------------------------------------------------------

    async def list_events(self, ending_after: Optional[datetime] = None) -> List[CalendarEvent]:
        """Locally known events ordered by start, optionally only those not yet over."""
        async with self._session() as session:
            result = await session.execute(select(CalendarEventRecord).order_by(CalendarEventRecord.start))
            events = [_event_from_row(row) for row in result.scalars().all()]
        if ending_after is not None:
            events = [e for e in events if e.end >= ending_after]
        return events

    async def get_event(self, event_id: str) -> Optional[CalendarEvent]:
        async with self._session() as session:
            row = await session.get(CalendarEventRecord, event_id)
            return _event_from_row(row) if row else None

    async def save_event(self, event: CalendarEvent) -> CalendarEvent:
        """Write every field of an event, including the local notetaker state."""
        async with self._session() as session:
            row = await session.get(CalendarEventRecord, event.id)
            if row is None:
                row = CalendarEventRecord(id=event.id)
                session.add(row)
            row.account_id = event.account_id
            row.title = event.title
            row.start = event.start
            row.end = event.end
            row.attendees = _dump_attendees(event.attendees)
            row.conferencing_url = event.conferencing_url
            row.platform = event.platform
            row.wants_notetaker = event.wants_notetaker
            row.recall_bot_id = event.recall_bot_id
            row.updated_at = utcnow()
        return event

    async def merge_calendar_events(
        self,
        account_id: str,
        events: List[CalendarEvent],
        window_start: Optional[datetime] = None,
    ) -> int:
        """
        Merge freshly fetched events for one account into local state.

        Title, times, attendees, link and platform come from the provider; the
        notetaker flag and bot link stay as they are locally. Local events of the
        account that the provider no longer returns are dropped when they have no
        bot attached and start inside the synced window.

        Returns:
            Number of events written
        """
        fetched = {e.id: e for e in events}
        async with self._session() as session:
            result = await session.execute(
                select(CalendarEventRecord).where(CalendarEventRecord.account_id == account_id)
            )
            local = {row.id: row for row in result.scalars().all()}

            for event in fetched.values():
                row = local.get(event.id)
                if row is None:
                    row = CalendarEventRecord(id=event.id, account_id=account_id, wants_notetaker=False)
                    session.add(row)
                row.title = event.title
                row.start = event.start
                row.end = event.end
                row.attendees = _dump_attendees(event.attendees)
                row.conferencing_url = event.conferencing_url
                row.platform = event.platform
                row.updated_at = utcnow()

            pruned = 0
            for event_id, row in local.items():
                if event_id in fetched or row.recall_bot_id:
                    continue
                if window_start is not None and parse_datetime(row.start) >= window_start:
                    await session.delete(row)
                    pruned += 1

        logger.info("calendar_events_merged", account_id=account_id, count=len(fetched), pruned=pruned)
        return len(fetched)

    async def attach_tracked_bots(self) -> int:
        """
        Re-link events to bots that were scheduled for them.

        A bot is matched by event key first, then by meeting URL; a bot already
        linked to some event is never handed to a second one.

        Returns:
            Number of events updated
        """
        async with self._session() as session:
            bots = (await session.execute(select(TrackedBot).order_by(TrackedBot.updated_at))).scalars().all()
            if not bots:
                return 0
            rows = (await session.execute(select(CalendarEventRecord))).scalars().all()

            linked = {row.recall_bot_id for row in rows if row.recall_bot_id}
            by_key = {bot.event_key: bot for bot in bots}
            by_url: Dict[str, TrackedBot] = {}
            for bot in bots:
                by_url.setdefault(bot.meeting_url, bot)

            attached = 0
            for row in rows:
                if row.recall_bot_id:
                    continue
                bot = by_key.get(row.id) or (by_url.get(row.conferencing_url) if row.conferencing_url else None)
                if bot is None or bot.bot_id in linked:
                    continue
                row.recall_bot_id = bot.bot_id
                row.wants_notetaker = True
                row.updated_at = utcnow()
                linked.add(bot.bot_id)
                attached += 1

        if attached:
            logger.info("tracked_bots_attached", count=attached)
        return attached

    # ------------------------------------------------------------------
    # Tracked bots
    # ------------------------------------------------------------------

    async def list_tracked_bots(self) -> List[TrackedBotInfo]:
        async with self._session() as session:
            result = await session.execute(select(TrackedBot).order_by(TrackedBot.updated_at))
            return [_bot_from_row(row) for row in result.scalars().all()]

    async def get_tracked_bot(self, event_key: str) -> Optional[TrackedBotInfo]:
        async with self._session() as session:
            result = await session.execute(select(TrackedBot).where(TrackedBot.event_key == event_key))
            row = result.scalar_one_or_none()
            return _bot_from_row(row) if row else None

    async def get_tracked_bot_by_id(self, bot_id: str) -> Optional[TrackedBotInfo]:
        async with self._session() as session:
            row = await session.get(TrackedBot, bot_id)
            return _bot_from_row(row) if row else None

    async def save_tracked_bot(self, bot: TrackedBotInfo) -> TrackedBotInfo:
        """Insert or update the mapping for ``bot.event_key``."""
        async with self._session() as session:
            result = await session.execute(select(TrackedBot).where(TrackedBot.event_key == bot.event_key))
            row = result.scalar_one_or_none()
            if row is not None and row.bot_id != bot.bot_id:
                await session.delete(row)
                await session.flush()
                row = None
            if row is None:
                row = TrackedBot(bot_id=bot.bot_id, event_key=bot.event_key)
                session.add(row)
            row.meeting_url = bot.meeting_url
            row.platform = bot.platform
            row.join_at = bot.join_at
            row.region = bot.region
            row.status = bot.status
            row.updated_at = utcnow()
        return bot

    async def update_bot_status(self, bot_id: str, status: str) -> None:
        async with self._session() as session:
            row = await session.get(TrackedBot, bot_id)
            if row is not None:
                row.status = status
                row.updated_at = utcnow()

    async def delete_tracked_bot(self, bot_id: str) -> bool:
        async with self._session() as session:
            result = await session.execute(delete(TrackedBot).where(TrackedBot.bot_id == bot_id))
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Meetings
    # ------------------------------------------------------------------

    async def meeting_index(self) -> List[MeetingIndexEntry]:
        """Ids and media flags of every finalized meeting, without transcript bodies."""
        async with self._session() as session:
            result = await session.execute(
                select(
                    MeetingRecord.id,
                    MeetingRecord.bot_id,
                    MeetingRecord.has_recording,
                    MeetingRecord.has_transcript,
                    func.coalesce(func.length(MeetingRecord.transcript), 0).label("transcript_length"),
                )
            )
            return [
                MeetingIndexEntry(
                    id=row.id,
                    bot_id=row.bot_id,
                    has_recording=bool(row.has_recording),
                    has_transcript=bool(row.has_transcript),
                    transcript_stored=row.transcript_length > 0,
                )
                for row in result.all()
            ]

    async def meetings_without_content(self) -> List[str]:
        """Ids of finalized meetings that have no generated content yet."""
        async with self._session() as session:
            result = await session.execute(
                select(MeetingRecord.id)
                .outerjoin(GeneratedContentRecord, GeneratedContentRecord.meeting_id == MeetingRecord.id)
                .where(GeneratedContentRecord.meeting_id.is_(None))
                .order_by(MeetingRecord.start)
            )
            return list(result.scalars().all())

    async def get_meeting(self, meeting_id: str) -> Optional[Meeting]:
        cached = self.cache.get(meeting_id)
        if cached is not None:
            return cached
        async with self._session() as session:
            row = await session.get(MeetingRecord, meeting_id)
            meeting = _meeting_from_row(row) if row else None
        if meeting is not None:
            self.cache.put(meeting)
        return meeting

    async def list_meetings(self) -> List[Meeting]:
        """Most recent finalized meetings, newest first."""
        cached = self.cache.all()
        if cached is not None:
            return cached
        async with self._session() as session:
            result = await session.execute(
                select(MeetingRecord).order_by(MeetingRecord.start.desc()).limit(MEETING_LIST_LIMIT)
            )
            meetings = [_meeting_from_row(row) for row in result.scalars().all()]
        self.cache.fill(meetings)
        return meetings

    async def upsert_meeting(self, meeting: Meeting) -> Meeting:
        """Insert or replace the meeting with ``meeting.id``."""
        try:
            async with self._session() as session:
                row = await session.get(MeetingRecord, meeting.id)
                if row is None:
                    row = MeetingRecord(id=meeting.id)
                    session.add(row)
                row.event_id = meeting.event_id
                row.account_id = meeting.account_id
                row.platform = meeting.platform
                row.title = meeting.title
                row.start = meeting.start
                row.attendees = _dump_attendees(meeting.attendees)
                row.transcript = meeting.transcript
                row.bot_id = meeting.media.bot_id
                row.has_recording = meeting.media.has_recording
                row.has_transcript = meeting.media.has_transcript
                row.updated_at = meeting.media.updated_at or utcnow()
        finally:
            self.cache.invalidate()
        logger.info("meeting_upserted", meeting_id=meeting.id, transcript_chars=len(meeting.transcript))
        return meeting

    # ------------------------------------------------------------------
    # Generated content
    # ------------------------------------------------------------------

    async def get_content(self, meeting_id: str) -> Optional[GeneratedContent]:
        async with self._session() as session:
            row = await session.get(GeneratedContentRecord, meeting_id)
            return _content_from_row(row) if row else None

    async def create_content(self, content: GeneratedContent) -> bool:
        """
        Store content for a meeting unless some already exists.

        Returns:
            True if stored, False if the meeting already had content
        """
        async with self._session() as session:
            if await session.get(GeneratedContentRecord, content.meeting_id) is not None:
                return False
            row = GeneratedContentRecord(
                meeting_id=content.meeting_id,
                followup_subject=content.followup_email.subject,
                followup_body=content.followup_email.body,
                provider=content.provider,
            )
            row.posts = [
                ContentPost(
                    id=post.id,
                    meeting_id=content.meeting_id,
                    platform=post.platform,
                    content=post.content,
                    posted_at=post.posted_at,
                    external_id=post.external_id,
                )
                for post in content.posts
            ]
            session.add(row)
        return True

    async def replace_content(self, content: GeneratedContent) -> GeneratedContent:
        """Overwrite a meeting's content (explicit regeneration)."""
        async with self._session() as session:
            row = await session.get(GeneratedContentRecord, content.meeting_id)
            if row is not None:
                await session.delete(row)
                await session.flush()
        await self.create_content(content)
        return content

    async def update_post(
        self,
        meeting_id: str,
        platform: str,
        content: Optional[str] = None,
        posted_at: Optional[datetime] = None,
        external_id: Optional[str] = None,
    ) -> GeneratedContent:
        """
        Edit one platform's draft in place; there is never more than one per platform.

        Raises:
            NotFoundError: If the meeting has no generated content
        """
        async with self._session() as session:
            row = await session.get(GeneratedContentRecord, meeting_id)
            if row is None:
                raise NotFoundError(f"No generated content for meeting {meeting_id}")
            post = next((p for p in row.posts if p.platform == platform), None)
            if post is None:
                post = ContentPost(id=str(uuid.uuid4()), meeting_id=meeting_id, platform=platform, content="")
                row.posts.append(post)
            if content is not None:
                post.content = content
            if posted_at is not None:
                post.posted_at = posted_at
            if external_id is not None:
                post.external_id = external_id
            await session.flush()
            return _content_from_row(row)

    # ------------------------------------------------------------------
    # Social tokens
    # ------------------------------------------------------------------

    async def get_social_token(self, platform: str) -> Optional[Dict[str, Any]]:
        """Decrypted credential for a platform, or None when not linked."""
        async with self._session() as session:
            row = await session.get(SocialToken, platform)
            if row is None:
                return None
            return {
                "access_token": decrypt_token(row.access_token),
                "expires_at": parse_datetime(row.expires_at),
                "member_id": row.member_id,
            }

    async def save_social_token(
        self,
        platform: str,
        access_token: str,
        expires_at: Any = None,
        member_id: Optional[str] = None,
    ) -> None:
        async with self._session() as session:
            row = await session.get(SocialToken, platform)
            if row is None:
                row = SocialToken(platform=platform)
                session.add(row)
            row.access_token = encrypt_token(access_token)
            row.expires_at = parse_datetime(expires_at)
            row.member_id = member_id
        logger.info("social_token_saved", platform=platform)

    async def delete_social_token(self, platform: str) -> bool:
        async with self._session() as session:
            result = await session.execute(delete(SocialToken).where(SocialToken.platform == platform))
            removed = result.rowcount > 0
        logger.info("social_token_deleted", platform=platform, removed=removed)
        return removed

    # ------------------------------------------------------------------
    # Processing log
    # ------------------------------------------------------------------

    async def append_processing_log(self, stats: CycleStats, error_details: Optional[str] = None) -> None:
        async with self._session() as session:
            session.add(ProcessingLog(
                run_timestamp=stats.started_at,
                status=stats.status,
                events_seen=stats.events_seen,
                bots_polled=stats.bots_polled,
                meetings_finalized=stats.meetings_finalized,
                content_generated=stats.content_generated,
                errors_count=stats.errors_count,
                duration_seconds=stats.duration_seconds,
                error_details=error_details,
            ))
