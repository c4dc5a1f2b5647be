"""
Meeting lifecycle reconciliation.

Each cycle walks the locally known calendar events and moves every event
with a recording bot from "upcoming" to a finalized meeting with generated
follow-up content, exactly once:

1. Load events and the index of finalized meetings
2. Poll each event's bot for recording/transcript availability
3. Finalize ended (or already recorded) events: transcript, participants, upsert
4. Release the bot once the meeting is durably stored
5. Generate default content for meetings that have none
"""
import time
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from postmeeting.config import settings
from postmeeting.exceptions import APIError, ConfigurationError, DatabaseError, TokenError
from postmeeting.logging_config import LogContext, get_logger
from postmeeting.monitoring import (
    calendar_sync_duration,
    meetings_finalized_total,
    reconcile_cycle_duration,
    reconcile_cycles_total,
    record_error,
    track_time,
)
from postmeeting.schemas import (
    AppSettings,
    Automation,
    CalendarEvent,
    CycleStats,
    MediaStatus,
    Meeting,
    MeetingIndexEntry,
)
from postmeeting.services.content import ContentService
from postmeeting.services.google_calendar import GoogleCalendarService
from postmeeting.services.recall_service import RecallService
from postmeeting.services.scheduler import BotScheduler
from postmeeting.services.store import MeetingStore
from postmeeting.utils import format_duration, parse_datetime, utcnow

logger = get_logger(__name__)

TOKEN_REFRESH_MARGIN = timedelta(seconds=60)


class Reconciler:
    """Drives calendar events through their recording lifecycle."""

    def __init__(
        self,
        store: MeetingStore,
        recall: Optional[RecallService] = None,
        scheduler: Optional[BotScheduler] = None,
        content: Optional[ContentService] = None,
        google: Optional[GoogleCalendarService] = None,
    ):
        self.store = store
        self.recall = recall or RecallService()
        self.scheduler = scheduler or BotScheduler(store, self.recall)
        self.content = content or ContentService()
        self.google = google or GoogleCalendarService()
        self.refresh_token = 0

    # ------------------------------------------------------------------
    # Calendar sync
    # ------------------------------------------------------------------

    async def _fresh_tokens(self, account_id: str, tokens: Dict[str, Any]) -> Dict[str, Any]:
        """Refresh the access token when it is expired or about to expire."""
        expires_at = parse_datetime(tokens.get("expires_at"))
        if expires_at is None or expires_at - TOKEN_REFRESH_MARGIN > utcnow():
            return tokens
        if not tokens.get("refresh_token"):
            return tokens
        refreshed = await self.google.refresh_access_token(tokens["refresh_token"])
        await self.store.update_google_tokens(account_id, refreshed)
        logger.info("google_token_refreshed", account_id=account_id)
        return refreshed

    @track_time(calendar_sync_duration)
    async def sync_calendars(self, app_settings: AppSettings) -> int:
        """
        Re-fetch every linked account's events and merge them into local state.

        Accounts are isolated from each other: one failing account is logged and skipped.

        Returns:
            Number of accounts synced
        """
        try:
            accounts = await self.store.list_google_accounts()
        except DatabaseError as e:
            logger.error("calendar_sync_failed", error=str(e))
            return 0

        now = utcnow()
        time_min = now - timedelta(days=settings.calendar_past_days)
        time_max = now + timedelta(days=app_settings.window_days)
        synced = 0

        for account in accounts:
            with LogContext(account_id=account.id):
                try:
                    tokens = await self._fresh_tokens(account.id, await self.store.get_google_tokens(account.id))
                    if not tokens.get("access_token"):
                        raise TokenError("No access token stored")
                    events = await self.google.list_events(account.id, tokens["access_token"], time_min, time_max)
                    await self.store.merge_calendar_events(account.id, events, time_min)
                    synced += 1
                except (APIError, ConfigurationError, DatabaseError, TokenError) as e:
                    record_error(type(e).__name__, "calendar_sync")
                    logger.warning("calendar_account_sync_failed", error=str(e), error_type=type(e).__name__)

        try:
            await self.store.attach_tracked_bots()
        except DatabaseError as e:
            logger.warning("tracked_bot_attach_failed", error=str(e))

        logger.info("calendar_sync_completed", accounts=len(accounts), synced=synced)
        return synced

    # ------------------------------------------------------------------
    # Reconciliation cycle
    # ------------------------------------------------------------------

    async def run_cycle(self) -> CycleStats:
        """
        Run one reconciliation pass over all known events.

        Never raises: failures are counted in the returned stats and logged.
        """
        started = time.time()
        stats = CycleStats(started_at=utcnow())
        errors: List[str] = []

        with LogContext(cycle_id=uuid.uuid4().hex[:12]):
            logger.info("reconcile_cycle_started")
            try:
                events = await self.store.list_events()
                index = {entry.id: entry for entry in await self.store.meeting_index()}
                automations = await self.store.list_automations()
            except DatabaseError as e:
                stats.errors_count += 1
                errors.append(str(e))
                events, index, automations = [], {}, []
                logger.error("reconcile_load_failed", error=str(e))
            else:
                await self._backfill_content(automations, stats)

            stats.events_seen = len(events)
            now = utcnow()
            for event in events:
                if not event.recall_bot_id:
                    continue
                with LogContext(event_id=event.id, bot_id=event.recall_bot_id):
                    try:
                        await self._reconcile_event(event, index.get(event.id), automations, now, stats)
                    except Exception as e:
                        stats.errors_count += 1
                        errors.append(f"{event.id}: {e}")
                        record_error(type(e).__name__, "reconciler")
                        logger.error("reconcile_event_failed", error=str(e), error_type=type(e).__name__)

            if stats.changed:
                self.refresh_token += 1
                self.store.cache.invalidate()

            if stats.errors_count == 0:
                stats.status = "success"
            elif stats.meetings_finalized or stats.bots_polled:
                stats.status = "partial"
            else:
                stats.status = "failed"
            stats.duration_seconds = time.time() - started

            try:
                await self.store.append_processing_log(stats, "\n".join(errors)[:5000] or None)
            except DatabaseError as e:
                logger.error("processing_log_failed", error=str(e))

            reconcile_cycles_total.labels(status=stats.status).inc()
            reconcile_cycle_duration.observe(stats.duration_seconds)
            logger.info(
                "reconcile_cycle_completed",
                status=stats.status,
                events_seen=stats.events_seen,
                bots_polled=stats.bots_polled,
                meetings_finalized=stats.meetings_finalized,
                content_generated=stats.content_generated,
                errors=stats.errors_count,
                duration=format_duration(stats.duration_seconds),
            )
        return stats

    async def _reconcile_event(
        self,
        event: CalendarEvent,
        entry: Optional[MeetingIndexEntry],
        automations: List[Automation],
        now: datetime,
        stats: CycleStats,
    ) -> None:
        bot_id = event.recall_bot_id
        ended = now >= (event.end or event.start)

        tracked = await self.store.get_tracked_bot_by_id(bot_id)
        region = tracked.region if tracked else None

        has_recording = has_transcript = False
        try:
            has_recording, has_transcript = await self.recall.poll_media(bot_id, region)
            stats.bots_polled += 1
            if tracked:
                status = "media_available" if has_recording or has_transcript else "running"
                await self.store.update_bot_status(bot_id, status)
        except (APIError, ConfigurationError) as e:
            logger.warning("bot_poll_failed", error=str(e), error_type=type(e).__name__)

        if not (ended or has_recording or has_transcript):
            return

        finalized = entry is not None
        needs_transcript_update = finalized and not entry.transcript_stored and has_transcript
        if finalized and not needs_transcript_update:
            if has_recording and not entry.has_recording:
                # recording flag is only written when the meeting is (re)upserted
                logger.debug("meeting_recording_flag_not_updated")
            # still linked here only when an earlier release was interrupted
            await self._release_event(event, region, stats)
            return

        transcript = ""
        try:
            transcript = await self.recall.fetch_transcript(bot_id, region) or ""
        except (APIError, ConfigurationError) as e:
            logger.warning("transcript_fetch_failed", error=str(e))
        if transcript:
            has_transcript = True

        attendees = event.attendees
        if not attendees:
            try:
                attendees = await self.recall.fetch_participants(bot_id, region)
            except (APIError, ConfigurationError) as e:
                logger.warning("participants_fetch_failed", error=str(e))

        meeting = Meeting(
            id=event.id,
            event_id=event.id,
            account_id=event.account_id,
            platform=event.platform,
            title=event.title,
            start=event.start,
            attendees=attendees,
            transcript=transcript,
            media=MediaStatus(
                bot_id=bot_id,
                has_recording=has_recording,
                has_transcript=has_transcript,
                updated_at=now,
            ),
        )

        try:
            await self.store.upsert_meeting(meeting)
        except DatabaseError as e:
            # the bot stays tracked so the next cycle retries
            stats.errors_count += 1
            record_error("DatabaseError", "reconciler")
            logger.error("meeting_upsert_failed", error=str(e))
            return

        stats.changed = True
        stats.meetings_finalized += 1
        meetings_finalized_total.labels(outcome="transcript_backfill" if finalized else "finalized").inc()
        self.store.cache.put(meeting)
        logger.info(
            "meeting_finalized",
            backfill=finalized,
            has_recording=has_recording,
            has_transcript=has_transcript,
            attendees=len(attendees),
        )

        await self._release_event(event, region, stats)
        await self._ensure_content(meeting, automations, stats)

    async def _release_event(self, event: CalendarEvent, region: Optional[str], stats: CycleStats) -> None:
        """
        Release the event's bot and clear its link on the event.

        The link is cleared even when forgetting the bot fails, so polling stops.
        The leftover mapping is re-attached by the next calendar sync and released again.
        """
        try:
            await self.scheduler.release(event.recall_bot_id, region)
        except DatabaseError as e:
            stats.errors_count += 1
            record_error("DatabaseError", "reconciler")
            logger.warning("bot_release_failed", error=str(e))
        await self.store.save_event(event.model_copy(update={"wants_notetaker": False, "recall_bot_id": None}))

    async def _ensure_content(self, meeting: Meeting, automations: List[Automation], stats: CycleStats) -> None:
        """Draft default content for a meeting that has none; a failed write is retried next cycle."""
        try:
            if await self.store.get_content(meeting.id) is not None:
                return
            generated = await self.content.generate(meeting, automations, use_ai=False)
            if await self.store.create_content(generated):
                stats.content_generated += 1
        except DatabaseError as e:
            stats.errors_count += 1
            record_error("DatabaseError", "reconciler")
            logger.error("content_generation_failed", meeting_id=meeting.id, error=str(e))

    async def _backfill_content(self, automations: List[Automation], stats: CycleStats) -> None:
        """Draft content for meetings an earlier cycle finalized but could not draft for."""
        try:
            missing = await self.store.meetings_without_content()
        except DatabaseError as e:
            stats.errors_count += 1
            logger.error("content_backfill_load_failed", error=str(e))
            return

        for meeting_id in missing:
            with LogContext(meeting_id=meeting_id):
                try:
                    meeting = await self.store.get_meeting(meeting_id)
                except DatabaseError as e:
                    stats.errors_count += 1
                    logger.error("content_backfill_load_failed", error=str(e))
                    continue
                if meeting is not None:
                    await self._ensure_content(meeting, automations, stats)
