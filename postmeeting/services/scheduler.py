"""
Bot scheduling with per-event deduplication, and the notetaker toggle built on it.
"""
import asyncio
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from postmeeting.config import settings
from postmeeting.exceptions import APIError, ConfigurationError, DatabaseError, NotFoundError
from postmeeting.logging_config import get_logger
from postmeeting.monitoring import bots_scheduled_total, record_error
from postmeeting.schemas import AppSettings, CalendarEvent, ScheduleResult, TrackedBotInfo
from postmeeting.services.recall_service import RecallService
from postmeeting.services.store import MeetingStore
from postmeeting.utils import utcnow

logger = get_logger(__name__)


class BotScheduler:
    """
    Creates at most one bot per event key.

    Concurrent requests for the same key share one in-flight creation: the
    first caller creates the bot, the others wait briefly for its result and
    otherwise get a ``scheduling`` status to retry on.
    """

    def __init__(self, store: MeetingStore, recall: Optional[RecallService] = None):
        self.store = store
        self.recall = recall or RecallService()
        self._in_flight: Dict[str, asyncio.Future] = {}

    def is_scheduling(self, event_key: str) -> bool:
        return event_key in self._in_flight

    async def schedule(
        self,
        event_key: str,
        meeting_url: str,
        platform: str = "unknown",
        join_at: Optional[datetime] = None,
        region: Optional[str] = None,
    ) -> ScheduleResult:
        """Ensure a bot exists for ``event_key``; never raises for provider or config failures."""
        existing = await self.store.get_tracked_bot(event_key)
        if existing:
            return self._outcome(ScheduleResult(status="existing", bot_id=existing.bot_id))

        pending = self._in_flight.get(event_key)
        if pending is not None:
            return await self._wait_for(event_key, pending)

        future = asyncio.get_running_loop().create_future()
        self._in_flight[event_key] = future
        bot_id = None
        try:
            # another request may have finished between the fast-path read and taking the key
            existing = await self.store.get_tracked_bot(event_key)
            if existing:
                bot_id = existing.bot_id
                return self._outcome(ScheduleResult(status="existing", bot_id=bot_id))

            region = region or settings.recall_region
            created_id = await self.recall.create_bot(meeting_url, join_at, region)
            await self.store.save_tracked_bot(TrackedBotInfo(
                bot_id=created_id,
                event_key=event_key,
                meeting_url=meeting_url,
                platform=platform or "unknown",
                join_at=join_at,
                region=region,
                status="created",
            ))
            bot_id = created_id
            logger.info("bot_scheduled", event_key=event_key, bot_id=bot_id, region=region)
            return self._outcome(ScheduleResult(status="created", bot_id=bot_id))
        except (APIError, ConfigurationError, DatabaseError) as e:
            record_error(type(e).__name__, "scheduler")
            logger.warning("bot_schedule_failed", event_key=event_key, error=str(e), error_type=type(e).__name__)
            return self._outcome(ScheduleResult(status="failed", error=str(e)))
        finally:
            del self._in_flight[event_key]
            if not future.done():
                future.set_result(bot_id)

    async def _wait_for(self, event_key: str, pending: asyncio.Future) -> ScheduleResult:
        try:
            bot_id = await asyncio.wait_for(asyncio.shield(pending), timeout=settings.schedule_wait_seconds)
        except asyncio.TimeoutError:
            bot_id = None
        if not bot_id:
            existing = await self.store.get_tracked_bot(event_key)
            bot_id = existing.bot_id if existing else None
        if bot_id:
            return self._outcome(ScheduleResult(status="existing", bot_id=bot_id))
        logger.info("bot_schedule_contended", event_key=event_key)
        return self._outcome(ScheduleResult(status="scheduling"))

    @staticmethod
    def _outcome(result: ScheduleResult) -> ScheduleResult:
        bots_scheduled_total.labels(outcome=result.status).inc()
        return result

    async def release(self, bot_id: str, region: Optional[str] = None) -> None:
        """Forget a tracked bot and ask the provider to delete it; provider failures are logged."""
        tracked = await self.store.get_tracked_bot_by_id(bot_id)
        await self.store.delete_tracked_bot(bot_id)
        try:
            await self.recall.delete_bot(bot_id, region or (tracked.region if tracked else None))
        except (APIError, ConfigurationError) as e:
            record_error(type(e).__name__, "scheduler")
            logger.warning("bot_delete_failed", bot_id=bot_id, error=str(e))

    async def toggle_notetaker(
        self,
        event_id: str,
        enabled: bool,
        app_settings: Optional[AppSettings] = None,
    ) -> Tuple[CalendarEvent, ScheduleResult]:
        """
        Turn the notetaker on or off for an event.

        Turning it on is a two-phase change: the flag is stored tentatively,
        then confirmed with the new bot id or rolled back if scheduling failed.
        A ``scheduling`` outcome keeps the tentative flag; the bot is linked
        once the in-flight request lands. Turning it off releases the bot.

        Raises:
            NotFoundError: If the event is unknown
        """
        event = await self.store.get_event(event_id)
        if event is None:
            raise NotFoundError(f"Event {event_id} not found")

        if not enabled:
            if event.recall_bot_id:
                await self.release(event.recall_bot_id)
            cleared = event.model_copy(update={"wants_notetaker": False, "recall_bot_id": None})
            await self.store.save_event(cleared)
            logger.info("notetaker_disabled", event_id=event_id)
            return cleared, ScheduleResult(status="skipped")

        if event.recall_bot_id:
            confirmed = event.model_copy(update={"wants_notetaker": True})
            await self.store.save_event(confirmed)
            return confirmed, ScheduleResult(status="existing", bot_id=event.recall_bot_id)

        tentative = event.model_copy(update={"wants_notetaker": True})
        await self.store.save_event(tentative)
        if not event.conferencing_url:
            logger.info("notetaker_no_meeting_link", event_id=event_id)
            return tentative, ScheduleResult(status="skipped", error="Event has no conferencing link")

        app_settings = app_settings or await self.store.get_settings()
        join_at = max(utcnow(), event.start - timedelta(minutes=app_settings.minutes_before_join))
        result = await self.schedule(
            event.id,
            event.conferencing_url,
            platform=event.platform,
            join_at=join_at,
            region=app_settings.recall_region,
        )

        if result.ok:
            confirmed = tentative.model_copy(update={"recall_bot_id": result.bot_id})
            await self.store.save_event(confirmed)
            return confirmed, result
        if result.status == "scheduling":
            return tentative, result

        reverted = tentative.model_copy(update={"wants_notetaker": False, "recall_bot_id": None})
        await self.store.save_event(reverted)
        logger.info("notetaker_reverted", event_id=event_id, error=result.error)
        return reverted, result
