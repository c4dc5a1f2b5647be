"""
Service for the Recall.ai bot API: create, inspect and delete recording bots,
and pull transcripts and participant lists once a meeting has media.
"""
import re
import time
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlparse

import httpx

from postmeeting.config import settings
from postmeeting.exceptions import APIError, ConfigurationError, RecallAPIError
from postmeeting.logging_config import get_logger
from postmeeting.monitoring import transcript_fetches_total
from postmeeting.rate_limiters import rate_limiters
from postmeeting.schemas import Attendee
from postmeeting.services.base import BaseAPIService
from postmeeting.services.transcript_parser import (
    collect_participant_urls,
    collect_transcript_sources,
    dedupe_participants,
    extract_from_payload,
    extract_transcript_text,
    inline_transcript,
    parse_participants,
    ResultsShape,
    SegmentsShape,
    TextFieldShape,
)
from postmeeting.utils import as_list, async_retry, safe_dict_get

logger = get_logger(__name__)

REGION_HOST_RE = re.compile(r"^([a-z0-9-]+)\.recall\.ai$")
FALLBACK_REGIONS = ("us-west-2", "us-east-1")
DOWNLOAD_TIMEOUT = 60.0


def region_from_url(url: str) -> Optional[str]:
    """Region encoded in a ``<region>.recall.ai`` hostname, if any."""
    try:
        host = urlparse(url).hostname or ""
    except ValueError:
        return None
    match = REGION_HOST_RE.match(host)
    return match.group(1) if match else None


def looks_presigned(url: str) -> bool:
    """Presigned storage URLs carry their own auth and may reject extra headers."""
    host = urlparse(url).hostname or ""
    return "amazonaws.com" in host.lower() or "/download/" in url.lower()


def media_status(record: Optional[Dict[str, Any]]) -> Tuple[bool, bool]:
    """
    Derive ``(has_recording, has_transcript)`` from a bot record.

    A missing record (failed poll) reports neither.
    """
    if not record:
        return False, False
    recordings = as_list(record.get("recordings"))
    status_codes = [safe_dict_get(s, "code") for s in as_list(record.get("status_changes"))]

    has_recording = any(
        safe_dict_get(r, "status", "code") == "done"
        or safe_dict_get(r, "media_shortcuts", "video_mixed", "status", "code") == "done"
        or bool(safe_dict_get(r, "media_shortcuts", "video_mixed", "data", "download_url"))
        for r in recordings
    ) or "recording_done" in status_codes or "done" in status_codes

    has_transcript = any(
        bool(safe_dict_get(r, "media_shortcuts", "transcript", "data", "download_url"))
        or safe_dict_get(r, "media_shortcuts", "transcript", "status", "code") == "done"
        or len(as_list(safe_dict_get(r, "transcripts"))) > 0
        for r in recordings
    ) or bool(record.get("transcript_available")) or len(as_list(record.get("transcripts"))) > 0

    return has_recording, has_transcript


class RecallService(BaseAPIService):
    """Service to interact with the Recall.ai bot API."""

    platform = "recall"
    error_class = RecallAPIError

    def __init__(self, region: Optional[str] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        super().__init__(transport)
        self.default_region = region or settings.recall_region

    def _headers(self, region: str) -> Dict[str, str]:
        return {
            "Authorization": f"Token {settings.recall_api_key_for(region)}",
            "Accept": "application/json",
        }

    def _base_url(self, region: Optional[str]) -> str:
        if settings.recall_api_base and region == settings.recall_region:
            return settings.recall_api_base.rstrip("/")
        return settings.recall_api_base_for(region)

    @async_retry()
    async def create_bot(self, meeting_url: str, join_at: Optional[datetime] = None, region: Optional[str] = None) -> str:
        """
        Create a bot that joins ``meeting_url`` at ``join_at`` and records with streaming transcription.

        Returns:
            The new bot id

        Raises:
            ConfigurationError: If no API key exists for the region
            RecallAPIError: If the provider rejects the request or returns no id
        """
        operation = "create_bot"
        started = time.time()
        region = region or self.default_region
        headers = self._headers(region)
        payload = {
            "meeting_url": meeting_url,
            "join_at": join_at.isoformat() if join_at else None,
            "recording_config": {
                "transcript": {"provider": {"recallai_streaming": {}}},
            },
        }

        try:
            await rate_limiters.acquire_recall_limit()
            async with self._client() as client:
                response = await client.post(f"{self._base_url(region)}/bot", headers=headers, json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

        bot_id = safe_dict_get(data, "id") or safe_dict_get(data, "bot_id")
        if not bot_id:
            raise RecallAPIError("Bot creation returned no id")
        self._record_success(operation, started)
        logger.info("recall_bot_created", bot_id=bot_id, region=region)
        return str(bot_id)

    @async_retry()
    async def get_bot(self, bot_id: str, region: Optional[str] = None) -> Dict[str, Any]:
        """Fetch the raw bot record."""
        operation = "get_bot"
        started = time.time()
        region = region or self.default_region
        headers = self._headers(region)

        try:
            await rate_limiters.acquire_recall_limit()
            async with self._client() as client:
                response = await client.get(f"{self._base_url(region)}/bot/{bot_id}", headers=headers)
                response.raise_for_status()
                self._record_success(operation, started)
                return response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

    @async_retry()
    async def delete_bot(self, bot_id: str, region: Optional[str] = None) -> None:
        """Delete a bot. A bot that is already gone counts as deleted."""
        operation = "delete_bot"
        started = time.time()
        region = region or self.default_region
        headers = self._headers(region)

        try:
            await rate_limiters.acquire_recall_limit()
            async with self._client() as client:
                response = await client.delete(f"{self._base_url(region)}/bot/{bot_id}", headers=headers)
                if response.status_code == 404:
                    logger.debug("recall_bot_already_deleted", bot_id=bot_id)
                    return
                response.raise_for_status()
                self._record_success(operation, started)
                logger.info("recall_bot_deleted", bot_id=bot_id, region=region)
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

    async def poll_media(self, bot_id: str, region: Optional[str] = None) -> Tuple[bool, bool]:
        """Current ``(has_recording, has_transcript)`` for a bot."""
        return media_status(await self.get_bot(bot_id, region))

    @async_retry()
    async def _download_text(self, url: str, region: Optional[str] = None) -> str:
        """
        Download a media artifact as text.

        Presigned URLs are tried without credentials first, everything else
        with the region's API key; a 401/403 falls back to the other scheme.
        """
        operation = "download"
        started = time.time()
        auth = {"Authorization": f"Token {settings.recall_api_key_for(region or region_from_url(url) or self.default_region)}"}
        attempts = [{}, auth] if looks_presigned(url) else [auth, {}]

        try:
            await rate_limiters.acquire_recall_limit()
            async with self._client(timeout=DOWNLOAD_TIMEOUT) as client:
                response = await client.get(url, headers=attempts[0])
                if response.status_code in (401, 403):
                    response = await client.get(url, headers=attempts[1])
                response.raise_for_status()
                self._record_success(operation, started)
                return response.text
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

    @async_retry()
    async def _get_transcript_resource(self, bot_id: str, region: str) -> Optional[str]:
        """Dedicated transcript sub-resource; used when nothing else produced text."""
        operation = "get_transcript"
        started = time.time()
        headers = self._headers(region)

        try:
            await rate_limiters.acquire_recall_limit()
            async with self._client() as client:
                response = await client.get(f"{self._base_url(region)}/bot/{bot_id}/transcript", headers=headers)
                response.raise_for_status()
                self._record_success(operation, started)
                try:
                    payload = response.json()
                except ValueError:
                    return response.text if response.text.strip() else None
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

        if isinstance(payload, str):
            return payload if payload.strip() else None
        return extract_from_payload(payload, [TextFieldShape(), SegmentsShape(), ResultsShape()])

    async def _find_bot(self, bot_id: str, region: str) -> Optional[Dict[str, Any]]:
        """Look the bot up in the hinted region, then the fallback regions."""
        regions = list(dict.fromkeys([region, *FALLBACK_REGIONS]))
        for rg in regions:
            try:
                record = await self.get_bot(bot_id, rg)
            except (APIError, ConfigurationError) as e:
                logger.debug("recall_bot_lookup_miss", bot_id=bot_id, region=rg, error=str(e))
                continue
            if record:
                return record
        return None

    async def fetch_transcript(self, bot_id: str, region: Optional[str] = None) -> Optional[str]:
        """
        Best-effort transcript text for a bot.

        Returns None when no source yields text; the transcript is usually just
        not ready yet and the caller tries again next cycle.
        """
        region = region or self.default_region
        record = await self._find_bot(bot_id, region)

        text = inline_transcript(record or {})
        if text:
            transcript_fetches_total.labels(source="inline").inc()
            return text

        sources = collect_transcript_sources(record or {})
        nested = next((s["text"] for s in sources if "text" in s), None)
        if nested:
            transcript_fetches_total.labels(source="inline").inc()
            return nested

        for source in sources:
            url = source.get("url")
            if not url:
                continue
            try:
                body = await self._download_text(url, region)
            except (APIError, ConfigurationError) as e:
                logger.warning("recall_transcript_download_failed", bot_id=bot_id, error=str(e))
                continue
            text = extract_transcript_text(body)
            if text and text.strip():
                transcript_fetches_total.labels(source="download").inc()
                return text

        try:
            text = await self._get_transcript_resource(bot_id, region)
        except (APIError, ConfigurationError) as e:
            logger.debug("recall_transcript_endpoint_failed", bot_id=bot_id, error=str(e))
            text = None
        if text and text.strip():
            transcript_fetches_total.labels(source="endpoint").inc()
            return text

        transcript_fetches_total.labels(source="none").inc()
        logger.info("recall_transcript_not_available", bot_id=bot_id)
        return None

    async def fetch_participants(self, bot_id: str, region: Optional[str] = None) -> List[Attendee]:
        """Participants reported by the bot, deduplicated; empty when unavailable."""
        region = region or self.default_region
        try:
            record = await self.get_bot(bot_id, region)
        except (APIError, ConfigurationError) as e:
            logger.warning("recall_participants_lookup_failed", bot_id=bot_id, error=str(e))
            return []

        for url in collect_participant_urls(record or {}):
            try:
                body = await self._download_text(url, region)
            except (APIError, ConfigurationError) as e:
                logger.warning("recall_participants_download_failed", bot_id=bot_id, error=str(e))
                continue
            participants = dedupe_participants(parse_participants(body))
            if participants:
                logger.info("recall_participants_fetched", bot_id=bot_id, count=len(participants))
                return participants
        return []
