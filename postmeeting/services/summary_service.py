"""
Service for AI-drafted follow-up content using OpenAI chat completions.

Every public method returns None on failure so callers fall back to the
rule-based generators.
"""
import asyncio
import json
import time
from typing import Any, Dict, List, Optional

import httpx

from postmeeting.config import settings
from postmeeting.exceptions import APIError, OpenAIAPIError
from postmeeting.logging_config import get_logger
from postmeeting.monitoring import record_error
from postmeeting.rate_limiters import rate_limiters
from postmeeting.schemas import FollowupEmail, TranscriptSummary
from postmeeting.services.base import BaseAPIService
from postmeeting.utils import async_retry, safe_dict_get

logger = get_logger(__name__)

TRANSCRIPT_CHAR_LIMIT = 8000

TEMPLATE_SYSTEM_PROMPT = (
    "You generate social media post TEMPLATES that use placeholders. Output ONLY a single-line "
    "template string using these placeholders: {{{{topic}}}}, {{{{key_points}}}}, {{{{cta}}}}. "
    "Tailor to {platform}. Do not include quotes or JSON. Keep under 260 chars. "
    "If user asks for hashtags or tone, include them."
)

EMAIL_SYSTEM_PROMPT = (
    "You draft concise, professional follow-up emails from a meeting transcript. Return JSON with "
    "keys: subject (string), body (string). The body MUST include: Recap: with 3-6 bullet points "
    "summarizing key points from the transcript, and Next steps: with 1-3 actionable items. "
    "Keep under 180 words. Avoid guarantees or performance claims."
)

SUMMARY_SYSTEM_PROMPT = (
    "You summarize meeting transcripts for social posts. Return JSON with keys: topic (string, "
    "under 120 characters) and key_points (array of at most 3 short strings)."
)


class SummaryService(BaseAPIService):
    """Service to draft templates, emails and summaries with OpenAI."""

    platform = "openai"
    error_class = OpenAIAPIError

    OPENAI_API_URL = "https://api.openai.com/v1/chat/completions"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(transport)
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.model = model or settings.openai_model

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key)

    def _headers(self) -> Dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if settings.openai_org:
            headers["OpenAI-Organization"] = settings.openai_org
        if settings.openai_project:
            headers["OpenAI-Project"] = settings.openai_project
        return headers

    @async_retry()
    async def _chat(self, messages: List[Dict[str, str]], operation: str, **options: Any) -> str:
        started = time.time()
        payload = {"model": self.model, "messages": messages, **options}
        try:
            await rate_limiters.acquire_openai_limit()
            async with self._client(timeout=settings.ai_timeout_seconds) as client:
                response = await client.post(self.OPENAI_API_URL, headers=self._headers(), json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)
        except ValueError as e:
            record_error("OpenAIAPIError", self.component)
            raise OpenAIAPIError(f"Invalid JSON response in {operation}") from e

        content = safe_dict_get(data, "choices", 0, "message", "content")
        if not isinstance(content, str) or not content.strip():
            raise OpenAIAPIError(f"Empty completion in {operation}")
        self._record_success(operation, started)
        return content.strip()

    async def _complete(self, messages: List[Dict[str, str]], operation: str, **options: Any) -> Optional[str]:
        """Run a completion under the AI deadline; None on any failure."""
        if not self.is_configured:
            return None
        try:
            return await asyncio.wait_for(
                self._chat(messages, operation, **options),
                timeout=settings.ai_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.warning("openai_timeout", operation=operation)
        except APIError as e:
            logger.warning("openai_error", operation=operation, error=str(e), status_code=e.status_code)
        return None

    async def generate_template(self, prompt: str, platform: str) -> Optional[str]:
        """Single-line post template for ``platform`` following the user's instructions."""
        text = await self._complete(
            [
                {"role": "system", "content": TEMPLATE_SYSTEM_PROMPT.format(platform=platform)},
                {"role": "user", "content": f"Make a template: {prompt}"},
            ],
            "generate_template",
            temperature=0.4,
            max_tokens=200,
        )
        if not text:
            return None
        return text.strip('"')

    async def generate_followup_email(self, transcript: str) -> Optional[FollowupEmail]:
        """Follow-up email drafted from the transcript."""
        if not transcript or not transcript.strip():
            return None
        text = await self._complete(
            [
                {"role": "system", "content": EMAIL_SYSTEM_PROMPT},
                {"role": "user", "content": f"Transcript:\n{transcript[:TRANSCRIPT_CHAR_LIMIT]}"},
            ],
            "generate_followup_email",
            temperature=0.4,
            response_format={"type": "json_object"},
        )
        data = self._parse_json(text)
        if not data or not data.get("subject") or not data.get("body"):
            return None
        logger.info("openai_email_generated")
        return FollowupEmail(subject=str(data["subject"]), body=str(data["body"]))

    async def summarize_transcript(self, transcript: str) -> Optional[TranscriptSummary]:
        """Topic and key points from the transcript; the call-to-action is left to the caller."""
        if not transcript or not transcript.strip():
            return None
        text = await self._complete(
            [
                {"role": "system", "content": SUMMARY_SYSTEM_PROMPT},
                {"role": "user", "content": f"Transcript:\n{transcript[:TRANSCRIPT_CHAR_LIMIT]}"},
            ],
            "summarize_transcript",
            temperature=0.3,
            response_format={"type": "json_object"},
        )
        data = self._parse_json(text)
        if not data or not isinstance(data.get("topic"), str):
            return None
        points = [str(p) for p in data.get("key_points") or [] if p][:3]
        return TranscriptSummary(topic=data["topic"][:120], key_points=points)

    @staticmethod
    def _parse_json(text: Optional[str]) -> Optional[Dict[str, Any]]:
        if not text:
            return None
        try:
            data = json.loads(text)
        except ValueError:
            logger.warning("openai_invalid_json")
            return None
        return data if isinstance(data, dict) else None
