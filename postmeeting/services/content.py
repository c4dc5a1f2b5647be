"""
Follow-up content generation: transcript summaries, post templates and email drafts.

The functions at module level are deterministic and do no I/O. ContentService
layers the optional AI path in front of them.
"""
import re
import uuid
from typing import List, Optional, Tuple

from postmeeting.logging_config import get_logger
from postmeeting.monitoring import content_generated_total
from postmeeting.schemas import (
    SOCIAL_PLATFORMS,
    Automation,
    FollowupEmail,
    GeneratedContent,
    Meeting,
    Post,
    TranscriptSummary,
)
from postmeeting.services.summary_service import SummaryService

logger = get_logger(__name__)

CALL_TO_ACTION = "DM me if you'd like a walkthrough."
TOPIC_MAX_CHARS = 120
MAX_KEY_POINTS = 3

DEFAULT_TEMPLATES = {
    "linkedin": "Takeaways: {{key_points}} — {{cta}}",
    "facebook": "We talked about {{topic}} — {{cta}}",
}

SENTENCE_SPLIT_RE = re.compile(r"[.!?]")
TOPIC_TOKEN_RE = re.compile(r"{{\s*topic\s*}}", re.IGNORECASE)
KEY_POINTS_TOKEN_RE = re.compile(r"{{\s*key_points\s*}}", re.IGNORECASE)
CTA_TOKEN_RE = re.compile(r"{{\s*cta\s*}}", re.IGNORECASE)

HASHTAG_RE = re.compile(r"#(\w{2,30})")
HASHTAG_COUNT_RE = re.compile(r"(\d+)\s*hashtags?")
HASHTAG_WORDS = {"one": 1, "two": 2, "three": 3, "four": 4, "five": 5}
HASHTAG_POOLS = {
    "linkedin": ["#Business", "#Insights", "#Leadership", "#Strategy", "#Growth"],
    "facebook": ["#Update", "#Community", "#Today", "#Highlights", "#Recap"],
}


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in SENTENCE_SPLIT_RE.split(text or "") if s.strip()]


def summarize(text: str) -> TranscriptSummary:
    """
    Derive topic, key points and call-to-action from a transcript.

    The first sentence is the topic (or the raw text when there are no sentence
    characters at all), the next three are key points.
    """
    sentences = split_sentences(text)
    first = sentences[0] if sentences else (text or "")
    return TranscriptSummary(
        topic=first[:TOPIC_MAX_CHARS],
        key_points=sentences[1:1 + MAX_KEY_POINTS],
        cta=CALL_TO_ACTION,
    )


def default_template(platform: str) -> str:
    return DEFAULT_TEMPLATES.get(platform, DEFAULT_TEMPLATES["facebook"])


def render_template(template: str, summary: TranscriptSummary) -> str:
    """Fill {{topic}}, {{key_points}} and {{cta}}; other tokens are left as they are."""
    # function replacements so backslashes in the values are not treated as group refs
    text = TOPIC_TOKEN_RE.sub(lambda _: summary.topic, template)
    text = KEY_POINTS_TOKEN_RE.sub(lambda _: summary.key_points_text, text)
    return CTA_TOKEN_RE.sub(lambda _: summary.cta, text)


def generate_post(transcript: str, platform: str, template: Optional[str] = None,
                  summary: Optional[TranscriptSummary] = None) -> str:
    return render_template(template or default_template(platform), summary or summarize(transcript))


def generate_followup_email(transcript: str, summary: Optional[TranscriptSummary] = None) -> FollowupEmail:
    summary = summary or summarize(transcript)
    recap = "\n".join(f"• {point}" for point in summary.key_points)
    body = (
        "Hi there,\n\n"
        "Thanks again for the great conversation today. Here's a quick recap of what we covered:\n\n"
        f"{recap}\n\n"
        "Next steps:\n"
        "- I'll share any requested docs and timelines.\n"
        "- Please send over any additional questions.\n\n"
        "Best,\n"
        "Your Advisor"
    )
    return FollowupEmail(subject=f"Follow-up on {summary.topic}", body=body)


def _mentions(text: str, words: List[str]) -> bool:
    lower = text.lower()
    return any(w in lower for w in words)


def _requested_hashtag_count(prompt: str) -> int:
    lower = prompt.lower()
    match = HASHTAG_COUNT_RE.search(lower)
    if match:
        return min(5, max(0, int(match.group(1))))
    for word, count in HASHTAG_WORDS.items():
        if f"{word} hashtag" in lower:
            return count
    return 0


def _hashtags_for(prompt: str, platform: str) -> List[str]:
    """Hashtags named in the prompt, topped up from the platform pool to the requested count."""
    tags = list(dict.fromkeys(f"#{m}" for m in HASHTAG_RE.findall(prompt)))
    wanted = _requested_hashtag_count(prompt)
    for tag in HASHTAG_POOLS.get(platform, HASHTAG_POOLS["facebook"]):
        if len(tags) >= wanted:
            break
        if tag not in tags:
            tags.append(tag)
    return tags


def template_from_prompt(prompt: str, platform: str) -> str:
    """
    Build a post template from a free-text description of tone and hashtags.

    A "cold" tone implies professional. Emoji are added on LinkedIn only when
    asked for and the tone isn't professional; Facebook templates always get one.
    """
    professional = _mentions(prompt, ["professional", "formal", "polished", "cold"])
    casual = _mentions(prompt, ["casual", "friendly", "conversational", "warm"])
    concise = _mentions(prompt, ["short", "concise", "brief", "succinct"])
    emoji = _mentions(prompt, ["emoji", "emojis", "\U0001F600"])

    tags = _hashtags_for(prompt, platform)
    hashtags = f" {' '.join(tags)}" if tags else ""

    if platform == "linkedin":
        if concise or professional:
            body = "Recap: {{topic}} — {{key_points}}. {{cta}}"
        elif casual:
            body = "Great chat about {{topic}} — {{key_points}}. {{cta}}"
        else:
            body = "After meeting about {{topic}}, key takeaways: {{key_points}}. {{cta}}"
        flourish = " ✨" if emoji and not professional else ""
    else:
        if concise:
            body = "{{topic}} — {{key_points}}. {{cta}}"
        elif professional:
            body = "Recap: {{topic}} — {{key_points}}. {{cta}}"
        else:
            body = "Great chat today about {{topic}}! We covered {{key_points}}. {{cta}}"
        flourish = " 💡"
    return f"{body}{flourish}{hashtags}".strip()


def pick_template(automations: List[Automation], platform: str) -> Optional[str]:
    """Template of the first enabled automation for a platform."""
    for automation in automations:
        if automation.platform == platform and automation.enabled and automation.template.strip():
            return automation.template
    return None


class ContentService:
    """Builds GeneratedContent for meetings and AI-assisted templates."""

    def __init__(self, summary_service: Optional[SummaryService] = None):
        self.summary_service = summary_service or SummaryService()

    async def generate(self, meeting: Meeting, automations: List[Automation], use_ai: bool = False) -> GeneratedContent:
        """
        Draft the follow-up email and one post per social platform.

        With ``use_ai`` the summary behind the posts and the email are drafted by
        the model first. Each falls back to its deterministic version on failure,
        so this always returns content.
        """
        transcript = meeting.transcript or ""
        summary = summarize(transcript)
        email = None
        provider = "rules"

        if use_ai and self.summary_service.is_configured:
            ai_summary = await self.summary_service.summarize_transcript(transcript)
            if ai_summary:
                summary = TranscriptSummary(topic=ai_summary.topic, key_points=ai_summary.key_points, cta=CALL_TO_ACTION)
                provider = "openai"
            email = await self.summary_service.generate_followup_email(transcript)
            if email:
                provider = "openai"
        if email is None:
            email = generate_followup_email(transcript, summary)

        posts = [
            Post(
                id=str(uuid.uuid4()),
                platform=platform,
                content=generate_post(transcript, platform, pick_template(automations, platform), summary),
            )
            for platform in SOCIAL_PLATFORMS
        ]
        content_generated_total.labels(provider=provider).inc()
        logger.info("content_generated", meeting_id=meeting.id, provider=provider)
        return GeneratedContent(meeting_id=meeting.id, followup_email=email, posts=posts, provider=provider)

    async def template_for_prompt(self, prompt: str, platform: str) -> Tuple[str, str]:
        """Template for a prompt and the provider that produced it (openai or rules)."""
        template = await self.summary_service.generate_template(prompt, platform)
        if template:
            return template, "openai"
        return template_from_prompt(prompt, platform), "rules"

    async def email_for_transcript(self, transcript: str) -> Tuple[FollowupEmail, str]:
        """Follow-up email for an arbitrary transcript and its provider."""
        email = await self.summary_service.generate_followup_email(transcript)
        if email:
            return email, "openai"
        return generate_followup_email(transcript), "rules"
