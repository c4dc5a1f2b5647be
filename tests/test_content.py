"""
Tests for the summarizer, template engine and content generation.
"""
from unittest.mock import AsyncMock, Mock

import pytest

from postmeeting.schemas import Automation, FollowupEmail, Meeting, TranscriptSummary
from postmeeting.services.content import (
    CALL_TO_ACTION,
    ContentService,
    default_template,
    generate_followup_email,
    generate_post,
    pick_template,
    render_template,
    summarize,
    template_from_prompt,
)
from postmeeting.utils import utcnow

TRANSCRIPT = "We reviewed the roadmap. Hiring is on track. Budget approved! Launch in May? Extra detail."


@pytest.mark.unit
class TestSummarize:
    """Topic and key point extraction."""

    def test_first_sentence_is_topic_next_three_are_key_points(self):
        """Test that the first sentence is the topic and the next three are key points."""
        summary = summarize(TRANSCRIPT)

        assert summary.topic == "We reviewed the roadmap"
        assert summary.key_points == ["Hiring is on track", "Budget approved", "Launch in May"]
        assert summary.cta == CALL_TO_ACTION

    def test_text_without_sentence_characters_is_the_topic(self):
        """Test that text without sentence breaks becomes the topic."""
        summary = summarize("just chatting about things")
        assert summary.topic == "just chatting about things"
        assert summary.key_points == []

    def test_empty_transcript(self):
        """Test that an empty transcript gives an empty summary."""
        summary = summarize("")
        assert summary.topic == ""
        assert summary.key_points == []

    def test_topic_is_capped(self):
        """Test that the topic is truncated."""
        summary = summarize("x" * 300 + ". second.")
        assert len(summary.topic) == 120

    def test_fewer_than_three_key_points(self):
        """Test that short transcripts give fewer key points."""
        summary = summarize("Topic. Only one point.")
        assert summary.key_points == ["Only one point"]


@pytest.mark.unit
class TestRenderTemplate:
    """Placeholder substitution."""

    def test_all_placeholders(self):
        """Test that every placeholder is filled."""
        summary = TranscriptSummary(topic="Roadmap", key_points=["A", "B"], cta="Call me")
        text = render_template("{{topic}}: {{key_points}} ({{cta}})", summary)
        assert text == "Roadmap: • A • B (Call me)"

    def test_placeholders_are_case_insensitive_and_allow_spaces(self):
        """Test placeholder matching ignores case and inner spaces."""
        summary = TranscriptSummary(topic="Roadmap", cta="Call me")
        assert render_template("{{ TOPIC }} / {{Cta}}", summary) == "Roadmap / Call me"

    def test_unknown_tokens_are_left_alone(self):
        """Test that unknown tokens are not replaced."""
        summary = TranscriptSummary(topic="Roadmap")
        assert render_template("{{name}} {{topic}}", summary) == "{{name}} Roadmap"

    def test_backslashes_in_values_are_literal(self):
        """Test that backslashes in values are inserted literally."""
        summary = TranscriptSummary(topic=r"C:\new\1")
        assert render_template("{{topic}}", summary) == r"C:\new\1"

    def test_template_without_placeholders_is_unchanged(self):
        """Test that a template without placeholders is returned as is."""
        assert render_template("Plain text", TranscriptSummary(topic="x")) == "Plain text"


@pytest.mark.unit
class TestGeneratePost:
    """Default templates per platform."""

    def test_linkedin_default(self):
        """Test the default LinkedIn post."""
        post = generate_post(TRANSCRIPT, "linkedin")
        assert post == (
            "Takeaways: • Hiring is on track • Budget approved • Launch in May — "
            "DM me if you'd like a walkthrough."
        )

    def test_facebook_default(self):
        """Test the default Facebook post."""
        post = generate_post(TRANSCRIPT, "facebook")
        assert post == "We talked about We reviewed the roadmap — DM me if you'd like a walkthrough."

    def test_unknown_platform_uses_facebook_template(self):
        """Test that unknown platforms use the Facebook template."""
        assert default_template("mastodon") == default_template("facebook")

    def test_custom_template(self):
        """Test that a custom template is rendered."""
        assert generate_post(TRANSCRIPT, "linkedin", "On {{topic}}") == "On We reviewed the roadmap"


@pytest.mark.unit
class TestFollowupEmail:
    """Deterministic follow-up email."""

    def test_subject_and_recap(self):
        """Test the follow-up subject and recap bullets."""
        email = generate_followup_email(TRANSCRIPT)

        assert email.subject == "Follow-up on We reviewed the roadmap"
        assert "• Hiring is on track\n• Budget approved\n• Launch in May" in email.body
        assert "Next steps:" in email.body


@pytest.mark.unit
class TestTemplateFromPrompt:
    """Rule-based template synthesis."""

    def test_professional_linkedin_with_hashtag_count(self):
        """Test a professional LinkedIn template with a hashtag count."""
        template = template_from_prompt("professional tone with 2 hashtags", "linkedin")
        assert template == "Recap: {{topic}} — {{key_points}}. {{cta}} #Business #Insights"

    def test_casual_linkedin_with_emoji(self):
        """Test a casual LinkedIn template with an emoji."""
        template = template_from_prompt("casual, add an emoji", "linkedin")
        assert template == "Great chat about {{topic}} — {{key_points}}. {{cta}} ✨"

    def test_cold_tone_suppresses_linkedin_emoji(self):
        """Test that a cold tone drops the LinkedIn emoji."""
        template = template_from_prompt("cold tone, emoji please", "linkedin")
        assert template.startswith("Recap:")
        assert "✨" not in template

    def test_facebook_always_gets_an_emoji(self):
        """Test that Facebook templates always get an emoji."""
        assert template_from_prompt("short", "facebook") == "{{topic}} — {{key_points}}. {{cta}} 💡"

    def test_named_hashtags_are_topped_up_from_pool(self):
        """Test that named hashtags are topped up from the pool."""
        template = template_from_prompt("use #AI and two hashtags", "facebook")
        assert template.endswith("💡 #AI #Update")

    def test_default_linkedin(self):
        """Test the LinkedIn template for a prompt with no hints."""
        template = template_from_prompt("", "linkedin")
        assert template == "After meeting about {{topic}}, key takeaways: {{key_points}}. {{cta}}"


@pytest.mark.unit
class TestPickTemplate:
    """Automation template selection."""

    def test_first_enabled_automation_for_platform(self):
        """Test that the first enabled automation for a platform wins."""
        automations = [
            Automation(id="1", platform="linkedin", enabled=False, template="disabled {{topic}}"),
            Automation(id="2", platform="facebook", template="fb {{topic}}"),
            Automation(id="3", platform="linkedin", template="li {{topic}}"),
        ]
        assert pick_template(automations, "linkedin") == "li {{topic}}"
        assert pick_template(automations, "facebook") == "fb {{topic}}"

    def test_blank_template_is_ignored(self):
        """Test that blank templates are skipped."""
        assert pick_template([Automation(id="1", platform="linkedin", template="  ")], "linkedin") is None


def _meeting(transcript: str = TRANSCRIPT) -> Meeting:
    return Meeting(id="m1", event_id="m1", title="Planning", start=utcnow(), transcript=transcript)


@pytest.mark.unit
class TestContentService:
    """GeneratedContent assembly."""

    async def test_generate_without_ai(self, content_service):
        """Test content generation with the rule-based generators."""
        automations = [Automation(id="1", platform="linkedin", template="Notes: {{topic}}")]
        content = await content_service.generate(_meeting(), automations, use_ai=True)

        assert content.meeting_id == "m1"
        assert content.provider == "rules"
        assert [p.platform for p in content.posts] == ["linkedin", "facebook"]
        assert content.post_for("linkedin").content == "Notes: We reviewed the roadmap"
        assert content.post_for("facebook").content.startswith("We talked about")
        assert content.followup_email.subject == "Follow-up on We reviewed the roadmap"

    async def test_ai_email_used_when_available(self):
        """Test that the AI email is used when the model returns one."""
        summary_service = Mock()
        summary_service.is_configured = True
        summary_service.summarize_transcript = AsyncMock(return_value=None)
        summary_service.generate_followup_email = AsyncMock(return_value=FollowupEmail(subject="AI", body="Drafted"))
        service = ContentService(summary_service)

        content = await service.generate(_meeting(), [], use_ai=True)

        assert content.provider == "openai"
        assert content.followup_email.subject == "AI"

    async def test_ai_failure_falls_back(self):
        """Test that a failed AI call falls back to the rule-based email."""
        summary_service = Mock()
        summary_service.is_configured = True
        summary_service.summarize_transcript = AsyncMock(return_value=None)
        summary_service.generate_followup_email = AsyncMock(return_value=None)
        service = ContentService(summary_service)

        content = await service.generate(_meeting(), [], use_ai=True)

        assert content.provider == "rules"
        assert content.followup_email.subject.startswith("Follow-up on")

    async def test_ai_not_called_when_disabled(self):
        """Test that the model is not called when AI is off."""
        summary_service = Mock()
        summary_service.is_configured = True
        summary_service.summarize_transcript = AsyncMock(return_value=None)
        summary_service.generate_followup_email = AsyncMock()
        service = ContentService(summary_service)

        await service.generate(_meeting(), [], use_ai=False)

        summary_service.generate_followup_email.assert_not_called()
        summary_service.summarize_transcript.assert_not_called()

    async def test_ai_summary_drives_the_posts(self):
        """Test that the AI summary fills the posts and keeps the fixed call-to-action."""
        summary_service = Mock()
        summary_service.is_configured = True
        summary_service.summarize_transcript = AsyncMock(
            return_value=TranscriptSummary(topic="Q3 roadmap", key_points=["Hiring", "Budget"]),
        )
        summary_service.generate_followup_email = AsyncMock(return_value=None)
        service = ContentService(summary_service)

        content = await service.generate(_meeting(), [], use_ai=True)

        assert content.provider == "openai"
        assert content.post_for("facebook").content == f"We talked about Q3 roadmap — {CALL_TO_ACTION}"
        assert content.post_for("linkedin").content == f"Takeaways: • Hiring • Budget — {CALL_TO_ACTION}"
        assert content.followup_email.subject == "Follow-up on Q3 roadmap"
        summary_service.summarize_transcript.assert_awaited_once_with(TRANSCRIPT)

    async def test_template_for_prompt_falls_back_to_rules(self, content_service):
        """Test that prompt templates fall back to rules without AI."""
        template, provider = await content_service.template_for_prompt("short", "facebook")
        assert provider == "rules"
        assert "{{topic}}" in template
