"""
Tests for the HTTP API.

The TestClient runs the app on its own event loop, so data is seeded through
async fixtures beforehand and results are checked through further requests.
"""
from datetime import timedelta
from unittest.mock import AsyncMock, Mock
from urllib.parse import parse_qs, urlparse

import pytest

from postmeeting.config import settings
from postmeeting.schemas import FollowupEmail, GeneratedContent, MediaStatus, Meeting, Post
from postmeeting.utils import utcnow

from tests.conftest import make_event

MEETING_ID = "acct@example.com:primary:done"


@pytest.fixture
async def upcoming_event(store):
    event = make_event()
    await store.save_event(event)
    await store.save_event(make_event("acct@example.com:primary:past", start_offset=timedelta(hours=-3)))
    return event


@pytest.fixture
async def finished_meeting(store):
    meeting = Meeting(
        id=MEETING_ID,
        event_id=MEETING_ID,
        title="Quarterly planning",
        start=utcnow() - timedelta(hours=2),
        transcript="Quarterly planning. Revenue grew. Hiring continues.",
        media=MediaStatus(bot_id="bot-1", has_recording=True, has_transcript=True),
    )
    await store.upsert_meeting(meeting)
    await store.create_content(GeneratedContent(
        meeting_id=MEETING_ID,
        followup_email=FollowupEmail(subject="Follow-up on Quarterly planning", body="Hi there"),
        posts=[
            Post(id="p1", platform="linkedin", content="LinkedIn draft"),
            Post(id="p2", platform="facebook", content="Facebook draft"),
        ],
    ))
    return meeting


@pytest.mark.unit
class TestHealthAndState:
    """Test health, metrics and reconcile state endpoints."""

    def test_health(self, test_client):
        """Test that health endpoint returns 200."""
        response = test_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["database"] == "connected"

    def test_metrics(self, test_client):
        """Test that metrics are exposed in Prometheus text format."""
        response = test_client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "reconcile_cycles_total" in response.text

    def test_state_before_any_cycle(self, test_client):
        """Test that state reports no cycle before the first run."""
        response = test_client.get("/api/state")

        assert response.json() == {"refresh_token": 0, "running": False, "last_cycle": None}

    def test_manual_reconcile(self, test_client):
        """Test that a manual reconcile runs a cycle and reports its stats."""
        response = test_client.post("/api/reconcile")

        assert response.status_code == 200
        assert response.json()["status"] == "success"
        assert test_client.get("/api/state").json()["last_cycle"]["status"] == "success"


@pytest.mark.unit
class TestEventsAndNotetaker:
    """Test calendar event listing and notetaker toggling."""

    def test_only_upcoming_events_are_listed(self, test_client, upcoming_event):
        """Test that only events that have not ended are listed."""
        response = test_client.get("/api/events")

        assert response.status_code == 200
        assert [e["id"] for e in response.json()] == [upcoming_event.id]

    def test_enable_notetaker(self, test_client, upcoming_event, fake_recall):
        """Test that enabling the notetaker schedules a bot."""
        response = test_client.post(f"/api/events/{upcoming_event.id}/notetaker", json={"enabled": True})

        assert response.status_code == 200
        data = response.json()
        assert data["result"]["status"] == "created"
        assert data["event"]["wants_notetaker"] is True
        assert data["event"]["recall_bot_id"] == "bot-1"
        assert [b["bot_id"] for b in test_client.get("/api/recall/tracked").json()] == ["bot-1"]
        assert len(fake_recall.created) == 1

    def test_disable_notetaker(self, test_client, upcoming_event, fake_recall):
        """Test that disabling the notetaker releases the bot."""
        test_client.post(f"/api/events/{upcoming_event.id}/notetaker", json={"enabled": True})
        response = test_client.post(f"/api/events/{upcoming_event.id}/notetaker", json={"enabled": False})

        assert response.json()["event"]["recall_bot_id"] is None
        assert fake_recall.deleted == ["bot-1"]
        assert test_client.get("/api/recall/tracked").json() == []

    def test_unknown_event(self, test_client):
        """Test that toggling an unknown event returns 404."""
        response = test_client.post("/api/events/nope/notetaker", json={"enabled": True})

        assert response.status_code == 404
        assert "nope" in response.json()["error"]


@pytest.mark.unit
class TestMeetingsAndContent:
    """Test past meeting and generated content endpoints."""

    def test_list_and_get(self, test_client, finished_meeting):
        """Test that finalized meetings can be listed and fetched."""
        meetings = test_client.get("/api/meetings").json()
        assert [m["id"] for m in meetings] == [MEETING_ID]

        meeting = test_client.get(f"/api/meetings/{MEETING_ID}").json()
        assert meeting["transcript"].startswith("Quarterly planning")

        index = test_client.get("/api/meetings/index").json()
        assert index[0]["transcript_stored"] is True

    def test_unknown_meeting(self, test_client):
        """Test that an unknown meeting returns 404."""
        assert test_client.get("/api/meetings/missing").status_code == 404
        assert test_client.get("/api/meetings/missing/content").status_code == 404

    def test_edit_draft_and_mark_posted(self, test_client, finished_meeting):
        """Test that a draft can be edited and marked as posted."""
        edited = test_client.put(f"/api/meetings/{MEETING_ID}/content/linkedin", json={"content": "Edited"})
        assert edited.status_code == 200

        posted = test_client.post(f"/api/meetings/{MEETING_ID}/content/linkedin/posted").json()
        linkedin = [p for p in posted["posts"] if p["platform"] == "linkedin"]
        assert len(linkedin) == 1
        assert linkedin[0]["content"] == "Edited"
        assert linkedin[0]["posted_at"] is not None

    def test_unknown_platform(self, test_client, finished_meeting):
        """Test that an unsupported platform is rejected."""
        response = test_client.put(f"/api/meetings/{MEETING_ID}/content/myspace", json={"content": "x"})
        assert response.status_code == 422

    def test_regenerate(self, test_client, finished_meeting):
        """Test that content can be regenerated for a meeting."""
        response = test_client.post(f"/api/meetings/{MEETING_ID}/content")

        assert response.status_code == 200
        data = response.json()
        assert data["provider"] == "rules"
        assert data["followup_email"]["subject"] == "Follow-up on Quarterly planning"
        assert sorted(p["platform"] for p in data["posts"]) == ["facebook", "linkedin"]

    def test_publish_to_configured_organization(self, test_client, services, finished_meeting):
        """Test that LinkedIn posts go to the configured organization."""
        linkedin = Mock()
        linkedin.post_text = AsyncMock(return_value="urn:li:share:42")
        services.social = AsyncMock(return_value=linkedin)
        test_client.put("/api/settings", json={
            "linkedin_target": "organization",
            "linkedin_org_urn": "urn:li:organization:7",
        })

        response = test_client.post(f"/api/meetings/{MEETING_ID}/content/linkedin/publish", json={})

        assert response.status_code == 200
        linkedin.post_text.assert_awaited_once_with("LinkedIn draft", org_urn="urn:li:organization:7")
        post = [p for p in response.json()["posts"] if p["platform"] == "linkedin"][0]
        assert post["external_id"] == "urn:li:share:42"
        assert post["posted_at"] is not None

    def test_publish_to_page_from_request(self, test_client, services, finished_meeting):
        """Test that a Facebook page in the request overrides settings."""
        facebook = Mock()
        facebook.post_text = AsyncMock(return_value="123_456")
        services.social = AsyncMock(return_value=facebook)

        response = test_client.post(
            f"/api/meetings/{MEETING_ID}/content/facebook/publish",
            json={"content": "Final text", "target_id": "999"},
        )

        assert response.status_code == 200
        facebook.post_text.assert_awaited_once_with("Final text", page_id="999")

    def test_publish_nothing(self, test_client, finished_meeting):
        """Test that publishing an empty draft is rejected."""
        response = test_client.post(f"/api/meetings/{MEETING_ID}/content/linkedin/publish", json={"content": "  "})

        assert response.status_code == 400
        assert response.json() == {"error": "Nothing to publish"}

    def test_publish_without_linked_account(self, test_client, finished_meeting):
        """Test that publishing without a linked account is rejected."""
        response = test_client.post(f"/api/meetings/{MEETING_ID}/content/linkedin/publish", json={})

        assert response.status_code == 401
        assert response.json() == {"error": "linkedin not connected"}


@pytest.mark.unit
class TestSettingsAndAutomations:
    """Test settings and automation endpoints."""

    def test_defaults(self, test_client):
        """Test that default settings are returned when none are saved."""
        data = test_client.get("/api/settings").json()

        assert data["minutes_before_join"] == 5
        assert data["poll_seconds"] == 60
        assert data["recall_region"] == "us-east-1"

    def test_save(self, test_client):
        """Test that saved settings are returned on the next read."""
        response = test_client.put("/api/settings", json={"minutes_before_join": 2, "window_days": 10})

        assert response.status_code == 200
        assert test_client.get("/api/settings").json()["window_days"] == 10

    def test_poll_floor(self, test_client):
        """Test that a poll interval below the floor is rejected."""
        assert test_client.put("/api/settings", json={"poll_seconds": 5}).status_code == 422

    def test_automations(self, test_client):
        """Test that automations are replaced as a whole."""
        body = [{"id": "a1", "platform": "linkedin", "name": "Recap", "template": "{{topic}} {{cta}}"}]

        assert test_client.put("/api/automations", json=body).status_code == 200
        automations = test_client.get("/api/automations").json()
        assert automations[0]["template"] == "{{topic}} {{cta}}"
        assert automations[0]["enabled"] is True


@pytest.mark.unit
class TestAIHelpers:
    """Test template and email helper endpoints."""

    def test_template_without_ai(self, test_client):
        """Test that templates fall back to rules without an AI key."""
        response = test_client.post(
            "/api/ai/template",
            json={"prompt": "professional tone with 2 hashtags", "platform": "linkedin"},
        )

        data = response.json()
        assert data["provider"] == "rules"
        assert "{{topic}}" in data["template"]
        assert "#Business #Insights" in data["template"]

    def test_email_without_ai(self, test_client):
        """Test that emails fall back to rules without an AI key."""
        response = test_client.post("/api/ai/email", json={"transcript": "Pricing review. Contract next week."})

        data = response.json()
        assert data["provider"] == "rules"
        assert data["subject"] == "Follow-up on Pricing review"
        assert "• Contract next week" in data["body"]


@pytest.mark.unit
class TestOAuthAndAccounts:
    """Test OAuth flows and linked account endpoints."""

    def test_social_status(self, test_client):
        """Test that social connection status is reported per platform."""
        assert test_client.get("/api/social/status").json() == {
            "linkedin_connected": False,
            "facebook_connected": False,
        }

    def test_unlink(self, test_client):
        """Test that a social account can be unlinked."""
        response = test_client.post("/api/social/facebook/unlink")

        assert response.status_code == 200
        assert response.json()["facebook_connected"] is False

    def test_google_start_requires_configuration(self, test_client, monkeypatch):
        """Test that Google OAuth start fails without client credentials."""
        monkeypatch.setattr(settings, "google_client_id", None)

        response = test_client.get("/api/oauth/google/start", follow_redirects=False)

        assert response.status_code == 503

    def test_callback_rejects_unknown_state(self, test_client):
        """Test that a callback with a forged state is rejected."""
        response = test_client.get("/api/oauth/google/callback?code=abc&state=forged")

        assert response.status_code == 400
        assert response.json() == {"error": "Invalid OAuth state"}

    def test_callback_with_provider_error(self, test_client):
        """Test that a provider error redirects back to the app."""
        response = test_client.get("/api/oauth/linkedin/callback?error=access_denied", follow_redirects=False)

        assert response.status_code == 307
        assert response.headers["location"].endswith("/?error=access_denied")

    def test_provider_error_is_encoded_in_redirect(self, test_client):
        """Test that an untrusted provider error cannot add query parameters to the redirect."""
        response = test_client.get(
            "/api/oauth/facebook/callback", params={"error": "access denied&x=1"}, follow_redirects=False,
        )

        location = urlparse(response.headers["location"])
        assert response.status_code == 307
        assert parse_qs(location.query) == {"error": ["access denied&x=1"]}

    def test_google_link_flow(self, test_client, services, monkeypatch):
        """Test the Google account linking flow end to end."""
        monkeypatch.setattr(settings, "google_client_id", "client-id")
        monkeypatch.setattr(settings, "google_client_secret", "client-secret")
        services.google.exchange_code = AsyncMock(return_value={
            "access_token": "at", "refresh_token": "rt", "expires_in": 3600,
        })
        services.google.get_userinfo = AsyncMock(return_value={"email": "me@example.com", "name": "Me"})

        start = test_client.get("/api/oauth/google/start", follow_redirects=False)
        assert start.status_code == 307
        location = start.headers["location"]
        assert location.startswith("https://accounts.google.com/")
        state = parse_qs(urlparse(location).query)["state"][0]

        callback = test_client.get(f"/api/oauth/google/callback?code=abc&state={state}", follow_redirects=False)

        assert callback.status_code == 307
        assert callback.headers["location"].endswith("/?connected=google")
        services.google.exchange_code.assert_awaited_once_with("abc")
        accounts = test_client.get("/api/google/accounts").json()
        assert accounts == [{"id": "me@example.com", "email": "me@example.com", "display_name": "Me"}]

    def test_unlink_google_revokes(self, test_client, services, monkeypatch):
        """Test that unlinking a Google account revokes its token."""
        monkeypatch.setattr(settings, "google_client_id", "client-id")
        monkeypatch.setattr(settings, "google_client_secret", "client-secret")
        services.google.exchange_code = AsyncMock(return_value={"access_token": "at", "refresh_token": "rt"})
        services.google.get_userinfo = AsyncMock(return_value={"email": "me@example.com"})
        services.google.revoke = AsyncMock()
        start = test_client.get("/api/oauth/google/start", follow_redirects=False)
        state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
        test_client.get(f"/api/oauth/google/callback?code=abc&state={state}", follow_redirects=False)

        response = test_client.delete("/api/google/accounts/me@example.com")

        assert response.status_code == 204
        services.google.revoke.assert_awaited_once_with("rt")
        assert test_client.get("/api/google/accounts").json() == []
        assert test_client.delete("/api/google/accounts/me@example.com").status_code == 404
