"""
PostMeeting - API Routes

Calendar, notetaker, meeting, content, settings and social account endpoints.
"""
import secrets
from typing import Dict, List, Optional, Type
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse

from postmeeting.config import settings
from postmeeting.exceptions import DatabaseError, NotFoundError
from postmeeting.logging_config import get_logger
from postmeeting.monitoring import get_metrics
from postmeeting.reconciler import Reconciler
from postmeeting.schemas import (
    AccountInfo,
    AppSettings,
    Automation,
    CalendarEvent,
    CycleStats,
    DraftUpdate,
    EmailRequest,
    EmailResponse,
    GeneratedContent,
    HealthCheck,
    Meeting,
    MeetingIndexEntry,
    NotetakerToggle,
    PostableTarget,
    PublishRequest,
    SocialPlatform,
    SocialStatus,
    StateResponse,
    TemplateRequest,
    TemplateResponse,
    ToggleResponse,
    TrackedBotInfo,
)
from postmeeting.services.content import ContentService
from postmeeting.services.google_calendar import GoogleCalendarService
from postmeeting.services.recall_service import RecallService
from postmeeting.services.scheduler import BotScheduler
from postmeeting.services.social_service import FacebookService, LinkedInService, SocialService
from postmeeting.services.store import MeetingStore
from postmeeting.ticker import Ticker
from postmeeting.utils import utcnow

logger = get_logger(__name__)


# ============================================
# SERVICE CONTAINER
# ============================================

class Services:
    """Long-lived collaborators shared by the routes and the background ticker."""

    def __init__(
        self,
        store: MeetingStore,
        recall: Optional[RecallService] = None,
        content: Optional[ContentService] = None,
        google: Optional[GoogleCalendarService] = None,
    ):
        self.store = store
        self.recall = recall or RecallService()
        self.content = content or ContentService()
        self.google = google or GoogleCalendarService()
        self.scheduler = BotScheduler(store, self.recall)
        self.reconciler = Reconciler(store, self.recall, self.scheduler, self.content, self.google)
        self.ticker = Ticker(self.reconciler)
        self.social_classes: Dict[str, Type[SocialService]] = {
            "linkedin": LinkedInService,
            "facebook": FacebookService,
        }

    async def social(self, platform: str) -> SocialService:
        """Adapter for a social platform, carrying the stored credential if one is linked."""
        service_class = self.social_classes[platform]
        token = await self.store.get_social_token(platform)
        if not token:
            return service_class()
        return service_class(access_token=token["access_token"], member_id=token.get("member_id"))


# ============================================
# CREATE API ROUTER
# ============================================

router = APIRouter()


# ============================================
# DEPENDENCY INJECTION
# ============================================

def get_services(request: Request) -> Services:
    return request.app.state.services


def get_store(services: Services = Depends(get_services)) -> MeetingStore:
    return services.store


def _check_oauth_state(request: Request, key: str, state: Optional[str]) -> None:
    """
    Compare the callback's state with the one stored when the flow started.

    Raises:
        HTTPException: If the state is missing or does not match
    """
    expected = request.session.pop(key, None)
    if not expected or not state or not secrets.compare_digest(expected, state):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid OAuth state"
        )


def _app_redirect(**params: str) -> RedirectResponse:
    return RedirectResponse(url=f"{settings.app_origin.rstrip('/')}/?{urlencode(params)}")


# ============================================
# HEALTH, METRICS AND STATE
# ============================================

@router.get("/health", response_model=HealthCheck)
async def health_check(store: MeetingStore = Depends(get_store)):
    """Health check endpoint for monitoring."""
    try:
        await store.get_settings()
        db_status = "connected"
    except DatabaseError:
        db_status = "disconnected"

    return HealthCheck(
        status="healthy",
        database=db_status,
        timestamp=utcnow().isoformat()
    )


@router.get("/metrics")
async def metrics():
    """Prometheus metrics."""
    return Response(content=get_metrics(), media_type="text/plain; version=0.0.4")


@router.get("/api/state", response_model=StateResponse)
async def get_state(services: Services = Depends(get_services)):
    """Refresh token observers compare to know when meetings changed."""
    return StateResponse(
        refresh_token=services.reconciler.refresh_token,
        running=services.ticker.running,
        last_cycle=services.ticker.last_cycle,
    )


@router.post("/api/reconcile", response_model=Optional[CycleStats])
async def reconcile_now(services: Services = Depends(get_services)):
    """Run one cycle now. Returns null when a cycle was already in flight."""
    return await services.ticker.tick()


# ============================================
# GOOGLE ACCOUNTS AND CALENDAR
# ============================================

@router.get("/api/oauth/google/start")
async def google_oauth_start(request: Request, services: Services = Depends(get_services)):
    """Redirect to Google's consent screen."""
    state = secrets.token_urlsafe(24)
    url = services.google.build_authorization_url(state)
    request.session["google_oauth_state"] = state
    return RedirectResponse(url=url)


@router.get("/api/oauth/google/callback")
async def google_oauth_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    services: Services = Depends(get_services),
):
    """Store the linked account's tokens and schedule a calendar sync."""
    if error:
        return _app_redirect(error=error)
    _check_oauth_state(request, "google_oauth_state", state)
    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing authorization code"
        )

    tokens = await services.google.exchange_code(code)
    profile = await services.google.get_userinfo(tokens["access_token"])
    email = profile.get("email")
    if not email:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Google did not return an email address"
        )

    account = await services.store.save_google_account(email, profile.get("name"), tokens)
    services.ticker.request_sync()
    logger.info("google_account_linked", account_id=account.id)
    return _app_redirect(connected="google")


@router.get("/api/google/accounts", response_model=List[AccountInfo])
async def list_google_accounts(store: MeetingStore = Depends(get_store)):
    return await store.list_google_accounts()


@router.delete("/api/google/accounts/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_google_account(account_id: str, services: Services = Depends(get_services)):
    """Unlink an account and revoke its tokens at Google."""
    tokens = await services.store.delete_google_account(account_id)
    token = tokens.get("refresh_token") or tokens.get("access_token")
    if token:
        await services.google.revoke(token)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/api/events", response_model=List[CalendarEvent])
async def list_upcoming_events(store: MeetingStore = Depends(get_store)):
    """Events that have not ended yet, ordered by start."""
    return await store.list_events(ending_after=utcnow())


@router.post("/api/events/{event_id}/notetaker", response_model=ToggleResponse)
async def toggle_notetaker(
    event_id: str,
    body: NotetakerToggle,
    services: Services = Depends(get_services),
):
    event, result = await services.scheduler.toggle_notetaker(event_id, body.enabled)
    return ToggleResponse(event=event, result=result)


@router.get("/api/recall/tracked", response_model=List[TrackedBotInfo])
async def list_tracked_bots(store: MeetingStore = Depends(get_store)):
    return await store.list_tracked_bots()


# ============================================
# MEETINGS AND CONTENT
# ============================================

@router.get("/api/meetings", response_model=List[Meeting])
async def list_meetings(store: MeetingStore = Depends(get_store)):
    return await store.list_meetings()


@router.get("/api/meetings/index", response_model=List[MeetingIndexEntry])
async def meeting_index(store: MeetingStore = Depends(get_store)):
    return await store.meeting_index()


@router.get("/api/meetings/{meeting_id}", response_model=Meeting)
async def get_meeting(meeting_id: str, store: MeetingStore = Depends(get_store)):
    meeting = await store.get_meeting(meeting_id)
    if meeting is None:
        raise NotFoundError(f"Meeting {meeting_id} not found")
    return meeting


@router.get("/api/meetings/{meeting_id}/content", response_model=GeneratedContent)
async def get_content(meeting_id: str, store: MeetingStore = Depends(get_store)):
    content = await store.get_content(meeting_id)
    if content is None:
        raise NotFoundError(f"No generated content for meeting {meeting_id}")
    return content


@router.post("/api/meetings/{meeting_id}/content", response_model=GeneratedContent)
async def regenerate_content(meeting_id: str, services: Services = Depends(get_services)):
    """Regenerate drafts and the follow-up email, AI-assisted when configured."""
    meeting = await services.store.get_meeting(meeting_id)
    if meeting is None:
        raise NotFoundError(f"Meeting {meeting_id} not found")
    automations = await services.store.list_automations()
    content = await services.content.generate(meeting, automations, use_ai=True)
    return await services.store.replace_content(content)


@router.put("/api/meetings/{meeting_id}/content/{platform}", response_model=GeneratedContent)
async def save_draft(
    meeting_id: str,
    platform: SocialPlatform,
    body: DraftUpdate,
    store: MeetingStore = Depends(get_store),
):
    return await store.update_post(meeting_id, platform, content=body.content)


@router.post("/api/meetings/{meeting_id}/content/{platform}/posted", response_model=GeneratedContent)
async def mark_posted(meeting_id: str, platform: SocialPlatform, store: MeetingStore = Depends(get_store)):
    return await store.update_post(meeting_id, platform, posted_at=utcnow())


@router.post("/api/meetings/{meeting_id}/content/{platform}/publish", response_model=GeneratedContent)
async def publish_post(
    meeting_id: str,
    platform: SocialPlatform,
    body: PublishRequest,
    services: Services = Depends(get_services),
):
    """
    Publish a draft to the configured target and mark it posted.

    The target comes from the request, else from settings (LinkedIn organization
    or Facebook page); without one the post goes to the user's own profile.
    """
    content = await services.store.get_content(meeting_id)
    if content is None:
        raise NotFoundError(f"No generated content for meeting {meeting_id}")
    draft = content.post_for(platform)
    text = body.content if body.content is not None else (draft.content if draft else "")
    if not text.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Nothing to publish"
        )

    app_settings = await services.store.get_settings()
    service = await services.social(platform)
    if platform == "linkedin":
        org_urn = body.target_id
        if org_urn is None and app_settings.linkedin_target == "organization":
            org_urn = app_settings.linkedin_org_urn
        external_id = await service.post_text(text, org_urn=org_urn)
    else:
        page_id = body.target_id
        if page_id is None and app_settings.facebook_target == "page":
            page_id = app_settings.facebook_page_id
        external_id = await service.post_text(text, page_id=page_id)

    logger.info("post_published", meeting_id=meeting_id, platform=platform, external_id=external_id)
    return await services.store.update_post(
        meeting_id,
        platform,
        content=text,
        posted_at=utcnow(),
        external_id=external_id or None,
    )


# ============================================
# SETTINGS AND AUTOMATIONS
# ============================================

@router.get("/api/settings", response_model=AppSettings)
async def get_settings(store: MeetingStore = Depends(get_store)):
    return await store.get_settings()


@router.put("/api/settings", response_model=AppSettings)
async def save_settings(body: AppSettings, services: Services = Depends(get_services)):
    saved = await services.store.save_settings(body)
    # window or cadence may have changed
    services.ticker.request_sync()
    return saved


@router.get("/api/automations", response_model=List[Automation])
async def list_automations(store: MeetingStore = Depends(get_store)):
    return await store.list_automations()


@router.put("/api/automations", response_model=List[Automation])
async def replace_automations(body: List[Automation], store: MeetingStore = Depends(get_store)):
    return await store.replace_automations(body)


# ============================================
# AI HELPERS
# ============================================

@router.post("/api/ai/template", response_model=TemplateResponse)
async def ai_template(body: TemplateRequest, services: Services = Depends(get_services)):
    template, provider = await services.content.template_for_prompt(body.prompt, body.platform)
    return TemplateResponse(template=template, provider=provider)


@router.post("/api/ai/email", response_model=EmailResponse)
async def ai_email(body: EmailRequest, services: Services = Depends(get_services)):
    email, provider = await services.content.email_for_transcript(body.transcript)
    return EmailResponse(subject=email.subject, body=email.body, provider=provider)


# ============================================
# SOCIAL ACCOUNTS
# ============================================

@router.get("/api/oauth/{platform}/start")
async def social_oauth_start(
    platform: SocialPlatform,
    request: Request,
    services: Services = Depends(get_services),
):
    state = secrets.token_urlsafe(24)
    url = services.social_classes[platform]().build_authorization_url(state)
    request.session[f"{platform}_oauth_state"] = state
    return RedirectResponse(url=url)


@router.get("/api/oauth/{platform}/callback")
async def social_oauth_callback(
    platform: SocialPlatform,
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    services: Services = Depends(get_services),
):
    if error:
        return _app_redirect(error=error)
    _check_oauth_state(request, f"{platform}_oauth_state", state)
    if not code:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing authorization code"
        )

    token = await services.social_classes[platform]().exchange_code(code)
    await services.store.save_social_token(
        platform,
        token["access_token"],
        expires_at=token.get("expires_at"),
        member_id=token.get("member_id"),
    )
    return _app_redirect(connected=platform)


@router.post("/api/social/{platform}/unlink", response_model=SocialStatus)
async def social_unlink(platform: SocialPlatform, services: Services = Depends(get_services)):
    await services.store.delete_social_token(platform)
    return await social_status(services)


@router.get("/api/social/status", response_model=SocialStatus)
async def social_status(services: Services = Depends(get_services)):
    linkedin = await services.social("linkedin")
    facebook = await services.social("facebook")
    return SocialStatus(
        linkedin_connected=linkedin.is_connected(),
        facebook_connected=facebook.is_connected(),
    )


@router.get("/api/social/linkedin/orgs", response_model=List[PostableTarget])
async def linkedin_organizations(services: Services = Depends(get_services)):
    service = await services.social("linkedin")
    return await service.list_organizations()


@router.get("/api/social/facebook/pages", response_model=List[PostableTarget])
async def facebook_pages(services: Services = Depends(get_services)):
    service = await services.social("facebook")
    return await service.list_pages()
