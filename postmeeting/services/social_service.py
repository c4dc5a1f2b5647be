"""
Services for posting follow-up content to LinkedIn and Facebook.

Both services are built around a stored access token; OAuth helpers work
without one so that accounts can be linked in the first place.
"""
import time
from datetime import timedelta
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import httpx

from postmeeting.config import settings
from postmeeting.exceptions import (
    ConfigurationError,
    FacebookAPIError,
    LinkedInAPIError,
    NotConnectedError,
)
from postmeeting.logging_config import get_logger
from postmeeting.rate_limiters import rate_limiters
from postmeeting.schemas import PostableTarget
from postmeeting.services.base import BaseAPIService
from postmeeting.utils import as_list, async_retry, safe_dict_get, utcnow

logger = get_logger(__name__)

LINKEDIN_MAX_CHARS = 2999


def _expiry_from(token: Dict[str, Any]) -> Optional[str]:
    expires_in = token.get("expires_in")
    if not expires_in:
        return None
    return (utcnow() + timedelta(seconds=int(expires_in))).isoformat()


class SocialService(BaseAPIService):
    """Common behavior of the social posting adapters."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        member_id: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(transport)
        self.access_token = access_token
        self.member_id = member_id

    def is_connected(self) -> bool:
        return bool(self.access_token)

    def _require_token(self) -> str:
        if not self.access_token:
            raise NotConnectedError(self.platform)
        return self.access_token

    @staticmethod
    def redirect_uri(platform: str) -> str:
        return f"{settings.app_origin.rstrip('/')}/api/oauth/{platform}/callback"


class LinkedInService(SocialService):
    """Service to publish UGC posts to a LinkedIn member profile or organization page."""

    platform = "linkedin"
    error_class = LinkedInAPIError

    AUTH_URL = "https://www.linkedin.com/oauth/v2/authorization"
    TOKEN_URL = "https://www.linkedin.com/oauth/v2/accessToken"
    API_BASE = "https://api.linkedin.com/v2"
    SCOPE = "openid profile w_member_social email"

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._require_token()}",
            "X-Restli-Protocol-Version": "2.0.0",
        }

    def build_authorization_url(self, state: str) -> str:
        if not settings.is_linkedin_configured:
            raise ConfigurationError("Missing LINKEDIN_CLIENT_ID/LINKEDIN_CLIENT_SECRET")
        params = {
            "response_type": "code",
            "client_id": settings.linkedin_client_id,
            "redirect_uri": self.redirect_uri(self.platform),
            "scope": self.SCOPE,
            "state": state,
        }
        return f"{self.AUTH_URL}?{urlencode(params, quote_via=quote)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for an access token and resolve the member id.

        Returns:
            Dict with access_token, expires_at and member_id
        """
        operation = "exchange_code"
        started = time.time()
        if not settings.is_linkedin_configured:
            raise ConfigurationError("Missing LINKEDIN_CLIENT_ID/LINKEDIN_CLIENT_SECRET")

        try:
            async with self._client() as client:
                response = await client.post(
                    self.TOKEN_URL,
                    data={
                        "grant_type": "authorization_code",
                        "code": code,
                        "redirect_uri": self.redirect_uri(self.platform),
                        "client_id": settings.linkedin_client_id,
                        "client_secret": settings.linkedin_client_secret,
                    },
                )
                response.raise_for_status()
                token = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

        if not token.get("access_token"):
            raise LinkedInAPIError("LinkedIn token exchange failed")
        self._record_success(operation, started)
        self.access_token = token["access_token"]
        return {
            "access_token": self.access_token,
            "expires_at": _expiry_from(token),
            "member_id": await self._resolve_member_id(),
        }

    async def _resolve_member_id(self) -> Optional[str]:
        try:
            async with self._client() as client:
                response = await client.get(f"{self.API_BASE}/userinfo", headers=self._headers())
                response.raise_for_status()
                me = response.json()
        except httpx.HTTPError as e:
            logger.warning("linkedin_member_lookup_failed", error=str(e))
            return None
        member_id = me.get("sub") or me.get("id")
        self.member_id = member_id
        return member_id

    @async_retry()
    async def post_text(self, content: str, org_urn: Optional[str] = None) -> str:
        """
        Publish a text post as the member, or as ``org_urn`` when given.

        Returns:
            The post id reported in the x-restli-id header

        Raises:
            NotConnectedError: If LinkedIn was never linked
        """
        operation = "post_text"
        started = time.time()
        headers = self._headers()

        author = org_urn
        if not author:
            member_id = self.member_id or await self._resolve_member_id()
            if not member_id:
                raise LinkedInAPIError("Unable to resolve LinkedIn member id", status_code=400)
            author = f"urn:li:person:{member_id}"

        payload = {
            "author": author,
            "lifecycleState": "PUBLISHED",
            "specificContent": {
                "com.linkedin.ugc.ShareContent": {
                    "shareCommentary": {"text": content[:LINKEDIN_MAX_CHARS]},
                    "shareMediaCategory": "NONE",
                },
            },
            "visibility": {"com.linkedin.ugc.MemberNetworkVisibility": "PUBLIC"},
        }

        try:
            await rate_limiters.acquire_linkedin_limit()
            async with self._client() as client:
                response = await client.post(f"{self.API_BASE}/ugcPosts", headers=headers, json=payload)
                response.raise_for_status()
                post_id = response.headers.get("x-restli-id") or response.text
                self._record_success(operation, started)
                logger.info("linkedin_post_published", author=author, post_id=post_id)
                return post_id
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

    @async_retry()
    async def list_organizations(self) -> List[PostableTarget]:
        """Organizations the member administers, as postable targets keyed by URN."""
        operation = "list_organizations"
        started = time.time()
        headers = self._headers()
        url = (
            f"{self.API_BASE}/organizationalEntityAcls?q=roleAssignee&role=ADMINISTRATOR&state=APPROVED"
            "&projection=(elements*(organizationalTarget~(id,localizedName)))"
        )

        try:
            await rate_limiters.acquire_linkedin_limit()
            async with self._client() as client:
                response = await client.get(url, headers=headers)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

        self._record_success(operation, started)
        targets = []
        for element in as_list(safe_dict_get(data, "elements")):
            org_id = safe_dict_get(element, "organizationalTarget~", "id")
            urn = f"urn:li:organization:{org_id}" if org_id else element.get("organizationalTarget")
            if urn:
                targets.append(PostableTarget(id=urn, name=safe_dict_get(element, "organizationalTarget~", "localizedName")))
        return targets


class FacebookService(SocialService):
    """Service to publish posts to a Facebook page or the user's own feed."""

    platform = "facebook"
    error_class = FacebookAPIError

    SCOPE = "pages_manage_posts,pages_read_engagement,pages_show_list,pages_manage_metadata"

    @property
    def graph_base(self) -> str:
        return f"https://graph.facebook.com/{settings.facebook_graph_version}"

    def build_authorization_url(self, state: str) -> str:
        if not settings.is_facebook_configured:
            raise ConfigurationError("Missing FACEBOOK_APP_ID/FACEBOOK_APP_SECRET")
        params = {
            "client_id": settings.facebook_app_id,
            "redirect_uri": self.redirect_uri(self.platform),
            "state": state,
            "scope": self.SCOPE,
            "response_type": "code",
        }
        return f"https://www.facebook.com/{settings.facebook_graph_version}/dialog/oauth?{urlencode(params, quote_via=quote)}"

    async def exchange_code(self, code: str) -> Dict[str, Any]:
        """
        Exchange an authorization code for a user access token and resolve the user id.

        Returns:
            Dict with access_token, expires_at and member_id (the Facebook user id)
        """
        operation = "exchange_code"
        started = time.time()
        if not settings.is_facebook_configured:
            raise ConfigurationError("Missing FACEBOOK_APP_ID/FACEBOOK_APP_SECRET")

        try:
            async with self._client() as client:
                response = await client.get(
                    f"{self.graph_base}/oauth/access_token",
                    params={
                        "client_id": settings.facebook_app_id,
                        "redirect_uri": self.redirect_uri(self.platform),
                        "client_secret": settings.facebook_app_secret,
                        "code": code,
                    },
                )
                response.raise_for_status()
                token = response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

        if not token.get("access_token"):
            raise FacebookAPIError("Facebook token exchange failed")
        self._record_success(operation, started)
        self.access_token = token["access_token"]

        user_id = None
        try:
            async with self._client() as client:
                me = await client.get(
                    f"{self.graph_base}/me",
                    params={"fields": "id,name"},
                    headers={"Authorization": f"Bearer {self.access_token}"},
                )
                me.raise_for_status()
                user_id = me.json().get("id")
        except httpx.HTTPError as e:
            logger.warning("facebook_user_lookup_failed", error=str(e))

        return {"access_token": self.access_token, "expires_at": _expiry_from(token), "member_id": user_id}

    @async_retry()
    async def _graph_get(self, path: str, params: Dict[str, str], token: str, operation: str) -> Dict[str, Any]:
        started = time.time()
        try:
            await rate_limiters.acquire_facebook_limit()
            async with self._client() as client:
                response = await client.get(
                    f"{self.graph_base}/{path}",
                    params=params,
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                self._record_success(operation, started)
                return response.json()
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

    async def list_pages(self) -> List[PostableTarget]:
        """Pages the user manages."""
        data = await self._graph_get("me/accounts", {"fields": "id,name,access_token"}, self._require_token(), "list_pages")
        return [
            PostableTarget(id=str(p["id"]), name=p.get("name"))
            for p in as_list(safe_dict_get(data, "data"))
            if isinstance(p, dict) and p.get("id")
        ]

    @async_retry()
    async def _publish(self, path: str, content: str, token: str) -> str:
        operation = "post_text"
        started = time.time()
        try:
            await rate_limiters.acquire_facebook_limit()
            async with self._client() as client:
                response = await client.post(
                    f"{self.graph_base}/{path}",
                    data={"message": content},
                    headers={"Authorization": f"Bearer {token}"},
                )
                response.raise_for_status()
                post_id = str(response.json().get("id", ""))
                self._record_success(operation, started)
                return post_id
        except httpx.HTTPStatusError as e:
            self._handle_http_error(e, operation)
        except httpx.RequestError as e:
            self._handle_transport_error(e, operation)

    async def post_text(self, content: str, page_id: Optional[str] = None) -> str:
        """
        Publish to a page (using the page's own token) or, without a page, to the user's feed.

        Raises:
            NotConnectedError: If Facebook was never linked
            FacebookAPIError: If the page token cannot be resolved or Graph rejects the post
        """
        user_token = self._require_token()
        if page_id:
            page = await self._graph_get(quote(page_id, safe=""), {"fields": "access_token"}, user_token, "page_token")
            page_token = safe_dict_get(page, "access_token")
            if not page_token:
                raise FacebookAPIError("Unable to resolve page access token", status_code=400)
            post_id = await self._publish(f"{quote(page_id, safe='')}/feed", content, page_token)
        else:
            post_id = await self._publish("me/feed", content, user_token)
        logger.info("facebook_post_published", page_id=page_id, post_id=post_id)
        return post_id
