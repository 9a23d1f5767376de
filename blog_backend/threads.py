"""
Client for the Threads (Meta) Graph API: listing our own posts and
refreshing the long-lived access token.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import requests

from blog_backend.config import Settings
from blog_backend.errors import ConfigurationError, UpstreamError

logger = logging.getLogger(__name__)

GRAPH_BASE_URL = "https://graph.threads.net"
THREAD_FIELDS = "id,media_type,media_url,permalink,text,timestamp"
REQUEST_TIMEOUT = 15


class ThreadsTokenExpired(UpstreamError):
    """The long-lived token is no longer accepted."""


@dataclass
class TokenRefreshResult:
    access_token: str
    token_type: Optional[str] = None
    expires_in: Optional[int] = None


@dataclass
class ThreadsClient:
    user_id: str
    token: str
    base_url: str = GRAPH_BASE_URL

    def __post_init__(self):
        self.session = requests.Session()

    def _error_message(self, response: requests.Response) -> str:
        try:
            message = response.json().get("error", {}).get("message")
        except ValueError:
            message = None
        return message or response.reason or f"HTTP {response.status_code}"

    def list_threads(self, limit: int = 25, after: Optional[str] = None) -> dict:
        params = {
            "fields": THREAD_FIELDS,
            "access_token": self.token,
            "limit": str(limit),
        }
        if after:
            params["after"] = after
        try:
            response = self.session.get(
                f"{self.base_url}/v1.0/{self.user_id}/threads",
                params=params,
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"Threads API request failed: {exc}") from exc

        if not response.ok:
            message = self._error_message(response)
            if "Session has expired" in message:
                raise ThreadsTokenExpired(
                    "Threads access token has expired. Please reconnect your Threads account.",
                    status_code=response.status_code,
                )
            raise UpstreamError(f"Threads API error: {message}", status_code=response.status_code)
        return response.json()

    def refresh_token(self) -> TokenRefreshResult:
        try:
            response = self.session.get(
                f"{self.base_url}/refresh_access_token",
                params={"grant_type": "th_refresh_token", "access_token": self.token},
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as exc:
            raise UpstreamError(f"Threads token refresh failed: {exc}") from exc

        if not response.ok:
            raise UpstreamError(
                f"Token refresh failed ({response.status_code}): {response.text}",
                status_code=response.status_code,
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise UpstreamError("Invalid JSON response from Threads API") from exc
        if not data.get("access_token"):
            raise UpstreamError("Invalid response: missing access_token")

        logger.info("Refreshed Threads token (expires in %s s)", data.get("expires_in"))
        self.token = data["access_token"]
        return TokenRefreshResult(
            access_token=data["access_token"],
            token_type=data.get("token_type"),
            expires_in=data.get("expires_in"),
        )


def build_threads_client(settings: Settings) -> ThreadsClient:
    if not settings.threads_long_lived_token:
        raise ConfigurationError(
            "Threads integration not configured. Missing THREADS_LONG_LIVED_TOKEN."
        )
    if not settings.threads_user_id:
        raise ConfigurationError("Threads integration not configured. Missing THREADS_USER_ID.")
    return ThreadsClient(user_id=settings.threads_user_id, token=settings.threads_long_lived_token)


def authorize_url(settings: Settings) -> str:
    """Threads OAuth consent URL the admin is redirected to."""
    if not settings.threads_app_id:
        raise ConfigurationError("THREADS_APP_ID not configured")
    redirect_uri = settings.threads_redirect_uri or (
        f"{settings.site_url.rstrip('/')}/api/threads/callback"
    )
    query = urlencode(
        {
            "client_id": settings.threads_app_id,
            "redirect_uri": redirect_uri,
            "scope": "threads_basic,threads_content_publish",
            "response_type": "code",
        }
    )
    return f"https://threads.net/oauth/authorize?{query}"
