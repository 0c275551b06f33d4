"""
QuickBooks OAuth 2.0 helpers.

The worker only refreshes tokens. The connect and callback endpoints that use
``build_auth_url`` and ``exchange_code_for_tokens`` live in the web app, which
stores the result through ``QuickBooksClient.store_connection``.
"""

import logging
from urllib.parse import urlencode
from uuid import uuid4

import httpx
from pydantic import BaseModel, ConfigDict, Field

from backoffice.config.settings import Settings
from backoffice.v1.infra.jobs.errors import ConfigurationError
from backoffice.v1.quickbooks.errors import QuickBooksAPIError

logger = logging.getLogger(__name__)

AUTH_URL = "https://appcenter.intuit.com/connect/oauth2"
TOKEN_URL = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
DEFAULT_SCOPES = ("com.intuit.quickbooks.accounting",)


class QboTokenResponse(BaseModel):
    """Token endpoint response."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    access_token: str
    refresh_token: str | None = None
    expires_in: int = Field(..., gt=0, description="Access token lifetime in seconds")
    x_refresh_token_expires_in: int | None = None
    token_type: str = "bearer"
    realm_id: str | None = Field(default=None, alias="realmId")


def build_auth_url(
    settings: Settings,
    state: str | None = None,
    scopes: tuple[str, ...] = DEFAULT_SCOPES,
) -> tuple[str, str]:
    """
    Build the Intuit consent URL.

    Returns:
        The URL and the ``state`` value to verify on callback
    """
    if not settings.qbo_client_id or not settings.qbo_redirect_uri:
        raise ConfigurationError("QBO_CLIENT_ID and QBO_REDIRECT_URI must be set")

    resolved_state = state or str(uuid4())
    params = {
        "client_id": settings.qbo_client_id,
        "response_type": "code",
        "scope": " ".join(scopes),
        "redirect_uri": settings.qbo_redirect_uri,
        "state": resolved_state,
    }
    return f"{AUTH_URL}?{urlencode(params)}", resolved_state


async def exchange_code_for_tokens(
    http_client: httpx.AsyncClient, settings: Settings, code: str
) -> QboTokenResponse:
    """Exchange an authorization code for the first token pair."""
    if not settings.qbo_redirect_uri:
        raise ConfigurationError("QBO_REDIRECT_URI must be set")

    return await _request_tokens(
        http_client,
        settings,
        {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": settings.qbo_redirect_uri,
        },
        "QuickBooks token exchange failed",
    )


async def refresh_tokens(
    http_client: httpx.AsyncClient, settings: Settings, refresh_token: str
) -> QboTokenResponse:
    """Obtain a new access token using a refresh token."""
    return await _request_tokens(
        http_client,
        settings,
        {"grant_type": "refresh_token", "refresh_token": refresh_token},
        "QuickBooks token refresh failed",
    )


async def _request_tokens(
    http_client: httpx.AsyncClient,
    settings: Settings,
    form: dict[str, str],
    failure_message: str,
) -> QboTokenResponse:
    if not settings.qbo_client_id or not settings.qbo_client_secret:
        raise ConfigurationError("QBO_CLIENT_ID and QBO_CLIENT_SECRET must be set")

    response = await http_client.post(
        TOKEN_URL,
        data=form,
        auth=httpx.BasicAuth(settings.qbo_client_id, settings.qbo_client_secret),
        headers={"Accept": "application/json"},
        timeout=settings.qbo_http_timeout_s,
    )

    if not response.is_success:
        logger.warning(
            "QuickBooks token request failed",
            extra={
                "grant_type": form["grant_type"],
                "status_code": response.status_code,
            },
        )
        raise QuickBooksAPIError(failure_message, response.status_code, response.text)

    return QboTokenResponse.model_validate(response.json())
