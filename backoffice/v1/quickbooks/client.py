"""
QuickBooks Online API client with encrypted credential management.
"""

import logging
from datetime import datetime, timedelta
from typing import Any

import httpx
from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from backoffice.config.settings import Settings
from backoffice.infra.database import utcnow
from backoffice.v1.infra.jobs.errors import ConfigurationError
from backoffice.v1.quickbooks.crypto import (
    TokenAuthenticationError,
    decrypt_token,
    encrypt_token,
)
from backoffice.v1.quickbooks.errors import (
    CredentialDecryptError,
    CredentialNotFoundError,
    QuickBooksAPIError,
    RemoteContractError,
    TokenRefreshInProgressError,
)
from backoffice.v1.quickbooks.models import QboConnection
from backoffice.v1.quickbooks.oauth import (
    DEFAULT_SCOPES,
    QboTokenResponse,
    refresh_tokens,
)

logger = logging.getLogger(__name__)

# A refresh claim older than this is considered abandoned
REFRESH_LEASE_S = 60


class QuickBooksClient:
    """
    Authenticated access to one or more QuickBooks companies.

    Credentials are read and written in short sessions of their own, so a
    token refresh is committed even when the calling job later rolls back.
    """

    def __init__(
        self,
        settings: Settings,
        session_factory: async_sessionmaker[AsyncSession],
        http_client: httpx.AsyncClient,
    ):
        if not settings.qbo_token_encryption_key:
            raise ConfigurationError("QBO_TOKEN_ENCRYPTION_KEY must be set")
        self.settings = settings
        self.session_factory = session_factory
        self.http_client = http_client
        self._encryption_key = settings.qbo_token_encryption_key

    async def get_connection(self, realm_id: str) -> QboConnection | None:
        async with self.session_factory() as session:
            return await session.scalar(
                select(QboConnection).where(QboConnection.realm_id == realm_id)
            )

    async def store_connection(
        self,
        realm_id: str,
        tokens: QboTokenResponse,
        fallback_refresh_token: str | None = None,
    ) -> QboConnection:
        """
        Encrypt and upsert the credential for ``realm_id``.

        QuickBooks may omit the refresh token on refresh; the previous one is
        kept in that case.
        """
        refresh_token = tokens.refresh_token or fallback_refresh_token
        if not refresh_token:
            raise ValueError("Token response has no refresh token")

        now = utcnow()
        values = {
            "access_token_enc": encrypt_token(tokens.access_token, self._encryption_key),
            "refresh_token_enc": encrypt_token(refresh_token, self._encryption_key),
            "expires_at": now + timedelta(seconds=tokens.expires_in),
            "refresh_token_expires_at": (
                now + timedelta(seconds=tokens.x_refresh_token_expires_in)
                if tokens.x_refresh_token_expires_in
                else None
            ),
            "scope": " ".join(DEFAULT_SCOPES),
            "refresh_claimed_at": None,
            "updated_at": now,
        }

        async with self.session_factory() as session:
            connection = await session.scalar(
                select(QboConnection).where(QboConnection.realm_id == realm_id)
            )
            if connection is None:
                connection = QboConnection(realm_id=realm_id, created_at=now, **values)
                session.add(connection)
            else:
                for field, value in values.items():
                    setattr(connection, field, value)
            await session.commit()

        logger.info(
            "QuickBooks connection stored",
            extra={"realm_id": realm_id, "expires_at": values["expires_at"].isoformat()},
        )
        return connection

    async def get_access_token(self, realm_id: str) -> str:
        """
        Return a usable access token, refreshing it when close to expiry.

        Raises:
            CredentialNotFoundError: No connection for ``realm_id``
            CredentialDecryptError: Stored tokens cannot be decrypted
            TokenRefreshInProgressError: Another worker is refreshing
            QuickBooksAPIError: The token endpoint rejected the refresh
        """
        connection = await self.get_connection(realm_id)
        if connection is None:
            raise CredentialNotFoundError(realm_id)

        if self._is_expiring(connection.expires_at):
            connection = await self._refresh(connection)

        return self._decrypt(connection.access_token_enc)

    async def fetch_entity(
        self, realm_id: str, entity: str, entity_id: str
    ) -> dict[str, Any]:
        """Read one entity, for callers outside the job handlers such as reconciliation."""
        return await self._request(
            "GET", realm_id, f"{entity.lower()}/{entity_id}"
        )

    async def create_entity(
        self, realm_id: str, entity: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return await self._request("POST", realm_id, entity.lower(), payload)

    async def create_customer(
        self, realm_id: str, payload: dict[str, Any]
    ) -> dict[str, Any]:
        return await self.create_entity(realm_id, "customer", payload)

    async def _request(
        self,
        method: str,
        realm_id: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        access_token = await self.get_access_token(realm_id)
        url = f"{self.settings.qbo_api_base_url}/v3/company/{realm_id}/{path}"

        response = await self.http_client.request(
            method,
            url,
            params={"minorversion": self.settings.qbo_api_minor_version},
            headers={
                "Authorization": f"Bearer {access_token}",
                "Accept": "application/json",
            },
            json=payload,
            timeout=self.settings.qbo_http_timeout_s,
        )

        if not response.is_success:
            logger.warning(
                "QuickBooks API request failed",
                extra={
                    "realm_id": realm_id,
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                },
            )
            raise QuickBooksAPIError(
                "QuickBooks API error", response.status_code, response.text
            )

        try:
            body = response.json()
        except ValueError as e:
            raise RemoteContractError("QuickBooks response is not JSON") from e
        if not isinstance(body, dict):
            raise RemoteContractError("QuickBooks response is not a JSON object")
        return body

    async def _refresh(self, connection: QboConnection) -> QboConnection:
        """
        Refresh the token pair under a refresh lease.

        The lease is a conditional update keyed on the ``expires_at`` we read,
        so only one worker refreshes a given token. A worker that loses the
        race re-reads the row and uses the winner's token if it is ready.
        """
        realm_id = connection.realm_id
        claimed_at = utcnow()
        stale_before = claimed_at - timedelta(seconds=REFRESH_LEASE_S)

        async with self.session_factory() as session:
            result = await session.execute(
                update(QboConnection)
                .where(
                    QboConnection.realm_id == realm_id,
                    QboConnection.expires_at == connection.expires_at,
                    or_(
                        QboConnection.refresh_claimed_at.is_(None),
                        QboConnection.refresh_claimed_at < stale_before,
                    ),
                )
                .values(refresh_claimed_at=claimed_at)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

        if result.rowcount == 0:
            current = await self.get_connection(realm_id)
            if current is None:
                raise CredentialNotFoundError(realm_id)
            if not self._is_expiring(current.expires_at):
                return current
            raise TokenRefreshInProgressError(
                f"Token refresh for realm {realm_id} is in progress elsewhere"
            )

        logger.info("Refreshing QuickBooks access token", extra={"realm_id": realm_id})
        try:
            refresh_token = self._decrypt(connection.refresh_token_enc)
            tokens = await refresh_tokens(self.http_client, self.settings, refresh_token)
        except Exception:
            await self._release_refresh_claim(realm_id, claimed_at)
            raise

        return await self.store_connection(
            realm_id, tokens, fallback_refresh_token=refresh_token
        )

    async def _release_refresh_claim(self, realm_id: str, claimed_at: datetime) -> None:
        async with self.session_factory() as session:
            await session.execute(
                update(QboConnection)
                .where(
                    QboConnection.realm_id == realm_id,
                    QboConnection.refresh_claimed_at == claimed_at,
                )
                .values(refresh_claimed_at=None)
                .execution_options(synchronize_session=False)
            )
            await session.commit()

    def _is_expiring(self, expires_at: datetime) -> bool:
        remaining = expires_at - utcnow()
        return remaining <= timedelta(seconds=self.settings.qbo_token_expiry_buffer_s)

    def _decrypt(self, blob: str) -> str:
        try:
            return decrypt_token(blob, self._encryption_key)
        except TokenAuthenticationError as e:
            raise CredentialDecryptError(
                "Stored QuickBooks token could not be decrypted"
            ) from e
