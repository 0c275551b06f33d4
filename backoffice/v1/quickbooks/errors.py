"""
QuickBooks integration errors.

Retryable errors derive from ``JobError``; the rest derive from
``NonRetryableJobError`` so the worker dead-letters them immediately.
"""

from backoffice.v1.infra.jobs.errors import JobError, NonRetryableJobError


class QuickBooksAPIError(JobError):
    """Non-2xx response from QuickBooks or its OAuth endpoint."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        self.status_code = status_code
        self.body = body
        super().__init__(f"{message}: {status_code} {body}".rstrip())


class TokenRefreshInProgressError(JobError):
    """Another worker holds the refresh lease for this connection."""


class CredentialNotFoundError(NonRetryableJobError):
    def __init__(self, realm_id: str):
        self.realm_id = realm_id
        super().__init__(f"QuickBooks connection not found for realm {realm_id}")


class CredentialDecryptError(NonRetryableJobError):
    """Stored token could not be decrypted with the configured key."""


class RemoteContractError(NonRetryableJobError):
    """QuickBooks answered 2xx with a body missing required fields."""
