"""
Payload field helpers shared by job handlers.
"""

from typing import Any
from uuid import UUID

from backoffice.v1.infra.jobs.errors import InvalidPayloadError


def require_str(payload: dict[str, Any], field: str) -> str:
    value = payload.get(field)
    if value is None or (isinstance(value, str) and not value.strip()):
        raise InvalidPayloadError(f"{field} is required in payload")
    return str(value)


def require_uuid(payload: dict[str, Any], field: str) -> UUID:
    value = require_str(payload, field)
    try:
        return UUID(value)
    except ValueError:
        raise InvalidPayloadError(f"Invalid {field} format: {value}") from None
