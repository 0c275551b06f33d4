"""
Job handlers that push local customers and projects to QuickBooks Online.

Both handlers are idempotent: an entity that already carries a QuickBooks
reference is skipped, so a job re-run after a lost acknowledgement does not
create a second remote record.
"""

import logging
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.infra.database import utcnow
from backoffice.v1.crm.models import Customer, Project
from backoffice.v1.infra.jobs.errors import JobError
from backoffice.v1.infra.jobs.payloads import require_str, require_uuid
from backoffice.v1.quickbooks.client import QuickBooksClient
from backoffice.v1.quickbooks.errors import RemoteContractError
from backoffice.v1.quickbooks.models import QboEntityMap

logger = logging.getLogger(__name__)


def build_address(
    street: str | None, city: str | None, state: str | None, zip_code: str | None
) -> dict[str, str] | None:
    """Build a QuickBooks address block, or None when every part is empty."""
    address = {
        "Line1": street,
        "City": city,
        "CountrySubDivisionCode": state,
        "PostalCode": zip_code,
    }
    address = {key: value for key, value in address.items() if value}
    return address or None


def build_customer_payload(customer: Customer) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "DisplayName": customer.name,
        "CompanyName": customer.name,
    }
    if customer.email:
        payload["PrimaryEmailAddr"] = {"Address": customer.email}
    if customer.phone:
        payload["PrimaryPhone"] = {"FreeFormNumber": customer.phone}

    bill_addr = build_address(
        customer.billing_street,
        customer.billing_city,
        customer.billing_state,
        customer.billing_zip,
    )
    if bill_addr:
        payload["BillAddr"] = bill_addr

    ship_addr = build_address(
        customer.service_street,
        customer.service_city,
        customer.service_state,
        customer.service_zip,
    )
    if ship_addr:
        payload["ShipAddr"] = ship_addr

    return payload


def build_project_payload(project: Project, parent_qbo_id: str) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "DisplayName": project.name,
        "Job": True,
        "ParentRef": {"value": parent_qbo_id},
    }
    job_addr = build_address(
        project.job_street, project.job_city, project.job_state, project.job_zip
    )
    if job_addr:
        payload["ShipAddr"] = job_addr
    return payload


def extract_remote_customer(response: dict[str, Any], label: str) -> tuple[str, str | None]:
    """Pull ``(Id, SyncToken)`` out of a QuickBooks Customer response."""
    remote = response.get("Customer")
    if not isinstance(remote, dict) or not remote.get("Id"):
        raise RemoteContractError(f"QuickBooks {label} response missing Id")
    sync_token = remote.get("SyncToken")
    return str(remote["Id"]), str(sync_token) if sync_token is not None else None


async def upsert_entity_map(
    session: AsyncSession,
    entity_type: str,
    local_table: str,
    local_id: UUID,
    qbo_id: str,
    sync_token: str | None,
    synced_at: datetime,
) -> QboEntityMap:
    """Insert or update the mapping row for ``(entity_type, local_id)``."""
    mapping = await session.scalar(
        select(QboEntityMap).where(
            QboEntityMap.entity_type == entity_type,
            QboEntityMap.local_id == local_id,
        )
    )
    if mapping is None:
        mapping = QboEntityMap(
            entity_type=entity_type,
            local_table=local_table,
            local_id=local_id,
            created_at=synced_at,
        )
        session.add(mapping)

    mapping.qbo_id = qbo_id
    mapping.qbo_sync_token = sync_token
    mapping.last_synced_at = synced_at
    mapping.updated_at = synced_at
    await session.flush()
    return mapping


async def push_customer(
    session: AsyncSession,
    client: QuickBooksClient,
    realm_id: str,
    customer: Customer,
) -> str:
    """Create ``customer`` in QuickBooks and record the reference locally."""
    response = await client.create_customer(realm_id, build_customer_payload(customer))
    qbo_id, sync_token = extract_remote_customer(response, "customer")

    synced_at = utcnow()
    customer.qbo_customer_ref = qbo_id
    customer.qbo_sync_token = sync_token
    customer.qbo_last_synced_at = synced_at
    customer.updated_at = synced_at

    await upsert_entity_map(
        session, "Customer", "customers", customer.id, qbo_id, sync_token, synced_at
    )

    logger.info(
        "Customer pushed to QuickBooks",
        extra={"customer_id": str(customer.id), "realm_id": realm_id, "qbo_id": qbo_id},
    )
    return qbo_id


async def ensure_customer(
    session: AsyncSession,
    client: QuickBooksClient,
    realm_id: str,
    customer_id: UUID,
) -> str:
    """Return the customer's QuickBooks id, creating the remote record if needed."""
    customer = await session.get(Customer, customer_id)
    if customer is None:
        raise JobError(f"Customer not found for QuickBooks sync: {customer_id}")

    if customer.qbo_customer_ref:
        return customer.qbo_customer_ref

    return await push_customer(session, client, realm_id, customer)


class SyncCustomerHandler:
    """
    Push a customer to QuickBooks.

    Payload expected:
    {
        "realm_id": "QuickBooks company id",
        "customer_id": "uuid-string"
    }
    """

    def __init__(self, client: QuickBooksClient):
        self.client = client

    async def handle(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        realm_id = require_str(payload, "realm_id")
        customer_id = require_uuid(payload, "customer_id")

        # Surface credential problems before touching local state
        await self.client.get_access_token(realm_id)

        customer = await session.get(Customer, customer_id)
        if customer is None:
            raise JobError(f"Customer not found for QuickBooks sync: {customer_id}")

        if customer.qbo_customer_ref:
            logger.info(
                "Customer already synced, skipping",
                extra={"customer_id": str(customer_id), "qbo_id": customer.qbo_customer_ref},
            )
            return {"status": "skipped", "qbo_id": customer.qbo_customer_ref}

        qbo_id = await push_customer(session, self.client, realm_id, customer)
        return {"status": "completed", "qbo_id": qbo_id}


class SyncProjectHandler:
    """
    Push a project to QuickBooks as a sub-customer of its customer.

    Payload expected:
    {
        "realm_id": "QuickBooks company id",
        "project_id": "uuid-string"
    }
    """

    def __init__(self, client: QuickBooksClient):
        self.client = client

    async def handle(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        realm_id = require_str(payload, "realm_id")
        project_id = require_uuid(payload, "project_id")

        await self.client.get_access_token(realm_id)

        project = await session.get(Project, project_id)
        if project is None:
            raise JobError(f"Project not found for QuickBooks sync: {project_id}")

        if project.qbo_job_ref:
            logger.info(
                "Project already synced, skipping",
                extra={"project_id": str(project_id), "qbo_id": project.qbo_job_ref},
            )
            return {"status": "skipped", "qbo_id": project.qbo_job_ref}

        parent_id = await ensure_customer(
            session, self.client, realm_id, project.customer_id
        )
        # The remote customer exists now; keep its reference if the project create fails
        await session.commit()

        response = await self.client.create_customer(
            realm_id, build_project_payload(project, parent_id)
        )
        qbo_id, sync_token = extract_remote_customer(response, "job")

        synced_at = utcnow()
        project.qbo_job_ref = qbo_id
        project.qbo_sync_token = sync_token
        project.qbo_last_synced_at = synced_at
        project.updated_at = synced_at

        await upsert_entity_map(
            session, "Job", "projects", project.id, qbo_id, sync_token, synced_at
        )

        logger.info(
            "Project pushed to QuickBooks",
            extra={
                "project_id": str(project_id),
                "realm_id": realm_id,
                "qbo_id": qbo_id,
                "parent_qbo_id": parent_id,
            },
        )
        return {"status": "completed", "qbo_id": qbo_id, "parent_qbo_id": parent_id}
