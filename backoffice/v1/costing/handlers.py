"""
Job handler that posts labor cost for a completed time entry.
"""

import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from backoffice.infra.database import utcnow
from backoffice.v1.costing.models import (
    CompanySettings,
    CostCode,
    CostType,
    JobCostEntry,
    WorkOrder,
    WorkOrderTimeEntry,
)
from backoffice.v1.crm.models import Employee
from backoffice.v1.infra.jobs.errors import JobError
from backoffice.v1.infra.jobs.payloads import require_uuid

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
QTY_PRECISION = Decimal("0.0001")
SOURCE_TIME_ENTRY = "TIME_ENTRY"


def time_entry_idempotency_key(time_entry_id: UUID) -> str:
    return f"time_entry:{time_entry_id}"


def worked_hours(entry: WorkOrderTimeEntry) -> Decimal:
    """Hours between clock-in and clock-out, less breaks."""
    if entry.clock_out_at is None:
        raise JobError(f"Time entry {entry.id} is not clocked out yet")
    elapsed_s = (entry.clock_out_at - entry.clock_in_at).total_seconds()
    minutes = Decimal(str(elapsed_s)) / 60 - Decimal(entry.break_minutes or 0)
    return minutes / 60


class PostTimeEntryCostHandler:
    """
    Create a labor ``job_cost_entries`` row for a clocked-out time entry.

    Payload expected:
    {
        "time_entry_id": "uuid-string"
    }

    Missing related data raises a retryable error, since the entry may be
    posted before its configuration is complete.
    """

    async def handle(
        self, session: AsyncSession, payload: dict[str, Any]
    ) -> dict[str, Any] | None:
        time_entry_id = require_uuid(payload, "time_entry_id")
        idempotency_key = time_entry_idempotency_key(time_entry_id)

        entry = await session.get(WorkOrderTimeEntry, time_entry_id)
        if entry is None:
            raise JobError(f"Time entry not found: {time_entry_id}")

        existing = await session.scalar(
            select(JobCostEntry.id).where(JobCostEntry.idempotency_key == idempotency_key)
        )
        if existing is not None:
            logger.info(
                "Time entry cost already posted",
                extra={"time_entry_id": str(time_entry_id), "cost_entry_id": str(existing)},
            )
            return {"status": "skipped", "cost_entry_id": str(existing)}

        hours = worked_hours(entry)
        if hours <= 0:
            raise JobError(f"Invalid hours calculated: {hours}")

        employee = await session.get(Employee, entry.tech_user_id)
        if employee is None:
            raise JobError(f"Employee not found: {entry.tech_user_id}")

        company_settings = await session.scalar(select(CompanySettings).limit(1))
        if company_settings is None:
            raise JobError("Settings not found")

        labor_rate = (
            employee.labor_rate
            if employee.labor_rate is not None
            else company_settings.default_labor_rate
        )
        if not labor_rate or labor_rate <= 0:
            raise JobError(f"Invalid labor rate: {labor_rate}")
        labor_rate = Decimal(labor_rate)

        cost_type_id, cost_code_id = await self._resolve_labor_cost_code(
            session, company_settings
        )

        work_order = await session.get(WorkOrder, entry.work_order_id)
        if work_order is None:
            raise JobError(f"Work order not found: {entry.work_order_id}")

        amount = (hours * labor_rate).quantize(CENTS, rounding=ROUND_HALF_UP)
        txn_date = entry.clock_out_at.date()

        cost_entry = JobCostEntry(
            project_id=work_order.project_id,
            work_order_id=work_order.id,
            cost_type_id=cost_type_id,
            cost_code_id=cost_code_id,
            txn_date=txn_date,
            qty=hours.quantize(QTY_PRECISION, rounding=ROUND_HALF_UP),
            unit_cost=labor_rate,
            amount=amount,
            description=f"Labor: {employee.display_name} on {txn_date.isoformat()}",
            source_type=SOURCE_TIME_ENTRY,
            source_id=time_entry_id,
            idempotency_key=idempotency_key,
        )
        session.add(cost_entry)
        await session.flush()

        await session.execute(
            update(WorkOrder)
            .where(WorkOrder.id == work_order.id)
            .values(total_cost=WorkOrder.total_cost + amount, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        logger.info(
            "Time entry cost posted",
            extra={
                "time_entry_id": str(time_entry_id),
                "work_order_id": str(work_order.id),
                "amount": str(amount),
            },
        )
        return {
            "status": "completed",
            "cost_entry_id": str(cost_entry.id),
            "amount": str(amount),
        }

    async def _resolve_labor_cost_code(
        self, session: AsyncSession, company_settings: CompanySettings
    ) -> tuple[UUID, UUID]:
        cost_type_id = company_settings.labor_cost_type_id
        cost_code_id = company_settings.labor_cost_code_id

        # Fall back to a cost type named like "labor" and one of its codes
        if not cost_type_id or not cost_code_id:
            cost_type_id = await session.scalar(
                select(CostType.id)
                .where(CostType.name.ilike("%labor%"))
                .order_by(CostType.name)
                .limit(1)
            )
            cost_code_id = None
            if cost_type_id is not None:
                cost_code_id = await session.scalar(
                    select(CostCode.id)
                    .where(CostCode.cost_type_id == cost_type_id)
                    .order_by(CostCode.code)
                    .limit(1)
                )

        if not cost_type_id or not cost_code_id:
            raise JobError("Labor cost type or cost code not configured in settings")

        return cost_type_id, cost_code_id
