"""
Job costing models: work orders, time entries and posted cost entries.
"""

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Date, ForeignKey, Integer, Numeric, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.infra.database import Base, UTCDateTime, utcnow


class CostType(Base):
    __tablename__ = "cost_types"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)


class CostCode(Base):
    __tablename__ = "cost_codes"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    cost_type_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cost_types.id"), nullable=False
    )
    code: Mapped[str] = mapped_column(Text, nullable=False)
    name: Mapped[str | None] = mapped_column(Text, nullable=True)


class CompanySettings(Base):
    """Company-wide costing defaults (single row)."""

    __tablename__ = "settings"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    default_labor_rate: Mapped[Decimal] = mapped_column(
        Numeric(10, 2), nullable=False, default=Decimal("0")
    )
    labor_cost_type_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("cost_types.id"), nullable=True
    )
    labor_cost_code_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("cost_codes.id"), nullable=True
    )


class WorkOrder(Base):
    __tablename__ = "work_orders"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("projects.id"), nullable=True
    )
    total_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False, default=Decimal("0")
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )


class WorkOrderTimeEntry(Base):
    __tablename__ = "work_order_time_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    work_order_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("work_orders.id"), nullable=False
    )
    tech_user_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("employees.id"), nullable=False
    )
    clock_in_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    clock_out_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    break_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class JobCostEntry(Base):
    """A cost posted against a project or work order."""

    __tablename__ = "job_cost_entries"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    project_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("projects.id"), nullable=True
    )
    work_order_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("work_orders.id"), nullable=True
    )
    cost_type_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cost_types.id"), nullable=False
    )
    cost_code_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("cost_codes.id"), nullable=False
    )
    txn_date: Mapped[date] = mapped_column(Date, nullable=False)
    qty: Mapped[Decimal] = mapped_column(Numeric(12, 4), nullable=False)
    unit_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="Origin of the cost, e.g. TIME_ENTRY"
    )
    source_id: Mapped[UUID | None] = mapped_column(Uuid, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(Text, nullable=False, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
