"""
Customer, project and employee records used by background jobs.

Only the columns the job processors read or write are modelled here.
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Numeric, Text, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.infra.database import Base, UTCDateTime, utcnow


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    contact_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    email: Mapped[str | None] = mapped_column(Text, nullable=True)
    phone: Mapped[str | None] = mapped_column(Text, nullable=True)

    billing_street: Mapped[str | None] = mapped_column(Text, nullable=True)
    billing_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    billing_state: Mapped[str | None] = mapped_column(Text, nullable=True)
    billing_zip: Mapped[str | None] = mapped_column(Text, nullable=True)

    service_street: Mapped[str | None] = mapped_column(Text, nullable=True)
    service_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    service_state: Mapped[str | None] = mapped_column(Text, nullable=True)
    service_zip: Mapped[str | None] = mapped_column(Text, nullable=True)

    # QuickBooks sync state
    qbo_customer_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    qbo_sync_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    qbo_last_synced_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )


class Project(Base):
    __tablename__ = "projects"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    customer_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("customers.id"), nullable=False
    )

    job_street: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_city: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_state: Mapped[str | None] = mapped_column(Text, nullable=True)
    job_zip: Mapped[str | None] = mapped_column(Text, nullable=True)

    # QuickBooks sync state; a project is a sub-customer ("Job") remotely
    qbo_job_ref: Mapped[str | None] = mapped_column(Text, nullable=True)
    qbo_sync_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    qbo_last_synced_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    display_name: Mapped[str] = mapped_column(Text, nullable=False)
    labor_rate: Mapped[Decimal | None] = mapped_column(
        Numeric(10, 2), nullable=True, comment="Hourly cost override"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
