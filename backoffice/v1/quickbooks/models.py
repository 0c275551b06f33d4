"""
QuickBooks Online connection and entity mapping models.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import Text, UniqueConstraint, Uuid, func
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.infra.database import Base, UTCDateTime, utcnow


class QboConnection(Base):
    """OAuth credential for one QuickBooks company. Tokens are stored encrypted."""

    __tablename__ = "qbo_connections"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    realm_id: Mapped[str] = mapped_column(
        Text, nullable=False, unique=True, comment="QuickBooks company id"
    )
    access_token_enc: Mapped[str] = mapped_column(
        Text, nullable=False, comment="AES-GCM encrypted access token"
    )
    refresh_token_enc: Mapped[str] = mapped_column(
        Text, nullable=False, comment="AES-GCM encrypted refresh token"
    )
    expires_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, comment="Access token expiry"
    )
    refresh_token_expires_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True
    )
    scope: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Set while one worker refreshes the token
    refresh_claimed_at: Mapped[datetime | None] = mapped_column(
        UTCDateTime, nullable=True, comment="Refresh lease start"
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )


class QboEntityMap(Base):
    """Link between a local record and its QuickBooks counterpart."""

    __tablename__ = "qbo_entity_map"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    entity_type: Mapped[str] = mapped_column(
        Text, nullable=False, comment="QuickBooks entity: Customer|Job"
    )
    local_table: Mapped[str] = mapped_column(Text, nullable=False)
    local_id: Mapped[UUID] = mapped_column(Uuid, nullable=False)
    qbo_id: Mapped[str] = mapped_column(Text, nullable=False)
    qbo_sync_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    last_synced_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime, nullable=False, default=utcnow, server_default=func.now()
    )

    __table_args__ = (
        UniqueConstraint("entity_type", "local_id", name="uq_qbo_entity_map_entity"),
    )
