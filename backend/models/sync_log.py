"""
Payroll Sync Log Model

Append-only audit record of every sync run. A row is created ``pending``
when a run starts and is finalized exactly once to a terminal status. The
pending row also serves as the run lock for its (tenant, provider) key.
"""

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, Index, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, JSONType
from integrations.base import SyncStatus


class PayrollSyncLog(Base):
    """One sync attempt against one provider for one tenant."""

    __tablename__ = "payroll_sync_logs"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    provider_type: Mapped[str] = mapped_column(String(30), nullable=False)
    sync_type: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        comment="employees|hours|leave|full",
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=SyncStatus.PENDING.value,
        nullable=False,
        comment="pending|success|partial|error",
    )

    started_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)

    records_synced: Mapped[int] = mapped_column(default=0, nullable=False)
    records_failed: Mapped[int] = mapped_column(default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_details: Mapped[list] = mapped_column(
        JSONType,
        default=list,
        nullable=False,
        comment="Per-record errors: [{record, message, code}]",
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )

    __table_args__ = (
        Index(
            "ix_payroll_sync_logs_tenant_provider_started",
            "tenant_id",
            "provider_type",
            "started_at",
        ),
        # At most one running sync per (tenant, provider)
        Index(
            "uq_payroll_sync_logs_one_pending",
            "tenant_id",
            "provider_type",
            unique=True,
            postgresql_where=text("status = 'pending'"),
            sqlite_where=text("status = 'pending'"),
        ),
    )

    def __repr__(self) -> str:
        return f"<PayrollSyncLog {self.provider_type}/{self.sync_type} {self.status}>"

    @property
    def is_pending(self) -> bool:
        return self.status == SyncStatus.PENDING.value
