"""
Payroll Provider Configuration Model

One row per (tenant, payroll provider): encrypted credentials, sync toggles,
schedule and the connection status reported by the last connection test or run.
"""

from datetime import datetime, timedelta
from uuid import UUID, uuid4

from sqlalchemy import Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, JSONType, TimestampMixin
from integrations.base import ConnectionStatus


class PayrollProviderConfig(TimestampMixin, Base):
    """
    Payroll provider connection for a tenant.

    Secret credential fields are Fernet-encrypted by the credential vault
    before they reach this row; the row never holds plaintext secrets.
    """

    __tablename__ = "payroll_provider_configs"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(
        nullable=False,
    )

    # Provider identification
    provider_type: Mapped[str] = mapped_column(
        String(30),
        nullable=False,
        comment="Payroll provider: nmbrs|afas|loket|exact",
    )
    display_name: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="User-friendly name for this connection",
    )

    # Credentials (secret fields encrypted at rest)
    credentials: Mapped[dict] = mapped_column(
        JSONType,
        default=dict,
        nullable=False,
        comment="Provider credentials; api_token/client_secret/access_token/refresh_token are Fernet tokens",
    )

    # Feature toggles
    sync_employees: Mapped[bool] = mapped_column(default=True, nullable=False)
    sync_hours: Mapped[bool] = mapped_column(default=True, nullable=False)
    sync_leave: Mapped[bool] = mapped_column(default=True, nullable=False)
    sync_enabled: Mapped[bool] = mapped_column(
        default=False,
        nullable=False,
        comment="Scheduled syncing enabled",
    )
    sync_interval_minutes: Mapped[int] = mapped_column(
        default=1440,
        nullable=False,
        comment="Minutes between scheduled syncs",
    )

    # Connection status
    connection_status: Mapped[str] = mapped_column(
        String(20),
        default=ConnectionStatus.UNCONFIGURED.value,
        nullable=False,
        comment="Connection status: unconfigured|connected|error",
    )
    last_sync_at: Mapped[datetime | None] = mapped_column(
        nullable=True,
        comment="Completion time of the last run that reached reconciliation",
    )
    last_sync_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="First error of the last connection test or run, if any",
    )
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id",
            "provider_type",
            name="uq_payroll_config_tenant_provider",
        ),
        Index("ix_payroll_provider_configs_tenant_id", "tenant_id"),
        Index("ix_payroll_provider_configs_sync_enabled", "sync_enabled"),
    )

    def __repr__(self) -> str:
        return (
            f"<PayrollProviderConfig {self.provider_type} "
            f"({self.connection_status}) for tenant={self.tenant_id}>"
        )

    @property
    def is_connected(self) -> bool:
        return self.connection_status == ConnectionStatus.CONNECTED.value

    def is_sync_due(self, now: datetime) -> bool:
        """Whether a scheduled sync should run at ``now``."""
        if not (self.sync_enabled and self.is_active):
            return False
        if self.last_sync_at is None:
            return True
        last = self.last_sync_at
        if last.tzinfo is None and now.tzinfo is not None:
            last = last.replace(tzinfo=now.tzinfo)
        return now - last >= timedelta(minutes=self.sync_interval_minutes)
