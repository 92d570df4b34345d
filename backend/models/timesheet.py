"""
Timesheet Model

Daily hour registrations. Approved rows are what gets pushed to payroll.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID, uuid4

from sqlalchemy import ForeignKey, Index, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from backend.models.base import Base, TimestampMixin


class TimesheetStatus(str, Enum):
    DRAFT = "DRAFT"
    SUBMITTED = "SUBMITTED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"


class Timesheet(TimestampMixin, Base):
    """Hours worked by a user on one day."""

    __tablename__ = "timesheets"

    id: Mapped[UUID] = mapped_column(
        primary_key=True,
        default=uuid4,
    )
    tenant_id: Mapped[UUID] = mapped_column(nullable=False)
    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )

    work_date: Mapped[date] = mapped_column("date", nullable=False)
    total_hours: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        default=TimesheetStatus.DRAFT.value,
        nullable=False,
    )
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_timesheets_tenant_status_date", "tenant_id", "status", "date"),
    )

    def __repr__(self) -> str:
        return f"<Timesheet {self.work_date} {self.total_hours}h ({self.status})>"
