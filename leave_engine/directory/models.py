"""Directory ORM model: Employee.

The engine only reads these rows; they are maintained by the HR directory
sync outside this service.
"""

from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from leave_engine.common.constants import EmploymentStatus
from leave_engine.database import Base


class Employee(Base):
    """An employee as known to the directory service."""

    __tablename__ = "employees"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    employee_code: Mapped[str] = mapped_column(sa.String(20), unique=True, nullable=False)
    full_name: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    email: Mapped[str] = mapped_column(sa.String(255), unique=True, nullable=False)
    role: Mapped[str] = mapped_column(
        sa.String(50), nullable=False, server_default="EMPLOYEE",
    )
    department: Mapped[Optional[str]] = mapped_column(sa.String(100))
    region: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    location: Mapped[Optional[str]] = mapped_column(sa.String(100))
    date_of_joining: Mapped[date] = mapped_column(sa.Date, nullable=False)
    manager_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("employees.id"),
    )
    employment_status: Mapped[EmploymentStatus] = mapped_column(
        sa.Enum(EmploymentStatus, name="employment_status", native_enum=False),
        default=EmploymentStatus.active,
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    # ── Relationships ───────────────────────────────────────────────
    manager: Mapped[Optional[Employee]] = relationship(
        remote_side=[id], foreign_keys=[manager_id],
    )

    @property
    def is_eligible(self) -> bool:
        """Active in the directory and still employed."""
        return self.is_active and self.employment_status in (
            EmploymentStatus.active, EmploymentStatus.notice_period,
        )

    def __repr__(self) -> str:
        return f"<Employee {self.employee_code} ({self.role}/{self.region})>"
