"""
ERP Payroll Engine - Employee Directory Models

Departments, roles and employees. These tables are owned by the HR
directory; the payroll engine only reads them.
"""

import uuid
from decimal import Decimal
from typing import Optional

from sqlalchemy import Boolean, ForeignKey, Integer, Numeric, String, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel


class Department(BaseModel):
    """Organisational department."""

    __tablename__ = "departments"

    name: Mapped[str] = mapped_column(String(150), nullable=False)
    code: Mapped[Optional[str]] = mapped_column(String(20), unique=True, nullable=True)

    def __repr__(self) -> str:
        return f"<Department(id={self.id}, name={self.name})>"


class Role(BaseModel):
    """Job role. Mapped to a salary grade through RoleSalaryGradeMapping."""

    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    level: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name})>"


class Employee(BaseModel):
    """Employee as seen by payroll."""

    __tablename__ = "employees"

    staff_id: Mapped[str] = mapped_column(
        String(50), unique=True, nullable=False,
        comment="Company staff number",
    )
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    department_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    role_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("roles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Salary placement
    custom_base_salary: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True,
        comment="Overrides the grade minimum as base salary",
    )
    years_of_service: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2), nullable=True,
    )
    salary_step: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True,
        comment="Step recorded by HR; payroll derives its own from years of service",
    )
    use_step_calculation: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False,
        comment="Apply the grade's seniority step increment",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    department: Mapped[Optional["Department"]] = relationship("Department", lazy="selectin")
    role: Mapped[Optional["Role"]] = relationship("Role", lazy="selectin")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Employee(id={self.id}, staff_id={self.staff_id}, name={self.full_name})>"
