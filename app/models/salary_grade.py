"""
ERP Payroll Engine - Salary Grade Models

Salary grades define a gross salary band, a fixed allowance bundle and a
ladder of seniority steps. Each role is mapped to at most one active grade.
"""

import uuid
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean, CheckConstraint, ForeignKey, Index, JSON, Numeric, String, Text, Uuid, text
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.models.base import BaseModel, AuditMixin


class SalaryGrade(BaseModel, AuditMixin):
    """
    Salary grade.

    ``custom_allowances`` holds ``[{"name": str, "amount": str}]`` and
    ``steps`` holds ``[{"step": str, "increment_percent": str,
    "years_of_service_threshold": str}]``. Amounts are stored as strings so
    the JSON round-trip never goes through float.
    """

    __tablename__ = "salary_grades"

    grade: Mapped[str] = mapped_column(String(20), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    min_gross_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    max_gross_salary: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    # Fixed allowance bundle
    housing_allowance: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    transport_allowance: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    meal_allowance: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)
    other_allowance: Mapped[Decimal] = mapped_column(Numeric(15, 2), default=Decimal("0"), nullable=False)

    custom_allowances: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)
    steps: Mapped[List[Dict[str, Any]]] = mapped_column(JSON, default=list, nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    __table_args__ = (
        CheckConstraint("min_gross_salary < max_gross_salary", name="salary_range"),
        CheckConstraint(
            "housing_allowance >= 0 AND transport_allowance >= 0 "
            "AND meal_allowance >= 0 AND other_allowance >= 0",
            name="allowances_non_negative",
        ),
    )

    @property
    def fixed_allowances(self) -> Dict[str, Decimal]:
        return {
            "housing": Decimal(self.housing_allowance or 0),
            "transport": Decimal(self.transport_allowance or 0),
            "meal": Decimal(self.meal_allowance or 0),
            "other": Decimal(self.other_allowance or 0),
        }

    @property
    def custom_allowances_total(self) -> Decimal:
        return sum(
            (Decimal(str(item.get("amount", 0))) for item in (self.custom_allowances or [])),
            Decimal("0"),
        )

    def __repr__(self) -> str:
        return f"<SalaryGrade(grade={self.grade}, range={self.min_gross_salary}-{self.max_gross_salary})>"


class RoleSalaryGradeMapping(BaseModel, AuditMixin):
    """Role to salary grade assignment. One active row per role."""

    __tablename__ = "role_salary_grade_mappings"

    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("roles.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    salary_grade_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("salary_grades.id", ondelete="RESTRICT"),
        nullable=False,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    salary_grade: Mapped["SalaryGrade"] = relationship("SalaryGrade", lazy="selectin")

    __table_args__ = (
        Index(
            "uq_role_salary_grade_mappings_active_role",
            "role_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )
