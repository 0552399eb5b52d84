"""
ERP Payroll Engine - Compensation Item Models

Allowances, bonuses and deductions share one shape:
- a scope (company / department / individual) with its target set
- a calculation (fixed amount or percentage of a base; PAYE deductions are
  computed from tax brackets instead)
- a payment frequency and a validity window
- usage tracking so recurring items are paid at most once per period

Usage fields are only ever changed through a versioned compare-and-swap
update, see CompensationService.mark_items_used.
"""

import uuid
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, FrozenSet, Iterable, List, Optional, Union

from sqlalchemy import (
    Boolean, CheckConstraint, Date, DateTime, Enum as SQLEnum, Integer, JSON, Numeric,
    String, Text, Uuid
)
from sqlalchemy.orm import Mapped, mapped_column

from app.models.base import BaseModel, AuditMixin, VersionMixin
from app.models.payroll import PayrollFrequency, PayrollScope
from app.utils.error_handling import InvalidScopeException


# ===========================================
# ENUMS
# ===========================================

class CalculationType(str, Enum):
    """How an item's amount is derived."""
    FIXED = "fixed"
    PERCENTAGE = "percentage"
    TAX_BRACKETS = "tax_brackets"  # deductions only (PAYE)


class PercentageBase(str, Enum):
    """What a percentage item is a percentage of."""
    BASE_SALARY = "base_salary"
    GROSS_SALARY = "gross_salary"


class ItemStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    EXPIRED = "expired"


class AllowanceCategory(str, Enum):
    PERFORMANCE = "performance"
    SPECIAL = "special"
    HARDSHIP = "hardship"
    TRANSPORT = "transport"
    HOUSING = "housing"
    MEAL = "meal"
    MEDICAL = "medical"
    EDUCATION = "education"
    OTHER = "other"


class BonusType(str, Enum):
    PERSONAL = "personal"
    PERFORMANCE = "performance"
    THIRTEENTH_MONTH = "thirteenth_month"
    SPECIAL = "special"
    ACHIEVEMENT = "achievement"
    RETENTION = "retention"
    PROJECT = "project"
    YEAR_END = "year_end"


class DeductionType(str, Enum):
    STATUTORY = "statutory"
    VOLUNTARY = "voluntary"


class DeductionCategory(str, Enum):
    PAYE = "paye"
    PENSION = "pension"
    NHIS = "nhis"
    LOAN_REPAYMENT = "loan_repayment"
    INSURANCE = "insurance"
    ASSOCIATION_DUES = "association_dues"
    SAVINGS = "savings"
    TRANSPORT = "transport"
    COOPERATIVE = "cooperative"
    TRAINING_FUND = "training_fund"
    WELFARE = "welfare"
    PENALTY = "penalty"
    GENERAL = "general"


# Categories that are not taxable unless explicitly flagged otherwise
NON_TAXABLE_ALLOWANCE_CATEGORIES = frozenset({
    AllowanceCategory.TRANSPORT,
    AllowanceCategory.MEAL,
    AllowanceCategory.MEDICAL,
    AllowanceCategory.HOUSING,
    AllowanceCategory.EDUCATION,
})
NON_TAXABLE_BONUS_TYPES = frozenset({BonusType.RETENTION})


# ===========================================
# SCOPE TARGETS
# ===========================================

def _as_uuid_set(values: Optional[Iterable[Any]]) -> FrozenSet[uuid.UUID]:
    return frozenset(v if isinstance(v, uuid.UUID) else uuid.UUID(str(v)) for v in (values or []))


@dataclass(frozen=True)
class CompanyTarget:
    """Every employee is a target."""
    scope: ClassVar[PayrollScope] = PayrollScope.COMPANY

    def includes(self, employee_id: uuid.UUID, department_id: Optional[uuid.UUID]) -> bool:
        return True


@dataclass(frozen=True)
class DepartmentTarget:
    """Employees of any of the listed departments."""
    department_ids: FrozenSet[uuid.UUID]
    scope: ClassVar[PayrollScope] = PayrollScope.DEPARTMENT

    def __post_init__(self):
        if not self.department_ids:
            raise InvalidScopeException(
                self.scope.value, "Department scope requires at least one department",
            )

    def includes(self, employee_id: uuid.UUID, department_id: Optional[uuid.UUID]) -> bool:
        return department_id is not None and department_id in self.department_ids


@dataclass(frozen=True)
class IndividualTarget:
    """Only the listed employees."""
    employee_ids: FrozenSet[uuid.UUID]
    scope: ClassVar[PayrollScope] = PayrollScope.INDIVIDUAL

    def __post_init__(self):
        if not self.employee_ids:
            raise InvalidScopeException(
                self.scope.value, "Individual scope requires at least one employee",
            )

    def includes(self, employee_id: uuid.UUID, department_id: Optional[uuid.UUID]) -> bool:
        return employee_id in self.employee_ids


ScopeTarget = Union[CompanyTarget, DepartmentTarget, IndividualTarget]


def build_target(
    scope: Union[PayrollScope, str],
    department_ids: Optional[Iterable[Any]] = None,
    employee_ids: Optional[Iterable[Any]] = None,
) -> ScopeTarget:
    """
    Build the target for a scope, rejecting target sets that do not belong
    to it (e.g. employee ids on a department-scoped item).
    """
    scope = PayrollScope(scope)
    departments = _as_uuid_set(department_ids)
    employees = _as_uuid_set(employee_ids)

    if scope == PayrollScope.COMPANY:
        if departments or employees:
            raise InvalidScopeException(scope.value, "Company scope takes no target set")
        return CompanyTarget()
    if scope == PayrollScope.DEPARTMENT:
        if employees:
            raise InvalidScopeException(scope.value, "Department scope takes department ids only")
        return DepartmentTarget(departments)
    if departments:
        raise InvalidScopeException(scope.value, "Individual scope takes employee ids only")
    return IndividualTarget(employees)


# ===========================================
# SHARED COLUMNS
# ===========================================

class CompensationItemMixin(AuditMixin, VersionMixin):
    """Columns shared by allowances, bonuses and deductions."""

    # Discriminator used in line items and audit entries
    item_kind: ClassVar[str] = "item"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Targeting
    scope: Mapped[PayrollScope] = mapped_column(SQLEnum(PayrollScope), nullable=False, index=True)
    department_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)
    employee_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    # Calculation
    calculation_type: Mapped[CalculationType] = mapped_column(
        SQLEnum(CalculationType), default=CalculationType.FIXED, nullable=False,
    )
    percentage_base: Mapped[PercentageBase] = mapped_column(
        SQLEnum(PercentageBase), default=PercentageBase.BASE_SALARY, nullable=False,
    )
    amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(15, 2), nullable=True,
        comment="Naira amount, or percent when calculation_type is percentage",
    )
    taxable: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Schedule
    frequency: Mapped[PayrollFrequency] = mapped_column(
        SQLEnum(PayrollFrequency), default=PayrollFrequency.MONTHLY, nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    status: Mapped[ItemStatus] = mapped_column(
        SQLEnum(ItemStatus), default=ItemStatus.ACTIVE, nullable=False, index=True,
    )

    # Usage tracking
    is_used: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    usage_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    last_used_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True,
        comment="First day of the payroll period that last consumed the item",
    )
    last_used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_used_frequency: Mapped[Optional[PayrollFrequency]] = mapped_column(
        SQLEnum(PayrollFrequency), nullable=True,
    )
    last_used_scope: Mapped[Optional[PayrollScope]] = mapped_column(SQLEnum(PayrollScope), nullable=True)
    last_used_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    last_used_run_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True,
        comment="Payroll run that last consumed the item",
    )
    last_used_in_payroll_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True), nullable=True,
        comment="Payroll record the last usage was paid in",
    )

    @property
    def target(self) -> ScopeTarget:
        return build_target(self.scope, self.department_ids, self.employee_ids)

    @property
    def category_label(self) -> str:
        return "general"

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__}(id={self.id}, name={self.name}, scope={self.scope}, "
            f"frequency={self.frequency})>"
        )


def _item_constraints() -> tuple:
    return (
        CheckConstraint("amount IS NULL OR amount >= 0", name="amount_non_negative"),
        CheckConstraint(
            "calculation_type != 'PERCENTAGE' OR amount <= 100",
            name="percentage_range",
        ),
        CheckConstraint("end_date IS NULL OR end_date >= start_date", name="validity_window"),
    )


# ===========================================
# ALLOWANCE / BONUS / DEDUCTION
# ===========================================

class Allowance(CompensationItemMixin, BaseModel):
    """Recurring or one-off allowance paid on top of base salary."""

    __tablename__ = "allowances"
    __table_args__ = _item_constraints()

    item_kind: ClassVar[str] = "allowance"

    category: Mapped[AllowanceCategory] = mapped_column(
        SQLEnum(AllowanceCategory), default=AllowanceCategory.OTHER, nullable=False,
    )

    @property
    def category_label(self) -> str:
        return self.category.value


class Bonus(CompensationItemMixin, BaseModel):
    """Bonus payment."""

    __tablename__ = "bonuses"
    __table_args__ = _item_constraints()

    item_kind: ClassVar[str] = "bonus"

    bonus_type: Mapped[BonusType] = mapped_column(
        SQLEnum(BonusType), default=BonusType.PERSONAL, nullable=False,
    )

    @property
    def category_label(self) -> str:
        return self.bonus_type.value


class Deduction(CompensationItemMixin, BaseModel):
    """
    Deduction from gross pay.

    A PAYE deduction carries no amount; its value is produced by the tax
    bracket resolver for each employee.
    """

    __tablename__ = "deductions"
    __table_args__ = _item_constraints()

    item_kind: ClassVar[str] = "deduction"

    deduction_type: Mapped[DeductionType] = mapped_column(
        SQLEnum(DeductionType), default=DeductionType.VOLUNTARY, nullable=False,
    )
    category: Mapped[DeductionCategory] = mapped_column(
        SQLEnum(DeductionCategory), default=DeductionCategory.GENERAL, nullable=False,
    )

    @property
    def is_paye(self) -> bool:
        return self.category == DeductionCategory.PAYE

    @property
    def category_label(self) -> str:
        return self.category.value


CompensationItem = Union[Allowance, Bonus, Deduction]
