"""
ERP Payroll Engine - Compensation Service

Allowances, bonuses and deductions:
- write-time validation and administration
- per-employee aggregation into applied line items
- usage marking through an optimistic compare-and-swap on ``version``
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Type

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditAction
from app.models.compensation import (
    Allowance,
    Bonus,
    CalculationType,
    Deduction,
    DeductionCategory,
    DeductionType,
    ItemStatus,
    NON_TAXABLE_ALLOWANCE_CATEGORIES,
    NON_TAXABLE_BONUS_TYPES,
    AllowanceCategory,
    BonusType,
    PercentageBase,
    build_target,
)
from app.models.payroll import PayrollFrequency, PayrollScope
from app.services.audit_service import AuditService
from app.services.eligibility import PayrollPeriod, is_eligible
from app.services.tax_calculators.paye_service import round_money
from app.utils.error_handling import (
    ConcurrencyConflictException,
    ErrorCode,
    InvalidAmountException,
    NotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")

ITEM_MODELS: Dict[str, Type] = {
    "allowance": Allowance,
    "bonus": Bonus,
    "deduction": Deduction,
}


# ===========================================
# APPLIED ITEMS
# ===========================================

@dataclass
class AppliedItem:
    """A compensation item as applied to one employee for one period."""
    item_id: uuid.UUID
    item_kind: str
    name: str
    category: str
    amount: Decimal
    taxable: bool
    calculation_type: str
    frequency: str
    version: int
    percentage: Optional[Decimal] = None
    deduction_type: Optional[str] = None
    is_paye: bool = False

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "item_id": str(self.item_id),
            "name": self.name,
            "category": self.category,
            "amount": str(self.amount),
            "taxable": self.taxable,
            "calculation_type": self.calculation_type,
            "frequency": self.frequency,
        }
        if self.percentage is not None:
            data["percentage"] = str(self.percentage)
        if self.deduction_type is not None:
            data["deduction_type"] = self.deduction_type
        return data


@dataclass
class PoolResult:
    """Applied items of one pool with their subtotals."""
    kind: str
    items: List[AppliedItem] = field(default_factory=list)

    @property
    def total(self) -> Decimal:
        return sum((i.amount for i in self.items if not i.is_paye), ZERO)

    @property
    def taxable_total(self) -> Decimal:
        return sum((i.amount for i in self.items if i.taxable and not i.is_paye), ZERO)

    @property
    def non_taxable_total(self) -> Decimal:
        return sum((i.amount for i in self.items if not i.taxable and not i.is_paye), ZERO)

    @property
    def statutory_total(self) -> Decimal:
        return sum(
            (i.amount for i in self.items
             if i.deduction_type == DeductionType.STATUTORY.value and not i.is_paye),
            ZERO,
        )

    @property
    def voluntary_total(self) -> Decimal:
        return sum(
            (i.amount for i in self.items if i.deduction_type == DeductionType.VOLUNTARY.value),
            ZERO,
        )

    def category_total(self, category: str) -> Decimal:
        return sum((i.amount for i in self.items if i.category == category), ZERO)


def compute_item_amount(item, base_salary: Decimal, gross_salary: Decimal) -> Decimal:
    """
    Amount an item contributes.

    Percentage items take ``amount`` percent of the effective base salary or
    of the running gross, per ``percentage_base``. PAYE is filled in later.
    """
    if item.calculation_type == CalculationType.TAX_BRACKETS:
        return ZERO
    amount = Decimal(item.amount or 0)
    if item.calculation_type == CalculationType.PERCENTAGE:
        base = gross_salary if item.percentage_base == PercentageBase.GROSS_SALARY else base_salary
        return round_money(Decimal(base) * amount / 100)
    return round_money(amount)


# ===========================================
# WRITE-TIME VALIDATION
# ===========================================

def validate_item_data(kind: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validate and normalise item fields before persistence.

    - scope and target set must agree
    - non-PAYE items need an amount; percentages must be within 0-100
    - PAYE deductions are forced to tax-bracket calculation with no amount
    - ``taxable`` defaults from the category when not given
    """
    if kind not in ITEM_MODELS:
        raise ValidationException(f"Unknown compensation item type '{kind}'", field="kind")

    cleaned = dict(data)

    name = (cleaned.get("name") or "").strip()
    if not name:
        raise ValidationException("Name is required", field="name", code=ErrorCode.MISSING_FIELD)
    cleaned["name"] = name

    if not cleaned.get("scope"):
        raise ValidationException("Scope is required", field="scope", code=ErrorCode.MISSING_FIELD)
    target = build_target(cleaned["scope"], cleaned.get("department_ids"), cleaned.get("employee_ids"))
    cleaned["scope"] = target.scope
    cleaned["department_ids"] = sorted(str(d) for d in getattr(target, "department_ids", ()))
    cleaned["employee_ids"] = sorted(str(e) for e in getattr(target, "employee_ids", ()))

    calculation_type = CalculationType(cleaned.get("calculation_type") or CalculationType.FIXED)
    is_paye = kind == "deduction" and cleaned.get("category") == DeductionCategory.PAYE.value

    if is_paye:
        cleaned["calculation_type"] = CalculationType.TAX_BRACKETS
        cleaned["amount"] = None
        cleaned["deduction_type"] = DeductionType.STATUTORY
        cleaned["taxable"] = False
    else:
        if calculation_type == CalculationType.TAX_BRACKETS:
            raise ValidationException(
                "Only PAYE deductions are calculated from tax brackets",
                field="calculation_type",
            )
        amount = cleaned.get("amount")
        if amount is None:
            raise ValidationException("Amount is required", field="amount", code=ErrorCode.MISSING_FIELD)
        try:
            amount = Decimal(str(amount))
        except ArithmeticError:
            raise InvalidAmountException(amount, message=f"Amount must be a number, got {amount!r}")
        if amount < 0:
            raise InvalidAmountException(amount)
        if calculation_type == CalculationType.PERCENTAGE and amount > 100:
            raise InvalidAmountException(
                amount, message=f"Percentage must be between 0 and 100, got {amount}",
            )
        cleaned["amount"] = amount
        cleaned["calculation_type"] = calculation_type

    if cleaned.get("percentage_base") is None:
        cleaned.pop("percentage_base", None)
    else:
        cleaned["percentage_base"] = PercentageBase(cleaned["percentage_base"])

    if kind == "allowance":
        category = AllowanceCategory(cleaned.get("category") or AllowanceCategory.OTHER)
        cleaned["category"] = category
        if cleaned.get("taxable") is None:
            cleaned["taxable"] = category not in NON_TAXABLE_ALLOWANCE_CATEGORIES
    elif kind == "bonus":
        bonus_type = BonusType(cleaned.get("bonus_type") or BonusType.PERSONAL)
        cleaned["bonus_type"] = bonus_type
        if cleaned.get("taxable") is None:
            cleaned["taxable"] = bonus_type not in NON_TAXABLE_BONUS_TYPES
    else:
        cleaned["category"] = DeductionCategory(cleaned.get("category") or DeductionCategory.GENERAL)
        cleaned["deduction_type"] = DeductionType(cleaned.get("deduction_type") or DeductionType.VOLUNTARY)
        # Deductions reduce net pay; they never add to taxable income
        cleaned["taxable"] = False

    if cleaned.get("frequency") is None:
        cleaned["frequency"] = PayrollFrequency.YEARLY if kind == "bonus" else PayrollFrequency.MONTHLY
    else:
        cleaned["frequency"] = PayrollFrequency(cleaned["frequency"])

    start_date = cleaned.get("start_date") or date.today()
    end_date = cleaned.get("end_date")
    if end_date is not None and end_date < start_date:
        raise ValidationException(
            "End date must be on or after start date",
            field="end_date",
            code=ErrorCode.INVALID_PERIOD,
        )
    cleaned["start_date"] = start_date

    return cleaned


# ===========================================
# SERVICE
# ===========================================

class CompensationService:
    """Service for compensation items and their usage tracking."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # ADMINISTRATION
    # ===========================================

    async def create_item(
        self,
        kind: str,
        data: Dict[str, Any],
        created_by_id: Optional[uuid.UUID] = None,
    ):
        """Create an allowance, bonus or deduction."""
        cleaned = validate_item_data(kind, data)
        model = ITEM_MODELS[kind]

        item = model(created_by_id=created_by_id, **cleaned)
        self.db.add(item)
        await self.db.flush()

        await AuditService(self.db).log_action(
            entity_type=kind,
            entity_id=str(item.id),
            action=AuditAction.CREATE,
            user_id=created_by_id,
            new_values={
                "name": item.name,
                "scope": item.scope,
                "calculation_type": item.calculation_type,
                "amount": item.amount,
                "frequency": item.frequency,
                "taxable": item.taxable,
            },
        )
        return item

    async def create_allowance(self, data: Dict[str, Any], created_by_id: Optional[uuid.UUID] = None) -> Allowance:
        return await self.create_item("allowance", data, created_by_id)

    async def create_bonus(self, data: Dict[str, Any], created_by_id: Optional[uuid.UUID] = None) -> Bonus:
        return await self.create_item("bonus", data, created_by_id)

    async def create_deduction(self, data: Dict[str, Any], created_by_id: Optional[uuid.UUID] = None) -> Deduction:
        return await self.create_item("deduction", data, created_by_id)

    async def get_item(self, kind: str, item_id: uuid.UUID):
        model = ITEM_MODELS[kind]
        item = await self.db.get(model, item_id)
        if item is None:
            raise NotFoundException(model.__name__, item_id)
        return item

    async def list_items(self, kind: str, status: Optional[ItemStatus] = None) -> List[Any]:
        model = ITEM_MODELS[kind]
        query = select(model)
        if status is not None:
            query = query.where(model.status == status)
        result = await self.db.execute(query.order_by(model.created_at.desc()))
        return list(result.scalars().all())

    async def deactivate_item(
        self,
        kind: str,
        item_id: uuid.UUID,
        updated_by_id: Optional[uuid.UUID] = None,
    ):
        item = await self.get_item(kind, item_id)
        if item.status == ItemStatus.INACTIVE:
            return item

        previous = item.status
        item.status = ItemStatus.INACTIVE
        item.updated_by_id = updated_by_id
        item.version += 1
        await self.db.flush()

        await AuditService(self.db).log_action(
            entity_type=kind,
            entity_id=str(item.id),
            action=AuditAction.DEACTIVATE,
            user_id=updated_by_id,
            old_values={"status": previous},
            new_values={"status": item.status},
        )
        return item

    async def expire_lapsed_items(self, today: Optional[date] = None) -> int:
        """Move active items whose end date has passed to ``expired``."""
        today = today or date.today()
        expired = 0

        for kind, model in ITEM_MODELS.items():
            result = await self.db.execute(
                update(model)
                .where(
                    and_(
                        model.status == ItemStatus.ACTIVE,
                        model.end_date.is_not(None),
                        model.end_date < today,
                    )
                )
                .values(status=ItemStatus.EXPIRED, version=model.version + 1)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount:
                logger.info(f"Expired {result.rowcount} lapsed {kind} item(s)")
                await AuditService(self.db).log_action(
                    entity_type=kind,
                    entity_id="lapsed",
                    action=AuditAction.EXPIRE,
                    new_values={"count": result.rowcount, "ended_before": today},
                )
                expired += result.rowcount

        return expired

    # ===========================================
    # AGGREGATION
    # ===========================================

    async def load_active_items(self, kind: str) -> List[Any]:
        """Active items of a pool, re-read from the database."""
        model = ITEM_MODELS[kind]
        result = await self.db.execute(
            select(model)
            .where(model.status == ItemStatus.ACTIVE)
            .order_by(model.created_at, model.name)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    def aggregate_pool(
        self,
        kind: str,
        items: Sequence[Any],
        period: PayrollPeriod,
        run_frequency: PayrollFrequency,
        employee_id: uuid.UUID,
        department_id: Optional[uuid.UUID],
        base_salary: Decimal,
        gross_salary: Decimal,
        run_id: Optional[uuid.UUID] = None,
    ) -> PoolResult:
        """Apply eligible items of one pool to an employee."""
        pool = PoolResult(kind=kind)

        for item in items:
            if not is_eligible(item, period, run_frequency, employee_id, department_id, run_id):
                continue

            is_paye = kind == "deduction" and item.is_paye
            pool.items.append(AppliedItem(
                item_id=item.id,
                item_kind=kind,
                name=item.name,
                category=item.category_label,
                amount=compute_item_amount(item, base_salary, gross_salary),
                taxable=bool(item.taxable) and kind != "deduction",
                calculation_type=CalculationType(item.calculation_type).value,
                frequency=PayrollFrequency(item.frequency).value,
                version=item.version,
                percentage=(
                    Decimal(item.amount)
                    if item.calculation_type == CalculationType.PERCENTAGE else None
                ),
                deduction_type=DeductionType(item.deduction_type).value if kind == "deduction" else None,
                is_paye=is_paye,
            ))

        return pool

    # ===========================================
    # USAGE TRACKING
    # ===========================================

    async def mark_items_used(
        self,
        applied: Sequence[AppliedItem],
        period: PayrollPeriod,
        frequency: PayrollFrequency,
        scope: PayrollScope,
        employee_id: uuid.UUID,
        run_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
        payroll_id: Optional[uuid.UUID] = None,
    ) -> None:
        """
        Flip usage fields on every applied item and audit each one.

        Each update only succeeds against the version the item had when it
        was read; otherwise ConcurrencyConflictException is raised and the
        caller's unit of work must be rolled back.
        """
        now = datetime.now(timezone.utc)
        audit = AuditService(self.db)

        for entry in applied:
            model = ITEM_MODELS[entry.item_kind]
            result = await self.db.execute(
                update(model)
                .where(and_(model.id == entry.item_id, model.version == entry.version))
                .values(
                    is_used=True,
                    usage_count=model.usage_count + 1,
                    last_used_date=period.start,
                    last_used_at=now,
                    last_used_frequency=frequency,
                    last_used_scope=scope,
                    last_used_by_id=actor_id,
                    last_used_run_id=run_id,
                    last_used_in_payroll_id=payroll_id,
                    version=model.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                raise ConcurrencyConflictException(model.__name__, entry.item_id, entry.version)

            await audit.log_item_used(
                item_kind=entry.item_kind,
                item_id=entry.item_id,
                employee_id=employee_id,
                amount=entry.amount,
                month=period.month,
                year=period.year,
                scope=PayrollScope(scope).value,
                frequency=PayrollFrequency(frequency).value,
                user_id=actor_id,
                payroll_id=payroll_id,
            )
