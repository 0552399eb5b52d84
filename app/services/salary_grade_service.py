"""
ERP Payroll Engine - Salary Grade Service

Salary resolution and salary grade administration.

Base salary resolution:
1. Start from the employee's custom base salary, else the grade minimum.
2. If the grade defines steps and years of service is known, take the
   highest step whose threshold is at or below the employee's years of
   service and add ``base * increment_percent / 100``.
3. Report the grade's fixed allowance bundle and custom allowances
   alongside; they are never folded into the effective base.
"""

import logging
import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import and_, exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditAction
from app.models.employee import Employee
from app.models.payroll import PayrollRecord
from app.models.salary_grade import RoleSalaryGradeMapping, SalaryGrade
from app.services.audit_service import AuditService
from app.services.tax_calculators.paye_service import round_money
from app.utils.error_handling import (
    DuplicateEntryException,
    ErrorCode,
    GradeInUseException,
    OverlappingSalaryRangeException,
    RoleMappingNotFoundException,
    SalaryGradeNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ===========================================
# SALARY RESOLUTION
# ===========================================

@dataclass
class SalaryResolution:
    """Outcome of resolving an employee's base salary against a grade."""
    salary_grade_id: Optional[uuid.UUID]
    grade: str
    base_salary: Decimal
    effective_base_salary: Decimal
    step_increment: Decimal = ZERO
    step: Optional[str] = None
    step_increment_percent: Decimal = ZERO
    grade_allowances: Dict[str, Decimal] = field(default_factory=dict)
    custom_allowances: List[Dict[str, Any]] = field(default_factory=list)
    custom_allowances_total: Decimal = ZERO

    @property
    def total_grade_allowances(self) -> Decimal:
        return sum(self.grade_allowances.values(), ZERO) + self.custom_allowances_total

    def to_dict(self) -> Dict[str, Any]:
        return {
            "salary_grade_id": str(self.salary_grade_id) if self.salary_grade_id else None,
            "grade": self.grade,
            "base_salary": str(self.base_salary),
            "effective_base_salary": str(self.effective_base_salary),
            "step_increment": str(self.step_increment),
            "step": self.step,
            "step_increment_percent": str(self.step_increment_percent),
            "grade_allowances": {k: str(v) for k, v in self.grade_allowances.items()},
            "custom_allowances": self.custom_allowances,
            "custom_allowances_total": str(self.custom_allowances_total),
            "total_grade_allowances": str(self.total_grade_allowances),
        }


def select_step(steps: List[Dict[str, Any]], years_of_service: Any) -> Optional[Dict[str, Any]]:
    """
    Highest step whose threshold is <= years of service.

    Returns None when there are no steps, years of service is unknown or
    negative, or no threshold is reached.
    """
    if not steps or years_of_service is None:
        return None
    try:
        years = Decimal(str(years_of_service))
    except ArithmeticError:
        return None
    if not years.is_finite() or years < 0:
        return None

    ordered = sorted(steps, key=lambda s: Decimal(str(s.get("years_of_service_threshold", 0))))
    selected = None
    for step in ordered:
        if Decimal(str(step.get("years_of_service_threshold", 0))) <= years:
            selected = step
        else:
            break
    return selected


def resolve_salary(employee: Employee, grade: SalaryGrade) -> SalaryResolution:
    """Effective base salary for an employee on a grade. Pure."""
    if employee.custom_base_salary is not None:
        base = Decimal(employee.custom_base_salary)
    else:
        base = Decimal(grade.min_gross_salary)

    step_increment = ZERO
    step_name = None
    step_percent = ZERO

    if employee.use_step_calculation:
        step = select_step(grade.steps or [], employee.years_of_service)
        if step is not None:
            step_name = step.get("step")
            step_percent = Decimal(str(step.get("increment_percent", 0)))
            step_increment = round_money(base * step_percent / 100)

    custom_allowances = [
        {"name": item.get("name"), "amount": str(round_money(item.get("amount", 0)))}
        for item in (grade.custom_allowances or [])
    ]

    return SalaryResolution(
        salary_grade_id=grade.id,
        grade=grade.grade,
        base_salary=round_money(base),
        effective_base_salary=round_money(base + step_increment),
        step_increment=step_increment,
        step=step_name,
        step_increment_percent=step_percent,
        grade_allowances={k: round_money(v) for k, v in grade.fixed_allowances.items()},
        custom_allowances=custom_allowances,
        custom_allowances_total=round_money(grade.custom_allowances_total),
    )


# ===========================================
# GRADE DATA VALIDATION
# ===========================================

ALLOWANCE_FIELDS = ("housing_allowance", "transport_allowance", "meal_allowance", "other_allowance")


def _decimal(value: Any, field_name: str) -> Decimal:
    try:
        return Decimal(str(value))
    except ArithmeticError:
        raise ValidationException(
            f"{field_name} must be a number", field=field_name, code=ErrorCode.INVALID_SALARY_GRADE,
        )


def validate_salary_grade_data(data: Dict[str, Any]) -> Dict[str, Any]:
    """
    Check and normalise salary grade fields.

    Money and percentages inside ``steps``/``custom_allowances`` are
    normalised to strings for JSON storage.
    """
    def invalid(message: str, field_name: Optional[str] = None) -> ValidationException:
        return ValidationException(message, field=field_name, code=ErrorCode.INVALID_SALARY_GRADE)

    cleaned = dict(data)

    if "min_gross_salary" in cleaned or "max_gross_salary" in cleaned:
        minimum = _decimal(cleaned.get("min_gross_salary"), "min_gross_salary")
        maximum = _decimal(cleaned.get("max_gross_salary"), "max_gross_salary")
        if minimum < 0:
            raise invalid("Minimum gross salary cannot be negative", "min_gross_salary")
        if minimum >= maximum:
            raise invalid("Minimum gross salary must be less than maximum gross salary", "min_gross_salary")
        cleaned["min_gross_salary"] = minimum
        cleaned["max_gross_salary"] = maximum

    for name in ALLOWANCE_FIELDS:
        if name in cleaned and cleaned[name] is not None:
            amount = _decimal(cleaned[name], name)
            if amount < 0:
                raise invalid(f"{name} cannot be negative", name)
            cleaned[name] = amount

    if "custom_allowances" in cleaned:
        allowances = []
        for entry in cleaned.get("custom_allowances") or []:
            name = (entry.get("name") or "").strip()
            if not name:
                raise invalid("Custom allowance name is required", "custom_allowances")
            amount = _decimal(entry.get("amount", 0), "custom_allowances")
            if amount < 0:
                raise invalid(f"Custom allowance '{name}' cannot be negative", "custom_allowances")
            allowances.append({"name": name, "amount": str(amount)})
        cleaned["custom_allowances"] = allowances

    if "steps" in cleaned:
        steps = []
        seen = set()
        for entry in cleaned.get("steps") or []:
            name = (entry.get("step") or "").strip()
            if not name:
                raise invalid("Step name is required", "steps")
            if name in seen:
                raise invalid(f"Duplicate step '{name}'", "steps")
            seen.add(name)
            percent = _decimal(entry.get("increment_percent", 0), "steps")
            threshold = _decimal(entry.get("years_of_service_threshold", 0), "steps")
            if percent < 0 or percent > 100:
                raise invalid(f"Step '{name}' increment must be between 0 and 100", "steps")
            if threshold < 0:
                raise invalid(f"Step '{name}' years of service threshold cannot be negative", "steps")
            steps.append({
                "step": name,
                "increment_percent": str(percent),
                "years_of_service_threshold": str(threshold),
            })
        cleaned["steps"] = steps

    return cleaned


# ===========================================
# SERVICE
# ===========================================

class SalaryGradeService:
    """Salary grades, role mappings and base salary resolution."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ===========================================
    # GRADES
    # ===========================================

    async def get_grade(self, grade_id: uuid.UUID) -> SalaryGrade:
        grade = await self.db.get(SalaryGrade, grade_id)
        if grade is None:
            raise SalaryGradeNotFoundException(grade_id)
        return grade

    async def list_grades(self, active_only: bool = True) -> List[SalaryGrade]:
        query = select(SalaryGrade)
        if active_only:
            query = query.where(SalaryGrade.is_active.is_(True))
        result = await self.db.execute(query.order_by(SalaryGrade.min_gross_salary))
        return list(result.scalars().all())

    async def create_grade(
        self,
        data: Dict[str, Any],
        created_by_id: Optional[uuid.UUID] = None,
    ) -> SalaryGrade:
        """Create a salary grade after validating its band, allowances and steps."""
        cleaned = validate_salary_grade_data(data)

        existing = await self.db.execute(
            select(SalaryGrade.id).where(SalaryGrade.grade == cleaned["grade"])
        )
        if existing.scalar_one_or_none():
            raise DuplicateEntryException("SalaryGrade", "grade", cleaned["grade"])

        if cleaned.get("is_active", True):
            await self.check_overlapping_ranges(
                cleaned["grade"], cleaned["min_gross_salary"], cleaned["max_gross_salary"],
            )

        grade = SalaryGrade(created_by_id=created_by_id, **cleaned)
        self.db.add(grade)
        await self.db.flush()

        logger.info(f"Created salary grade {grade.grade}")
        return grade

    async def update_grade(
        self,
        grade_id: uuid.UUID,
        data: Dict[str, Any],
        updated_by_id: Optional[uuid.UUID] = None,
    ) -> SalaryGrade:
        """Update a grade that no processed payroll references yet."""
        grade = await self.get_grade(grade_id)

        if await self.is_grade_referenced(grade.id):
            raise GradeInUseException(grade.grade)

        merged = {
            "min_gross_salary": grade.min_gross_salary,
            "max_gross_salary": grade.max_gross_salary,
            **{k: v for k, v in data.items() if v is not None},
        }
        cleaned = validate_salary_grade_data(merged)

        if cleaned.get("is_active", grade.is_active):
            await self.check_overlapping_ranges(
                cleaned.get("grade", grade.grade),
                cleaned["min_gross_salary"],
                cleaned["max_gross_salary"],
                exclude_id=grade.id,
            )

        old_values = {key: getattr(grade, key) for key in cleaned}
        for key, value in cleaned.items():
            setattr(grade, key, value)
        grade.updated_by_id = updated_by_id

        await self.db.flush()
        await AuditService(self.db).log_action(
            entity_type="salary_grade",
            entity_id=str(grade.id),
            action=AuditAction.UPDATE,
            user_id=updated_by_id,
            old_values=old_values,
            new_values=cleaned,
        )
        return grade

    async def is_grade_referenced(self, grade_id: uuid.UUID) -> bool:
        result = await self.db.execute(
            select(exists().where(PayrollRecord.salary_grade_id == grade_id))
        )
        return bool(result.scalar())

    async def check_overlapping_ranges(
        self,
        grade_code: str,
        min_gross_salary: Decimal,
        max_gross_salary: Decimal,
        exclude_id: Optional[uuid.UUID] = None,
    ) -> None:
        """Reject a band that overlaps another active grade's band."""
        query = select(SalaryGrade.grade).where(
            and_(
                SalaryGrade.is_active.is_(True),
                SalaryGrade.min_gross_salary < max_gross_salary,
                SalaryGrade.max_gross_salary > min_gross_salary,
            )
        )
        if exclude_id is not None:
            query = query.where(SalaryGrade.id != exclude_id)

        result = await self.db.execute(query)
        overlapping = list(result.scalars().all())
        if overlapping:
            raise OverlappingSalaryRangeException(grade_code, overlapping)

    # ===========================================
    # ROLE MAPPINGS
    # ===========================================

    async def assign_grade_to_role(
        self,
        role_id: uuid.UUID,
        salary_grade_id: uuid.UUID,
        actor_id: Optional[uuid.UUID] = None,
    ) -> RoleSalaryGradeMapping:
        """
        Create or update the role's mapping. A role keeps a single mapping
        row which is re-pointed and re-activated.
        """
        grade = await self.get_grade(salary_grade_id)
        if not grade.is_active:
            raise ValidationException(
                f"Salary grade '{grade.grade}' is inactive",
                field="salary_grade_id",
                code=ErrorCode.INVALID_SALARY_GRADE,
            )

        result = await self.db.execute(
            select(RoleSalaryGradeMapping)
            .where(RoleSalaryGradeMapping.role_id == role_id)
            .order_by(RoleSalaryGradeMapping.is_active.desc())
        )
        mappings = list(result.scalars().all())

        if mappings:
            mapping = mappings[0]
            for stale in mappings[1:]:
                stale.is_active = False
            mapping.salary_grade_id = grade.id
            mapping.salary_grade = grade
            mapping.is_active = True
            mapping.updated_by_id = actor_id
        else:
            mapping = RoleSalaryGradeMapping(
                role_id=role_id,
                salary_grade_id=grade.id,
                is_active=True,
                created_by_id=actor_id,
            )
            self.db.add(mapping)

        await self.db.flush()
        return mapping

    async def get_grade_for_role(self, role_id: Optional[uuid.UUID]) -> SalaryGrade:
        """Active salary grade for a role."""
        if role_id is None:
            raise RoleMappingNotFoundException()

        result = await self.db.execute(
            select(RoleSalaryGradeMapping).where(
                and_(
                    RoleSalaryGradeMapping.role_id == role_id,
                    RoleSalaryGradeMapping.is_active.is_(True),
                )
            )
            .execution_options(populate_existing=True)
        )
        mapping = result.scalar_one_or_none()
        if mapping is None:
            raise RoleMappingNotFoundException(role_id)

        grade = mapping.salary_grade
        if grade is None or not grade.is_active:
            raise SalaryGradeNotFoundException(
                mapping.salary_grade_id,
                message=f"Salary grade mapped to role '{role_id}' is missing or inactive",
            )
        return grade

    async def validate_salary_for_role(self, role_id: uuid.UUID, gross_salary: Decimal) -> Dict[str, Any]:
        """Whether a gross salary sits inside the role's grade band."""
        grade = await self.get_grade_for_role(role_id)
        gross_salary = Decimal(gross_salary)
        is_valid = grade.min_gross_salary <= gross_salary <= grade.max_gross_salary

        if is_valid:
            message = f"Salary is within the {grade.grade} range"
        else:
            message = (
                f"Salary must be between {grade.min_gross_salary:,.2f} and "
                f"{grade.max_gross_salary:,.2f} for grade {grade.grade}"
            )

        return {
            "is_valid": is_valid,
            "message": message,
            "grade": grade.grade,
            "min_gross_salary": grade.min_gross_salary,
            "max_gross_salary": grade.max_gross_salary,
        }

    # ===========================================
    # RESOLUTION
    # ===========================================

    async def resolve_for_employee(self, employee: Employee) -> SalaryResolution:
        grade = await self.get_grade_for_role(employee.role_id)
        return resolve_salary(employee, grade)
