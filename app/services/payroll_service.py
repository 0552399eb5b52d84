"""
ERP Payroll Engine - Payroll Service

Per-employee payroll calculation, batch preview and batch commit.

Calculation order for one employee and period:
1. duplicate check on (employee, month, year, frequency, scope)
2. role mapping -> salary grade -> effective base salary
3. allowances, then bonuses, then deductions
4. PAYE on base + taxable allowances + taxable bonuses
5. gross, total deductions and net pay
"""

import logging
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.audit import AuditAction
from app.models.compensation import DeductionCategory
from app.models.employee import Employee
from app.models.payroll import PAYROLL_RECORD_UNIQUE, PayrollFrequency, PayrollRecord, PayrollScope
from app.services.audit_service import AuditService
from app.services.compensation_service import ITEM_MODELS, CompensationService, PoolResult
from app.services.eligibility import PayrollPeriod
from app.services.salary_grade_service import SalaryGradeService, SalaryResolution
from app.services.tax_calculators.paye_service import (
    PAYECalculator,
    PAYEService,
    TaxComputation,
    round_money,
)
from app.utils.error_handling import (
    AppException,
    ConcurrencyConflictException,
    DuplicateProcessingException,
    EmployeeNotFoundException,
    ErrorCode,
    InvalidScopeException,
    NotFoundException,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


# ===========================================
# RESULT TYPES
# ===========================================

@dataclass
class PayrollBreakdown:
    """Full calculation result for one employee and period."""
    employee_id: uuid.UUID
    employee_name: str
    staff_id: str
    department_id: Optional[uuid.UUID]
    department_name: Optional[str]
    period: PayrollPeriod
    frequency: PayrollFrequency
    scope: PayrollScope
    salary: SalaryResolution
    allowances: PoolResult
    bonuses: PoolResult
    deductions: PoolResult
    paye: TaxComputation
    run_id: Optional[uuid.UUID] = None

    @property
    def base_salary(self) -> Decimal:
        return self.salary.effective_base_salary

    @property
    def gross_pay(self) -> Decimal:
        return round_money(self.base_salary + self.allowances.total + self.bonuses.total)

    @property
    def taxable_income(self) -> Decimal:
        return round_money(
            self.base_salary + self.allowances.taxable_total + self.bonuses.taxable_total
        )

    @property
    def paye_amount(self) -> Decimal:
        return self.paye.period_tax

    @property
    def statutory_deductions(self) -> Decimal:
        return round_money(self.deductions.statutory_total + self.paye_amount)

    @property
    def voluntary_deductions(self) -> Decimal:
        return round_money(self.deductions.voluntary_total)

    @property
    def total_deductions(self) -> Decimal:
        return round_money(self.deductions.total + self.paye_amount)

    @property
    def net_pay(self) -> Decimal:
        return round_money(self.gross_pay - self.total_deductions)

    @property
    def applied_items(self) -> List[Any]:
        return self.allowances.items + self.bonuses.items + self.deductions.items

    def to_dict(self) -> Dict[str, Any]:
        return {
            "employee": {
                "id": str(self.employee_id),
                "name": self.employee_name,
                "staff_id": self.staff_id,
                "department_id": str(self.department_id) if self.department_id else None,
                "department": self.department_name,
            },
            "period": {
                "month": self.period.month,
                "year": self.period.year,
                "label": self.period.label(),
                "frequency": self.frequency.value,
                "scope": self.scope.value,
            },
            "base_salary": self.salary.to_dict(),
            "allowances": [i.to_dict() for i in self.allowances.items],
            "bonuses": [i.to_dict() for i in self.bonuses.items],
            "deductions": [i.to_dict() for i in self.deductions.items],
            "paye": self.paye.to_dict(),
            "summary": {
                "base_salary": str(self.base_salary),
                "total_allowances": str(self.allowances.total),
                "taxable_allowances": str(self.allowances.taxable_total),
                "non_taxable_allowances": str(self.allowances.non_taxable_total),
                "total_bonuses": str(self.bonuses.total),
                "taxable_bonuses": str(self.bonuses.taxable_total),
                "non_taxable_bonuses": str(self.bonuses.non_taxable_total),
                "gross_pay": str(self.gross_pay),
                "taxable_income": str(self.taxable_income),
                "paye": str(self.paye_amount),
                "statutory_deductions": str(self.statutory_deductions),
                "voluntary_deductions": str(self.voluntary_deductions),
                "total_deductions": str(self.total_deductions),
                "net_pay": str(self.net_pay),
            },
        }


@dataclass
class ProcessingSummary:
    """Outcome of a batch commit."""
    run_id: uuid.UUID
    period: PayrollPeriod
    frequency: PayrollFrequency
    scope: PayrollScope
    total_employees: int = 0
    successful: int = 0
    failed: int = 0
    duplicates: List[Dict[str, Any]] = field(default_factory=list)
    errors: List[Dict[str, Any]] = field(default_factory=list)
    payroll_ids: List[uuid.UUID] = field(default_factory=list)
    total_gross_pay: Decimal = ZERO
    total_net_pay: Decimal = ZERO
    total_deductions: Decimal = ZERO

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": str(self.run_id),
            "month": self.period.month,
            "year": self.period.year,
            "frequency": self.frequency.value,
            "scope": self.scope.value,
            "total_employees": self.total_employees,
            "successful": self.successful,
            "failed": self.failed,
            "duplicates": self.duplicates,
            "errors": self.errors,
            "payroll_ids": [str(p) for p in self.payroll_ids],
            "total_gross_pay": str(self.total_gross_pay),
            "total_net_pay": str(self.total_net_pay),
            "total_deductions": str(self.total_deductions),
        }


def _failure_step(exc: Exception) -> str:
    """Which stage of the per-employee pipeline an exception belongs to."""
    if isinstance(exc, DuplicateProcessingException):
        return "duplicate_check"
    if isinstance(exc, ConcurrencyConflictException):
        return "mark_items_used"
    if isinstance(exc, NotFoundException):
        return "resolve_salary"
    if isinstance(exc, AppException):
        return "calculate"
    return "persist"


def _failure_code(exc: Exception) -> str:
    if isinstance(exc, AppException):
        return exc.code.value
    return ErrorCode.DATABASE_ERROR.value


def _is_duplicate_record(exc: IntegrityError) -> bool:
    """True when the payroll tuple unique constraint rejected the insert."""
    message = str(exc.orig).lower() if exc.orig is not None else str(exc).lower()
    if PAYROLL_RECORD_UNIQUE in message:
        return True
    # SQLite names the columns, not the constraint
    return "unique" in message and "payroll_records" in message


# ===========================================
# SERVICE
# ===========================================

class PayrollService:
    """Service for payroll calculation and processing."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.grades = SalaryGradeService(db)
        self.compensation = CompensationService(db)
        self.paye = PAYEService(db)
        self.audit = AuditService(db)

    # ===========================================
    # LOOKUPS
    # ===========================================

    async def get_employee(self, employee_id: uuid.UUID, refresh: bool = False) -> Employee:
        employee = await self.db.get(Employee, employee_id, populate_existing=refresh)
        if employee is None:
            raise EmployeeNotFoundException(employee_id)
        return employee

    async def record_exists(
        self,
        employee_id: uuid.UUID,
        period: PayrollPeriod,
        frequency: PayrollFrequency,
        scope: PayrollScope,
    ) -> bool:
        result = await self.db.execute(
            select(PayrollRecord.id).where(
                and_(
                    PayrollRecord.employee_id == employee_id,
                    PayrollRecord.month == period.month,
                    PayrollRecord.year == period.year,
                    PayrollRecord.frequency == frequency,
                    PayrollRecord.scope == scope,
                )
            )
        )
        return result.first() is not None

    async def resolve_employees(
        self,
        scope: PayrollScope,
        target_ids: Optional[Iterable[Any]] = None,
    ) -> List[Employee]:
        """
        Employees a batch run applies to.

        company: active employees who completed onboarding
        department: active employees in any of the given departments
        individual: the given employees, if active
        """
        scope = PayrollScope(scope)
        ids = [t if isinstance(t, uuid.UUID) else uuid.UUID(str(t)) for t in (target_ids or [])]

        query = select(Employee).where(Employee.is_active.is_(True))
        if scope == PayrollScope.COMPANY:
            if ids:
                raise InvalidScopeException(scope.value, "Company scope takes no target ids")
            query = query.where(Employee.onboarding_completed.is_(True))
        elif scope == PayrollScope.DEPARTMENT:
            if not ids:
                raise InvalidScopeException(scope.value, "Department scope requires department ids")
            query = query.where(Employee.department_id.in_(ids))
        else:
            if not ids:
                raise InvalidScopeException(scope.value, "Individual scope requires employee ids")
            query = query.where(Employee.id.in_(ids))

        result = await self.db.execute(query.order_by(Employee.last_name, Employee.first_name))
        return list(result.scalars().all())

    async def get_record(self, record_id: uuid.UUID) -> PayrollRecord:
        record = await self.db.get(PayrollRecord, record_id, populate_existing=True)
        if record is None:
            raise NotFoundException(
                "PayrollRecord", record_id, code=ErrorCode.PAYROLL_RECORD_NOT_FOUND,
            )
        return record

    async def list_employee_records(
        self,
        employee_id: uuid.UUID,
        year: Optional[int] = None,
    ) -> List[PayrollRecord]:
        query = select(PayrollRecord).where(PayrollRecord.employee_id == employee_id)
        if year is not None:
            query = query.where(PayrollRecord.year == year)
        result = await self.db.execute(
            query.order_by(PayrollRecord.year.desc(), PayrollRecord.month.desc())
        )
        return list(result.scalars().all())

    # ===========================================
    # CALCULATION
    # ===========================================

    async def _load_pools(self) -> Dict[str, List[Any]]:
        return {kind: await self.compensation.load_active_items(kind) for kind in ITEM_MODELS}

    async def _calculate(
        self,
        employee: Employee,
        period: PayrollPeriod,
        frequency: PayrollFrequency,
        scope: PayrollScope,
        run_id: Optional[uuid.UUID] = None,
        pools: Optional[Dict[str, List[Any]]] = None,
        calculator: Optional[PAYECalculator] = None,
    ) -> PayrollBreakdown:
        salary = await self.grades.resolve_for_employee(employee)
        if pools is None:
            pools = await self._load_pools()
        if calculator is None:
            calculator = await self.paye.get_calculator()

        base = salary.effective_base_salary

        allowances = self.compensation.aggregate_pool(
            "allowance", pools["allowance"], period, frequency,
            employee.id, employee.department_id, base, base, run_id,
        )
        bonuses = self.compensation.aggregate_pool(
            "bonus", pools["bonus"], period, frequency,
            employee.id, employee.department_id, base, base + allowances.total, run_id,
        )
        deductions = self.compensation.aggregate_pool(
            "deduction", pools["deduction"], period, frequency,
            employee.id, employee.department_id, base,
            base + allowances.total + bonuses.total, run_id,
        )

        taxable_income = base + allowances.taxable_total + bonuses.taxable_total
        paye = calculator.calculate_tax(taxable_income, frequency)

        # The first PAYE line carries the computed tax; any other stays at 0
        paye_lines = [i for i in deductions.items if i.is_paye]
        if paye_lines:
            paye_lines[0].amount = paye.period_tax

        department = employee.department
        return PayrollBreakdown(
            employee_id=employee.id,
            employee_name=employee.full_name,
            staff_id=employee.staff_id,
            department_id=employee.department_id,
            department_name=department.name if department else None,
            period=period,
            frequency=frequency,
            scope=scope,
            salary=salary,
            allowances=allowances,
            bonuses=bonuses,
            deductions=deductions,
            paye=paye,
            run_id=run_id,
        )

    async def calculate_employee_payroll(
        self,
        employee_id: uuid.UUID,
        month: int,
        year: int,
        frequency: PayrollFrequency = PayrollFrequency.MONTHLY,
        mark_as_used: bool = False,
        scope: PayrollScope = PayrollScope.INDIVIDUAL,
        actor_id: Optional[uuid.UUID] = None,
        run_id: Optional[uuid.UUID] = None,
    ) -> PayrollBreakdown:
        """
        Calculate payroll for one employee.

        With ``mark_as_used`` False nothing is written. Otherwise every
        applied item is marked used (and audited) in the current
        transaction; the caller commits.
        """
        period = PayrollPeriod(month, year)
        frequency = PayrollFrequency(frequency)
        scope = PayrollScope(scope)

        if await self.record_exists(employee_id, period, frequency, scope):
            raise DuplicateProcessingException(employee_id, month, year, frequency.value, scope.value)

        employee = await self.get_employee(employee_id)
        if mark_as_used and run_id is None:
            run_id = uuid.uuid4()

        breakdown = await self._calculate(employee, period, frequency, scope, run_id)

        if mark_as_used:
            await self.compensation.mark_items_used(
                breakdown.applied_items,
                period=period,
                frequency=frequency,
                scope=scope,
                employee_id=employee.id,
                run_id=run_id,
                actor_id=actor_id,
            )

        return breakdown

    # ===========================================
    # PREVIEW
    # ===========================================

    async def preview_payroll(
        self,
        scope: PayrollScope,
        target_ids: Optional[Sequence[Any]],
        month: int,
        year: int,
        frequency: PayrollFrequency = PayrollFrequency.MONTHLY,
    ) -> Dict[str, Any]:
        """
        Calculate payroll for every employee in scope without persisting.

        Employees already processed for the period are listed under
        ``duplicates``; any other failure propagates.
        """
        period = PayrollPeriod(month, year)
        frequency = PayrollFrequency(frequency)
        scope = PayrollScope(scope)

        employees = await self.resolve_employees(scope, target_ids)
        pools = await self._load_pools()
        calculator = await self.paye.get_calculator()

        breakdowns: List[PayrollBreakdown] = []
        duplicates: List[Dict[str, Any]] = []

        for employee in employees:
            if await self.record_exists(employee.id, period, frequency, scope):
                duplicates.append({"employee_id": str(employee.id), "employee_name": employee.full_name})
                continue
            breakdowns.append(
                await self._calculate(employee, period, frequency, scope, pools=pools, calculator=calculator)
            )

        return {
            "period": {"month": month, "year": year, "label": period.label(), "frequency": frequency.value},
            "scope": self._scope_details(scope, target_ids, employees),
            "employees": [b.to_dict() for b in breakdowns],
            "totals": self._totals(breakdowns),
            "department_breakdown": self._department_breakdown(breakdowns),
            "component_totals": self._component_totals(breakdowns),
            "duplicates": duplicates,
        }

    @staticmethod
    def _scope_details(
        scope: PayrollScope,
        target_ids: Optional[Sequence[Any]],
        employees: Sequence[Employee],
    ) -> Dict[str, Any]:
        departments = sorted({e.department.name for e in employees if e.department is not None})
        return {
            "scope": scope.value,
            "target_ids": [str(t) for t in (target_ids or [])],
            "employee_count": len(employees),
            "departments": departments,
        }

    @staticmethod
    def _totals(breakdowns: Sequence[PayrollBreakdown]) -> Dict[str, Any]:
        def total(attr: str) -> str:
            return str(round_money(sum((getattr(b, attr) for b in breakdowns), ZERO)))

        return {
            "employee_count": len(breakdowns),
            "total_base_salary": total("base_salary"),
            "total_allowances": str(round_money(sum((b.allowances.total for b in breakdowns), ZERO))),
            "total_bonuses": str(round_money(sum((b.bonuses.total for b in breakdowns), ZERO))),
            "total_gross_pay": total("gross_pay"),
            "total_taxable_income": total("taxable_income"),
            "total_paye": total("paye_amount"),
            "total_deductions": total("total_deductions"),
            "total_net_pay": total("net_pay"),
        }

    @staticmethod
    def _department_breakdown(breakdowns: Sequence[PayrollBreakdown]) -> List[Dict[str, Any]]:
        grouped: Dict[Optional[uuid.UUID], List[PayrollBreakdown]] = defaultdict(list)
        for b in breakdowns:
            grouped[b.department_id].append(b)

        rows = []
        for department_id, members in grouped.items():
            rows.append({
                "department_id": str(department_id) if department_id else None,
                "department": members[0].department_name or "Unassigned",
                "employee_count": len(members),
                "total_gross_pay": str(round_money(sum((m.gross_pay for m in members), ZERO))),
                "total_deductions": str(round_money(sum((m.total_deductions for m in members), ZERO))),
                "total_net_pay": str(round_money(sum((m.net_pay for m in members), ZERO))),
            })
        return sorted(rows, key=lambda r: r["department"])

    @staticmethod
    def _component_totals(breakdowns: Sequence[PayrollBreakdown]) -> Dict[str, Dict[str, str]]:
        totals: Dict[str, Dict[str, Decimal]] = {
            "allowances": defaultdict(lambda: ZERO),
            "bonuses": defaultdict(lambda: ZERO),
            "deductions": defaultdict(lambda: ZERO),
        }
        for b in breakdowns:
            for key, pool in (("allowances", b.allowances), ("bonuses", b.bonuses), ("deductions", b.deductions)):
                for item in pool.items:
                    totals[key][item.category] += item.amount
        return {
            key: {category: str(round_money(amount)) for category, amount in sorted(values.items())}
            for key, values in totals.items()
        }

    # ===========================================
    # COMMIT
    # ===========================================

    async def _commit_employee(
        self,
        employee_id: uuid.UUID,
        period: PayrollPeriod,
        frequency: PayrollFrequency,
        scope: PayrollScope,
        run_id: uuid.UUID,
        actor_id: Optional[uuid.UUID],
    ) -> Tuple[PayrollRecord, PayrollBreakdown]:
        """One employee's unit of work. The caller commits or rolls back."""
        if await self.record_exists(employee_id, period, frequency, scope):
            raise DuplicateProcessingException(
                employee_id, period.month, period.year, frequency.value, scope.value,
            )

        employee = await self.get_employee(employee_id, refresh=True)
        breakdown = await self._calculate(employee, period, frequency, scope, run_id)

        record = PayrollRecord(
            employee_id=employee.id,
            department_id=employee.department_id,
            salary_grade_id=breakdown.salary.salary_grade_id,
            month=period.month,
            year=period.year,
            frequency=frequency,
            scope=scope,
            base_salary=breakdown.salary.base_salary,
            effective_base_salary=breakdown.salary.effective_base_salary,
            step_increment=breakdown.salary.step_increment,
            salary_step=breakdown.salary.step,
            grade_allowances={
                **{k: str(v) for k, v in breakdown.salary.grade_allowances.items()},
                "custom_allowances": breakdown.salary.custom_allowances,
                "custom_allowances_total": str(breakdown.salary.custom_allowances_total),
            },
            allowances=[i.to_dict() for i in breakdown.allowances.items],
            bonuses=[i.to_dict() for i in breakdown.bonuses.items],
            deductions=[i.to_dict() for i in breakdown.deductions.items],
            paye_breakdown=breakdown.paye.breakdown,
            total_allowances=breakdown.allowances.total,
            taxable_allowances=breakdown.allowances.taxable_total,
            total_bonuses=breakdown.bonuses.total,
            taxable_bonuses=breakdown.bonuses.taxable_total,
            statutory_deductions=breakdown.statutory_deductions,
            voluntary_deductions=breakdown.voluntary_deductions,
            pension_amount=breakdown.deductions.category_total(DeductionCategory.PENSION.value),
            nhis_amount=breakdown.deductions.category_total(DeductionCategory.NHIS.value),
            paye_amount=breakdown.paye_amount,
            total_deductions=breakdown.total_deductions,
            taxable_income=breakdown.taxable_income,
            gross_pay=breakdown.gross_pay,
            net_pay=breakdown.net_pay,
            payroll_run_id=run_id,
            processed_by_id=actor_id,
            created_by_id=actor_id,
        )
        self.db.add(record)
        try:
            await self.db.flush()
        except IntegrityError as exc:
            if not _is_duplicate_record(exc):
                raise
            raise DuplicateProcessingException(
                employee_id, period.month, period.year, frequency.value, scope.value,
            ) from exc

        await self.audit.log_action(
            entity_type="payroll_record",
            entity_id=str(record.id),
            action=AuditAction.PAYROLL_PROCESSED,
            user_id=actor_id,
            new_values={
                "employee_id": employee.id,
                "period": period.label(),
                "frequency": frequency.value,
                "scope": scope.value,
                "net_pay": breakdown.net_pay,
            },
        )

        await self.compensation.mark_items_used(
            breakdown.applied_items,
            period=period,
            frequency=frequency,
            scope=scope,
            employee_id=employee.id,
            run_id=run_id,
            actor_id=actor_id,
            payroll_id=record.id,
        )
        await self.db.flush()
        return record, breakdown

    async def commit_payroll(
        self,
        scope: PayrollScope,
        target_ids: Optional[Sequence[Any]],
        month: int,
        year: int,
        frequency: PayrollFrequency = PayrollFrequency.MONTHLY,
        actor_id: Optional[uuid.UUID] = None,
    ) -> ProcessingSummary:
        """
        Process and persist payroll for every employee in scope.

        Each employee is committed on its own. Failures are collected in the
        summary and never stop the batch. A usage conflict rolls the
        employee back and is retried against fresh item versions.
        """
        period = PayrollPeriod(month, year)
        frequency = PayrollFrequency(frequency)
        scope = PayrollScope(scope)
        run_id = uuid.uuid4()

        if settings.expire_items_before_commit:
            await self.compensation.expire_lapsed_items()
            await self.db.commit()

        employees = [(e.id, e.full_name) for e in await self.resolve_employees(scope, target_ids)]
        summary = ProcessingSummary(
            run_id=run_id,
            period=period,
            frequency=frequency,
            scope=scope,
            total_employees=len(employees),
        )

        logger.info(
            f"Payroll run {run_id} started: {scope.value} {frequency.value} "
            f"{period.label()}, {len(employees)} employee(s)"
        )

        for employee_id, employee_name in employees:
            retries_left = settings.usage_conflict_retries
            while True:
                try:
                    record, breakdown = await self._commit_employee(
                        employee_id, period, frequency, scope, run_id, actor_id,
                    )
                    await self.db.commit()
                except DuplicateProcessingException:
                    await self.db.rollback()
                    summary.duplicates.append({"employee_id": str(employee_id), "employee_name": employee_name})
                except ConcurrencyConflictException as exc:
                    await self.db.rollback()
                    if retries_left > 0:
                        retries_left -= 1
                        logger.info(f"Usage conflict for employee {employee_id}; retrying")
                        continue
                    self._record_failure(summary, employee_id, employee_name, exc)
                except (AppException, SQLAlchemyError) as exc:
                    await self.db.rollback()
                    self._record_failure(summary, employee_id, employee_name, exc)
                else:
                    summary.successful += 1
                    summary.payroll_ids.append(record.id)
                    summary.total_gross_pay += breakdown.gross_pay
                    summary.total_net_pay += breakdown.net_pay
                    summary.total_deductions += breakdown.total_deductions
                break

        await self.audit.log_action(
            entity_type="payroll_run",
            entity_id=str(run_id),
            action=AuditAction.PAYROLL_BATCH_PROCESSED,
            user_id=actor_id,
            new_values={
                "scope": scope.value,
                "frequency": frequency.value,
                "month": month,
                "year": year,
                "total_employees": summary.total_employees,
                "successful": summary.successful,
                "failed": summary.failed,
                "duplicates": len(summary.duplicates),
                "total_net_pay": summary.total_net_pay,
            },
        )
        await self.db.commit()

        logger.info(
            f"Payroll run {run_id} finished: {summary.successful} processed, "
            f"{summary.failed} failed, {len(summary.duplicates)} duplicate(s)"
        )
        return summary

    @staticmethod
    def _record_failure(
        summary: ProcessingSummary,
        employee_id: uuid.UUID,
        employee_name: str,
        exc: Exception,
    ) -> None:
        summary.failed += 1
        summary.errors.append({
            "employee_id": str(employee_id),
            "employee_name": employee_name,
            "step": _failure_step(exc),
            "code": _failure_code(exc),
            "message": exc.message if isinstance(exc, AppException) else str(exc),
        })
        logger.warning(f"Payroll failed for employee {employee_id}: {summary.errors[-1]['message']}")
