"""
ERP Payroll Engine - Payroll Service Tests

End-to-end calculation, preview and batch commit against SQLite.
"""

import uuid
import pytest
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.models.audit import AuditAction, AuditLog
from app.models.compensation import Allowance, Bonus, Deduction
from app.models.employee import Employee, Role
from app.models.payroll import PayrollFrequency, PayrollRecord, PayrollScope
from app.services.compensation_service import CompensationService
from app.services.payroll_service import PayrollService, _is_duplicate_record
from app.utils.error_handling import (
    ConcurrencyConflictException,
    DuplicateProcessingException,
    EmployeeNotFoundException,
    InvalidScopeException,
)
from tests.conftest import create_employee, create_grade, item_payload, map_role


async def _count(db: AsyncSession, model) -> int:
    result = await db.execute(select(func.count()).select_from(model))
    return result.scalar()


async def _standard_items(db: AsyncSession) -> None:
    """Taxable ₦50,000 allowance, non-taxable ₦20,000 transport and PAYE."""
    service = CompensationService(db)
    await service.create_allowance(item_payload(name="Responsibility", category="special"))
    await service.create_allowance(item_payload(name="Transport", category="transport", amount=Decimal("20000")))
    await service.create_deduction(item_payload(name="PAYE", category="paye", amount=None))
    await db.commit()


class TestEmployeeCalculation:
    """calculate_employee_payroll."""

    @pytest.mark.asyncio
    async def test_full_breakdown(self, db_session: AsyncSession, employee, tax_brackets):
        await _standard_items(db_session)
        service = PayrollService(db_session)

        breakdown = await service.calculate_employee_payroll(employee.id, 3, 2025)

        # 350,000 taxable a month is 4.2M a year; 75,000 annual tax on two bands
        assert breakdown.base_salary == Decimal("300000.00")
        assert breakdown.taxable_income == Decimal("350000.00")
        assert breakdown.gross_pay == Decimal("370000.00")
        assert breakdown.paye_amount == Decimal("6250.00")
        assert breakdown.total_deductions == Decimal("6250.00")
        assert breakdown.statutory_deductions == Decimal("6250.00")
        assert breakdown.net_pay == Decimal("363750.00")

        paye_line = breakdown.deductions.items[0]
        assert paye_line.is_paye
        assert paye_line.amount == Decimal("6250.00")

        summary = breakdown.to_dict()["summary"]
        assert summary["non_taxable_allowances"] == "20000.00"
        assert summary["net_pay"] == "363750.00"

    @pytest.mark.asyncio
    async def test_percentage_of_running_gross(self, db_session: AsyncSession, employee, tax_brackets):
        await _standard_items(db_session)
        await CompensationService(db_session).create_deduction(item_payload(
            name="Pension",
            category="pension",
            deduction_type="statutory",
            calculation_type="percentage",
            percentage_base="gross_salary",
            amount=Decimal("8"),
        ))
        await db_session.commit()

        breakdown = await PayrollService(db_session).calculate_employee_payroll(employee.id, 3, 2025)

        assert breakdown.deductions.category_total("pension") == Decimal("29600.00")
        assert breakdown.statutory_deductions == Decimal("35850.00")
        assert breakdown.net_pay == Decimal("334150.00")

    @pytest.mark.asyncio
    async def test_no_brackets_means_no_paye(self, db_session: AsyncSession, employee):
        breakdown = await PayrollService(db_session).calculate_employee_payroll(employee.id, 3, 2025)

        assert breakdown.paye_amount == Decimal("0.00")
        assert breakdown.net_pay == Decimal("300000.00")

    @pytest.mark.asyncio
    async def test_mark_as_used_consumes_items(self, db_session: AsyncSession, employee, tax_brackets):
        service = CompensationService(db_session)
        allowance = await service.create_allowance(item_payload())
        await db_session.commit()
        allowance_id = allowance.id

        payroll = PayrollService(db_session)
        first = await payroll.calculate_employee_payroll(employee.id, 3, 2025, mark_as_used=True)
        await db_session.commit()

        allowance = await db_session.get(Allowance, allowance_id, populate_existing=True)
        assert allowance.is_used is True
        assert allowance.last_used_run_id == first.run_id
        assert await _count(db_session, PayrollRecord) == 0

        again = await payroll.calculate_employee_payroll(employee.id, 3, 2025)
        assert again.allowances.items == []

        next_month = await payroll.calculate_employee_payroll(employee.id, 4, 2025)
        assert len(next_month.allowances.items) == 1

    @pytest.mark.asyncio
    async def test_repeat_calculation_changes_nothing(self, db_session: AsyncSession, employee, tax_brackets):
        await _standard_items(db_session)
        await CompensationService(db_session).create_bonus(item_payload(name="Performance"))
        await db_session.commit()
        employee_id = employee.id
        service = PayrollService(db_session)

        async def usage_state():
            state = {}
            for model in (Allowance, Bonus, Deduction):
                result = await db_session.execute(select(model).execution_options(populate_existing=True))
                for item in result.scalars():
                    state[item.id] = (item.is_used, item.usage_count, item.version, item.last_used_date)
            return state

        before = await usage_state()
        audit_before = await _count(db_session, AuditLog)
        first = await service.calculate_employee_payroll(employee_id, 3, 2025)
        second = await service.calculate_employee_payroll(employee_id, 3, 2025)
        await db_session.commit()

        assert first.to_dict() == second.to_dict()
        assert len(first.bonuses.items) == 1
        assert len(before) == 4
        assert await usage_state() == before
        assert await _count(db_session, AuditLog) == audit_before
        assert await _count(db_session, PayrollRecord) == 0


class TestPreview:
    """preview_payroll never writes."""

    @pytest.mark.asyncio
    async def test_preview_is_repeatable_and_read_only(self, db_session: AsyncSession, employee, tax_brackets):
        await _standard_items(db_session)
        service = PayrollService(db_session)
        audit_before = await _count(db_session, AuditLog)

        first = await service.preview_payroll(PayrollScope.COMPANY, None, 3, 2025)
        second = await service.preview_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert first == second
        assert first["totals"]["total_net_pay"] == "363750.00"
        assert first["department_breakdown"][0]["department"] == "Finance"
        assert first["component_totals"]["allowances"] == {"special": "50000.00", "transport": "20000.00"}
        assert await _count(db_session, AuditLog) == audit_before
        assert await _count(db_session, PayrollRecord) == 0

    @pytest.mark.asyncio
    async def test_preview_lists_processed_employees_as_duplicates(
        self, db_session: AsyncSession, employee, tax_brackets,
    ):
        employee_id = employee.id
        service = PayrollService(db_session)
        await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        preview = await service.preview_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert preview["employees"] == []
        assert preview["duplicates"][0]["employee_id"] == str(employee_id)

    @pytest.mark.asyncio
    async def test_department_scope_requires_targets(self, db_session: AsyncSession, employee):
        with pytest.raises(InvalidScopeException):
            await PayrollService(db_session).preview_payroll(PayrollScope.DEPARTMENT, [], 3, 2025)


class TestCommit:
    """commit_payroll batches."""

    @pytest.mark.asyncio
    async def test_commit_leaves_employee_step_untouched(self, db_session: AsyncSession, department, tax_brackets):
        role = Role(name="Analyst", level=6)
        db_session.add(role)
        await db_session.commit()
        grade = await create_grade(db_session, grade="GL-05", steps=[
            {"step": "Step1", "increment_percent": "0", "years_of_service_threshold": "0"},
            {"step": "Step2", "increment_percent": "10", "years_of_service_threshold": "2"},
        ])
        await map_role(db_session, role, grade)
        employee = await create_employee(db_session, role, department, years_of_service=Decimal("3"))
        employee_id = employee.id

        summary = await PayrollService(db_session).commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert summary.successful == 1
        record = await db_session.get(PayrollRecord, summary.payroll_ids[0])
        assert record.salary_step == "Step2"
        assert record.effective_base_salary == Decimal("220000.00")
        employee = await db_session.get(Employee, employee_id, populate_existing=True)
        assert employee.salary_step is None

    @pytest.mark.asyncio
    async def test_commit_persists_record(self, db_session: AsyncSession, employee, tax_brackets):
        await _standard_items(db_session)
        employee_id = employee.id
        service = PayrollService(db_session)

        summary = await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert summary.successful == 1
        assert summary.failed == 0
        assert summary.total_net_pay == Decimal("363750.00")

        records = await service.list_employee_records(employee_id)
        assert len(records) == 1
        record = records[0]
        assert record.payroll_run_id == summary.run_id
        assert record.gross_pay == Decimal("370000.00")
        assert record.paye_amount == Decimal("6250.00")
        assert [a["name"] for a in record.allowances] == ["Responsibility", "Transport"]

        audit = await db_session.execute(
            select(AuditLog).where(AuditLog.action == AuditAction.PAYROLL_PROCESSED)
        )
        assert audit.scalar_one().target_entity_id == str(record.id)

        paid = await db_session.execute(select(Allowance).execution_options(populate_existing=True))
        assert {a.last_used_in_payroll_id for a in paid.scalars()} == {record.id}

    @pytest.mark.asyncio
    async def test_second_commit_reports_duplicate(self, db_session: AsyncSession, employee, tax_brackets):
        employee_id = employee.id
        service = PayrollService(db_session)

        await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)
        summary = await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert summary.successful == 0
        assert [d["employee_id"] for d in summary.duplicates] == [str(employee_id)]
        assert await _count(db_session, PayrollRecord) == 1

        with pytest.raises(DuplicateProcessingException):
            await service.calculate_employee_payroll(employee_id, 3, 2025, scope=PayrollScope.COMPANY)

    @pytest.mark.asyncio
    async def test_other_frequency_is_not_a_duplicate(self, db_session: AsyncSession, employee, tax_brackets):
        service = PayrollService(db_session)

        await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)
        summary = await service.commit_payroll(
            PayrollScope.COMPANY, None, 3, 2025, frequency=PayrollFrequency.QUARTERLY,
        )

        assert summary.successful == 1

    @pytest.mark.asyncio
    async def test_missing_role_mapping_is_collected(
        self, db_session: AsyncSession, employee, department, tax_brackets,
    ):
        unmapped = Role(name="Intern", level=1)
        db_session.add(unmapped)
        await db_session.commit()
        stray = await create_employee(db_session, unmapped, department)
        stray_id = stray.id

        summary = await PayrollService(db_session).commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert summary.total_employees == 2
        assert summary.successful == 1
        assert summary.failed == 1
        assert summary.errors[0]["employee_id"] == str(stray_id)
        assert summary.errors[0]["step"] == "resolve_salary"
        assert summary.errors[0]["code"] == "ROLE_MAPPING_NOT_FOUND"

    @pytest.mark.asyncio
    async def test_shared_item_paid_to_every_employee_in_run(
        self, db_session: AsyncSession, role, department, salary_grade, tax_brackets,
    ):
        await create_employee(db_session, role, department)
        await create_employee(db_session, role, department)
        bonus = await CompensationService(db_session).create_bonus(item_payload(
            name="Launch bonus", frequency="one_time", amount=Decimal("10000"),
        ))
        await db_session.commit()
        bonus_id = bonus.id

        summary = await PayrollService(db_session).commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert summary.successful == 2
        records = (await db_session.execute(select(PayrollRecord))).scalars().all()
        assert all(len(r.bonuses) == 1 for r in records)

        bonus = await db_session.get(Bonus, bonus_id, populate_existing=True)
        assert bonus.usage_count == 2
        assert bonus.last_used_run_id == summary.run_id

    @pytest.mark.asyncio
    async def test_one_time_item_not_paid_in_next_run(self, db_session: AsyncSession, employee, tax_brackets):
        await CompensationService(db_session).create_bonus(item_payload(
            name="Signing bonus", frequency="one_time", amount=Decimal("10000"),
        ))
        await db_session.commit()
        employee_id = employee.id
        service = PayrollService(db_session)

        await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)
        await service.commit_payroll(PayrollScope.COMPANY, None, 4, 2025)

        records = await service.list_employee_records(employee_id)
        by_month = {r.month: r for r in records}
        assert len(by_month[3].bonuses) == 1
        assert by_month[4].bonuses == []

    @pytest.mark.asyncio
    async def test_monthly_item_paid_again_next_month(self, db_session: AsyncSession, employee, tax_brackets):
        await CompensationService(db_session).create_allowance(item_payload())
        await db_session.commit()
        employee_id = employee.id
        service = PayrollService(db_session)

        await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)
        await service.commit_payroll(PayrollScope.COMPANY, None, 4, 2025)

        records = await service.list_employee_records(employee_id, year=2025)
        assert all(len(r.allowances) == 1 for r in records)
        assert len(records) == 2

    @pytest.mark.asyncio
    async def test_usage_conflict_is_retried(self, db_session: AsyncSession, employee, tax_brackets, monkeypatch):
        await CompensationService(db_session).create_allowance(item_payload())
        await db_session.commit()

        original = CompensationService.mark_items_used
        calls = []

        async def conflict_once(self, applied, *args, **kwargs):
            calls.append(len(applied))
            if len(calls) == 1:
                raise ConcurrencyConflictException("Allowance", applied[0].item_id, applied[0].version)
            return await original(self, applied, *args, **kwargs)

        monkeypatch.setattr(CompensationService, "mark_items_used", conflict_once)

        summary = await PayrollService(db_session).commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert len(calls) == 2
        assert summary.successful == 1
        assert summary.failed == 0
        assert await _count(db_session, PayrollRecord) == 1

    @pytest.mark.asyncio
    async def test_usage_conflict_gives_up_after_retries(
        self, db_session: AsyncSession, employee, tax_brackets, monkeypatch,
    ):
        await CompensationService(db_session).create_allowance(item_payload())
        await db_session.commit()

        async def always_conflict(self, applied, *args, **kwargs):
            raise ConcurrencyConflictException("Allowance", applied[0].item_id, applied[0].version)

        monkeypatch.setattr(CompensationService, "mark_items_used", always_conflict)
        monkeypatch.setattr(settings, "usage_conflict_retries", 1)

        summary = await PayrollService(db_session).commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert summary.failed == 1
        assert summary.errors[0]["step"] == "mark_items_used"
        assert await _count(db_session, PayrollRecord) == 0

    @pytest.mark.asyncio
    async def test_individual_scope_ignores_other_employees(
        self, db_session: AsyncSession, employee, role, other_department, tax_brackets,
    ):
        other = await create_employee(db_session, role, other_department)
        other_id = other.id

        summary = await PayrollService(db_session).commit_payroll(
            PayrollScope.INDIVIDUAL, [employee.id], 3, 2025,
        )

        assert summary.total_employees == 1
        assert await PayrollService(db_session).list_employee_records(other_id) == []

    @pytest.mark.asyncio
    async def test_unknown_employee(self, db_session: AsyncSession):
        with pytest.raises(EmployeeNotFoundException):
            await PayrollService(db_session).calculate_employee_payroll(uuid.uuid4(), 3, 2025)


class TestRecordInsertFailures:
    """Integrity errors while inserting the payroll record."""

    @staticmethod
    def integrity_error(message: str) -> IntegrityError:
        return IntegrityError("INSERT INTO payroll_records ...", {}, Exception(message))

    def test_unique_violation_is_a_duplicate(self):
        assert _is_duplicate_record(self.integrity_error(
            'duplicate key value violates unique constraint "uq_payroll_records_employee_period"'
        ))
        assert _is_duplicate_record(self.integrity_error(
            "UNIQUE constraint failed: payroll_records.employee_id, payroll_records.month"
        ))

    def test_other_violations_are_not_duplicates(self):
        assert not _is_duplicate_record(self.integrity_error(
            "NOT NULL constraint failed: payroll_records.gross_pay"
        ))
        assert not _is_duplicate_record(self.integrity_error("FOREIGN KEY constraint failed"))

    @pytest.mark.asyncio
    async def test_constraint_catches_duplicate_missed_by_precheck(
        self, db_session: AsyncSession, employee, tax_brackets, monkeypatch,
    ):
        employee_id = employee.id
        service = PayrollService(db_session)
        await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        async def never_exists(self, *args, **kwargs):
            return False

        monkeypatch.setattr(PayrollService, "record_exists", never_exists)
        summary = await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert summary.successful == 0
        assert summary.errors == []
        assert [d["employee_id"] for d in summary.duplicates] == [str(employee_id)]

    @pytest.mark.asyncio
    async def test_non_duplicate_integrity_error_is_a_failure(
        self, db_session: AsyncSession, employee, tax_brackets, monkeypatch,
    ):
        service = PayrollService(db_session)
        await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        async def never_exists(self, *args, **kwargs):
            return False

        monkeypatch.setattr(PayrollService, "record_exists", never_exists)
        monkeypatch.setattr("app.services.payroll_service._is_duplicate_record", lambda exc: False)
        summary = await service.commit_payroll(PayrollScope.COMPANY, None, 3, 2025)

        assert summary.duplicates == []
        assert summary.failed == 1
        assert summary.errors[0]["step"] == "persist"
        assert summary.errors[0]["code"] == "DATABASE_ERROR"
