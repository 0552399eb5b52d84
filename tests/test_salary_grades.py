"""
ERP Payroll Engine - Salary Grade Tests

Step selection, salary resolution and grade administration.
"""

import pytest
from decimal import Decimal
from types import SimpleNamespace

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditAction, AuditLog
from app.services.salary_grade_service import (
    SalaryGradeService,
    resolve_salary,
    select_step,
    validate_salary_grade_data,
)
from app.utils.error_handling import (
    DuplicateEntryException,
    ErrorCode,
    OverlappingSalaryRangeException,
    RoleMappingNotFoundException,
    ValidationException,
)
from tests.conftest import create_grade, map_role


STEPS = [
    {"step": "Step1", "increment_percent": "0", "years_of_service_threshold": "0"},
    {"step": "Step2", "increment_percent": "10", "years_of_service_threshold": "2"},
    {"step": "Step3", "increment_percent": "20", "years_of_service_threshold": "5"},
]


def _grade(**overrides):
    values = dict(
        id=None,
        grade="GL-08",
        min_gross_salary=Decimal("200000"),
        steps=STEPS,
        custom_allowances=[],
        fixed_allowances={"housing": Decimal("0"), "transport": Decimal("0"),
                          "meal": Decimal("0"), "other": Decimal("0")},
        custom_allowances_total=Decimal("0"),
    )
    values.update(overrides)
    return SimpleNamespace(**values)


def _employee(years, custom_base_salary=None, use_step_calculation=True):
    return SimpleNamespace(
        years_of_service=years,
        custom_base_salary=custom_base_salary,
        use_step_calculation=use_step_calculation,
    )


class TestStepSelection:
    """Highest step whose threshold is reached."""

    @pytest.mark.parametrize("years, expected", [
        (Decimal("1"), "Step1"),
        (Decimal("2"), "Step2"),
        (Decimal("3"), "Step2"),
        (Decimal("10"), "Step3"),
    ])
    def test_select_step(self, years, expected):
        assert select_step(STEPS, years)["step"] == expected

    def test_unsorted_steps_are_sorted_by_threshold(self):
        assert select_step(list(reversed(STEPS)), Decimal("6"))["step"] == "Step3"

    def test_unknown_or_negative_years(self):
        assert select_step(STEPS, None) is None
        assert select_step(STEPS, Decimal("-1")) is None
        assert select_step(STEPS, "not-a-number") is None

    def test_no_steps(self):
        assert select_step([], Decimal("4")) is None


class TestSalaryResolution:
    """Effective base salary from grade minimum or custom base plus step increment."""

    @pytest.mark.parametrize("years, expected", [
        (Decimal("1"), Decimal("200000.00")),
        (Decimal("3"), Decimal("220000.00")),
        (Decimal("10"), Decimal("240000.00")),
    ])
    def test_step_increments(self, years, expected):
        result = resolve_salary(_employee(years), _grade())

        assert result.base_salary == Decimal("200000.00")
        assert result.effective_base_salary == expected

    def test_custom_base_salary_overrides_grade_minimum(self):
        result = resolve_salary(_employee(Decimal("3"), custom_base_salary=Decimal("250000")), _grade())

        assert result.base_salary == Decimal("250000.00")
        assert result.step_increment == Decimal("25000.00")
        assert result.effective_base_salary == Decimal("275000.00")

    def test_step_calculation_disabled(self):
        result = resolve_salary(_employee(Decimal("10"), use_step_calculation=False), _grade())

        assert result.step is None
        assert result.effective_base_salary == Decimal("200000.00")

    def test_grade_allowances_are_reported_not_added(self):
        grade = _grade(
            fixed_allowances={"housing": Decimal("50000"), "transport": Decimal("20000"),
                              "meal": Decimal("0"), "other": Decimal("0")},
            custom_allowances=[{"name": "Hazard", "amount": "5000"}],
            custom_allowances_total=Decimal("5000"),
        )
        result = resolve_salary(_employee(Decimal("1")), grade)

        assert result.effective_base_salary == Decimal("200000.00")
        assert result.total_grade_allowances == Decimal("75000.00")


class TestGradeValidation:
    """Write-time checks on grade data."""

    def test_min_must_be_below_max(self):
        with pytest.raises(ValidationException) as exc:
            validate_salary_grade_data({"min_gross_salary": 500000, "max_gross_salary": 200000})
        assert exc.value.code == ErrorCode.INVALID_SALARY_GRADE

    def test_negative_allowance_rejected(self):
        with pytest.raises(ValidationException):
            validate_salary_grade_data({
                "min_gross_salary": 1, "max_gross_salary": 2, "housing_allowance": -5,
            })

    def test_duplicate_step_rejected(self):
        with pytest.raises(ValidationException):
            validate_salary_grade_data({
                "steps": [
                    {"step": "S1", "increment_percent": 0, "years_of_service_threshold": 0},
                    {"step": "S1", "increment_percent": 5, "years_of_service_threshold": 2},
                ],
            })

    def test_step_values_stored_as_strings(self):
        cleaned = validate_salary_grade_data({
            "steps": [{"step": "S1", "increment_percent": Decimal("2.5"), "years_of_service_threshold": 1}],
        })
        assert cleaned["steps"] == [
            {"step": "S1", "increment_percent": "2.5", "years_of_service_threshold": "1"},
        ]


class TestSalaryGradeService:
    """Grade administration against the database."""

    @pytest.mark.asyncio
    async def test_duplicate_grade_code(self, db_session: AsyncSession):
        await create_grade(db_session, grade="GL-01", min_gross_salary=Decimal("1"), max_gross_salary=Decimal("2"))
        service = SalaryGradeService(db_session)

        with pytest.raises(DuplicateEntryException):
            await service.create_grade({
                "grade": "GL-01", "name": "Dup",
                "min_gross_salary": Decimal("10"), "max_gross_salary": Decimal("20"),
            })

    @pytest.mark.asyncio
    async def test_overlapping_band_rejected(self, db_session: AsyncSession):
        await create_grade(db_session, grade="GL-07")
        service = SalaryGradeService(db_session)

        with pytest.raises(OverlappingSalaryRangeException):
            await service.create_grade({
                "grade": "GL-09", "name": "Overlap",
                "min_gross_salary": Decimal("450000"), "max_gross_salary": Decimal("700000"),
            })

    @pytest.mark.asyncio
    async def test_adjacent_band_accepted(self, db_session: AsyncSession):
        await create_grade(db_session, grade="GL-07")
        service = SalaryGradeService(db_session)

        grade = await service.create_grade({
            "grade": "GL-09", "name": "Next",
            "min_gross_salary": Decimal("500000"), "max_gross_salary": Decimal("700000"),
        })
        assert grade.grade == "GL-09"

    @pytest.mark.asyncio
    async def test_role_without_mapping(self, db_session: AsyncSession, role):
        service = SalaryGradeService(db_session)

        with pytest.raises(RoleMappingNotFoundException):
            await service.get_grade_for_role(role.id)

    @pytest.mark.asyncio
    async def test_reassigning_role_keeps_one_mapping(self, db_session: AsyncSession, role):
        first = await create_grade(db_session, grade="GL-07")
        second = await create_grade(
            db_session, grade="GL-10", min_gross_salary=Decimal("600000"), max_gross_salary=Decimal("900000"),
        )
        await map_role(db_session, role, first)
        service = SalaryGradeService(db_session)

        await service.assign_grade_to_role(role.id, second.id)
        await db_session.commit()

        grade = await service.get_grade_for_role(role.id)
        assert grade.id == second.id

    @pytest.mark.asyncio
    async def test_validate_salary_for_role(self, db_session: AsyncSession, role, salary_grade):
        service = SalaryGradeService(db_session)

        inside = await service.validate_salary_for_role(role.id, Decimal("450000"))
        outside = await service.validate_salary_for_role(role.id, Decimal("900000"))

        assert inside["is_valid"] is True
        assert outside["is_valid"] is False
        assert "between" in outside["message"]

    @pytest.mark.asyncio
    async def test_update_is_audited(self, db_session: AsyncSession, salary_grade):
        grade_id = salary_grade.id
        service = SalaryGradeService(db_session)

        await service.update_grade(grade_id, {"name": "Renamed"})
        await db_session.commit()

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.target_entity_id == str(grade_id))
        )
        entry = result.scalar_one()
        assert entry.action == AuditAction.UPDATE
        assert entry.changes["name"] == {"old": "Grade GL-08", "new": "Renamed"}
