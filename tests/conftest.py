"""
ERP Payroll Engine - Test Configuration

Pytest fixtures and configuration. Tests run against in-memory SQLite
through aiosqlite.
"""

import os

# Point settings at SQLite before anything imports app.config
os.environ["DATABASE_URL_ASYNC"] = "sqlite+aiosqlite://"
os.environ["APP_ENV"] = "testing"

from datetime import date
from decimal import Decimal
from typing import AsyncGenerator, Optional
from uuid import uuid4

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import Base, engine, async_session_maker, get_async_session
from app.models.employee import Department, Employee, Role
from app.models.salary_grade import RoleSalaryGradeMapping, SalaryGrade
from app.models.tax_bracket import TaxBracket
from main import app


# ===========================================
# DATABASE / CLIENT
# ===========================================

@pytest_asyncio.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create a fresh database for each test."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with async_session_maker() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Create a test client with database session override."""

    async def override_get_session():
        yield db_session

    app.dependency_overrides[get_async_session] = override_get_session

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


# ===========================================
# FACTORIES
# ===========================================

async def create_employee(
    db: AsyncSession,
    role: Role,
    department: Optional[Department] = None,
    **overrides,
) -> Employee:
    """Persist an active, onboarded employee."""
    suffix = uuid4().hex[:8]
    values = dict(
        staff_id=f"EMP-{suffix}",
        first_name="Ada",
        last_name=f"Obi-{suffix}",
        email=f"ada.{suffix}@example.com",
        department_id=department.id if department else None,
        role_id=role.id,
        years_of_service=Decimal("1"),
        use_step_calculation=True,
        is_active=True,
        onboarding_completed=True,
    )
    values.update(overrides)
    employee = Employee(**values)
    db.add(employee)
    await db.commit()
    await db.refresh(employee)
    return employee


async def create_grade(
    db: AsyncSession,
    grade: str = "GL-08",
    min_gross_salary: Decimal = Decimal("200000"),
    max_gross_salary: Decimal = Decimal("500000"),
    steps: Optional[list] = None,
) -> SalaryGrade:
    salary_grade = SalaryGrade(
        grade=grade,
        name=f"Grade {grade}",
        min_gross_salary=min_gross_salary,
        max_gross_salary=max_gross_salary,
        housing_allowance=Decimal("0"),
        transport_allowance=Decimal("0"),
        meal_allowance=Decimal("0"),
        other_allowance=Decimal("0"),
        custom_allowances=[],
        steps=steps if steps is not None else [],
        is_active=True,
    )
    db.add(salary_grade)
    await db.commit()
    await db.refresh(salary_grade)
    return salary_grade


async def map_role(db: AsyncSession, role: Role, grade: SalaryGrade) -> RoleSalaryGradeMapping:
    mapping = RoleSalaryGradeMapping(role_id=role.id, salary_grade_id=grade.id, is_active=True)
    db.add(mapping)
    await db.commit()
    await db.refresh(mapping)
    return mapping


# ===========================================
# DATA FIXTURES
# ===========================================

@pytest_asyncio.fixture
async def department(db_session: AsyncSession) -> Department:
    """Create a test department."""
    dept = Department(name="Finance", code="FIN")
    db_session.add(dept)
    await db_session.commit()
    await db_session.refresh(dept)
    return dept


@pytest_asyncio.fixture
async def other_department(db_session: AsyncSession) -> Department:
    dept = Department(name="Operations", code="OPS")
    db_session.add(dept)
    await db_session.commit()
    await db_session.refresh(dept)
    return dept


@pytest_asyncio.fixture
async def role(db_session: AsyncSession) -> Role:
    """Create a test role."""
    test_role = Role(name="Accountant", level=8)
    db_session.add(test_role)
    await db_session.commit()
    await db_session.refresh(test_role)
    return test_role


@pytest_asyncio.fixture
async def salary_grade(db_session: AsyncSession, role: Role) -> SalaryGrade:
    """Grade mapped to the test role, base ₦300,000 and no steps."""
    grade = await create_grade(db_session, min_gross_salary=Decimal("300000"), max_gross_salary=Decimal("600000"))
    await map_role(db_session, role, grade)
    return grade


@pytest_asyncio.fixture
async def employee(db_session: AsyncSession, role: Role, department: Department, salary_grade: SalaryGrade) -> Employee:
    """Employee on the test grade in the test department."""
    return await create_employee(db_session, role, department)


@pytest_asyncio.fixture
async def tax_brackets(db_session: AsyncSession) -> list:
    """Two active bands: first ₦300,000 at 7%, next ₦300,000 at 11% plus ₦21,000."""
    brackets = [
        TaxBracket(
            name="First ₦300,000", order=1,
            min_amount=Decimal("0"), max_amount=Decimal("300000"),
            tax_rate=Decimal("7"), additional_tax=Decimal("0"), is_active=True,
        ),
        TaxBracket(
            name="Next ₦300,000", order=2,
            min_amount=Decimal("300000"), max_amount=Decimal("600000"),
            tax_rate=Decimal("11"), additional_tax=Decimal("21000"), is_active=True,
        ),
    ]
    db_session.add_all(brackets)
    await db_session.commit()
    return brackets


def item_payload(**overrides) -> dict:
    """Compensation item fields with company scope, fixed amount, monthly."""
    values = dict(
        name="Performance allowance",
        scope="company",
        calculation_type="fixed",
        amount=Decimal("50000"),
        frequency="monthly",
        start_date=date(2025, 1, 1),
    )
    values.update(overrides)
    return values
