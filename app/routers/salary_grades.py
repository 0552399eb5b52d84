"""
ERP Payroll Engine - Salary Grade Router

API endpoints for salary grades and role to grade mappings.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.models.audit import AuditAction
from app.services.audit_service import AuditService
from app.services.salary_grade_service import SalaryGradeService
from app.schemas.salary_grade import (
    RoleGradeAssignment,
    RoleMappingResponse,
    SalaryGradeCreate,
    SalaryGradeResponse,
    SalaryGradeUpdate,
    SalaryValidationRequest,
    SalaryValidationResponse,
)


router = APIRouter()


# ===========================================
# SALARY GRADE ENDPOINTS
# ===========================================

@router.post(
    "/salary-grades",
    response_model=SalaryGradeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a salary grade",
)
async def create_salary_grade(
    data: SalaryGradeCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    """Create a salary grade. Bands of active grades may not overlap."""
    service = SalaryGradeService(db)
    grade = await service.create_grade(data.model_dump(), created_by_id=actor_id)

    await AuditService(db).log_action(
        entity_type="salary_grade",
        entity_id=str(grade.id),
        action=AuditAction.CREATE,
        user_id=actor_id,
        new_values={
            "grade": grade.grade,
            "min_gross_salary": grade.min_gross_salary,
            "max_gross_salary": grade.max_gross_salary,
        },
    )
    await db.commit()
    await db.refresh(grade)
    return grade


@router.get(
    "/salary-grades",
    response_model=List[SalaryGradeResponse],
    summary="List salary grades",
)
async def list_salary_grades(
    active_only: bool = Query(True),
    db: AsyncSession = Depends(get_async_session),
):
    service = SalaryGradeService(db)
    return await service.list_grades(active_only=active_only)


@router.get(
    "/salary-grades/{grade_id}",
    response_model=SalaryGradeResponse,
    summary="Get a salary grade",
)
async def get_salary_grade(
    grade_id: uuid.UUID = Path(..., description="Salary grade ID"),
    db: AsyncSession = Depends(get_async_session),
):
    service = SalaryGradeService(db)
    return await service.get_grade(grade_id)


@router.patch(
    "/salary-grades/{grade_id}",
    response_model=SalaryGradeResponse,
    summary="Update a salary grade",
    description="Grades referenced by processed payroll can no longer be changed.",
)
async def update_salary_grade(
    data: SalaryGradeUpdate,
    grade_id: uuid.UUID = Path(..., description="Salary grade ID"),
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    service = SalaryGradeService(db)
    grade = await service.get_grade(grade_id)
    old_values = {
        "min_gross_salary": grade.min_gross_salary,
        "max_gross_salary": grade.max_gross_salary,
        "is_active": grade.is_active,
    }

    grade = await service.update_grade(grade_id, data.model_dump(exclude_unset=True), updated_by_id=actor_id)

    await AuditService(db).log_action(
        entity_type="salary_grade",
        entity_id=str(grade.id),
        action=AuditAction.UPDATE,
        user_id=actor_id,
        old_values=old_values,
        new_values={
            "min_gross_salary": grade.min_gross_salary,
            "max_gross_salary": grade.max_gross_salary,
            "is_active": grade.is_active,
        },
    )
    await db.commit()
    await db.refresh(grade)
    return grade


# ===========================================
# ROLE MAPPING ENDPOINTS
# ===========================================

@router.put(
    "/roles/{role_id}/salary-grade",
    response_model=RoleMappingResponse,
    summary="Assign a salary grade to a role",
)
async def assign_role_grade(
    data: RoleGradeAssignment,
    role_id: uuid.UUID = Path(..., description="Role ID"),
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    service = SalaryGradeService(db)
    mapping = await service.assign_grade_to_role(role_id, data.salary_grade_id, actor_id=actor_id)
    await db.commit()
    await db.refresh(mapping)
    return mapping


@router.get(
    "/roles/{role_id}/salary-grade",
    response_model=SalaryGradeResponse,
    summary="Get a role's salary grade",
)
async def get_role_grade(
    role_id: uuid.UUID = Path(..., description="Role ID"),
    db: AsyncSession = Depends(get_async_session),
):
    service = SalaryGradeService(db)
    return await service.get_grade_for_role(role_id)


@router.post(
    "/roles/{role_id}/salary-grade/validate",
    response_model=SalaryValidationResponse,
    summary="Check a salary against the role's grade band",
)
async def validate_role_salary(
    data: SalaryValidationRequest,
    role_id: uuid.UUID = Path(..., description="Role ID"),
    db: AsyncSession = Depends(get_async_session),
):
    service = SalaryGradeService(db)
    return await service.validate_salary_for_role(role_id, data.gross_salary)
