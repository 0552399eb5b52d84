"""
ERP Payroll Engine - Payroll Router

API endpoints for payroll calculation, preview and processing.
"""

import uuid
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id, get_employee_or_404
from app.models.employee import Employee
from app.services.payroll_service import PayrollService
from app.schemas.payroll import (
    EmployeePayrollRequest,
    PayrollRecordResponse,
    PayrollRecordSummary,
    PayrollRunRequest,
    ProcessingSummaryResponse,
)


router = APIRouter()


# ===========================================
# BATCH ENDPOINTS
# ===========================================

@router.post(
    "/preview",
    response_model=dict,
    summary="Preview payroll",
    description="Calculate payroll for a scope without persisting anything.",
)
async def preview_payroll(
    data: PayrollRunRequest,
    db: AsyncSession = Depends(get_async_session),
) -> Dict[str, Any]:
    """Preview payroll for a company, department or individual scope."""
    service = PayrollService(db)
    return await service.preview_payroll(
        scope=data.scope,
        target_ids=data.target_ids,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
    )


@router.post(
    "/process",
    response_model=ProcessingSummaryResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Process payroll",
    description=(
        "Calculate and persist payroll for every employee in scope. "
        "Per-employee failures are reported in the summary."
    ),
)
async def process_payroll(
    data: PayrollRunRequest,
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    """Process payroll for a scope."""
    service = PayrollService(db)
    summary = await service.commit_payroll(
        scope=data.scope,
        target_ids=data.target_ids,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
        actor_id=actor_id,
    )
    return summary.to_dict()


# ===========================================
# EMPLOYEE ENDPOINTS
# ===========================================

@router.post(
    "/employees/{employee_id}/calculate",
    response_model=dict,
    summary="Calculate employee payroll",
    description="Full breakdown for one employee. Marks applied items as used when requested.",
)
async def calculate_employee_payroll(
    data: EmployeePayrollRequest,
    employee_id: uuid.UUID = Path(..., description="Employee ID"),
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
) -> Dict[str, Any]:
    service = PayrollService(db)
    breakdown = await service.calculate_employee_payroll(
        employee_id=employee_id,
        month=data.month,
        year=data.year,
        frequency=data.frequency,
        mark_as_used=data.mark_as_used,
        scope=data.scope,
        actor_id=actor_id,
    )
    if data.mark_as_used:
        await db.commit()
    return breakdown.to_dict()


@router.get(
    "/employees/{employee_id}/records",
    response_model=List[PayrollRecordSummary],
    summary="Employee payroll history",
)
async def list_employee_records(
    year: Optional[int] = Query(None, ge=1900, le=9999),
    employee: Employee = Depends(get_employee_or_404),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.list_employee_records(employee.id, year=year)


@router.get(
    "/records/{record_id}",
    response_model=PayrollRecordResponse,
    summary="Get payroll record",
)
async def get_payroll_record(
    record_id: uuid.UUID = Path(..., description="Payroll record ID"),
    db: AsyncSession = Depends(get_async_session),
):
    service = PayrollService(db)
    return await service.get_record(record_id)
