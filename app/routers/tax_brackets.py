"""
ERP Payroll Engine - Tax Bracket Router

API endpoints for PAYE brackets.
"""

import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.models.audit import AuditAction
from app.services.audit_service import AuditService
from app.services.tax_calculators.paye_service import PAYEService, PAYETaxBand
from app.schemas.tax_bracket import (
    PAYECalculationRequest,
    PAYECalculationResponse,
    TaxBracketReplace,
    TaxBracketResponse,
)


router = APIRouter()


@router.get(
    "/tax-brackets",
    response_model=List[TaxBracketResponse],
    summary="List active tax brackets",
)
async def list_tax_brackets(
    db: AsyncSession = Depends(get_async_session),
):
    service = PAYEService(db)
    return await service.get_active_brackets()


@router.put(
    "/tax-brackets",
    response_model=List[TaxBracketResponse],
    summary="Replace the active tax brackets",
    description=(
        "The new set must start at 0, be contiguous, and leave only the "
        "last band open-ended."
    ),
)
async def replace_tax_brackets(
    data: TaxBracketReplace,
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    service = PAYEService(db)
    old = [b.name for b in await service.get_active_brackets()]
    bands = [
        PAYETaxBand(
            name=b.name,
            order=b.order,
            lower=b.min_amount,
            upper=b.max_amount,
            rate=b.tax_rate,
            additional_tax=b.additional_tax,
        )
        for b in data.brackets
    ]
    brackets = await service.replace_brackets(bands, actor_id=actor_id)

    await AuditService(db).log_action(
        entity_type="tax_brackets",
        entity_id="active",
        action=AuditAction.UPDATE,
        user_id=actor_id,
        old_values={"brackets": old},
        new_values={"brackets": [b.name for b in brackets]},
    )
    await db.commit()
    for bracket in brackets:
        await db.refresh(bracket)
    return brackets


@router.post(
    "/tax-brackets/calculate",
    response_model=PAYECalculationResponse,
    summary="Calculate PAYE for an income",
)
async def calculate_paye(
    data: PAYECalculationRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """PAYE on a period income using the active brackets."""
    calculator = await PAYEService(db).get_calculator()
    return calculator.calculate_tax(data.income, data.frequency).to_dict()
