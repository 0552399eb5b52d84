"""
ERP Payroll Engine - Compensation Router

API endpoints for allowances, bonuses and deductions.
"""

import uuid
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, Path, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.dependencies import get_actor_id
from app.models.compensation import ItemStatus
from app.services.compensation_service import CompensationService
from app.schemas.compensation import (
    AllowanceCreate,
    AllowanceResponse,
    BonusCreate,
    BonusResponse,
    DeductionCreate,
    DeductionResponse,
    ExpireItemsResponse,
)


router = APIRouter()

StatusFilter = Optional[Literal["active", "inactive", "expired"]]


async def _create(kind: str, payload: dict, db: AsyncSession, actor_id: Optional[uuid.UUID]):
    service = CompensationService(db)
    item = await service.create_item(kind, payload, created_by_id=actor_id)
    await db.commit()
    await db.refresh(item)
    return item


async def _deactivate(kind: str, item_id: uuid.UUID, db: AsyncSession, actor_id: Optional[uuid.UUID]):
    service = CompensationService(db)
    item = await service.deactivate_item(kind, item_id, updated_by_id=actor_id)
    await db.commit()
    await db.refresh(item)
    return item


async def _list(kind: str, status_filter: Optional[str], db: AsyncSession):
    service = CompensationService(db)
    return await service.list_items(kind, ItemStatus(status_filter) if status_filter else None)


# ===========================================
# ALLOWANCES
# ===========================================

@router.post(
    "/allowances",
    response_model=AllowanceResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create an allowance",
)
async def create_allowance(
    data: AllowanceCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    return await _create("allowance", data.model_dump(), db, actor_id)


@router.get("/allowances", response_model=List[AllowanceResponse], summary="List allowances")
async def list_allowances(
    status_filter: StatusFilter = Query(None, alias="status"),
    db: AsyncSession = Depends(get_async_session),
):
    return await _list("allowance", status_filter, db)


@router.post(
    "/allowances/{item_id}/deactivate",
    response_model=AllowanceResponse,
    summary="Deactivate an allowance",
)
async def deactivate_allowance(
    item_id: uuid.UUID = Path(..., description="Allowance ID"),
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    return await _deactivate("allowance", item_id, db, actor_id)


# ===========================================
# BONUSES
# ===========================================

@router.post(
    "/bonuses",
    response_model=BonusResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a bonus",
)
async def create_bonus(
    data: BonusCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    return await _create("bonus", data.model_dump(), db, actor_id)


@router.get("/bonuses", response_model=List[BonusResponse], summary="List bonuses")
async def list_bonuses(
    status_filter: StatusFilter = Query(None, alias="status"),
    db: AsyncSession = Depends(get_async_session),
):
    return await _list("bonus", status_filter, db)


@router.post(
    "/bonuses/{item_id}/deactivate",
    response_model=BonusResponse,
    summary="Deactivate a bonus",
)
async def deactivate_bonus(
    item_id: uuid.UUID = Path(..., description="Bonus ID"),
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    return await _deactivate("bonus", item_id, db, actor_id)


# ===========================================
# DEDUCTIONS
# ===========================================

@router.post(
    "/deductions",
    response_model=DeductionResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a deduction",
    description="PAYE deductions are computed from the active tax brackets and take no amount.",
)
async def create_deduction(
    data: DeductionCreate,
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    return await _create("deduction", data.model_dump(), db, actor_id)


@router.get("/deductions", response_model=List[DeductionResponse], summary="List deductions")
async def list_deductions(
    status_filter: StatusFilter = Query(None, alias="status"),
    db: AsyncSession = Depends(get_async_session),
):
    return await _list("deduction", status_filter, db)


@router.post(
    "/deductions/{item_id}/deactivate",
    response_model=DeductionResponse,
    summary="Deactivate a deduction",
)
async def deactivate_deduction(
    item_id: uuid.UUID = Path(..., description="Deduction ID"),
    db: AsyncSession = Depends(get_async_session),
    actor_id: Optional[uuid.UUID] = Depends(get_actor_id),
):
    return await _deactivate("deduction", item_id, db, actor_id)


# ===========================================
# MAINTENANCE
# ===========================================

@router.post(
    "/compensation/expire",
    response_model=ExpireItemsResponse,
    summary="Expire lapsed items",
    description="Marks active items whose end date has passed as expired.",
)
async def expire_lapsed_items(
    db: AsyncSession = Depends(get_async_session),
):
    service = CompensationService(db)
    expired = await service.expire_lapsed_items()
    await db.commit()
    return {"expired": expired}
