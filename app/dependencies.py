"""
ERP Payroll Engine - FastAPI Dependencies

Shared dependencies for database sessions and the acting user.

Authentication is handled upstream by the ERP gateway, which forwards the
authenticated user's id in the ``X-Actor-Id`` header. Payroll only records
it for auditing.
"""

import uuid
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.database import get_async_session
from app.models.employee import Employee
from app.utils.error_handling import EmployeeNotFoundException, ValidationException


async def get_actor_id(
    x_actor_id: Optional[str] = Header(None, alias="X-Actor-Id"),
) -> Optional[uuid.UUID]:
    """
    Id of the user performing the request, if the gateway sent one.

    Raises:
        ValidationException: If the header is not a UUID
    """
    if not x_actor_id:
        return None
    try:
        return uuid.UUID(x_actor_id)
    except ValueError:
        raise ValidationException("X-Actor-Id must be a UUID", field="X-Actor-Id")


async def get_employee_or_404(
    employee_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_session),
) -> Employee:
    employee = await db.get(Employee, employee_id)
    if employee is None:
        raise EmployeeNotFoundException(employee_id)
    return employee
