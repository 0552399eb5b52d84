"""
ERP Payroll Engine - Audit Trail Service

Structured audit logging for payroll processing and compensation changes.
"""

import uuid
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.models.audit import AuditLog, AuditAction


def _jsonable(value: Any) -> Any:
    """Make Decimal/UUID/date/enum values JSON-column safe."""
    if isinstance(value, dict):
        return {k: _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_jsonable(v) for v in value]
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if hasattr(value, "value") and isinstance(getattr(value, "value"), str):
        return value.value
    return value


class AuditService:
    """Service for managing the audit trail."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log_action(
        self,
        entity_type: str,
        entity_id: str,
        action: AuditAction,
        user_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Log an audit action.

        Args:
            entity_type: Type of entity (e.g., 'allowance', 'payroll_record')
            entity_id: ID of the affected entity
            action: Type of action performed
            user_id: ID of user who performed the action
            old_values: Previous values (for updates)
            new_values: New values (for creates/updates)

        Returns:
            Created AuditLog record
        """
        changes = None
        if action == AuditAction.UPDATE and old_values and new_values:
            changes = self._calculate_changes(old_values, new_values)

        audit_log = AuditLog(
            target_entity_type=entity_type,
            target_entity_id=str(entity_id),
            action=action,
            user_id=user_id,
            old_values=_jsonable(old_values) if old_values else None,
            new_values=_jsonable(new_values) if new_values else None,
            changes=_jsonable(changes) if changes else None,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def log_item_used(
        self,
        item_kind: str,
        item_id: uuid.UUID,
        employee_id: uuid.UUID,
        amount: Decimal,
        month: int,
        year: int,
        scope: str,
        frequency: str,
        user_id: Optional[uuid.UUID] = None,
        payroll_id: Optional[uuid.UUID] = None,
    ) -> AuditLog:
        """One entry per compensation item consumed by a payroll run."""
        return await self.log_action(
            entity_type=item_kind,
            entity_id=str(item_id),
            action=AuditAction.ITEM_USED,
            user_id=user_id,
            new_values={
                "employee_id": employee_id,
                "item_id": item_id,
                "amount": amount,
                "month": month,
                "year": year,
                "scope": scope,
                "frequency": frequency,
                "payroll_id": payroll_id,
            },
        )

    def _calculate_changes(
        self,
        old_values: Dict[str, Any],
        new_values: Dict[str, Any],
    ) -> Dict[str, Any]:
        """Calculate what changed between old and new values."""
        changes = {}

        for key in set(old_values.keys()) | set(new_values.keys()):
            old_val = old_values.get(key)
            new_val = new_values.get(key)
            if old_val != new_val:
                changes[key] = {"old": old_val, "new": new_val}

        return changes

