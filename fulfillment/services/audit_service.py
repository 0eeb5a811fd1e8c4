from typing import Optional, Dict, Any, List, Tuple
import uuid
from datetime import datetime

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.models.audit_log import AuditLog


class AuditService:
    """
    Append-only audit trail for fulfillment mutations.

    Entries are flushed inside the caller's transaction, so an audit row
    exists exactly when the mutation it describes was committed.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[Any] = None,
        user_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The action performed (CREATE, UPDATE, DELETE, STATUS_CHANGE, etc.)
            entity_type: Type of entity (PRODUCT, WAREHOUSE, STOCK_ALLOCATION, ORDER)
            entity_id: ID of the affected entity; stored as text
            user_id: ID of the user performing the action
            old_values: Previous values (for updates and deletes)
            new_values: New values (for creates and updates)
            description: Human-readable description
            details: Extra context merged into the details JSON

        Returns:
            The created AuditLog entry
        """
        payload: Dict[str, Any] = dict(details or {})
        if old_values is not None:
            payload["previous"] = old_values
        if new_values is not None:
            payload["new"] = new_values

        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
            changed_by_id=user_id,
            details=payload or None,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def log_bulk_operation(
        self,
        action: str,
        entity_type: str,
        summary: Dict[str, int],
        user_id: Optional[uuid.UUID] = None,
        business_id: Optional[uuid.UUID] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> AuditLog:
        """One entry for a whole bulk import."""
        return await self.log(
            action=action,
            entity_type=entity_type,
            entity_id="BULK_OPERATION",
            user_id=user_id,
            details={
                "summary": summary,
                "business_id": str(business_id) if business_id else None,
                "options": options or {},
            },
            description=(
                f"Bulk {entity_type.lower()} upload: {summary.get('created', 0)} created, "
                f"{summary.get('updated', 0)} updated, {summary.get('errors', 0)} errors"
            ),
        )

    async def get_audit_logs(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        user_id: Optional[uuid.UUID] = None,
        action: Optional[str] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> Tuple[List[AuditLog], int]:
        """
        Get audit logs with filtering.
        """
        stmt = select(AuditLog).order_by(AuditLog.created_at.desc())

        if entity_type:
            stmt = stmt.where(AuditLog.entity_type == entity_type)
        if entity_id:
            stmt = stmt.where(AuditLog.entity_id == str(entity_id))
        if user_id:
            stmt = stmt.where(AuditLog.changed_by_id == user_id)
        if action:
            stmt = stmt.where(AuditLog.action == action)
        if start_date:
            stmt = stmt.where(AuditLog.created_at >= start_date)
        if end_date:
            stmt = stmt.where(AuditLog.created_at <= end_date)

        # Count total
        count_stmt = select(func.count()).select_from(stmt.subquery())
        total = (await self.db.execute(count_stmt)).scalar()

        # Get paginated results
        stmt = stmt.offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        logs = result.scalars().all()

        return list(logs), total
