"""Audit Logs API endpoints."""
from typing import Optional
from uuid import UUID
from datetime import datetime, date, timezone
from math import ceil

from fastapi import APIRouter, Depends, Query

from fulfillment.api.deps import DB, require_operation
from fulfillment.core.permissions import Operation
from fulfillment.schemas.audit_log import AuditLogResponse, AuditLogListResponse
from fulfillment.services.audit_service import AuditService

router = APIRouter(tags=["Audit Logs"])


@router.get(
    "",
    response_model=AuditLogListResponse,
    dependencies=[Depends(require_operation(Operation.AUDIT_VIEW))],
)
async def list_audit_logs(
    db: DB,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    user_id: Optional[UUID] = None,
    action: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    """
    List audit logs with filtering and pagination.

    Filters:
    - user_id: Filter by user who performed action
    - action: Filter by action type (CREATE, UPDATE, DELETE, TRANSFER, etc.)
    - entity_type: Filter by entity type (PRODUCT, WAREHOUSE, STOCK_ALLOCATION, ORDER)
    - entity_id: Filter by specific entity ID
    - start_date/end_date: Date range filter
    """
    service = AuditService(db)
    logs, total = await service.get_audit_logs(
        entity_type=entity_type.upper() if entity_type else None,
        entity_id=entity_id,
        user_id=user_id,
        action=action.upper() if action else None,
        start_date=datetime.combine(start_date, datetime.min.time(), tzinfo=timezone.utc) if start_date else None,
        end_date=datetime.combine(end_date, datetime.max.time(), tzinfo=timezone.utc) if end_date else None,
        skip=(page - 1) * size,
        limit=size,
    )

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(log) for log in logs],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )
