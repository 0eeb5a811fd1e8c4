from typing import Optional, List, Any, Dict
from datetime import datetime
import uuid

from pydantic import BaseModel

from fulfillment.schemas.base import BaseResponseSchema


class AuditLogResponse(BaseResponseSchema):
    """Audit log response schema."""
    id: uuid.UUID
    changed_by_id: Optional[uuid.UUID] = None
    action: str
    entity_type: str
    entity_id: Optional[str] = None
    details: Optional[Dict[str, Any]] = None
    description: Optional[str] = None
    created_at: datetime


class AuditLogListResponse(BaseModel):
    """Paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    size: int
    pages: int
