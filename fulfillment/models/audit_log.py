import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import String, DateTime, Text
from sqlalchemy.orm import Mapped, mapped_column

from fulfillment.database import Base
from fulfillment.db_types import UUIDType, JSONType


class AuditLog(Base):
    """
    Append-only audit trail for every mutation of products, warehouses,
    stock allocations and orders.
    """
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    # Who performed the action. Not a foreign key: callers are identified by
    # the upstream identity provider and need not exist locally.
    changed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUIDType, nullable=True, index=True)

    # Actions: CREATE, UPDATE, DELETE, STATUS_CHANGE, ASSIGN, TRANSFER,
    #          PRODUCTS_BULK_UPLOAD, ORDERS_BULK_UPLOAD, etc.
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Entity types: PRODUCT, WAREHOUSE, STOCK_ALLOCATION, ORDER
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Plain string: composite keys and BULK_OPERATION are valid ids here
    entity_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # {"previous": {...}, "new": {...}} or batch counters
    details: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False,
        index=True
    )

    def __repr__(self) -> str:
        return f"<AuditLog(action='{self.action}', entity='{self.entity_type}', id='{self.entity_id}')>"
