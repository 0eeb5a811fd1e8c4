"""Warehouse model for stock placement."""
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Text, Integer, DateTime
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.db_types import UUIDType

if TYPE_CHECKING:
    from fulfillment.models.stock import StockAllocation


class WarehouseType(str, Enum):
    """Warehouse type enum."""
    STORAGE = "STORAGE"
    FULFILLMENT = "FULFILLMENT"
    DISTRIBUTION = "DISTRIBUTION"
    CROSS_DOCK = "CROSS_DOCK"


class WarehouseStatus(str, Enum):
    """Warehouse operating status."""
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    MAINTENANCE = "MAINTENANCE"


class Warehouse(Base):
    """Warehouse model for storing inventory locations."""

    __tablename__ = "warehouses"

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    # Derived from region at creation, stable afterwards
    code: Mapped[str] = mapped_column(String(20), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False, index=True)
    region: Mapped[str] = mapped_column(String(100), nullable=False)

    # Address
    address: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    state: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    country: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Contact info
    contact_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)
    contact_email: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    manager: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)

    # Capacity
    capacity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    current_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    status: Mapped[str] = mapped_column(
        String(20), default="ACTIVE", nullable=False, index=True,
        comment="ACTIVE, INACTIVE, MAINTENANCE"
    )
    warehouse_type: Mapped[str] = mapped_column(
        String(20), default="STORAGE", nullable=False,
        comment="STORAGE, FULFILLMENT, DISTRIBUTION, CROSS_DOCK"
    )
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    stock_allocations: Mapped[List["StockAllocation"]] = relationship(
        "StockAllocation",
        back_populates="warehouse",
        passive_deletes=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status == WarehouseStatus.ACTIVE.value

    @property
    def full_address(self) -> str:
        """Get formatted full address."""
        parts = [self.address, self.city, self.state, self.country]
        return ", ".join(p for p in parts if p)

    def __repr__(self):
        return f"<Warehouse {self.code}: {self.name}>"
