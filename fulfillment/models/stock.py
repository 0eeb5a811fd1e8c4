"""Stock allocation per product per warehouse."""
import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING

from sqlalchemy import Integer, DateTime, ForeignKey, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.db_types import UUIDType

if TYPE_CHECKING:
    from fulfillment.models.product import Product
    from fulfillment.models.warehouse import Warehouse


class StockAllocation(Base):
    """
    Units of a product physically assigned to a warehouse.

    safety_stock is the reserved buffer; available stock is derived
    (allocated - safety, floored at zero) and never stored.
    """

    __tablename__ = "stock_allocations"
    __table_args__ = (
        CheckConstraint("allocated_quantity >= 0", name="ck_allocation_quantity_non_negative"),
        CheckConstraint("safety_stock >= 0", name="ck_allocation_safety_non_negative"),
        CheckConstraint("safety_stock <= allocated_quantity", name="ck_allocation_safety_within_quantity"),
    )

    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="CASCADE"),
        primary_key=True
    )
    warehouse_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("warehouses.id", ondelete="CASCADE"),
        primary_key=True,
        index=True
    )

    allocated_quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    safety_stock: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

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
    product: Mapped["Product"] = relationship("Product", back_populates="stock_allocations")
    warehouse: Mapped["Warehouse"] = relationship("Warehouse", back_populates="stock_allocations")

    def __repr__(self):
        return (
            f"<StockAllocation product={self.product_id} warehouse={self.warehouse_id} "
            f"allocated={self.allocated_quantity} safety={self.safety_stock}>"
        )
