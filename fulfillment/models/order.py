"""Order models for merchant fulfillment."""
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import (
    String, Integer, Numeric, DateTime, ForeignKey, Text, CheckConstraint, UniqueConstraint
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.db_types import UUIDType

if TYPE_CHECKING:
    from fulfillment.models.product import Product
    from fulfillment.models.shipment import Shipment
    from fulfillment.models.warehouse import Warehouse


class OrderStatus(str, Enum):
    """Order fulfillment status."""
    NEW = "NEW"
    AWAITING_ALLOC = "AWAITING_ALLOC"
    DISPATCHED = "DISPATCHED"
    ASSIGNED_TO_LOGISTICS = "ASSIGNED_TO_LOGISTICS"
    PICKED_UP = "PICKED_UP"
    DELIVERING = "DELIVERING"
    DELIVERED = "DELIVERED"
    RETURNED = "RETURNED"
    CANCELED = "CANCELED"
    ON_HOLD = "ON_HOLD"


class Order(Base):
    """
    Merchant order.

    external_order_id is the merchant's own reference and is unique per
    merchant. assigned_logistics_id and fulfillment_warehouse_id stay NULL
    until an admin allocates the order.
    """
    __tablename__ = "orders"
    __table_args__ = (
        UniqueConstraint("merchant_id", "external_order_id", name="uq_order_merchant_external_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    external_order_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True, index=True)

    # NEW, AWAITING_ALLOC, DISPATCHED, PICKED_UP, DELIVERING, DELIVERED,
    # RETURNED, CANCELED, ON_HOLD
    status: Mapped[str] = mapped_column(String(30), default="NEW", nullable=False, index=True)

    customer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    customer_address: Mapped[str] = mapped_column(Text, nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(30), nullable=True)

    total_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), default=Decimal("0"), nullable=False)
    order_date: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    assigned_logistics_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    fulfillment_warehouse_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUIDType,
        ForeignKey("warehouses.id", ondelete="SET NULL"),
        nullable=True,
        index=True
    )
    merchant_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("businesses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

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
    items: Mapped[List["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    shipment: Mapped[Optional["Shipment"]] = relationship(
        "Shipment",
        back_populates="order",
        uselist=False,
        cascade="all, delete-orphan",
        passive_deletes=True,
    )
    fulfillment_warehouse: Mapped[Optional["Warehouse"]] = relationship("Warehouse")

    @property
    def reference(self) -> str:
        """Short human-facing reference used in notifications."""
        return self.external_order_id or str(self.id)[:8].upper()

    def __repr__(self) -> str:
        return f"<Order {self.reference} ({self.status})>"


class OrderItem(Base):
    """Line item of an order. Immutable once the order is placed."""
    __tablename__ = "order_items"
    __table_args__ = (
        CheckConstraint("quantity > 0", name="ck_order_item_quantity_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    product_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("products.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    order: Mapped["Order"] = relationship("Order", back_populates="items")
    product: Mapped["Product"] = relationship("Product")

    def __repr__(self) -> str:
        return f"<OrderItem order={self.order_id} product={self.product_id} qty={self.quantity}>"
