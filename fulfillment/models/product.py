import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Optional, List

from sqlalchemy import String, Float, DateTime, ForeignKey, Text, Numeric, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fulfillment.database import Base
from fulfillment.db_types import UUIDType, JSONType

if TYPE_CHECKING:
    from fulfillment.models.business import Business
    from fulfillment.models.stock import StockAllocation


# Applied when a product is created without dimensions
DEFAULT_DIMENSIONS = {"length": 0.1, "width": 0.1, "height": 0.1}


def default_dimensions() -> dict:
    return dict(DEFAULT_DIMENSIONS)


class Product(Base):
    """
    A merchant's catalogue item.

    The SKU is stored uppercase and is unique across all businesses; it is
    assigned at creation and never changed afterwards.
    """
    __tablename__ = "products"
    __table_args__ = (
        CheckConstraint("weight_kg > 0", name="ck_product_weight_positive"),
    )

    id: Mapped[uuid.UUID] = mapped_column(UUIDType, primary_key=True, default=uuid.uuid4)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    sku: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)

    weight_kg: Mapped[float] = mapped_column(Float, nullable=False)
    # {"length": .., "width": .., "height": ..}
    dimensions: Mapped[dict] = mapped_column(JSONType, default=default_dimensions, nullable=False)

    business_id: Mapped[uuid.UUID] = mapped_column(
        UUIDType,
        ForeignKey("businesses.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    # Optional catalogue data accepted by bulk import
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    category: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    barcode: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    hs_code: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    unit_cost: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    selling_price: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)

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
    business: Mapped["Business"] = relationship("Business")
    stock_allocations: Mapped[List["StockAllocation"]] = relationship(
        "StockAllocation",
        back_populates="product",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:
        return f"<Product {self.sku}: {self.name}>"
