"""Order schemas for API requests/responses."""
from pydantic import BaseModel, Field

from fulfillment.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from typing import Optional, List, Dict, Any
from datetime import datetime
from decimal import Decimal
import uuid

from fulfillment.models.order import OrderStatus


# ==================== ORDER ITEM SCHEMAS ====================

class OrderItemCreate(BaseModel):
    """Line item by product id or by SKU."""
    product_id: Optional[uuid.UUID] = None
    product_sku: Optional[str] = None
    quantity: int = Field(..., gt=0)


class OrderItemResponse(BaseResponseSchema):
    id: uuid.UUID
    product_id: uuid.UUID
    quantity: int


# ==================== ORDER SCHEMAS ====================

class OrderCreate(BaseCreateSchema):
    """Single order creation."""
    external_order_id: Optional[str] = Field(None, max_length=100)
    customer_name: str = Field(..., min_length=1, max_length=200)
    customer_address: str = Field(..., min_length=1)
    customer_phone: Optional[str] = Field(None, max_length=30)
    total_amount: Decimal = Field(Decimal("0"), ge=0)
    order_date: Optional[datetime] = None
    merchant_id: Optional[uuid.UUID] = None  # Required for admins, implied for merchants
    items: List[OrderItemCreate] = Field(..., min_length=1)


class OrderUpdate(BaseUpdateSchema):
    """
    Partial order update. Which fields a caller may send depends on role;
    the service rejects anything outside the caller's whitelist.
    """
    customer_name: Optional[str] = Field(None, min_length=1, max_length=200)
    customer_address: Optional[str] = None
    customer_phone: Optional[str] = None
    external_order_id: Optional[str] = Field(None, max_length=100)
    status: Optional[OrderStatus] = None
    assigned_logistics_id: Optional[uuid.UUID] = None
    fulfillment_warehouse_id: Optional[uuid.UUID] = None
    total_amount: Optional[Decimal] = Field(None, ge=0)
    order_date: Optional[datetime] = None


class WarehousePick(BaseModel):
    """Units of one item taken from one warehouse."""
    warehouse_id: uuid.UUID
    quantity: int = Field(..., gt=0)


class OrderAssignRequest(BaseModel):
    """Assign an AWAITING_ALLOC order to a logistics user."""
    logistics_id: uuid.UUID
    fulfillment_warehouse_id: Optional[uuid.UUID] = None
    # product_id -> picks; must cover each item's quantity exactly
    warehouse_picks: Optional[Dict[uuid.UUID, List[WarehousePick]]] = None
    tracking_number: Optional[str] = None
    carrier_name: Optional[str] = None


class BulkStatusUpdateRequest(BaseModel):
    order_ids: List[uuid.UUID] = Field(..., min_length=1)
    status: OrderStatus


class BulkStatusUpdateResponse(BaseModel):
    updated: List[uuid.UUID]
    errors: List[Dict[str, Any]]
    count: int


class ShipmentResponse(BaseResponseSchema):
    id: uuid.UUID
    tracking_number: Optional[str] = None
    carrier_name: Optional[str] = None
    delivery_attempts: int
    last_status_update: Optional[datetime] = None


class OrderResponse(BaseResponseSchema):
    """Order response schema."""
    id: uuid.UUID
    external_order_id: Optional[str] = None
    status: str
    customer_name: str
    customer_address: str
    customer_phone: Optional[str] = None
    total_amount: Decimal
    order_date: datetime
    assigned_logistics_id: Optional[uuid.UUID] = None
    fulfillment_warehouse_id: Optional[uuid.UUID] = None
    merchant_id: uuid.UUID
    created_at: datetime
    updated_at: datetime


class OrderDetailResponse(OrderResponse):
    items: List[OrderItemResponse] = []
    shipment: Optional[ShipmentResponse] = None


class OrderListResponse(BaseModel):
    """Paginated order list."""
    items: List[OrderResponse]
    total: int
    page: int
    size: int
    pages: int
