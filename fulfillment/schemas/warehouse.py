"""Warehouse schemas for API requests/responses."""
from pydantic import BaseModel, Field

from fulfillment.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from typing import Optional, List, Dict
from datetime import datetime
import uuid

from fulfillment.models.warehouse import WarehouseType, WarehouseStatus


class WarehouseBase(BaseModel):
    """Base warehouse schema."""
    name: str = Field(..., min_length=1, max_length=200)
    region: str = Field(..., min_length=1, max_length=100)
    warehouse_type: WarehouseType = WarehouseType.STORAGE
    address: Optional[str] = Field(None, max_length=255)
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, max_length=100)
    contact_phone: Optional[str] = Field(None, max_length=30)
    contact_email: Optional[str] = Field(None, max_length=100)
    manager: Optional[str] = Field(None, max_length=100)
    capacity: int = Field(0, ge=0)
    description: Optional[str] = None


class WarehouseCreate(WarehouseBase, BaseCreateSchema):
    """Warehouse creation schema."""
    code: Optional[str] = Field(None, max_length=20)  # Auto-generate if not provided
    status: WarehouseStatus = WarehouseStatus.ACTIVE


class WarehouseUpdate(BaseUpdateSchema):
    """Warehouse update schema. The code is not editable."""
    name: Optional[str] = Field(None, min_length=1, max_length=200)
    region: Optional[str] = Field(None, max_length=100)
    warehouse_type: Optional[WarehouseType] = None
    status: Optional[WarehouseStatus] = None
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    manager: Optional[str] = None
    capacity: Optional[int] = Field(None, ge=0)
    current_stock: Optional[int] = Field(None, ge=0)
    description: Optional[str] = None


class WarehouseResponse(BaseResponseSchema):
    """Warehouse response schema."""
    id: uuid.UUID
    code: str
    name: str
    region: str
    warehouse_type: str  # VARCHAR in DB
    status: str
    address: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    contact_phone: Optional[str] = None
    contact_email: Optional[str] = None
    manager: Optional[str] = None
    capacity: int
    current_stock: int
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class WarehouseListResponse(BaseModel):
    """Paginated warehouse list."""
    items: List[WarehouseResponse]
    total: int
    page: int
    size: int
    pages: int


class MigrationTarget(BaseModel):
    """Where to move part of a product's stock during warehouse deletion."""
    warehouse_id: uuid.UUID
    quantity: int = Field(..., gt=0)


class WarehouseDeleteRequest(BaseModel):
    """
    Options for deleting a warehouse that still holds stock.

    migration_plan maps product ids to target warehouses.
    """
    migration_plan: Optional[Dict[uuid.UUID, List[MigrationTarget]]] = None
    force: bool = False


class WarehouseDeleteResponse(BaseModel):
    success: bool = True
    migrated_allocations: int = 0
    deleted_allocations: int = 0
    detached_orders: int = 0
