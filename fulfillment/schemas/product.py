"""Product schemas for API requests/responses."""
from pydantic import BaseModel, Field, field_validator

from fulfillment.schemas.base import BaseResponseSchema, BaseCreateSchema, BaseUpdateSchema
from fulfillment.schemas.stock import StockAllocationEntry, StockAllocationResponse
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
import uuid


class Dimensions(BaseModel):
    """Package dimensions in centimetres."""
    length: float = Field(0.1, ge=0)
    width: float = Field(0.1, ge=0)
    height: float = Field(0.1, ge=0)


class ProductCreate(BaseCreateSchema):
    """Product creation schema. SKU is generated from the name when omitted."""
    name: str = Field(..., min_length=1, max_length=255)
    sku: Optional[str] = Field(None, max_length=100)
    weight_kg: float = Field(..., gt=0)
    dimensions: Optional[Dimensions] = None
    business_id: Optional[uuid.UUID] = None  # Required for admins, implied for merchants
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    barcode: Optional[str] = Field(None, max_length=100)
    hs_code: Optional[str] = Field(None, max_length=20)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)
    stock_allocations: List[StockAllocationEntry] = []

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Product name is required")
        return v


class ProductUpdate(BaseUpdateSchema):
    """Product update schema. SKU and owner are fixed at creation."""
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    weight_kg: Optional[float] = Field(None, gt=0)
    dimensions: Optional[Dimensions] = None
    description: Optional[str] = None
    category: Optional[str] = Field(None, max_length=100)
    barcode: Optional[str] = Field(None, max_length=100)
    hs_code: Optional[str] = Field(None, max_length=20)
    unit_cost: Optional[Decimal] = Field(None, ge=0)
    selling_price: Optional[Decimal] = Field(None, ge=0)
    # Replaces every allocation of the product when present
    stock_allocations: Optional[List[StockAllocationEntry]] = None


class ProductResponse(BaseResponseSchema):
    """Product response schema."""
    id: uuid.UUID
    name: str
    sku: str
    weight_kg: float
    dimensions: Dimensions
    business_id: uuid.UUID
    description: Optional[str] = None
    category: Optional[str] = None
    barcode: Optional[str] = None
    hs_code: Optional[str] = None
    unit_cost: Optional[Decimal] = None
    selling_price: Optional[Decimal] = None
    created_at: datetime
    updated_at: datetime


class ProductDetailResponse(ProductResponse):
    """Product with its stock allocations."""
    stock_allocations: List[StockAllocationResponse] = []
    total_allocated: int = 0
    total_available: int = 0


class ProductListResponse(BaseModel):
    """Paginated product list."""
    items: List[ProductResponse]
    total: int
    page: int
    size: int
    pages: int
