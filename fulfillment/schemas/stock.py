"""Stock allocation schemas for API requests/responses."""
from datetime import datetime
from typing import Optional, List, Dict, Any
import uuid

from pydantic import BaseModel, Field

from fulfillment.schemas.base import BaseResponseSchema, BaseCreateSchema


class AllocationInput(BaseCreateSchema):
    """
    Requested quantities for one (product, warehouse) pair.

    Only the shape is checked here; the safety-stock rule lives in
    ``StockLedger.validate_allocation`` so every path applies it.
    """
    allocated_quantity: int = 0
    safety_stock: int = 0


class StockAllocationUpsert(AllocationInput):
    """Create or overwrite one allocation."""
    product_id: uuid.UUID
    warehouse_id: uuid.UUID


class StockAllocationEntry(AllocationInput):
    """Allocation supplied with a product; warehouse may be an id, a name or DEFAULT_WAREHOUSE."""
    warehouse_id: str = "DEFAULT_WAREHOUSE"


class StockAllocationBulkRequest(BaseModel):
    """Bulk upsert request."""
    allocations: List[StockAllocationUpsert] = Field(..., min_length=1)


class StockAllocationResponse(BaseResponseSchema):
    """Allocation with derived availability."""
    product_id: uuid.UUID
    warehouse_id: uuid.UUID
    allocated_quantity: int
    safety_stock: int
    available_stock: int
    is_low_stock: bool
    product_name: Optional[str] = None
    product_sku: Optional[str] = None
    warehouse_name: Optional[str] = None
    warehouse_code: Optional[str] = None
    updated_at: Optional[datetime] = None


class StockAllocationListResponse(BaseModel):
    """List of allocations."""
    items: List[StockAllocationResponse]
    total: int


class BulkUpsertResult(BaseModel):
    """Per-entry outcome of a bulk upsert."""
    results: List[StockAllocationResponse]
    errors: List[Dict[str, Any]]
    success: int
    error_count: int


class StockTransferRequest(BaseCreateSchema):
    """Move units of a product between two warehouses."""
    product_id: uuid.UUID
    from_warehouse_id: uuid.UUID
    to_warehouse_id: uuid.UUID
    quantity: int = Field(..., gt=0)
    notes: Optional[str] = None


class StockTransferResponse(BaseModel):
    """Both sides of a completed transfer."""
    source: StockAllocationResponse
    destination: StockAllocationResponse
    quantity: int
