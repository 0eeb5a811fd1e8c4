"""Stock allocation and transfer API endpoints."""
from typing import Optional
import uuid

from fastapi import APIRouter, status, Query, Depends

from fulfillment.api.deps import DB, CurrentActor, require_operation
from fulfillment.core.permissions import Operation, require_tenant
from fulfillment.schemas.stock import (
    StockAllocationUpsert,
    StockAllocationBulkRequest,
    StockAllocationResponse,
    StockAllocationListResponse,
    BulkUpsertResult,
    StockTransferRequest,
    StockTransferResponse,
)
from fulfillment.services.product_service import ProductService
from fulfillment.services.stock_ledger import StockLedger, allocation_to_dict


router = APIRouter(tags=["Stock"])


@router.get("/stock-allocations", response_model=StockAllocationListResponse)
async def list_stock_allocations(
    db: DB,
    actor: CurrentActor,
    product_id: Optional[uuid.UUID] = Query(None),
    warehouse_id: Optional[uuid.UUID] = Query(None),
    business_id: Optional[uuid.UUID] = Query(None),
    low_stock: Optional[bool] = Query(None),
):
    """
    List allocations with available stock and low-stock flags.
    Merchants only see their own products.
    """
    ledger = StockLedger(db)
    items = await ledger.list_allocations(
        product_id=product_id,
        warehouse_id=warehouse_id,
        business_id=actor.business_id if actor.is_merchant else business_id,
        low_stock=low_stock,
    )
    return StockAllocationListResponse(items=items, total=len(items))


@router.post(
    "/stock-allocations",
    response_model=StockAllocationResponse,
    dependencies=[Depends(require_operation(Operation.STOCK_ALLOCATE))],
)
async def upsert_stock_allocation(
    data: StockAllocationUpsert,
    db: DB,
    actor: CurrentActor,
):
    """Create an allocation or overwrite its quantities."""
    ledger = StockLedger(db)
    allocation = await ledger.upsert_allocation(
        data.product_id,
        data.warehouse_id,
        data.allocated_quantity,
        data.safety_stock,
        user_id=actor.user_id,
    )
    return allocation_to_dict(allocation)


@router.post(
    "/stock-allocations/bulk",
    response_model=BulkUpsertResult,
    dependencies=[Depends(require_operation(Operation.STOCK_ALLOCATE))],
)
async def bulk_upsert_stock_allocations(
    data: StockAllocationBulkRequest,
    db: DB,
    actor: CurrentActor,
):
    """Upsert many allocations; failures are reported per entry."""
    ledger = StockLedger(db)
    return await ledger.bulk_upsert(data.allocations, user_id=actor.user_id)


@router.delete(
    "/stock-allocations/{product_id}/{warehouse_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_operation(Operation.STOCK_DELETE))],
)
async def delete_stock_allocation(
    product_id: uuid.UUID,
    warehouse_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Delete an allocation no pending order depends on."""
    ledger = StockLedger(db)
    await ledger.delete_allocation(product_id, warehouse_id, user_id=actor.user_id)


@router.post(
    "/stock/transfer",
    response_model=StockTransferResponse,
    dependencies=[Depends(require_operation(Operation.STOCK_TRANSFER))],
)
async def transfer_stock(
    data: StockTransferRequest,
    db: DB,
    actor: CurrentActor,
):
    """Move available units of a product between two warehouses."""
    product = await ProductService(db).get_product(data.product_id)
    require_tenant(actor, product.business_id)

    ledger = StockLedger(db)
    source, destination = await ledger.transfer_stock(
        data.product_id,
        data.from_warehouse_id,
        data.to_warehouse_id,
        data.quantity,
        user_id=actor.user_id,
        notes=data.notes,
    )
    return StockTransferResponse(
        source=allocation_to_dict(source),
        destination=allocation_to_dict(destination),
        quantity=data.quantity,
    )
