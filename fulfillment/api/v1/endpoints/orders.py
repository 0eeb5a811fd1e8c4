"""Order API endpoints."""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, status, Query, Depends

from fulfillment.api.deps import DB, CurrentActor, require_operation
from fulfillment.core.permissions import Operation
from fulfillment.models.order import OrderStatus
from fulfillment.schemas.bulk import BulkImportRequest, BulkImportResult
from fulfillment.schemas.order import (
    OrderCreate,
    OrderUpdate,
    OrderAssignRequest,
    OrderResponse,
    OrderDetailResponse,
    OrderListResponse,
    BulkStatusUpdateRequest,
    BulkStatusUpdateResponse,
)
from fulfillment.services.bulk_import import OrderImportPipeline
from fulfillment.services.order_service import OrderService


router = APIRouter(tags=["Orders"])


@router.get("", response_model=OrderListResponse)
async def list_orders(
    db: DB,
    actor: CurrentActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    merchant_id: Optional[uuid.UUID] = Query(None),
    warehouse_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None),
):
    """
    Get paginated list of orders.
    Merchants see their business's orders; logistics users see their assignments.
    """
    service = OrderService(db)
    orders, total = await service.get_orders(
        actor,
        status=status_filter,
        merchant_id=merchant_id,
        warehouse_id=warehouse_id,
        search=search,
        skip=(page - 1) * size,
        limit=size,
    )

    return OrderListResponse(
        items=[OrderResponse.model_validate(o) for o in orders],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.post(
    "/bulk",
    response_model=BulkImportResult,
    dependencies=[Depends(require_operation(Operation.ORDER_BULK_IMPORT))],
)
async def bulk_import_orders(
    data: BulkImportRequest,
    db: DB,
    actor: CurrentActor,
):
    """
    Import orders from a JSON array or delimited text.
    Text lines sharing external id, customer name and address form one order.
    """
    pipeline = OrderImportPipeline(db)
    return await pipeline.run(data, actor)


@router.post(
    "/bulk-update-status",
    response_model=BulkStatusUpdateResponse,
    dependencies=[Depends(require_operation(Operation.ORDER_BULK_STATUS))],
)
async def bulk_update_order_status(
    data: BulkStatusUpdateRequest,
    db: DB,
    actor: CurrentActor,
):
    """Move many orders to one status; each order succeeds or fails alone."""
    service = OrderService(db)
    return await service.bulk_update_status(data.order_ids, data.status, actor)


@router.get("/{order_id}", response_model=OrderDetailResponse)
async def get_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Get order by ID with items and shipment."""
    service = OrderService(db)
    order = await service.get_order(order_id, actor)
    return OrderDetailResponse.model_validate(order)


@router.post(
    "",
    response_model=OrderDetailResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_operation(Operation.ORDER_CREATE))],
)
async def create_order(
    data: OrderCreate,
    db: DB,
    actor: CurrentActor,
):
    """Create a new order in status NEW."""
    service = OrderService(db)
    order = await service.create_order(data, actor)
    return OrderDetailResponse.model_validate(order)


@router.put(
    "/{order_id}",
    response_model=OrderDetailResponse,
    dependencies=[Depends(require_operation(Operation.ORDER_UPDATE))],
)
async def update_order(
    order_id: uuid.UUID,
    data: OrderUpdate,
    db: DB,
    actor: CurrentActor,
):
    """
    Update an order.

    Merchants may edit customer fields only; logistics users may change
    status and assignment of orders assigned to them; admins may edit all.
    """
    service = OrderService(db)
    order = await service.update_order(order_id, data, actor)
    return OrderDetailResponse.model_validate(order)


@router.post(
    "/{order_id}/assign",
    response_model=OrderDetailResponse,
    dependencies=[Depends(require_operation(Operation.ORDER_ASSIGN))],
)
async def assign_order(
    order_id: uuid.UUID,
    data: OrderAssignRequest,
    db: DB,
    actor: CurrentActor,
):
    """Assign an order awaiting allocation to a logistics user and dispatch it."""
    service = OrderService(db)
    order = await service.assign_logistics(order_id, data, actor)
    return OrderDetailResponse.model_validate(order)


@router.delete(
    "/{order_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_operation(Operation.ORDER_DELETE))],
)
async def delete_order(
    order_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Delete an order with its items and shipment. Delivered orders are kept."""
    service = OrderService(db)
    await service.delete_order(order_id, actor)
