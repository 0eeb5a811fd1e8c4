"""Warehouse API endpoints."""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, status, Query, Depends, Body

from fulfillment.api.deps import DB, CurrentActor, require_operation
from fulfillment.core.permissions import Operation
from fulfillment.models.warehouse import WarehouseType, WarehouseStatus
from fulfillment.schemas.warehouse import (
    WarehouseCreate,
    WarehouseUpdate,
    WarehouseResponse,
    WarehouseListResponse,
    WarehouseDeleteRequest,
    WarehouseDeleteResponse,
)
from fulfillment.services.warehouse_service import WarehouseService


router = APIRouter(tags=["Warehouses"])


@router.get("", response_model=WarehouseListResponse)
async def list_warehouses(
    db: DB,
    actor: CurrentActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    status_filter: Optional[WarehouseStatus] = Query(None, alias="status"),
    warehouse_type: Optional[WarehouseType] = Query(None),
    search: Optional[str] = Query(None),
):
    """Get paginated list of warehouses."""
    service = WarehouseService(db)
    warehouses, total = await service.get_warehouses(
        status=status_filter,
        warehouse_type=warehouse_type,
        search=search,
        skip=(page - 1) * size,
        limit=size,
    )

    return WarehouseListResponse(
        items=[WarehouseResponse.model_validate(w) for w in warehouses],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.get("/{warehouse_id}", response_model=WarehouseResponse)
async def get_warehouse(
    warehouse_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Get warehouse by ID."""
    service = WarehouseService(db)
    warehouse = await service.get_warehouse(warehouse_id)
    return WarehouseResponse.model_validate(warehouse)


@router.post(
    "",
    response_model=WarehouseResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_operation(Operation.WAREHOUSE_CREATE))],
)
async def create_warehouse(
    data: WarehouseCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Create a new warehouse.
    The code is derived from the region when not supplied.
    """
    service = WarehouseService(db)
    warehouse = await service.create_warehouse(data, actor)
    return WarehouseResponse.model_validate(warehouse)


@router.put(
    "/{warehouse_id}",
    response_model=WarehouseResponse,
    dependencies=[Depends(require_operation(Operation.WAREHOUSE_UPDATE))],
)
async def update_warehouse(
    warehouse_id: uuid.UUID,
    data: WarehouseUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Update a warehouse."""
    service = WarehouseService(db)
    warehouse = await service.update_warehouse(warehouse_id, data, actor)
    return WarehouseResponse.model_validate(warehouse)


@router.delete(
    "/{warehouse_id}",
    response_model=WarehouseDeleteResponse,
    dependencies=[Depends(require_operation(Operation.WAREHOUSE_DELETE))],
)
async def delete_warehouse(
    warehouse_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
    data: Optional[WarehouseDeleteRequest] = Body(None),
):
    """
    Delete a warehouse.

    A warehouse still holding stock needs either a migration plan
    (product id -> target warehouses) or force=true.
    """
    data = data or WarehouseDeleteRequest()
    service = WarehouseService(db)
    result = await service.delete_warehouse(
        warehouse_id,
        actor,
        migration_plan=data.migration_plan,
        force=data.force,
    )
    return WarehouseDeleteResponse(**result)
