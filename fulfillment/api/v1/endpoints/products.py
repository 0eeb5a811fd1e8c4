"""Product API endpoints."""
from typing import Optional
import uuid
from math import ceil

from fastapi import APIRouter, status, Query, Depends

from fulfillment.api.deps import DB, CurrentActor, require_operation
from fulfillment.core.permissions import Operation
from fulfillment.schemas.bulk import BulkImportRequest, BulkImportResult
from fulfillment.schemas.product import (
    ProductCreate,
    ProductUpdate,
    ProductResponse,
    ProductDetailResponse,
    ProductListResponse,
)
from fulfillment.services.bulk_import import ProductImportPipeline
from fulfillment.services.product_service import ProductService


router = APIRouter(tags=["Products"])


@router.get("", response_model=ProductListResponse)
async def list_products(
    db: DB,
    actor: CurrentActor,
    page: int = Query(1, ge=1),
    size: int = Query(20, ge=1, le=100),
    business_id: Optional[uuid.UUID] = Query(None),
    category: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
):
    """
    Get paginated list of products.
    Merchants only see their own business.
    """
    service = ProductService(db)
    products, total = await service.get_products(
        actor,
        business_id=business_id,
        search=search,
        category=category,
        skip=(page - 1) * size,
        limit=size,
    )

    return ProductListResponse(
        items=[ProductResponse.model_validate(p) for p in products],
        total=total,
        page=page,
        size=size,
        pages=ceil(total / size) if total > 0 else 1,
    )


@router.post(
    "/bulk",
    response_model=BulkImportResult,
    dependencies=[Depends(require_operation(Operation.PRODUCT_BULK_IMPORT))],
)
async def bulk_import_products(
    data: BulkImportRequest,
    db: DB,
    actor: CurrentActor,
):
    """
    Import products from a JSON array or delimited text.
    Invalid records are reported individually; the rest are created.
    """
    pipeline = ProductImportPipeline(db)
    return await pipeline.run(data, actor)


@router.get("/{product_id}", response_model=ProductDetailResponse)
async def get_product(
    product_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Get product by ID with its stock allocations."""
    service = ProductService(db)
    return await service.get_product_detail(product_id, actor)


@router.post(
    "",
    response_model=ProductResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_operation(Operation.PRODUCT_CREATE))],
)
async def create_product(
    data: ProductCreate,
    db: DB,
    actor: CurrentActor,
):
    """
    Create a new product.
    SKU is generated from the name when not supplied.
    """
    service = ProductService(db)
    product = await service.create_product(data, actor)
    return ProductResponse.model_validate(product)


@router.put(
    "/{product_id}",
    response_model=ProductResponse,
    dependencies=[Depends(require_operation(Operation.PRODUCT_UPDATE))],
)
async def update_product(
    product_id: uuid.UUID,
    data: ProductUpdate,
    db: DB,
    actor: CurrentActor,
):
    """Update a product. Sending stock_allocations replaces all of them."""
    service = ProductService(db)
    product = await service.update_product(product_id, data, actor)
    return ProductResponse.model_validate(product)


@router.delete(
    "/{product_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    dependencies=[Depends(require_operation(Operation.PRODUCT_DELETE))],
)
async def delete_product(
    product_id: uuid.UUID,
    db: DB,
    actor: CurrentActor,
):
    """Delete a product that has never been ordered."""
    service = ProductService(db)
    await service.delete_product(product_id, actor)
