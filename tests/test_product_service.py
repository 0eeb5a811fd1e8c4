"""Tests for product create, update and delete."""
import uuid

import pytest
from sqlalchemy import select

from fulfillment.core.exceptions import (
    ValidationError, NotFoundError, PermissionDeniedError, ConflictError,
)
from fulfillment.models.product import Product
from fulfillment.models.stock import StockAllocation
from fulfillment.schemas.product import ProductCreate, ProductUpdate
from fulfillment.services.product_service import ProductService

from tests import factories


async def test_create_with_allocations_resolves_warehouses(db, business, merchant, warehouse):
    product = await ProductService(db).create_product(
        ProductCreate(
            name="Desk Lamp",
            weight_kg=1.2,
            stock_allocations=[
                {"warehouse_id": "north hub", "allocated_quantity": 10, "safety_stock": 2},
                {"warehouse_id": "DEFAULT_WAREHOUSE", "allocated_quantity": 5},
                {"warehouse_id": "Nowhere", "allocated_quantity": 1},
            ],
        ),
        merchant,
    )

    detail = await ProductService(db).get_product_detail(product.id, merchant)
    by_code = {a["warehouse_code"]: a for a in detail["stock_allocations"]}

    assert set(by_code) == {"NOR001", "DEFAULT"}
    # Unresolved references land on the default warehouse and are summed
    assert by_code["DEFAULT"]["allocated_quantity"] == 6
    assert by_code["NOR001"]["available_stock"] == 8
    assert detail["total_allocated"] == 16
    assert detail["dimensions"] == {"length": 0.1, "width": 0.1, "height": 0.1}


async def test_create_rejects_bad_allocation_before_writing(db, business, merchant, warehouse):
    with pytest.raises(ValidationError, match="Safety stock cannot exceed allocated quantity"):
        await ProductService(db).create_product(
            ProductCreate(
                name="Desk Lamp",
                weight_kg=1.2,
                stock_allocations=[{"warehouse_id": str(warehouse.id), "allocated_quantity": 1, "safety_stock": 3}],
            ),
            merchant,
        )
    assert (await db.execute(select(Product))).scalars().all() == []


async def test_admin_must_name_business(db, business, admin):
    service = ProductService(db)
    with pytest.raises(ValidationError, match="business_id is required"):
        await service.create_product(ProductCreate(name="Lamp", weight_kg=1), admin)

    product = await service.create_product(ProductCreate(name="Lamp", weight_kg=1, business_id=business.id), admin)
    assert product.business_id == business.id


async def test_inactive_business_rejected(db, admin):
    closed = await factories.make_business(db, name="Closed Co", is_active=False)
    with pytest.raises(ValidationError):
        await ProductService(db).create_product(
            ProductCreate(name="Lamp", weight_kg=1, business_id=closed.id), admin
        )


async def test_merchant_cannot_create_for_other_business(db, other_business, merchant):
    with pytest.raises(PermissionDeniedError):
        await ProductService(db).create_product(
            ProductCreate(name="Lamp", weight_kg=1, business_id=other_business.id), merchant
        )


async def test_update_replaces_allocations(db, product, warehouse, second_warehouse, merchant):
    await factories.make_allocation(db, product, warehouse, allocated=10)
    updated = await ProductService(db).update_product(
        product.id,
        ProductUpdate(
            name="  Ergonomic Mouse ",
            stock_allocations=[{"warehouse_id": str(second_warehouse.id), "allocated_quantity": 4}],
        ),
        merchant,
    )

    assert updated.name == "Ergonomic Mouse"
    assert updated.sku == "MOUSE-1"
    rows = (await db.execute(select(StockAllocation))).scalars().all()
    assert [(r.warehouse_id, r.allocated_quantity) for r in rows] == [(second_warehouse.id, 4)]


async def test_update_by_other_tenant_denied(db, product, other_merchant):
    with pytest.raises(PermissionDeniedError):
        await ProductService(db).update_product(product.id, ProductUpdate(name="Hijacked"), other_merchant)


async def test_empty_update_rejected(db, product, merchant):
    with pytest.raises(ValidationError, match="No fields to update"):
        await ProductService(db).update_product(product.id, ProductUpdate(), merchant)


async def test_delete_product_used_in_order_conflicts(db, business, product, merchant):
    await factories.make_order(db, business, [(product, 1)])
    with pytest.raises(ConflictError, match="used in orders"):
        await ProductService(db).delete_product(product.id, merchant)
    assert await db.get(Product, product.id) is not None


async def test_delete_product_drops_allocations(db, product, warehouse, merchant):
    await factories.make_allocation(db, product, warehouse, allocated=3)
    await ProductService(db).delete_product(product.id, merchant)

    assert (await db.execute(select(StockAllocation))).scalars().all() == []
    assert await db.get(Product, product.id) is None


async def test_merchant_sees_only_own_products(db, business, other_business, product, merchant, other_merchant):
    await factories.make_product(db, other_business, name="Foreign Widget")
    service = ProductService(db)

    items, total = await service.get_products(merchant)
    assert total == 1
    assert items[0].id == product.id

    with pytest.raises(NotFoundError):
        await service.get_product(product.id, other_merchant)
    with pytest.raises(NotFoundError):
        await service.get_product(uuid.uuid4())
