"""Tests for the stock ledger: availability, safety stock, deletion guard, transfers."""
import uuid

import pytest
from sqlalchemy import select

from fulfillment.core.exceptions import ValidationError, NotFoundError, ConflictError
from fulfillment.models.audit_log import AuditLog
from fulfillment.models.order import OrderStatus
from fulfillment.models.stock import StockAllocation
from fulfillment.services.stock_ledger import (
    StockLedger,
    get_available,
    is_low_stock,
    validate_allocation,
)

from tests import factories


# =============================================================================
# Pure rules
# =============================================================================

@pytest.mark.parametrize(
    "allocated, safety, available",
    [(10, 0, 10), (10, 3, 7), (10, 10, 0), (0, 0, 0), (5, 8, 0)],
)
def test_available_is_allocated_minus_safety_floored_at_zero(allocated, safety, available):
    allocation = StockAllocation(allocated_quantity=allocated, safety_stock=safety)
    assert get_available(allocation) == available
    assert get_available(allocation) >= 0


@pytest.mark.parametrize(
    "allocated, safety, low",
    [(20, 5, False), (10, 5, True), (8, 5, True), (0, 0, True), (1, 0, False)],
)
def test_low_stock_when_available_at_or_below_safety(allocated, safety, low):
    allocation = StockAllocation(allocated_quantity=allocated, safety_stock=safety)
    assert is_low_stock(allocation) is low


def test_validate_allocation_rejects_safety_above_allocated():
    with pytest.raises(ValidationError) as exc:
        validate_allocation({"allocated_quantity": 10, "safety_stock": 15})
    assert exc.value.message == "Safety stock cannot exceed allocated quantity"


@pytest.mark.parametrize(
    "data, message",
    [
        ({"allocated_quantity": -1, "safety_stock": 0}, "Allocated quantity cannot be negative"),
        ({"allocated_quantity": 5, "safety_stock": -2}, "Safety stock cannot be negative"),
        ({"allocated_quantity": 2.5, "safety_stock": 0}, "Quantities must be whole numbers"),
        ({"allocated_quantity": True, "safety_stock": 0}, "Quantities must be whole numbers"),
    ],
)
def test_validate_allocation_rejects_bad_quantities(data, message):
    with pytest.raises(ValidationError) as exc:
        validate_allocation(data)
    assert exc.value.message == message


def test_validate_allocation_accepts_equal_safety_and_allocated():
    checked = validate_allocation({"allocated_quantity": 4, "safety_stock": 4})
    assert (checked.allocated_quantity, checked.safety_stock) == (4, 4)


# =============================================================================
# Upserts
# =============================================================================

async def test_upsert_creates_then_overwrites(db, product, warehouse, admin):
    ledger = StockLedger(db)

    created = await ledger.upsert_allocation(product.id, warehouse.id, 10, 2, user_id=admin.user_id)
    assert (created.allocated_quantity, created.safety_stock) == (10, 2)

    updated = await ledger.upsert_allocation(product.id, warehouse.id, 25, 5, user_id=admin.user_id)
    assert updated.product_id == created.product_id
    assert (updated.allocated_quantity, updated.safety_stock) == (25, 5)

    rows = (await db.execute(select(StockAllocation))).scalars().all()
    assert len(rows) == 1

    actions = (await db.execute(
        select(AuditLog.action).where(AuditLog.entity_type == "STOCK_ALLOCATION")
    )).scalars().all()
    assert sorted(actions) == ["CREATE", "UPDATE"]


async def test_upsert_rejects_safety_above_allocated_and_keeps_previous_values(db, product, warehouse):
    ledger = StockLedger(db)
    await ledger.upsert_allocation(product.id, warehouse.id, 10, 2)

    with pytest.raises(ValidationError, match="Safety stock cannot exceed allocated quantity"):
        await ledger.upsert_allocation(product.id, warehouse.id, 10, 15)

    allocation = await ledger.get_allocation(product.id, warehouse.id)
    assert allocation.safety_stock <= allocation.allocated_quantity
    assert (allocation.allocated_quantity, allocation.safety_stock) == (10, 2)


async def test_upsert_unknown_product_or_warehouse(db, product, warehouse):
    ledger = StockLedger(db)
    with pytest.raises(NotFoundError):
        await ledger.upsert_allocation(uuid.uuid4(), warehouse.id, 1, 0)
    with pytest.raises(NotFoundError):
        await ledger.upsert_allocation(product.id, uuid.uuid4(), 1, 0)


async def test_bulk_upsert_isolates_bad_entries(db, product, warehouse, second_warehouse):
    ledger = StockLedger(db)
    result = await ledger.bulk_upsert([
        {"product_id": product.id, "warehouse_id": warehouse.id, "allocated_quantity": 10, "safety_stock": 1},
        {"product_id": product.id, "warehouse_id": second_warehouse.id, "allocated_quantity": 3, "safety_stock": 9},
        {"product_id": product.id, "warehouse_id": uuid.uuid4(), "allocated_quantity": 3},
    ])

    assert result["success"] == 1
    assert result["error_count"] == 2
    assert [e["index"] for e in result["errors"]] == [1, 2]
    assert await ledger.get_allocation(product.id, warehouse.id) is not None
    assert await ledger.get_allocation(product.id, second_warehouse.id) is None


# =============================================================================
# Deletion guard
# =============================================================================

@pytest.mark.parametrize(
    "status",
    [OrderStatus.NEW, OrderStatus.AWAITING_ALLOC, OrderStatus.DISPATCHED],
)
async def test_delete_allocation_blocked_by_pending_order(db, business, product, warehouse, status):
    await factories.make_allocation(db, product, warehouse, allocated=10)
    order = await factories.make_order(
        db, business, [(product, 2)], status=status, fulfillment_warehouse_id=warehouse.id
    )

    ledger = StockLedger(db)
    with pytest.raises(ConflictError) as exc:
        await ledger.delete_allocation(product.id, warehouse.id)

    assert exc.value.details["count"] == 1
    assert exc.value.details["pending_orders"][0]["id"] == str(order.id)
    assert await ledger.get_allocation(product.id, warehouse.id) is not None


async def test_delete_allocation_allowed_once_orders_moved_on(db, business, product, warehouse):
    await factories.make_allocation(db, product, warehouse, allocated=10)
    await factories.make_order(
        db, business, [(product, 2)], status=OrderStatus.DELIVERED, fulfillment_warehouse_id=warehouse.id
    )
    # Pending order for another warehouse does not count
    await factories.make_order(db, business, [(product, 1)], status=OrderStatus.NEW)

    ledger = StockLedger(db)
    await ledger.delete_allocation(product.id, warehouse.id)
    assert await ledger.get_allocation(product.id, warehouse.id) is None


async def test_delete_missing_allocation(db, product, warehouse):
    with pytest.raises(NotFoundError):
        await StockLedger(db).delete_allocation(product.id, warehouse.id)


# =============================================================================
# Replace, consume, transfer, list
# =============================================================================

async def test_replace_product_allocations_is_atomic(db, product, warehouse, second_warehouse):
    await factories.make_allocation(db, product, warehouse, allocated=10, safety=2)
    ledger = StockLedger(db)

    with pytest.raises(ValidationError):
        await ledger.replace_product_allocations(product.id, [
            (second_warehouse.id, {"allocated_quantity": 5, "safety_stock": 0}),
            (warehouse.id, {"allocated_quantity": 1, "safety_stock": 3}),
        ])
    # Nothing changed
    assert (await ledger.get_allocation(product.id, warehouse.id)).allocated_quantity == 10
    assert await ledger.get_allocation(product.id, second_warehouse.id) is None

    created = await ledger.replace_product_allocations(product.id, [
        (second_warehouse.id, {"allocated_quantity": 5, "safety_stock": 1}),
    ])
    assert [a.warehouse_id for a in created] == [second_warehouse.id]
    assert await ledger.get_allocation(product.id, warehouse.id) is None


async def test_consume_stock_only_takes_available_units(db, product, warehouse):
    await factories.make_allocation(db, product, warehouse, allocated=10, safety=4)
    ledger = StockLedger(db)

    with pytest.raises(ValidationError):
        await ledger.consume_stock(product.id, warehouse.id, 7)

    allocation = await ledger.consume_stock(product.id, warehouse.id, 6, reference="ORD-1")
    assert allocation.allocated_quantity == 4
    assert get_available(allocation) == 0


async def test_transfer_moves_units_between_warehouses(db, product, warehouse, second_warehouse, admin):
    await factories.make_allocation(db, product, warehouse, allocated=10, safety=2)
    ledger = StockLedger(db)

    source, destination = await ledger.transfer_stock(
        product.id, warehouse.id, second_warehouse.id, 5, user_id=admin.user_id
    )
    assert source.allocated_quantity == 5
    assert destination.allocated_quantity == 5
    assert destination.safety_stock == 0

    audit = (await db.execute(select(AuditLog).where(AuditLog.action == "TRANSFER"))).scalar_one()
    assert audit.details["quantity"] == 5


async def test_transfer_rejects_more_than_available(db, product, warehouse, second_warehouse):
    await factories.make_allocation(db, product, warehouse, allocated=10, safety=4)
    with pytest.raises(ValidationError, match="Insufficient stock. Available: 6, Requested: 7"):
        await StockLedger(db).transfer_stock(product.id, warehouse.id, second_warehouse.id, 7)


async def test_transfer_to_same_warehouse_rejected(db, product, warehouse):
    await factories.make_allocation(db, product, warehouse, allocated=10)
    with pytest.raises(ValidationError):
        await StockLedger(db).transfer_stock(product.id, warehouse.id, warehouse.id, 1)


async def test_list_allocations_filters_low_stock_and_business(
    db, business, other_business, product, warehouse, second_warehouse
):
    foreign = await factories.make_product(db, other_business, name="Foreign")
    await factories.make_allocation(db, product, warehouse, allocated=20, safety=5)
    await factories.make_allocation(db, product, second_warehouse, allocated=6, safety=3)
    await factories.make_allocation(db, foreign, warehouse, allocated=1, safety=1)

    ledger = StockLedger(db)
    mine = await ledger.list_allocations(business_id=business.id)
    assert len(mine) == 2
    assert {a["product_sku"] for a in mine} == {product.sku}

    low = await ledger.list_allocations(business_id=business.id, low_stock=True)
    assert [(a["warehouse_code"], a["available_stock"]) for a in low] == [("SOU001", 3)]
