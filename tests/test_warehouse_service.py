"""Tests for warehouse management and deletion with stock migration."""
import pytest
from sqlalchemy import select

from fulfillment.core.exceptions import ValidationError, NotFoundError, PermissionDeniedError, ConflictError
from fulfillment.models.order import Order
from fulfillment.models.stock import StockAllocation
from fulfillment.models.warehouse import Warehouse, WarehouseStatus
from fulfillment.schemas.warehouse import MigrationTarget, WarehouseCreate, WarehouseUpdate
from fulfillment.services.stock_ledger import StockLedger
from fulfillment.services.warehouse_service import WarehouseService

from tests import factories


@pytest.fixture
async def stocked_warehouse(db, business, warehouse):
    for name in ("Alpha", "Bravo", "Charlie"):
        item = await factories.make_product(db, business, name=name)
        await factories.make_allocation(db, item, warehouse, allocated=10, safety=1)
    return warehouse


async def test_delete_with_stock_needs_plan_or_force(db, admin, stocked_warehouse):
    with pytest.raises(ConflictError) as exc:
        await WarehouseService(db).delete_warehouse(stocked_warehouse.id, admin)

    assert exc.value.details == {"hasActiveStock": True, "stockCount": 3}
    assert await db.get(Warehouse, stocked_warehouse.id) is not None


async def test_force_delete_drops_stock_and_detaches_orders(db, business, product, admin, warehouse):
    await factories.make_allocation(db, product, warehouse, allocated=4)
    order = await factories.make_order(db, business, [(product, 1)], fulfillment_warehouse_id=warehouse.id)

    result = await WarehouseService(db).delete_warehouse(warehouse.id, admin, force=True)

    assert result == {"migrated_allocations": 0, "deleted_allocations": 1, "detached_orders": 1}
    assert await db.get(Warehouse, warehouse.id) is None
    assert (await db.execute(select(StockAllocation))).scalars().all() == []
    assert (await db.get(Order, order.id)).fulfillment_warehouse_id is None


async def test_migration_plan_moves_stock(db, business, admin, warehouse, second_warehouse):
    lamp = await factories.make_product(db, business, name="Lamp")
    desk = await factories.make_product(db, business, name="Desk")
    await factories.make_allocation(db, lamp, warehouse, allocated=10, safety=2)
    await factories.make_allocation(db, desk, warehouse, allocated=6)
    await factories.make_allocation(db, desk, second_warehouse, allocated=1)

    result = await WarehouseService(db).delete_warehouse(
        warehouse.id,
        admin,
        migration_plan={
            lamp.id: [MigrationTarget(warehouse_id=second_warehouse.id, quantity=10)],
            desk.id: [MigrationTarget(warehouse_id=second_warehouse.id, quantity=6)],
        },
    )

    assert result["migrated_allocations"] == 2
    ledger = StockLedger(db)
    assert (await ledger.get_allocation(lamp.id, second_warehouse.id)).allocated_quantity == 10
    assert (await ledger.get_allocation(desk.id, second_warehouse.id)).allocated_quantity == 7


async def test_migration_plan_must_cover_every_product(db, admin, stocked_warehouse, second_warehouse):
    product_id = (await db.execute(
        select(StockAllocation.product_id).where(StockAllocation.warehouse_id == stocked_warehouse.id).limit(1)
    )).scalar_one()

    with pytest.raises(ValidationError, match="does not cover"):
        await WarehouseService(db).delete_warehouse(
            stocked_warehouse.id,
            admin,
            migration_plan={product_id: [MigrationTarget(warehouse_id=second_warehouse.id, quantity=5)]},
        )


async def test_migration_cannot_move_more_than_held(db, product, admin, warehouse, second_warehouse):
    await factories.make_allocation(db, product, warehouse, allocated=3)
    with pytest.raises(ValidationError, match="Cannot migrate 5 units"):
        await WarehouseService(db).delete_warehouse(
            warehouse.id,
            admin,
            migration_plan={product.id: [MigrationTarget(warehouse_id=second_warehouse.id, quantity=5)]},
        )


async def test_delete_empty_warehouse(db, admin, second_warehouse):
    result = await WarehouseService(db).delete_warehouse(second_warehouse.id, admin)
    assert result["deleted_allocations"] == 0
    with pytest.raises(NotFoundError):
        await WarehouseService(db).get_warehouse(second_warehouse.id)


async def test_warehouse_management_is_admin_only(db, merchant, logistics, warehouse):
    service = WarehouseService(db)
    for actor in (merchant, logistics):
        with pytest.raises(PermissionDeniedError):
            await service.create_warehouse(WarehouseCreate(name="Mine", region="East"), actor)
        with pytest.raises(PermissionDeniedError):
            await service.delete_warehouse(warehouse.id, actor)


async def test_update_keeps_code(db, admin, warehouse):
    updated = await WarehouseService(db).update_warehouse(
        warehouse.id, WarehouseUpdate(name="North Depot", status=WarehouseStatus.MAINTENANCE), admin
    )
    assert (updated.code, updated.name, updated.status) == ("NOR001", "North Depot", "MAINTENANCE")


async def test_list_filters(db, warehouse, second_warehouse):
    await factories.make_warehouse(db, name="Closed", status=WarehouseStatus.INACTIVE)
    service = WarehouseService(db)

    items, total = await service.get_warehouses(status=WarehouseStatus.ACTIVE)
    assert total == 2
    assert [w.name for w in items] == ["North Hub", "South Hub"]

    items, total = await service.get_warehouses(search="sou")
    assert [w.code for w in items] == ["SOU001"]
