"""Warehouse management: create, update, list and delete with stock migration."""
import logging
from typing import Optional, List, Dict, Tuple, Any
import uuid

from sqlalchemy import select, func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import ValidationError, NotFoundError, ConflictError, GenerationError
from fulfillment.core.permissions import Actor, Operation, require
from fulfillment.models.order import Order
from fulfillment.models.stock import StockAllocation
from fulfillment.models.warehouse import Warehouse, WarehouseStatus, WarehouseType
from fulfillment.schemas.warehouse import WarehouseCreate, WarehouseUpdate, MigrationTarget
from fulfillment.services.audit_service import AuditService
from fulfillment.services.code_generator import next_warehouse_code
from fulfillment.services.stock_ledger import StockLedger


logger = logging.getLogger(__name__)

ENTITY_TYPE = "WAREHOUSE"
CODE_RETRIES = 3


def _warehouse_snapshot(warehouse: Warehouse) -> Dict[str, Any]:
    return {
        "code": warehouse.code,
        "name": warehouse.name,
        "region": warehouse.region,
        "status": warehouse.status,
        "warehouse_type": warehouse.warehouse_type,
        "capacity": warehouse.capacity,
        "current_stock": warehouse.current_stock,
    }


class WarehouseService:
    """Service for warehouse management operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.ledger = StockLedger(db)

    async def get_warehouses(
        self,
        status: Optional[WarehouseStatus] = None,
        warehouse_type: Optional[WarehouseType] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Warehouse], int]:
        """Get paginated list of warehouses."""
        query = select(Warehouse)

        if status:
            query = query.where(Warehouse.status == status.value)
        if warehouse_type:
            query = query.where(Warehouse.warehouse_type == warehouse_type.value)
        if search:
            query = query.where(
                or_(
                    Warehouse.name.ilike(f"%{search}%"),
                    Warehouse.code.ilike(f"%{search}%"),
                    Warehouse.region.ilike(f"%{search}%"),
                    Warehouse.city.ilike(f"%{search}%"),
                )
            )

        # Count
        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        # Paginate
        query = query.order_by(Warehouse.name).offset(skip).limit(limit)
        result = await self.db.execute(query)

        return list(result.scalars().all()), total

    async def get_warehouse(self, warehouse_id: uuid.UUID) -> Warehouse:
        warehouse = await self.db.get(Warehouse, warehouse_id)
        if not warehouse:
            raise NotFoundError("Warehouse not found", details={"warehouse_id": str(warehouse_id)})
        return warehouse

    async def get_warehouse_by_code(self, code: str) -> Optional[Warehouse]:
        """Get warehouse by code."""
        result = await self.db.execute(select(Warehouse).where(Warehouse.code == code.strip().upper()))
        return result.scalar_one_or_none()

    async def create_warehouse(self, data: WarehouseCreate, actor: Actor) -> Warehouse:
        """
        Create a warehouse. Without an explicit code one is derived from the
        region; a generated code that loses an insert race is regenerated.
        """
        require(actor, Operation.WAREHOUSE_CREATE)
        values = data.model_dump(exclude={"code"})
        values["warehouse_type"] = data.warehouse_type.value
        values["status"] = data.status.value

        if data.code:
            code = data.code.strip().upper()
            if await self.get_warehouse_by_code(code):
                raise ConflictError("Warehouse code already exists", details={"code": code})
            warehouse = await self._insert(code, values)
        else:
            warehouse = None
            for attempt in range(CODE_RETRIES):
                code = await next_warehouse_code(self.db, data.region)
                try:
                    warehouse = await self._insert(code, values)
                    break
                except IntegrityError:
                    logger.info(f"Warehouse code {code} taken concurrently (attempt {attempt + 1})")
            if warehouse is None:
                raise GenerationError("Could not generate a unique warehouse code")

        await self.audit.log(
            action="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=warehouse.id,
            user_id=actor.user_id,
            new_values=_warehouse_snapshot(warehouse),
            description=f"Created warehouse: {warehouse.name}",
        )
        logger.info(f"Created warehouse {warehouse.code} ({warehouse.name})")
        return warehouse

    async def _insert(self, code: str, values: Dict[str, Any]) -> Warehouse:
        async with self.db.begin_nested():
            warehouse = Warehouse(code=code, **values)
            self.db.add(warehouse)
            await self.db.flush()
        return warehouse

    async def update_warehouse(
        self,
        warehouse_id: uuid.UUID,
        data: WarehouseUpdate,
        actor: Actor,
    ) -> Warehouse:
        """Update a warehouse. The code never changes."""
        require(actor, Operation.WAREHOUSE_UPDATE)
        warehouse = await self.get_warehouse(warehouse_id)
        old_values = _warehouse_snapshot(warehouse)

        changes = data.model_dump(exclude_unset=True)
        for key, value in changes.items():
            if key in ("status", "warehouse_type"):
                if value is None:
                    continue
                value = value.value
            setattr(warehouse, key, value)

        await self.db.flush()
        await self.audit.log(
            action="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=warehouse.id,
            user_id=actor.user_id,
            old_values=old_values,
            new_values=_warehouse_snapshot(warehouse),
        )
        return warehouse

    async def delete_warehouse(
        self,
        warehouse_id: uuid.UUID,
        actor: Actor,
        migration_plan: Optional[Dict[uuid.UUID, List[MigrationTarget]]] = None,
        force: bool = False,
    ) -> Dict[str, int]:
        """
        Delete a warehouse, moving or dropping its stock first.

        Without a migration plan or force flag a warehouse that still holds
        allocations is refused. Orders pointing at the warehouse are detached.
        Everything happens in one transaction.
        """
        require(actor, Operation.WAREHOUSE_DELETE)
        warehouse = await self.get_warehouse(warehouse_id)

        result = await self.db.execute(
            select(StockAllocation).where(StockAllocation.warehouse_id == warehouse_id)
        )
        allocations = {a.product_id: a for a in result.scalars().all()}

        if allocations and not migration_plan and not force:
            raise ConflictError(
                "Warehouse has active stock allocations. Please provide a migration plan or use force delete.",
                details={"hasActiveStock": True, "stockCount": len(allocations)},
            )

        if migration_plan:
            await self._validate_migration_plan(warehouse_id, allocations, migration_plan, force)

        migrated = 0
        deleted = 0
        async with self.db.begin_nested():
            for product_id, allocation in allocations.items():
                targets = (migration_plan or {}).get(product_id)
                if targets:
                    for target in targets:
                        await self.ledger.add_stock(product_id, target.warehouse_id, target.quantity)
                    migrated += 1
                else:
                    deleted += 1
                await self.db.delete(allocation)
            await self.db.flush()

            detached = await self.db.execute(
                update(Order)
                .where(Order.fulfillment_warehouse_id == warehouse_id)
                .values(fulfillment_warehouse_id=None)
                .execution_options(synchronize_session="fetch")
            )
            detached_orders = detached.rowcount or 0

            await self.db.delete(warehouse)
            await self.db.flush()

        await self.audit.log(
            action="DELETE",
            entity_type=ENTITY_TYPE,
            entity_id=warehouse_id,
            user_id=actor.user_id,
            old_values=_warehouse_snapshot(warehouse),
            details={
                "migrated_allocations": migrated,
                "deleted_allocations": deleted,
                "detached_orders": detached_orders,
                "force": force,
            },
            description=f"Deleted warehouse: {warehouse.name}",
        )
        logger.info(
            f"Deleted warehouse {warehouse.code}: migrated={migrated} "
            f"dropped={deleted} detached_orders={detached_orders}"
        )
        return {
            "migrated_allocations": migrated,
            "deleted_allocations": deleted,
            "detached_orders": detached_orders,
        }

    async def _validate_migration_plan(
        self,
        warehouse_id: uuid.UUID,
        allocations: Dict[uuid.UUID, StockAllocation],
        migration_plan: Dict[uuid.UUID, List[MigrationTarget]],
        force: bool,
    ) -> None:
        unknown = [str(pid) for pid in migration_plan if pid not in allocations]
        if unknown:
            raise ValidationError(
                "Migration plan references products not stocked in this warehouse",
                details={"products": unknown},
            )

        uncovered = [str(pid) for pid in allocations if not migration_plan.get(pid)]
        if uncovered and not force:
            raise ValidationError(
                "Migration plan does not cover every stocked product; add them or use force delete",
                details={"products": uncovered},
            )

        for product_id, targets in migration_plan.items():
            moved = sum(t.quantity for t in targets)
            held = allocations[product_id].allocated_quantity
            if moved > held:
                raise ValidationError(
                    f"Cannot migrate {moved} units of a product that has {held} in this warehouse",
                    details={"product_id": str(product_id), "allocated": held, "requested": moved},
                )
            for target in targets:
                if target.warehouse_id == warehouse_id:
                    raise ValidationError("Cannot migrate stock into the warehouse being deleted")
                await self.get_warehouse(target.warehouse_id)
