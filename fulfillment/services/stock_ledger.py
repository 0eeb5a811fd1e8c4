"""
Stock Ledger

Single source of truth for how many units of a product are allocated to a
warehouse and how many of those are held back as safety stock.

Rules:
- available = max(0, allocated - safety); derived, never stored
- low stock when available <= safety (one rule, used everywhere)
- safety <= allocated on every write, checked by validate_allocation()
"""
import logging
from typing import Optional, List, Dict, Any, Iterable, Tuple, Union
import uuid

from pydantic import ValidationError as SchemaValidationError
from sqlalchemy import select, and_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import (
    FulfillmentError, ValidationError, NotFoundError, ConflictError,
)
from fulfillment.models.order import Order, OrderItem, OrderStatus
from fulfillment.models.product import Product
from fulfillment.models.stock import StockAllocation
from fulfillment.models.warehouse import Warehouse
from fulfillment.schemas.stock import AllocationInput, StockAllocationUpsert
from fulfillment.services.audit_service import AuditService


logger = logging.getLogger(__name__)

ENTITY_TYPE = "STOCK_ALLOCATION"

# Orders that still expect stock at their fulfillment warehouse
PENDING_ORDER_STATUSES = [
    OrderStatus.NEW.value,
    OrderStatus.AWAITING_ALLOC.value,
    OrderStatus.DISPATCHED.value,
    OrderStatus.ASSIGNED_TO_LOGISTICS.value,
]


# ==================== PURE HELPERS ====================

def get_available(allocation) -> int:
    """Units that can be sold: allocated minus safety, floored at zero."""
    return max(0, (allocation.allocated_quantity or 0) - (allocation.safety_stock or 0))


def is_low_stock(allocation) -> bool:
    """Low when what can be sold is at or below the safety buffer."""
    return get_available(allocation) <= (allocation.safety_stock or 0)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_allocation(data: Union[AllocationInput, Dict[str, Any]]) -> AllocationInput:
    """
    Check one allocation request. Used for both create and update.

    Raises:
        ValidationError: negative or non-integer quantities, or safety stock
            above the allocated quantity.
    """
    if isinstance(data, dict):
        allocated = data.get("allocated_quantity", 0)
        safety = data.get("safety_stock", 0)
    else:
        allocated = data.allocated_quantity
        safety = data.safety_stock

    if not _is_int(allocated) or not _is_int(safety):
        raise ValidationError(
            "Quantities must be whole numbers",
            details={"allocated_quantity": allocated, "safety_stock": safety},
        )
    if allocated < 0:
        raise ValidationError("Allocated quantity cannot be negative", details={"allocated_quantity": allocated})
    if safety < 0:
        raise ValidationError("Safety stock cannot be negative", details={"safety_stock": safety})
    if safety > allocated:
        raise ValidationError(
            "Safety stock cannot exceed allocated quantity",
            details={"allocated_quantity": allocated, "safety_stock": safety},
        )
    return AllocationInput(allocated_quantity=allocated, safety_stock=safety)


def allocation_to_dict(
    allocation: StockAllocation,
    product: Optional[Product] = None,
    warehouse: Optional[Warehouse] = None,
) -> Dict[str, Any]:
    """Serialize an allocation with its derived values."""
    return {
        "product_id": allocation.product_id,
        "warehouse_id": allocation.warehouse_id,
        "allocated_quantity": allocation.allocated_quantity,
        "safety_stock": allocation.safety_stock,
        "available_stock": get_available(allocation),
        "is_low_stock": is_low_stock(allocation),
        "product_name": product.name if product else None,
        "product_sku": product.sku if product else None,
        "warehouse_name": warehouse.name if warehouse else None,
        "warehouse_code": warehouse.code if warehouse else None,
        "updated_at": allocation.updated_at,
    }


def _snapshot(allocation: StockAllocation) -> Dict[str, int]:
    return {
        "allocated_quantity": allocation.allocated_quantity,
        "safety_stock": allocation.safety_stock,
    }


def _entity_id(product_id: uuid.UUID, warehouse_id: uuid.UUID) -> str:
    return f"{product_id}:{warehouse_id}"


class StockLedger:
    """Per-(product, warehouse) allocation bookkeeping."""

    get_available = staticmethod(get_available)
    is_low_stock = staticmethod(is_low_stock)
    validate_allocation = staticmethod(validate_allocation)

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # ==================== LOOKUPS ====================

    async def _get_product(self, product_id: uuid.UUID) -> Product:
        product = await self.db.get(Product, product_id)
        if not product:
            raise NotFoundError("Product not found", details={"product_id": str(product_id)})
        return product

    async def _get_warehouse(self, warehouse_id: uuid.UUID) -> Warehouse:
        warehouse = await self.db.get(Warehouse, warehouse_id)
        if not warehouse:
            raise NotFoundError("Warehouse not found", details={"warehouse_id": str(warehouse_id)})
        return warehouse

    async def get_allocation(
        self,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
    ) -> Optional[StockAllocation]:
        result = await self.db.execute(
            select(StockAllocation).where(
                StockAllocation.product_id == product_id,
                StockAllocation.warehouse_id == warehouse_id,
            )
        )
        return result.scalar_one_or_none()

    # ==================== WRITES ====================

    async def upsert_allocation(
        self,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
        allocated_quantity: int,
        safety_stock: int = 0,
        user_id: Optional[uuid.UUID] = None,
    ) -> StockAllocation:
        """Create the allocation, or overwrite both quantities if it exists."""
        checked = validate_allocation({
            "allocated_quantity": allocated_quantity,
            "safety_stock": safety_stock,
        })
        await self._get_product(product_id)
        await self._get_warehouse(warehouse_id)

        allocation = await self.get_allocation(product_id, warehouse_id)
        if allocation:
            old_values = _snapshot(allocation)
            allocation.allocated_quantity = checked.allocated_quantity
            allocation.safety_stock = checked.safety_stock
            action = "UPDATE"
        else:
            old_values = None
            allocation = StockAllocation(
                product_id=product_id,
                warehouse_id=warehouse_id,
                allocated_quantity=checked.allocated_quantity,
                safety_stock=checked.safety_stock,
            )
            self.db.add(allocation)
            action = "CREATE"

        await self.db.flush()
        await self.audit.log(
            action=action,
            entity_type=ENTITY_TYPE,
            entity_id=_entity_id(product_id, warehouse_id),
            user_id=user_id,
            old_values=old_values,
            new_values=_snapshot(allocation),
        )
        logger.info(
            f"Stock allocation {action.lower()}d: product={product_id} warehouse={warehouse_id} "
            f"allocated={allocation.allocated_quantity} safety={allocation.safety_stock}"
        )
        return allocation

    async def bulk_upsert(
        self,
        entries: Iterable[Union[StockAllocationUpsert, Dict[str, Any]]],
        user_id: Optional[uuid.UUID] = None,
    ) -> Dict[str, Any]:
        """
        Apply many upserts. Each entry runs in its own savepoint so a bad
        entry is reported without undoing the others.
        """
        results: List[Dict[str, Any]] = []
        errors: List[Dict[str, Any]] = []

        for index, raw in enumerate(entries):
            try:
                entry = raw if isinstance(raw, StockAllocationUpsert) else StockAllocationUpsert.model_validate(raw)
            except SchemaValidationError as e:
                errors.append({"index": index, "error": f"Invalid allocation entry: {e.errors()[0]['msg']}"})
                continue

            try:
                async with self.db.begin_nested():
                    allocation = await self.upsert_allocation(
                        entry.product_id,
                        entry.warehouse_id,
                        entry.allocated_quantity,
                        entry.safety_stock,
                        user_id=user_id,
                    )
                results.append(allocation_to_dict(allocation))
            except FulfillmentError as e:
                errors.append({
                    "index": index,
                    "product_id": str(entry.product_id),
                    "warehouse_id": str(entry.warehouse_id),
                    "error": e.message,
                })
            except SQLAlchemyError as e:
                logger.warning(f"Bulk allocation entry {index} failed: {e}")
                errors.append({
                    "index": index,
                    "product_id": str(entry.product_id),
                    "warehouse_id": str(entry.warehouse_id),
                    "error": "Failed to save stock allocation",
                })

        return {
            "results": results,
            "errors": errors,
            "success": len(results),
            "error_count": len(errors),
        }

    async def pending_orders_for(
        self,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
    ) -> List[Order]:
        """Orders not yet picked up that expect this product from this warehouse."""
        stmt = (
            select(Order)
            .join(OrderItem, OrderItem.order_id == Order.id)
            .where(
                and_(
                    Order.status.in_(PENDING_ORDER_STATUSES),
                    Order.fulfillment_warehouse_id == warehouse_id,
                    OrderItem.product_id == product_id,
                )
            )
            .distinct()
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def delete_allocation(
        self,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
    ) -> None:
        """
        Remove an allocation.

        Raises:
            ConflictError: a pending order still expects this product here.
        """
        allocation = await self.get_allocation(product_id, warehouse_id)
        if not allocation:
            raise NotFoundError("Stock allocation not found")

        pending = await self.pending_orders_for(product_id, warehouse_id)
        if pending:
            raise ConflictError(
                "Cannot delete stock allocation: there are pending orders for this product in this warehouse",
                details={
                    "pending_orders": [
                        {"id": str(o.id), "reference": o.reference, "status": o.status}
                        for o in pending
                    ],
                    "count": len(pending),
                },
            )

        old_values = _snapshot(allocation)
        await self.db.delete(allocation)
        await self.db.flush()
        await self.audit.log(
            action="DELETE",
            entity_type=ENTITY_TYPE,
            entity_id=_entity_id(product_id, warehouse_id),
            user_id=user_id,
            old_values=old_values,
        )

    async def replace_product_allocations(
        self,
        product_id: uuid.UUID,
        entries: List[Tuple[uuid.UUID, Union[AllocationInput, Dict[str, Any]]]],
        user_id: Optional[uuid.UUID] = None,
    ) -> List[StockAllocation]:
        """
        Swap a product's allocations for ``entries`` (warehouse_id, quantities)
        atomically. Every entry is validated before anything is written.
        """
        checked: List[Tuple[uuid.UUID, AllocationInput]] = []
        seen = set()
        for warehouse_id, data in entries:
            if warehouse_id in seen:
                raise ValidationError(
                    "Duplicate warehouse in stock allocations",
                    details={"warehouse_id": str(warehouse_id)},
                )
            seen.add(warehouse_id)
            checked.append((warehouse_id, validate_allocation(data)))

        await self._get_product(product_id)
        for warehouse_id, _ in checked:
            await self._get_warehouse(warehouse_id)

        async with self.db.begin_nested():
            result = await self.db.execute(
                select(StockAllocation).where(StockAllocation.product_id == product_id)
            )
            existing = list(result.scalars().all())
            old_values = [
                {"warehouse_id": str(a.warehouse_id), **_snapshot(a)} for a in existing
            ]
            for allocation in existing:
                await self.db.delete(allocation)
            await self.db.flush()

            created = []
            for warehouse_id, data in checked:
                allocation = StockAllocation(
                    product_id=product_id,
                    warehouse_id=warehouse_id,
                    allocated_quantity=data.allocated_quantity,
                    safety_stock=data.safety_stock,
                )
                self.db.add(allocation)
                created.append(allocation)
            await self.db.flush()

        await self.audit.log(
            action="REPLACE",
            entity_type=ENTITY_TYPE,
            entity_id=str(product_id),
            user_id=user_id,
            old_values={"allocations": old_values},
            new_values={
                "allocations": [
                    {"warehouse_id": str(a.warehouse_id), **_snapshot(a)} for a in created
                ]
            },
        )
        return created

    async def add_stock(
        self,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
        quantity: int,
    ) -> StockAllocation:
        """Increment an allocation, creating it with zero safety stock if absent."""
        allocation = await self.get_allocation(product_id, warehouse_id)
        if allocation:
            allocation.allocated_quantity += quantity
        else:
            allocation = StockAllocation(
                product_id=product_id,
                warehouse_id=warehouse_id,
                allocated_quantity=quantity,
                safety_stock=0,
            )
            self.db.add(allocation)
        await self.db.flush()
        return allocation

    async def consume_stock(
        self,
        product_id: uuid.UUID,
        warehouse_id: uuid.UUID,
        quantity: int,
        user_id: Optional[uuid.UUID] = None,
        reference: Optional[str] = None,
    ) -> StockAllocation:
        """
        Take picked units out of a warehouse. Only available stock can be
        taken, so the safety buffer is never touched.
        """
        allocation = await self.get_allocation(product_id, warehouse_id)
        available = get_available(allocation) if allocation else 0
        if quantity > available:
            raise ValidationError(
                "Insufficient available stock in warehouse",
                details={
                    "product_id": str(product_id),
                    "warehouse_id": str(warehouse_id),
                    "available": available,
                    "requested": quantity,
                },
            )

        old_values = _snapshot(allocation)
        allocation.allocated_quantity -= quantity
        await self.db.flush()
        await self.audit.log(
            action="PICK",
            entity_type=ENTITY_TYPE,
            entity_id=_entity_id(product_id, warehouse_id),
            user_id=user_id,
            old_values=old_values,
            new_values=_snapshot(allocation),
            description=f"Picked {quantity} for order {reference}" if reference else None,
        )
        return allocation

    async def transfer_stock(
        self,
        product_id: uuid.UUID,
        from_warehouse_id: uuid.UUID,
        to_warehouse_id: uuid.UUID,
        quantity: int,
        user_id: Optional[uuid.UUID] = None,
        notes: Optional[str] = None,
    ) -> Tuple[StockAllocation, StockAllocation]:
        """Move available units between two warehouses in one step."""
        if not _is_int(quantity) or quantity <= 0:
            raise ValidationError("Transfer quantity must be a positive whole number")
        if from_warehouse_id == to_warehouse_id:
            raise ValidationError("Source and destination warehouses must be different")

        await self._get_product(product_id)
        await self._get_warehouse(from_warehouse_id)
        await self._get_warehouse(to_warehouse_id)

        source = await self.get_allocation(product_id, from_warehouse_id)
        if not source:
            raise NotFoundError("No stock allocation for this product in the source warehouse")

        available = get_available(source)
        if available < quantity:
            raise ValidationError(
                f"Insufficient stock. Available: {available}, Requested: {quantity}",
                details={"available": available, "requested": quantity},
            )

        async with self.db.begin_nested():
            source_before = _snapshot(source)
            source.allocated_quantity -= quantity
            destination = await self.add_stock(product_id, to_warehouse_id, quantity)

        await self.audit.log(
            action="TRANSFER",
            entity_type=ENTITY_TYPE,
            entity_id=str(product_id),
            user_id=user_id,
            old_values={"source": source_before},
            new_values={"source": _snapshot(source), "destination": _snapshot(destination)},
            details={
                "from_warehouse_id": str(from_warehouse_id),
                "to_warehouse_id": str(to_warehouse_id),
                "quantity": quantity,
                "notes": notes,
            },
        )
        logger.info(
            f"Transferred {quantity} of product {product_id} "
            f"from {from_warehouse_id} to {to_warehouse_id}"
        )
        return source, destination

    # ==================== READS ====================

    async def list_allocations(
        self,
        product_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        business_id: Optional[uuid.UUID] = None,
        low_stock: Optional[bool] = None,
    ) -> List[Dict[str, Any]]:
        """Allocations with product and warehouse labels and derived values."""
        stmt = (
            select(StockAllocation, Product, Warehouse)
            .join(Product, Product.id == StockAllocation.product_id)
            .join(Warehouse, Warehouse.id == StockAllocation.warehouse_id)
            .order_by(Product.name, Warehouse.name)
        )
        if product_id:
            stmt = stmt.where(StockAllocation.product_id == product_id)
        if warehouse_id:
            stmt = stmt.where(StockAllocation.warehouse_id == warehouse_id)
        if business_id:
            stmt = stmt.where(Product.business_id == business_id)

        result = await self.db.execute(stmt)
        items = [
            allocation_to_dict(allocation, product, warehouse)
            for allocation, product, warehouse in result.all()
        ]
        if low_stock is not None:
            items = [item for item in items if item["is_low_stock"] == low_stock]
        return items
