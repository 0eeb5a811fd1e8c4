"""Order Service: order edits, logistics assignment and deletion for fulfillment."""
import logging
from typing import Optional, List, Dict, Any, Tuple, Union, Iterable
from datetime import datetime, timezone
from collections import defaultdict
import uuid

from sqlalchemy import select, func, and_, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fulfillment.core.exceptions import (
    FulfillmentError, ValidationError, NotFoundError, PermissionDeniedError, ConflictError,
)
from fulfillment.core.permissions import (
    Actor, Operation, Role, require, require_fields,
)
from fulfillment.models.business import Business
from fulfillment.models.order import Order, OrderItem, OrderStatus
from fulfillment.models.product import Product
from fulfillment.models.shipment import Shipment
from fulfillment.models.user import User
from fulfillment.models.warehouse import Warehouse, WarehouseStatus
from fulfillment.schemas.order import OrderCreate, OrderUpdate, OrderAssignRequest
from fulfillment.services import order_state_machine as osm
from fulfillment.services.audit_service import AuditService
from fulfillment.services.notification_service import NotificationService
from fulfillment.services.stock_ledger import StockLedger


logger = logging.getLogger(__name__)

ENTITY_TYPE = "ORDER"
ASSIGNMENT_FIELDS = ("assigned_logistics_id", "fulfillment_warehouse_id")


def order_snapshot(order: Order) -> Dict[str, Any]:
    return {
        "status": order.status,
        "external_order_id": order.external_order_id,
        "customer_name": order.customer_name,
        "customer_address": order.customer_address,
        "customer_phone": order.customer_phone,
        "total_amount": order.total_amount,
        "assigned_logistics_id": order.assigned_logistics_id,
        "fulfillment_warehouse_id": order.fulfillment_warehouse_id,
    }


class OrderService:
    """Service for merchant order fulfillment."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.notifications = NotificationService(db)
        self.ledger = StockLedger(db)

    # ==================== LOOKUPS ====================

    async def _load_order(self, order_id: uuid.UUID) -> Order:
        stmt = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.shipment))
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        order = (await self.db.execute(stmt)).scalar_one_or_none()
        if not order:
            raise NotFoundError("Order not found", details={"order_id": str(order_id)})
        return order

    def _check_visible(self, order: Order, actor: Actor) -> None:
        """Merchants see their own business; logistics see their assignments."""
        if actor.is_merchant and order.merchant_id != actor.business_id:
            raise NotFoundError("Order not found", details={"order_id": str(order.id)})
        if actor.is_logistics and order.assigned_logistics_id != actor.user_id:
            raise NotFoundError("Order not found", details={"order_id": str(order.id)})

    async def _validate_logistics_user(self, user_id: uuid.UUID) -> User:
        user = await self.db.get(User, user_id)
        if not user or user.role != Role.LOGISTICS.value or not user.is_active:
            raise ValidationError("Invalid logistics user", details={"user_id": str(user_id)})
        return user

    async def _validate_warehouse(self, warehouse_id: uuid.UUID) -> Warehouse:
        warehouse = await self.db.get(Warehouse, warehouse_id)
        if not warehouse or warehouse.status != WarehouseStatus.ACTIVE.value:
            raise ValidationError(
                "Invalid or inactive warehouse", details={"warehouse_id": str(warehouse_id)}
            )
        return warehouse

    async def external_id_taken(
        self,
        merchant_id: uuid.UUID,
        external_order_id: str,
        exclude_order_id: Optional[uuid.UUID] = None,
    ) -> bool:
        stmt = select(Order.id).where(
            Order.merchant_id == merchant_id,
            Order.external_order_id == external_order_id,
        )
        if exclude_order_id:
            stmt = stmt.where(Order.id != exclude_order_id)
        return (await self.db.execute(stmt.limit(1))).scalar_one_or_none() is not None

    async def _ensure_external_id_free(
        self,
        merchant_id: uuid.UUID,
        external_order_id: Optional[str],
        exclude_order_id: Optional[uuid.UUID] = None,
    ) -> None:
        if external_order_id and await self.external_id_taken(merchant_id, external_order_id, exclude_order_id):
            raise ConflictError(
                "An order with this external order ID already exists for this merchant",
                details={"external_order_id": external_order_id},
            )

    async def products_by_sku(
        self,
        merchant_id: uuid.UUID,
        skus: Iterable[str],
    ) -> Dict[str, Product]:
        """Merchant's products keyed by uppercase SKU."""
        wanted = {s.strip().upper() for s in skus if s}
        if not wanted:
            return {}
        result = await self.db.execute(
            select(Product).where(Product.business_id == merchant_id, Product.sku.in_(wanted))
        )
        return {p.sku: p for p in result.scalars().all()}

    async def _resolve_merchant(self, requested: Optional[uuid.UUID], actor: Actor) -> Business:
        if actor.is_merchant:
            if requested and requested != actor.business_id:
                raise PermissionDeniedError("Can only create orders for your own business")
            merchant_id = actor.business_id
        else:
            merchant_id = requested
        if not merchant_id:
            raise ValidationError("merchant_id is required")

        business = await self.db.get(Business, merchant_id)
        if not business:
            raise NotFoundError("Business not found", details={"business_id": str(merchant_id)})
        if not business.is_active:
            raise ValidationError("Business is not active", details={"business_id": str(merchant_id)})
        return business

    # ==================== STATUS ====================

    async def _check_status_change(
        self,
        order: Order,
        new_status: Union[str, OrderStatus],
        actor: Actor,
        assignee: Optional[uuid.UUID],
    ) -> None:
        """Raise if the order may not move to ``new_status``; changes nothing."""
        target = osm.canonical_status(new_status)
        if target == osm.canonical_status(order.status):
            return
        osm.validate_transition(order.status, target)
        osm.authorize_transition(actor, target, order.assigned_logistics_id)
        if target == OrderStatus.DISPATCHED.value:
            if not assignee:
                raise ValidationError("Order must be assigned to a logistics user before dispatch")
            await self._validate_logistics_user(assignee)

    async def _change_status(self, order: Order, new_status: Union[str, OrderStatus], actor: Actor) -> str:
        """Run a transition through the state machine; returns the old status."""
        await self._check_status_change(order, new_status, actor, order.assigned_logistics_id)
        return osm.transition_order(order, new_status, actor)

    async def _after_status_change(self, order: Order, old_status: str, actor: Actor) -> None:
        if order.shipment is not None:
            order.shipment.last_status_update = datetime.now(timezone.utc)
        await self.db.flush()
        await self.audit.log(
            action="STATUS_CHANGE",
            entity_type=ENTITY_TYPE,
            entity_id=order.id,
            user_id=actor.user_id,
            old_values={"status": old_status},
            new_values={"status": order.status},
            description=f"{osm.get_transition_action(old_status, order.status)}: order {order.reference}",
        )
        await self.notifications.notify_order_status(order, created_by=actor.user_id)
        logger.info(f"Order {order.id} moved {old_status} -> {order.status} by {actor.user_id}")

    # ==================== WRITES ====================

    async def create_order(self, data: OrderCreate, actor: Actor) -> Order:
        """Create a single NEW order with its line items."""
        require(actor, Operation.ORDER_CREATE)
        business = await self._resolve_merchant(data.merchant_id, actor)

        external_order_id = data.external_order_id.strip() if data.external_order_id else None
        await self._ensure_external_id_free(business.id, external_order_id)

        skus = [i.product_sku for i in data.items if i.product_sku and not i.product_id]
        by_sku = await self.products_by_sku(business.id, skus)

        items = []
        for position, item in enumerate(data.items, start=1):
            if item.product_id:
                product = await self.db.get(Product, item.product_id)
                if not product or product.business_id != business.id:
                    raise NotFoundError(
                        f"Product not found for item {position}",
                        details={"product_id": str(item.product_id)},
                    )
            elif item.product_sku:
                product = by_sku.get(item.product_sku.strip().upper())
                if not product:
                    raise ValidationError(
                        f"Product with SKU '{item.product_sku}' not found for this merchant",
                        details={"item": position},
                    )
            else:
                raise ValidationError(f"Item {position} needs a product_id or product_sku")
            items.append(OrderItem(product_id=product.id, quantity=item.quantity))

        order = Order(
            external_order_id=external_order_id,
            status=OrderStatus.NEW.value,
            customer_name=data.customer_name.strip(),
            customer_address=data.customer_address.strip(),
            customer_phone=data.customer_phone,
            total_amount=data.total_amount,
            order_date=data.order_date or datetime.now(timezone.utc),
            merchant_id=business.id,
            items=items,
        )
        try:
            async with self.db.begin_nested():
                self.db.add(order)
                await self.db.flush()
        except IntegrityError:
            raise ConflictError(
                "An order with this external order ID already exists for this merchant",
                details={"external_order_id": external_order_id},
            )

        await self.audit.log(
            action="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=order.id,
            user_id=actor.user_id,
            new_values={**order_snapshot(order), "items": len(items)},
        )
        await self.notifications.notify_order_status(order, created_by=actor.user_id)
        logger.info(f"Created order {order.id} for business {business.id}")
        return await self._load_order(order.id)

    async def update_order(
        self,
        order_id: uuid.UUID,
        data: Union[OrderUpdate, Dict[str, Any]],
        actor: Actor,
    ) -> Order:
        """
        Apply a partial update.

        Field permissions are checked before anything else, so a merchant
        sending ``status`` is refused whatever the order's state.
        """
        changes = data.model_dump(exclude_unset=True) if isinstance(data, OrderUpdate) else dict(data)
        if not changes:
            raise ValidationError("No fields to update")

        require_fields(actor, Operation.ORDER_UPDATE, changes.keys())
        order = await self._load_order(order_id)

        if actor.is_merchant and order.merchant_id != actor.business_id:
            raise NotFoundError("Order not found", details={"order_id": str(order_id)})
        if actor.is_logistics and order.assigned_logistics_id != actor.user_id:
            raise PermissionDeniedError("Only the assigned logistics user can update this order")

        delivered = osm.canonical_status(order.status) == OrderStatus.DELIVERED.value
        if delivered and any(
            f in changes and changes[f] != getattr(order, f) for f in ASSIGNMENT_FIELDS
        ):
            raise ConflictError("Delivered orders cannot be reassigned")
        if (
            "assigned_logistics_id" in changes
            and changes["assigned_logistics_id"] != order.assigned_logistics_id
            and not osm.can_assign(order.status)
        ):
            raise ValidationError(
                f"Only orders awaiting allocation can be assigned (order is {order.status})",
                details={"status": order.status},
            )

        if changes.get("assigned_logistics_id"):
            await self._validate_logistics_user(changes["assigned_logistics_id"])
        if changes.get("fulfillment_warehouse_id"):
            await self._validate_warehouse(changes["fulfillment_warehouse_id"])
        if "external_order_id" in changes:
            external_order_id = (changes["external_order_id"] or "").strip() or None
            changes["external_order_id"] = external_order_id
            await self._ensure_external_id_free(order.merchant_id, external_order_id, order.id)
        for field in ("customer_name", "customer_address"):
            if field in changes and not (changes[field] or "").strip():
                raise ValidationError(f"{field.replace('_', ' ').capitalize()} cannot be empty")

        old_values = order_snapshot(order)
        new_status = changes.pop("status", None)
        status_changes = (
            new_status is not None
            and osm.canonical_status(new_status) != osm.canonical_status(order.status)
        )
        if status_changes:
            assignee = changes.get("assigned_logistics_id", order.assigned_logistics_id)
            await self._check_status_change(order, new_status, actor, assignee)

        old_status = None
        if status_changes:
            old_status = osm.transition_order(order, new_status, actor)

        for key, value in changes.items():
            setattr(order, key, value)

        try:
            async with self.db.begin_nested():
                await self.db.flush()
        except IntegrityError:
            raise ConflictError(
                "An order with this external order ID already exists for this merchant",
                details={"external_order_id": changes.get("external_order_id")},
            )

        await self.audit.log(
            action="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=order.id,
            user_id=actor.user_id,
            old_values=old_values,
            new_values=order_snapshot(order),
            details={"changes": sorted(list(changes.keys()) + (["status"] if new_status else []))},
        )
        if old_status is not None:
            await self._after_status_change(order, old_status, actor)

        new_assignee = changes.get("assigned_logistics_id")
        if new_assignee and new_assignee != old_values["assigned_logistics_id"]:
            await self.notifications.notify_logistics_assignment(order, new_assignee, created_by=actor.user_id)
        return order

    async def assign_logistics(
        self,
        order_id: uuid.UUID,
        request: OrderAssignRequest,
        actor: Actor,
    ) -> Order:
        """
        Hand an AWAITING_ALLOC order to a logistics user and dispatch it.

        When warehouse picks are given they must cover every item exactly;
        the picked units leave the warehouses' available stock.
        """
        require(actor, Operation.ORDER_ASSIGN)
        order = await self._load_order(order_id)

        if osm.canonical_status(order.status) == OrderStatus.DELIVERED.value:
            raise ConflictError("Delivered orders cannot be reassigned")
        if not osm.can_assign(order.status):
            raise ValidationError(
                f"Only orders awaiting allocation can be assigned (order is {order.status})",
                details={"status": order.status},
            )

        await self._validate_logistics_user(request.logistics_id)
        if request.fulfillment_warehouse_id:
            await self._validate_warehouse(request.fulfillment_warehouse_id)

        picks = request.warehouse_picks or {}
        if picks:
            needed: Dict[uuid.UUID, int] = defaultdict(int)
            for item in order.items:
                needed[item.product_id] += item.quantity

            extra = [str(pid) for pid in picks if pid not in needed]
            if extra:
                raise ValidationError("Warehouse picks reference products not in this order", details={"products": extra})
            for product_id, quantity in needed.items():
                product_picks = picks.get(product_id)
                if not product_picks:
                    raise ValidationError(f"Missing warehouse picks for product {product_id}")
                if sum(p.quantity for p in product_picks) != quantity:
                    raise ValidationError(f"Total picked for product {product_id} does not match order quantity")

        async with self.db.begin_nested():
            for product_id, product_picks in picks.items():
                for pick in product_picks:
                    await self.ledger.consume_stock(
                        product_id, pick.warehouse_id, pick.quantity,
                        user_id=actor.user_id, reference=order.reference,
                    )

            order.assigned_logistics_id = request.logistics_id
            if request.fulfillment_warehouse_id:
                order.fulfillment_warehouse_id = request.fulfillment_warehouse_id
            else:
                pick_warehouses = {p.warehouse_id for ps in picks.values() for p in ps}
                if len(pick_warehouses) == 1:
                    order.fulfillment_warehouse_id = pick_warehouses.pop()

            old_status = osm.transition_order(order, OrderStatus.DISPATCHED.value, actor)

            if order.shipment is None:
                order.shipment = Shipment(
                    tracking_number=request.tracking_number,
                    carrier_name=request.carrier_name,
                    last_status_update=datetime.now(timezone.utc),
                )
            await self.db.flush()

        await self.audit.log(
            action="ASSIGN",
            entity_type=ENTITY_TYPE,
            entity_id=order.id,
            user_id=actor.user_id,
            new_values={
                "assigned_logistics_id": request.logistics_id,
                "fulfillment_warehouse_id": order.fulfillment_warehouse_id,
                "picks": {
                    str(pid): [{"warehouse_id": str(p.warehouse_id), "quantity": p.quantity} for p in ps]
                    for pid, ps in picks.items()
                },
            },
        )
        await self._after_status_change(order, old_status, actor)
        await self.notifications.notify_logistics_assignment(order, request.logistics_id, created_by=actor.user_id)
        return order

    async def delete_order(self, order_id: uuid.UUID, actor: Actor) -> None:
        """Admin-only. Items and shipment go with the order, atomically."""
        require(actor, Operation.ORDER_DELETE)
        order = await self._load_order(order_id)
        if not osm.can_delete(order.status):
            raise ConflictError("Delivered orders cannot be deleted")

        old_values = {**order_snapshot(order), "items": len(order.items)}
        async with self.db.begin_nested():
            await self.db.delete(order)
            await self.db.flush()

        await self.audit.log(
            action="DELETE",
            entity_type=ENTITY_TYPE,
            entity_id=order_id,
            user_id=actor.user_id,
            old_values=old_values,
        )
        logger.info(f"Deleted order {order_id}")

    async def bulk_update_status(
        self,
        order_ids: List[uuid.UUID],
        status: Union[str, OrderStatus],
        actor: Actor,
    ) -> Dict[str, Any]:
        """Move many orders to one status; each order succeeds or fails alone."""
        require(actor, Operation.ORDER_BULK_STATUS)
        updated: List[uuid.UUID] = []
        errors: List[Dict[str, Any]] = []

        for order_id in order_ids:
            try:
                async with self.db.begin_nested():
                    order = await self._load_order(order_id)
                    old_status = await self._change_status(order, status, actor)
                    await self.db.flush()
            except FulfillmentError as e:
                errors.append({"order_id": str(order_id), "error": e.message})
                continue
            if osm.canonical_status(old_status) != order.status:
                await self._after_status_change(order, old_status, actor)
            updated.append(order_id)

        return {"updated": updated, "errors": errors, "count": len(updated)}

    # ==================== READS ====================

    async def get_order(self, order_id: uuid.UUID, actor: Actor) -> Order:
        order = await self._load_order(order_id)
        self._check_visible(order, actor)
        return order

    async def get_orders(
        self,
        actor: Actor,
        status: Optional[OrderStatus] = None,
        merchant_id: Optional[uuid.UUID] = None,
        warehouse_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Order], int]:
        """Get paginated orders visible to the actor."""
        filters = []

        if actor.is_merchant:
            filters.append(Order.merchant_id == actor.business_id)
        elif actor.is_logistics:
            filters.append(Order.assigned_logistics_id == actor.user_id)
        elif merchant_id:
            filters.append(Order.merchant_id == merchant_id)

        if status:
            filters.append(Order.status == osm.canonical_status(status))
        if warehouse_id:
            filters.append(Order.fulfillment_warehouse_id == warehouse_id)
        if search:
            search_filter = f"%{search}%"
            filters.append(
                or_(
                    Order.external_order_id.ilike(search_filter),
                    Order.customer_name.ilike(search_filter),
                    Order.customer_phone.ilike(search_filter),
                )
            )

        stmt = select(Order)
        count_stmt = select(func.count(Order.id))
        if filters:
            stmt = stmt.where(and_(*filters))
            count_stmt = count_stmt.where(and_(*filters))
        total = (await self.db.execute(count_stmt)).scalar()

        stmt = stmt.order_by(Order.order_date.desc()).offset(skip).limit(limit)
        result = await self.db.execute(stmt)
        return list(result.scalars().all()), total
