"""Product catalogue operations for merchants and admins."""
import logging
from typing import Optional, List, Dict, Any, Tuple, Iterable
from collections import OrderedDict
import uuid

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import (
    ValidationError, NotFoundError, PermissionDeniedError, ConflictError, GenerationError,
)
from fulfillment.core.permissions import (
    Actor, Operation, require, require_fields, require_tenant,
)
from fulfillment.models.business import Business
from fulfillment.models.order import OrderItem
from fulfillment.models.product import Product, default_dimensions
from fulfillment.models.stock import StockAllocation
from fulfillment.schemas.product import ProductCreate, ProductUpdate
from fulfillment.schemas.stock import StockAllocationEntry
from fulfillment.services.audit_service import AuditService
from fulfillment.services.code_generator import next_available_sku, normalize_sku
from fulfillment.services.stock_ledger import StockLedger, validate_allocation
from fulfillment.services.warehouse_resolver import WarehouseResolver


logger = logging.getLogger(__name__)

ENTITY_TYPE = "PRODUCT"
SKU_RETRIES = 5


def product_snapshot(product: Product) -> Dict[str, Any]:
    return {
        "name": product.name,
        "sku": product.sku,
        "weight_kg": product.weight_kg,
        "dimensions": product.dimensions,
        "business_id": product.business_id,
        "category": product.category,
    }


class ProductService:
    """Service for product catalogue operations."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.ledger = StockLedger(db)
        self.resolver = WarehouseResolver(db)

    # ==================== LOOKUPS ====================

    async def get_product(self, product_id: uuid.UUID, actor: Optional[Actor] = None) -> Product:
        product = await self.db.get(Product, product_id)
        if not product or (actor and actor.is_merchant and product.business_id != actor.business_id):
            raise NotFoundError("Product not found", details={"product_id": str(product_id)})
        return product

    async def get_product_by_sku(self, sku: str) -> Optional[Product]:
        """Global SKU lookup across every business."""
        result = await self.db.execute(select(Product).where(Product.sku == normalize_sku(sku)))
        return result.scalar_one_or_none()

    async def get_product_detail(self, product_id: uuid.UUID, actor: Actor) -> Dict[str, Any]:
        """Product with its allocations and stock totals."""
        product = await self.get_product(product_id, actor)
        allocations = await self.ledger.list_allocations(product_id=product.id)
        return {
            **{c: getattr(product, c) for c in (
                "id", "name", "sku", "weight_kg", "dimensions", "business_id", "description",
                "category", "barcode", "hs_code", "unit_cost", "selling_price",
                "created_at", "updated_at",
            )},
            "stock_allocations": allocations,
            "total_allocated": sum(a["allocated_quantity"] for a in allocations),
            "total_available": sum(a["available_stock"] for a in allocations),
        }

    async def get_products(
        self,
        actor: Actor,
        business_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        category: Optional[str] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> Tuple[List[Product], int]:
        """Get paginated products; merchants only see their own business."""
        query = select(Product)

        if actor.is_merchant:
            query = query.where(Product.business_id == actor.business_id)
        elif business_id:
            query = query.where(Product.business_id == business_id)
        if category:
            query = query.where(Product.category == category)
        if search:
            query = query.where(
                or_(
                    Product.name.ilike(f"%{search}%"),
                    Product.sku.ilike(f"%{search}%"),
                )
            )

        count_query = select(func.count()).select_from(query.subquery())
        total = await self.db.scalar(count_query)

        query = query.order_by(Product.created_at.desc()).offset(skip).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def resolve_business(self, requested: Optional[uuid.UUID], actor: Actor) -> Business:
        """Target business for a write: the merchant's own, or the one an admin names."""
        if actor.is_merchant:
            if requested and requested != actor.business_id:
                raise PermissionDeniedError("Can only manage products of your own business")
            business_id = actor.business_id
        else:
            business_id = requested
        if not business_id:
            raise ValidationError("business_id is required")

        business = await self.db.get(Business, business_id)
        if not business:
            raise NotFoundError("Business not found", details={"business_id": str(business_id)})
        if not business.is_active:
            raise ValidationError("Cannot add products to inactive business")
        return business

    # ==================== HELPERS ====================

    async def resolve_allocations(
        self,
        entries: Iterable[StockAllocationEntry],
    ) -> List[Tuple[uuid.UUID, Dict[str, int]]]:
        """
        Validate entries and map their warehouse references to warehouses.
        Entries landing on the same warehouse are summed.
        """
        merged: "OrderedDict[uuid.UUID, Dict[str, int]]" = OrderedDict()
        for entry in entries:
            validate_allocation(entry)
            warehouse = await self.resolver.resolve(entry.warehouse_id)
            slot = merged.setdefault(warehouse.id, {"allocated_quantity": 0, "safety_stock": 0})
            slot["allocated_quantity"] += entry.allocated_quantity
            slot["safety_stock"] += entry.safety_stock
        return list(merged.items())

    async def insert_product(
        self,
        values: Dict[str, Any],
        sku: Optional[str] = None,
        reserved_skus: Optional[Iterable[str]] = None,
    ) -> Product:
        """
        Insert a product row.

        A supplied SKU that already exists is a conflict. A generated SKU that
        collides on insert (another request took it first) is regenerated.
        """
        if sku:
            sku = normalize_sku(sku)
            if await self.get_product_by_sku(sku):
                raise ConflictError(
                    f'A product with SKU "{sku}" already exists. Please use a different SKU.',
                    details={"sku": sku},
                )
            try:
                return await self._insert(values, sku)
            except IntegrityError:
                raise ConflictError("SKU already exists", details={"sku": sku})

        reserved = set(reserved_skus or ())
        for attempt in range(SKU_RETRIES):
            candidate = await next_available_sku(self.db, values["name"], reserved)
            try:
                return await self._insert(values, candidate)
            except IntegrityError:
                logger.info(f"Generated SKU {candidate} taken concurrently (attempt {attempt + 1})")
                reserved.add(candidate)
        raise GenerationError("Could not generate unique SKU. Please provide a custom SKU.")

    async def _insert(self, values: Dict[str, Any], sku: str) -> Product:
        async with self.db.begin_nested():
            product = Product(sku=sku, **values)
            self.db.add(product)
            await self.db.flush()
        return product

    # ==================== WRITES ====================

    async def create_product(self, data: ProductCreate, actor: Actor) -> Product:
        """Create a product and, optionally, its initial stock allocations."""
        require(actor, Operation.PRODUCT_CREATE)
        business = await self.resolve_business(data.business_id, actor)

        # Validate every allocation before writing anything
        for entry in data.stock_allocations:
            validate_allocation(entry)

        values = data.model_dump(exclude={"sku", "business_id", "stock_allocations", "dimensions"})
        values["business_id"] = business.id
        values["dimensions"] = data.dimensions.model_dump() if data.dimensions else default_dimensions()

        async with self.db.begin_nested():
            product = await self.insert_product(values, data.sku)
            if data.stock_allocations:
                resolved = await self.resolve_allocations(data.stock_allocations)
                await self.ledger.replace_product_allocations(product.id, resolved, user_id=actor.user_id)

        await self.audit.log(
            action="CREATE",
            entity_type=ENTITY_TYPE,
            entity_id=product.id,
            user_id=actor.user_id,
            new_values={**product_snapshot(product), "stock_allocations": len(data.stock_allocations)},
            description=f"Created product: {product.name} ({product.sku})",
        )
        logger.info(f"Created product {product.sku} for business {business.id}")
        return product

    async def update_product(
        self,
        product_id: uuid.UUID,
        data: ProductUpdate,
        actor: Actor,
    ) -> Product:
        """Edit name, weight, dimensions, catalogue data or stock. SKU is fixed."""
        changes = data.model_dump(exclude_unset=True)
        if not changes:
            raise ValidationError("No fields to update")
        require_fields(actor, Operation.PRODUCT_UPDATE, changes.keys())

        product = await self.get_product(product_id)
        require_tenant(actor, product.business_id)
        old_values = product_snapshot(product)

        allocations = changes.pop("stock_allocations", None)
        if "dimensions" in changes:
            changes["dimensions"] = data.dimensions.model_dump() if data.dimensions else default_dimensions()
        for field in ("name", "weight_kg"):
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be empty")

        async with self.db.begin_nested():
            for key, value in changes.items():
                setattr(product, key, value.strip() if key == "name" else value)
            await self.db.flush()
            if allocations is not None:
                resolved = await self.resolve_allocations(data.stock_allocations)
                await self.ledger.replace_product_allocations(product.id, resolved, user_id=actor.user_id)

        await self.audit.log(
            action="UPDATE",
            entity_type=ENTITY_TYPE,
            entity_id=product.id,
            user_id=actor.user_id,
            old_values=old_values,
            new_values=product_snapshot(product),
        )
        return product

    async def delete_product(self, product_id: uuid.UUID, actor: Actor) -> None:
        """
        Delete a product and its allocations.

        Raises:
            ConflictError: the product appears on any order.
        """
        require(actor, Operation.PRODUCT_DELETE)
        product = await self.get_product(product_id)
        require_tenant(actor, product.business_id)

        order_items = await self.db.scalar(
            select(func.count(OrderItem.id)).where(OrderItem.product_id == product_id)
        )
        if order_items:
            raise ConflictError(
                "Cannot delete product that has been used in orders",
                details={"order_items": order_items},
            )

        old_values = product_snapshot(product)
        async with self.db.begin_nested():
            result = await self.db.execute(
                select(StockAllocation).where(StockAllocation.product_id == product_id)
            )
            for allocation in result.scalars().all():
                await self.db.delete(allocation)
            await self.db.flush()
            await self.db.delete(product)
            await self.db.flush()

        await self.audit.log(
            action="DELETE",
            entity_type=ENTITY_TYPE,
            entity_id=product_id,
            user_id=actor.user_id,
            old_values=old_values,
            description=f"Deleted product: {old_values['name']} ({old_values['sku']})",
        )
