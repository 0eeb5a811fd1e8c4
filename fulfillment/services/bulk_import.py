"""
Bulk Import Service

Batch ingestion of products and orders from either a JSON array of records
or delimited text (CSV, semicolon or tab separated).

Every record is validated on its own and reported by position, so one bad
record never blocks its siblings. Valid records are written in sequential
batches, each record inside its own savepoint. Strict mode turns any invalid
record into a request-level ValidationError raised before anything is
written; validate-only mode stops after validation.
"""

import csv
import io
import json
import logging
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Optional, Dict, Any, List, Tuple, Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.core.exceptions import FulfillmentError, ValidationError, PermissionDeniedError
from fulfillment.core.permissions import Actor, Operation, require
from fulfillment.models.business import Business
from fulfillment.models.order import Order, OrderItem, OrderStatus
from fulfillment.models.product import Product, default_dimensions
from fulfillment.schemas.bulk import BulkImportRequest, BulkImportOptions
from fulfillment.schemas.stock import StockAllocationEntry
from fulfillment.services.audit_service import AuditService
from fulfillment.services.code_generator import normalize_sku
from fulfillment.services.order_service import OrderService
from fulfillment.services.product_service import ProductService
from fulfillment.services.stock_ledger import validate_allocation


logger = logging.getLogger(__name__)

PRODUCT_COLUMNS = (
    "name", "sku", "weight_kg", "dimensions", "category", "description",
    "unit_cost", "selling_price", "barcode", "hs_code",
)
ORDER_COLUMNS = (
    "external_order_id", "customer_name", "customer_address", "customer_phone",
    "order_date", "total_amount", "product_sku", "quantity",
)
PRODUCT_OPTIONAL_TEXT = ("category", "description", "barcode", "hs_code")
PRODUCT_PRICES = (("unit_cost", "unit cost"), ("selling_price", "selling price"))

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def normalize_key(key: str) -> str:
    """``weightKg`` / ``Weight KG`` / ``weight_kg`` -> ``weight_kg``."""
    key = _CAMEL_BOUNDARY.sub("_", str(key).strip())
    return re.sub(r"[\s\-]+", "_", key).lower()


def normalize_record(record: Dict[str, Any]) -> Dict[str, Any]:
    normalized = {}
    for key, value in record.items():
        if isinstance(value, list):
            value = [normalize_record(v) if isinstance(v, dict) else v for v in value]
        normalized[normalize_key(key)] = value
    return normalized


def _text(value: Any) -> str:
    return "" if value is None else str(value).strip()


def parse_positive_int(value: Any) -> Optional[int]:
    """Whole number > 0, or None. ``"2"`` and ``2.0`` are accepted, ``True`` is not."""
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = Decimal(str(value).strip())
    except InvalidOperation:
        return None
    if number != number.to_integral_value() or number <= 0:
        return None
    return int(number)


def parse_positive_decimal(value: Any) -> Optional[Decimal]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        number = Decimal(str(value).strip().replace(",", ""))
    except InvalidOperation:
        return None
    if not number.is_finite() or number <= 0:
        return None
    return number


def parse_order_date(value: Any) -> Optional[datetime]:
    """ISO-8601 date or datetime; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = _text(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# DELIMITED TEXT
# =============================================================================

@dataclass
class ParsedRow:
    """One data row of delimited text with its 1-based physical line number."""
    data: Dict[str, str]
    line_number: int


class DelimitedTextParser:
    """
    Split delimited text into rows keyed by column name.

    With a header the columns are named by it (normalized to snake_case);
    without one the fixed ``columns`` order applies. Quoted fields may
    contain the delimiter. Blank rows are skipped.
    """

    DELIMITERS = (",", ";", "\t")

    def __init__(self, delimiter: str = ",", has_header: bool = True, columns: Sequence[str] = ()):
        if delimiter not in self.DELIMITERS:
            raise ValidationError(f"Unsupported delimiter {delimiter!r}")
        self.delimiter = delimiter
        self.has_header = has_header
        self.columns = tuple(columns)

    def parse(self, content: str) -> List[ParsedRow]:
        reader = csv.reader(io.StringIO(content.strip()), delimiter=self.delimiter)
        headers: Optional[List[str]] = None if self.has_header else list(self.columns)
        rows: List[ParsedRow] = []

        try:
            for row in reader:
                line_number = reader.line_num
                if not any(cell.strip() for cell in row):
                    continue  # Skip empty rows
                if headers is None:
                    headers = [normalize_key(h) for h in row]
                    continue
                values = [cell.strip() for cell in row]
                data = {
                    name: values[i] if i < len(values) else ""
                    for i, name in enumerate(headers)
                }
                rows.append(ParsedRow(data=data, line_number=line_number))
        except csv.Error as e:
            raise ValidationError(f"Could not parse delimited text (line {reader.line_num}): {e}")

        return rows


# =============================================================================
# SHARED PIPELINE
# =============================================================================

@dataclass
class CandidateRecord:
    """A raw record before validation, tagged with where it came from."""
    position: int
    data: Dict[str, Any]
    lines: List[int] = field(default_factory=list)

    @property
    def line(self) -> Optional[int]:
        return self.lines[0] if self.lines else None

    @property
    def tag(self) -> str:
        return f"line {self.line}" if self.line else f"record {self.position}"


class ImportResult:
    """Accumulates per-record outcomes and renders the response payload."""

    def __init__(self, total: int, validate_only: bool = False):
        self.total = total
        self.validate_only = validate_only
        self.created: List[Dict[str, Any]] = []
        self.updated: List[Dict[str, Any]] = []
        self.skipped: List[Dict[str, Any]] = []
        self.errors: List[Dict[str, Any]] = []

    def add_error(self, record: CandidateRecord, messages: Iterable[str], identifier: Optional[str] = None):
        self.errors.append({
            "record": record.position,
            "line": record.line,
            "error": "; ".join(messages),
            "identifier": identifier,
        })

    def summary(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "created": len(self.created),
            "updated": len(self.updated),
            "skipped": len(self.skipped),
            "errors": len(self.errors),
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "created": self.created,
            "updated": self.updated,
            "skipped": self.skipped,
            "errors": sorted(self.errors, key=lambda e: e["record"]),
            "summary": self.summary(),
            "validate_only": self.validate_only,
        }


def _batches(items: List[Any], size: int) -> Iterable[List[Any]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class _ImportPipeline:
    operation: str = ""
    audit_action: str = ""
    entity_type: str = ""
    columns: Tuple[str, ...] = ()
    batch_size: int = 50

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    def load_records(self, request: BulkImportRequest) -> List[CandidateRecord]:
        if request.csv_data is not None:
            parser = DelimitedTextParser(request.delimiter, request.has_header, self.columns)
            records = self.records_from_rows(parser.parse(request.csv_data))
        else:
            records = [
                CandidateRecord(position=i, data=normalize_record(r) if isinstance(r, dict) else {})
                for i, r in enumerate(request.records or [], start=1)
            ]

        if not records:
            raise ValidationError("No records to import")
        if len(records) > settings.BULK_MAX_RECORDS:
            raise ValidationError(
                f"Too many records: {len(records)} (maximum {settings.BULK_MAX_RECORDS})",
                details={"total": len(records), "max": settings.BULK_MAX_RECORDS},
            )
        return records

    def records_from_rows(self, rows: List[ParsedRow]) -> List[CandidateRecord]:
        return [
            CandidateRecord(position=i, data=row.data, lines=[row.line_number])
            for i, row in enumerate(rows, start=1)
        ]

    def tenant_for(self, record: CandidateRecord, request: BulkImportRequest, actor: Actor) -> Optional[uuid.UUID]:
        """
        Business a record belongs to. Merchants may only ingest into their
        own business; anything else fails the whole request.
        """
        raw = record.data.get("business_id") or record.data.get("merchant_id")
        requested = request.business_id
        if raw:
            try:
                requested = uuid.UUID(str(raw))
            except ValueError:
                raise ValidationError(f"Invalid business id ({record.tag})", details={"business_id": str(raw)})

        if actor.is_merchant:
            if requested and requested != actor.business_id:
                raise PermissionDeniedError(
                    "Can only import records into your own business",
                    details={"record": record.position},
                )
            return actor.business_id
        return requested

    async def check_businesses(self, business_ids: Iterable[uuid.UUID]) -> None:
        wanted = set(business_ids)
        if not wanted:
            return
        result = await self.db.execute(
            select(Business.id).where(Business.id.in_(wanted), Business.is_active.is_(True))
        )
        invalid = sorted(str(b) for b in wanted - set(result.scalars().all()))
        if invalid:
            raise ValidationError(
                f"Invalid or inactive business IDs: {', '.join(invalid)}",
                details={"business_ids": invalid},
            )

    def raise_if_strict(self, options: BulkImportOptions, result: ImportResult) -> None:
        if options.strict and result.errors:
            raise ValidationError(
                f"Validation errors in {self.entity_type.lower()} data",
                details={"errors": sorted(result.errors, key=lambda e: e["record"]), "total": result.total},
            )

    async def finish(
        self,
        request: BulkImportRequest,
        actor: Actor,
        result: ImportResult,
    ) -> Dict[str, Any]:
        await self.audit.log_bulk_operation(
            action=self.audit_action,
            entity_type=self.entity_type,
            summary=result.summary(),
            user_id=actor.user_id,
            business_id=request.business_id or actor.business_id,
            options={
                **request.options.model_dump(),
                "upload_type": "CSV" if request.csv_data is not None else "JSON",
            },
        )
        logger.info(
            f"{self.audit_action} by {actor.user_id}: "
            f"{result.summary()}"
        )
        return result.to_dict()


# =============================================================================
# PRODUCTS
# =============================================================================

@dataclass
class ProductPlan:
    record: CandidateRecord
    business_id: uuid.UUID
    values: Dict[str, Any]
    sku: Optional[str]
    allocations: List[StockAllocationEntry]
    existing: Optional[Product] = None


class ProductImportPipeline(_ImportPipeline):
    """Bulk product creation, optionally updating products whose SKU exists."""

    operation = Operation.PRODUCT_BULK_IMPORT
    audit_action = "PRODUCTS_BULK_UPLOAD"
    entity_type = "PRODUCT"
    columns = PRODUCT_COLUMNS

    def __init__(self, db: AsyncSession):
        super().__init__(db)
        self.products = ProductService(db)
        self.batch_size = settings.BULK_PRODUCT_BATCH_SIZE

    def validate_record(self, record: CandidateRecord) -> Tuple[Dict[str, Any], List[StockAllocationEntry], List[str]]:
        """Field checks for one record. Returns (values, allocations, error messages)."""
        data = record.data
        tag = record.tag
        errors: List[str] = []
        values: Dict[str, Any] = {}

        name = _text(data.get("name"))
        if not name:
            errors.append(f"Name is required ({tag})")
        values["name"] = name

        weight = parse_positive_decimal(data.get("weight_kg", data.get("weight")))
        if weight is None:
            errors.append(f"Valid weight in kg is required ({tag})")
        else:
            values["weight_kg"] = float(weight)

        dimensions = data.get("dimensions")
        if dimensions in (None, ""):
            values["dimensions"] = default_dimensions()
        else:
            if isinstance(dimensions, str):
                try:
                    dimensions = json.loads(dimensions)
                except ValueError:
                    dimensions = None
                    errors.append(f"Invalid dimensions JSON format ({tag})")
            if dimensions is not None:
                parsed = {
                    key: parse_positive_decimal(dimensions.get(key)) if isinstance(dimensions, dict) else None
                    for key in ("length", "width", "height")
                }
                if any(v is None for v in parsed.values()):
                    errors.append(f"Dimensions must include length, width, and height ({tag})")
                else:
                    values["dimensions"] = {k: float(v) for k, v in parsed.items()}

        for key in PRODUCT_OPTIONAL_TEXT:
            text = _text(data.get(key))
            values[key] = text or None

        for key, label in PRODUCT_PRICES:
            raw = data.get(key)
            if raw in (None, ""):
                values[key] = None
                continue
            price = parse_positive_decimal(raw)
            if price is None:
                errors.append(f"Valid {label} is required ({tag})")
            values[key] = price

        allocations: List[StockAllocationEntry] = []
        raw_allocations = data.get("stock_allocations")
        if raw_allocations is None and data.get("allocated_quantity") not in (None, ""):
            raw_allocations = [{
                "warehouse_id": data.get("warehouse") or data.get("warehouse_id") or "DEFAULT_WAREHOUSE",
                "allocated_quantity": data.get("allocated_quantity"),
                "safety_stock": data.get("safety_stock") or 0,
            }]
        for raw in raw_allocations or []:
            try:
                entry = _allocation_entry(raw)
                allocations.append(entry)
            except FulfillmentError as e:
                errors.append(f"{e.message} ({tag})")

        return values, allocations, errors

    async def run(self, request: BulkImportRequest, actor: Actor) -> Dict[str, Any]:
        require(actor, self.operation)
        options = request.options
        records = self.load_records(request)
        result = ImportResult(total=len(records), validate_only=options.validate_only)

        # Tenant checks fail the whole request
        tenants = {r.position: self.tenant_for(r, request, actor) for r in records}
        if any(t is None for t in tenants.values()):
            raise ValidationError("business_id is required")
        await self.check_businesses(tenants.values())

        candidates: List[ProductPlan] = []
        for record in records:
            values, allocations, errors = self.validate_record(record)
            if errors:
                result.add_error(record, errors, identifier=_text(record.data.get("sku")) or None)
                continue
            values["business_id"] = tenants[record.position]
            sku = normalize_sku(_text(record.data.get("sku"))) if _text(record.data.get("sku")) else None
            candidates.append(ProductPlan(record, tenants[record.position], values, sku, allocations))

        plans = await self._cross_check(candidates, options, result)
        self.raise_if_strict(options, result)

        if options.validate_only:
            for plan in plans:
                target = result.updated if plan.existing else result.created
                target.append({"record": plan.record.position, "sku": plan.sku, "name": plan.values["name"]})
            return result.to_dict()

        reserved = {p.sku for p in plans if p.sku and not p.existing}
        for batch in _batches(plans, self.batch_size):
            for plan in batch:
                await self._commit(plan, reserved, actor, result)

        return await self.finish(request, actor, result)

    async def _cross_check(
        self,
        candidates: List[ProductPlan],
        options: BulkImportOptions,
        result: ImportResult,
    ) -> List[ProductPlan]:
        """In-batch duplicate SKUs per business, then SKUs already stored."""
        first_seen: Dict[Tuple[uuid.UUID, str], int] = {}
        unique: List[ProductPlan] = []
        for plan in candidates:
            if plan.sku:
                key = (plan.business_id, plan.sku)
                if key in first_seen:
                    result.add_error(
                        plan.record,
                        [f'Duplicate SKU "{plan.sku}" for business in batch '
                         f'(records {first_seen[key]} and {plan.record.position})'],
                        identifier=plan.sku,
                    )
                    continue
                first_seen[key] = plan.record.position
            unique.append(plan)

        skus = {p.sku for p in unique if p.sku}
        stored: Dict[str, Product] = {}
        if skus:
            rows = await self.db.execute(select(Product).where(Product.sku.in_(skus)))
            stored = {p.sku: p for p in rows.scalars().all()}

        plans: List[ProductPlan] = []
        for plan in unique:
            existing = stored.get(plan.sku) if plan.sku else None
            if existing is None:
                plans.append(plan)
            elif existing.business_id != plan.business_id:
                result.add_error(
                    plan.record,
                    [f'SKU "{plan.sku}" is already used by another business ({plan.record.tag})'],
                    identifier=plan.sku,
                )
            elif options.update_existing:
                plan.existing = existing
                plans.append(plan)
            elif options.skip_duplicates:
                result.skipped.append({
                    "record": plan.record.position,
                    "sku": plan.sku,
                    "reason": "SKU already exists",
                })
            else:
                result.add_error(
                    plan.record,
                    [f'Product with SKU "{plan.sku}" already exists for this business ({plan.record.tag})'],
                    identifier=plan.sku,
                )
        return plans

    async def _commit(self, plan: ProductPlan, reserved: set, actor: Actor, result: ImportResult) -> None:
        try:
            async with self.db.begin_nested():
                if plan.existing:
                    product = plan.existing
                    # Only overwrite what the record carried
                    for key, value in plan.values.items():
                        if key in ("name", "weight_kg") or plan.record.data.get(key) not in (None, ""):
                            setattr(product, key, value)
                    await self.db.flush()
                else:
                    product = await self.products.insert_product(plan.values, plan.sku, reserved)
                if plan.allocations:
                    resolved = await self.products.resolve_allocations(plan.allocations)
                    await self.products.ledger.replace_product_allocations(
                        product.id, resolved, user_id=actor.user_id
                    )
                outcome = {"record": plan.record.position, "id": str(product.id), "sku": product.sku, "name": product.name}
        except (FulfillmentError, SQLAlchemyError) as e:
            message = e.message if isinstance(e, FulfillmentError) else str(getattr(e, "orig", None) or e)
            logger.warning(f"Bulk product record {plan.record.position} failed: {message}")
            result.add_error(plan.record, [message], identifier=plan.sku)
            return

        (result.updated if plan.existing else result.created).append(outcome)


def _allocation_entry(raw: Any) -> StockAllocationEntry:
    if not isinstance(raw, dict):
        raise ValidationError("Stock allocation must be an object")
    quantities = {}
    for key in ("allocated_quantity", "safety_stock"):
        value = raw.get(key, 0)
        if isinstance(value, str):
            value = value.strip() or "0"
            if not re.fullmatch(r"-?\d+", value):
                raise ValidationError("Quantities must be whole numbers")
            value = int(value)
        quantities[key] = value
    validate_allocation(quantities)
    return StockAllocationEntry(
        warehouse_id=_text(raw.get("warehouse_id") or raw.get("warehouse")) or "DEFAULT_WAREHOUSE",
        **quantities,
    )


# =============================================================================
# ORDERS
# =============================================================================

@dataclass
class OrderPlan:
    record: CandidateRecord
    merchant_id: uuid.UUID
    external_order_id: Optional[str]
    values: Dict[str, Any]
    items: List[Tuple[str, int]]


class OrderImportPipeline(_ImportPipeline):
    """
    Bulk order creation. Delimited text carries one line per order item;
    lines sharing external id, customer name and address form one order.
    """

    operation = Operation.ORDER_BULK_IMPORT
    audit_action = "ORDERS_BULK_UPLOAD"
    entity_type = "ORDER"
    columns = ORDER_COLUMNS

    def __init__(self, db: AsyncSession):
        super().__init__(db)
        self.orders = OrderService(db)
        self.batch_size = settings.BULK_ORDER_BATCH_SIZE

    def records_from_rows(self, rows: List[ParsedRow]) -> List[CandidateRecord]:
        grouped: Dict[str, CandidateRecord] = {}
        for row in rows:
            data = row.data
            key = (
                f"{data.get('external_order_id') or 'ORDER'}-"
                f"{data.get('customer_name', '')}-{data.get('customer_address', '')}"
            )
            record = grouped.get(key)
            if record is None:
                record = CandidateRecord(
                    position=len(grouped) + 1,
                    data={k: v for k, v in data.items() if k not in ("product_sku", "quantity")},
                )
                record.data["items"] = []
                grouped[key] = record
            if data.get("product_sku") or data.get("quantity"):
                record.data["items"].append({
                    "product_sku": data.get("product_sku", ""),
                    "quantity": data.get("quantity", ""),
                })
            record.lines.append(row.line_number)
        return list(grouped.values())

    def validate_record(self, record: CandidateRecord) -> Tuple[Dict[str, Any], List[Tuple[str, int]], List[str]]:
        data = record.data
        tag = f"order {record.position}"
        errors: List[str] = []
        values: Dict[str, Any] = {}

        for key, label in (
            ("customer_name", "Customer name"),
            ("customer_address", "Customer address"),
            ("customer_phone", "Customer phone"),
        ):
            text = _text(data.get(key))
            if not text:
                errors.append(f"{label} is required ({tag})")
            values[key] = text

        total = parse_positive_decimal(data.get("total_amount"))
        if total is None:
            errors.append(f"Valid total amount is required ({tag})")
        values["total_amount"] = total

        raw_date = data.get("order_date")
        if raw_date in (None, ""):
            values["order_date"] = datetime.now(timezone.utc)
        else:
            values["order_date"] = parse_order_date(raw_date)
            if values["order_date"] is None:
                errors.append(f"Invalid order date ({tag})")

        items: List[Tuple[str, int]] = []
        raw_items = data.get("items")
        if not isinstance(raw_items, list) or not raw_items:
            errors.append(f"At least one item is required ({tag})")
            raw_items = []
        for index, item in enumerate(raw_items, start=1):
            item = item if isinstance(item, dict) else {}
            sku = _text(item.get("product_sku"))
            quantity = parse_positive_int(item.get("quantity"))
            if not sku:
                errors.append(f"Product SKU is required ({tag}, item {index})")
            if quantity is None:
                errors.append(f"Valid quantity is required ({tag}, item {index})")
            if sku and quantity is not None:
                items.append((normalize_sku(sku), quantity))

        return values, items, errors

    async def run(self, request: BulkImportRequest, actor: Actor) -> Dict[str, Any]:
        require(actor, self.operation)
        options = request.options
        records = self.load_records(request)
        result = ImportResult(total=len(records), validate_only=options.validate_only)

        tenants = {r.position: self.tenant_for(r, request, actor) for r in records}
        if any(t is None for t in tenants.values()):
            raise ValidationError("merchant_id is required")
        await self.check_businesses(tenants.values())

        candidates: List[OrderPlan] = []
        for record in records:
            values, items, errors = self.validate_record(record)
            external_order_id = _text(record.data.get("external_order_id")) or None
            if errors:
                result.add_error(record, errors, identifier=external_order_id)
                continue
            candidates.append(OrderPlan(record, tenants[record.position], external_order_id, values, items))

        plans = await self._cross_check(candidates, options, result)
        self.raise_if_strict(options, result)

        if options.validate_only:
            for plan in plans:
                result.created.append({
                    "record": plan.record.position,
                    "external_order_id": plan.external_order_id,
                    "items": len(plan.items),
                })
            return result.to_dict()

        for batch in _batches(plans, self.batch_size):
            for plan in batch:
                await self._commit(plan, result)

        return await self.finish(request, actor, result)

    async def _cross_check(
        self,
        candidates: List[OrderPlan],
        options: BulkImportOptions,
        result: ImportResult,
    ) -> List[OrderPlan]:
        """Unknown product SKUs and external order ids already in use."""
        catalogue: Dict[uuid.UUID, Dict[str, Product]] = {}
        for merchant_id in {p.merchant_id for p in candidates}:
            skus = {sku for p in candidates if p.merchant_id == merchant_id for sku, _ in p.items}
            catalogue[merchant_id] = await self.orders.products_by_sku(merchant_id, skus)

        seen_external: Dict[Tuple[uuid.UUID, str], int] = {}
        plans: List[OrderPlan] = []
        for plan in candidates:
            tag = f"order {plan.record.position}"
            products = catalogue[plan.merchant_id]

            missing = [sku for sku, _ in plan.items if sku not in products]
            if missing and not options.skip_invalid_products:
                result.add_error(
                    plan.record,
                    [f'Product with SKU "{sku}" not found for this merchant ({tag})' for sku in missing],
                    identifier=plan.external_order_id,
                )
                continue
            for sku in missing:
                logger.warning(f'Dropping unknown SKU "{sku}" from {tag}')
            plan.items = [(sku, qty) for sku, qty in plan.items if sku in products]
            if not plan.items:
                result.add_error(plan.record, [f"No valid items ({tag})"], identifier=plan.external_order_id)
                continue

            if plan.external_order_id:
                key = (plan.merchant_id, plan.external_order_id)
                if key in seen_external:
                    result.add_error(
                        plan.record,
                        [f'Duplicate external order ID "{plan.external_order_id}" in batch '
                         f'(orders {seen_external[key]} and {plan.record.position})'],
                        identifier=plan.external_order_id,
                    )
                    continue
                seen_external[key] = plan.record.position

                if await self.orders.external_id_taken(plan.merchant_id, plan.external_order_id):
                    if options.skip_duplicates:
                        result.skipped.append({
                            "record": plan.record.position,
                            "external_order_id": plan.external_order_id,
                            "reason": "External order ID already exists",
                        })
                    else:
                        result.add_error(
                            plan.record,
                            [f'External order ID "{plan.external_order_id}" already exists '
                             f'for this merchant ({tag})'],
                            identifier=plan.external_order_id,
                        )
                    continue

            plan.values["items"] = [
                OrderItem(product_id=products[sku].id, quantity=qty) for sku, qty in plan.items
            ]
            plans.append(plan)
        return plans

    async def _commit(self, plan: OrderPlan, result: ImportResult) -> None:
        try:
            async with self.db.begin_nested():
                order = Order(
                    external_order_id=plan.external_order_id,
                    status=OrderStatus.NEW.value,
                    merchant_id=plan.merchant_id,
                    **plan.values,
                )
                self.db.add(order)
                await self.db.flush()
                outcome = {
                    "record": plan.record.position,
                    "id": str(order.id),
                    "external_order_id": order.external_order_id,
                    "items": len(plan.items),
                }
        except SQLAlchemyError as e:
            message = str(getattr(e, "orig", None) or e)
            logger.warning(f"Bulk order record {plan.record.position} failed: {message}")
            result.add_error(plan.record, [message], identifier=plan.external_order_id)
            return

        result.created.append(outcome)
