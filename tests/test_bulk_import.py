"""Tests for bulk product and order ingestion."""
from datetime import timezone

import pytest
from sqlalchemy import select, func

from fulfillment.core.exceptions import ValidationError, PermissionDeniedError
from fulfillment.models.audit_log import AuditLog
from fulfillment.models.order import Order
from fulfillment.models.product import Product
from fulfillment.schemas.bulk import BulkImportRequest
from fulfillment.services.bulk_import import (
    DelimitedTextParser,
    OrderImportPipeline,
    ProductImportPipeline,
    normalize_key,
    parse_order_date,
    parse_positive_int,
)
from fulfillment.services.stock_ledger import StockLedger

from tests import factories


def order_record(n, sku="MOUSE-1", quantity=1, **overrides):
    record = {
        "externalOrderId": f"EXT-{n}",
        "customerName": f"Customer {n}",
        "customerAddress": f"{n} Main Street",
        "customerPhone": "+15550100",
        "totalAmount": 25,
        "items": [{"productSku": sku, "quantity": quantity}],
    }
    record.update(overrides)
    return record


async def count(db, model):
    return await db.scalar(select(func.count()).select_from(model))


# =============================================================================
# Parsing helpers
# =============================================================================

@pytest.mark.parametrize(
    "raw, key",
    [("weightKg", "weight_kg"), ("Weight KG", "weight_kg"), ("customer-name", "customer_name"), ("sku", "sku")],
)
def test_normalize_key(raw, key):
    assert normalize_key(raw) == key


@pytest.mark.parametrize(
    "raw, parsed",
    [("2", 2), (3, 3), (2.0, 2), ("0", None), (-1, None), ("1.5", None), ("abc", None), (True, None), (None, None)],
)
def test_parse_positive_int(raw, parsed):
    assert parse_positive_int(raw) == parsed


def test_parse_order_date():
    assert parse_order_date("2026-03-01T10:00:00Z").tzinfo is not None
    assert parse_order_date("2026-03-01").tzinfo == timezone.utc
    assert parse_order_date("yesterday") is None


def test_parser_keeps_line_numbers_and_quoted_delimiters():
    content = 'Name,SKU,Weight KG\n"Lamp, brass",LAMP-1,1.2\n\nDesk,DESK-1,12\n'
    rows = DelimitedTextParser(",", True).parse(content)

    assert [r.line_number for r in rows] == [2, 4]
    assert rows[0].data == {"name": "Lamp, brass", "sku": "LAMP-1", "weight_kg": "1.2"}


def test_parser_without_header_uses_fixed_columns():
    rows = DelimitedTextParser(";", False, ("name", "sku")).parse("Lamp;LAMP-1")
    assert rows[0].data == {"name": "Lamp", "sku": "LAMP-1"}
    assert rows[0].line_number == 1


def test_parser_rejects_unknown_delimiter():
    with pytest.raises(ValidationError):
        DelimitedTextParser("|")


# =============================================================================
# Products
# =============================================================================

async def test_product_batch_isolates_invalid_records(db, business, merchant):
    records = [
        {"name": "Lamp", "weightKg": 1.2},
        {"name": "", "weightKg": 1},
        {"name": "Desk", "sku": "DESK-1", "weightKg": 12, "dimensions": {"length": 120, "width": 60, "height": 75}},
        {"name": "Chair", "weightKg": -3},
        {"name": "Shelf", "weightKg": 8, "dimensions": "{not json"},
        {"name": "Rug", "weightKg": 2.5},
    ]
    result = await ProductImportPipeline(db).run(BulkImportRequest(records=records), merchant)

    assert result["summary"] == {"total": 6, "created": 3, "updated": 0, "skipped": 0, "errors": 3}
    assert [e["record"] for e in result["errors"]] == [2, 4, 5]
    assert "Name is required (record 2)" in result["errors"][0]["error"]
    assert "Valid weight in kg is required" in result["errors"][1]["error"]
    assert "Invalid dimensions JSON format" in result["errors"][2]["error"]
    assert await count(db, Product) == 3

    desk = (await db.execute(select(Product).where(Product.sku == "DESK-1"))).scalar_one()
    assert desk.dimensions == {"length": 120.0, "width": 60.0, "height": 75.0}

    audit = (await db.execute(select(AuditLog).where(AuditLog.action == "PRODUCTS_BULK_UPLOAD"))).scalar_one()
    assert audit.details["summary"]["created"] == 3
    assert audit.details["options"]["upload_type"] == "JSON"


async def test_product_csv_with_stock_columns(db, business, merchant, warehouse):
    csv_data = (
        "name,sku,weight_kg,allocated_quantity,safety_stock,warehouse\n"
        "Lamp,LAMP-1,1.2,10,2,North Hub\n"
        "Desk,DESK-1,12,3,5,North Hub\n"
    )
    result = await ProductImportPipeline(db).run(BulkImportRequest(csv_data=csv_data), merchant)

    assert result["summary"]["created"] == 1
    assert result["errors"][0]["line"] == 3
    assert "Safety stock cannot exceed allocated quantity" in result["errors"][0]["error"]

    lamp = (await db.execute(select(Product).where(Product.sku == "LAMP-1"))).scalar_one()
    allocation = await StockLedger(db).get_allocation(lamp.id, warehouse.id)
    assert (allocation.allocated_quantity, allocation.safety_stock) == (10, 2)


async def test_duplicate_skus_in_batch(db, business, merchant):
    records = [
        {"name": "Lamp", "sku": "LAMP-1", "weightKg": 1},
        {"name": "Lamp again", "sku": "lamp-1", "weightKg": 1},
    ]
    result = await ProductImportPipeline(db).run(BulkImportRequest(records=records), merchant)

    assert result["summary"]["created"] == 1
    assert result["errors"][0]["error"] == 'Duplicate SKU "LAMP-1" for business in batch (records 1 and 2)'


async def test_existing_sku_skip_update_or_error(db, business, merchant, product):
    record = [{"name": "Mouse v2", "sku": "MOUSE-1", "weightKg": 0.3}]
    pipeline = ProductImportPipeline(db)

    skipped = await pipeline.run(BulkImportRequest(records=record), merchant)
    assert skipped["summary"]["skipped"] == 1

    failed = await pipeline.run(
        BulkImportRequest(records=record, options={"skip_duplicates": False}), merchant
    )
    assert "already exists for this business" in failed["errors"][0]["error"]

    updated = await pipeline.run(
        BulkImportRequest(records=record, options={"update_existing": True}), merchant
    )
    assert updated["summary"]["updated"] == 1
    assert (await db.get(Product, product.id)).name == "Mouse v2"


async def test_update_existing_keeps_fields_the_record_omits(db, business, merchant):
    lamp = await factories.make_product(db, business, name="Lamp", sku="LAMP-1")
    lamp.description = "Brass desk lamp"
    lamp.category = "Lighting"
    lamp.dimensions = {"length": 20.0, "width": 15.0, "height": 40.0}
    await db.flush()

    result = await ProductImportPipeline(db).run(
        BulkImportRequest(
            records=[{"name": "Lamp v2", "sku": "LAMP-1", "weightKg": 1, "category": "Home"}],
            options={"update_existing": True},
        ),
        merchant,
    )

    assert result["summary"]["updated"] == 1
    stored = await db.get(Product, lamp.id)
    assert (stored.name, stored.category, stored.description) == ("Lamp v2", "Home", "Brass desk lamp")
    assert stored.dimensions == {"length": 20.0, "width": 15.0, "height": 40.0}


async def test_sku_owned_by_other_business_is_a_record_error(db, business, other_business, merchant):
    await factories.make_product(db, other_business, sku="SHARED-1")
    result = await ProductImportPipeline(db).run(
        BulkImportRequest(records=[{"name": "Mine", "sku": "SHARED-1", "weightKg": 1}]), merchant
    )
    assert "already used by another business" in result["errors"][0]["error"]


async def test_generated_skus_do_not_collide_within_batch(db, business, merchant):
    records = [
        {"name": "Wireless Mouse", "weightKg": 0.2},
        {"name": "Wooden Table", "weightKg": 9},
        {"name": "Wide Frame", "sku": "SKU-WE_01", "weightKg": 2},
    ]
    result = await ProductImportPipeline(db).run(BulkImportRequest(records=records), merchant)

    skus = sorted(p["sku"] for p in result["created"])
    assert skus == ["SKU-WE_01", "SKU-WE_02", "SKU-WE_03"]


async def test_product_strict_mode_writes_nothing(db, business, merchant):
    records = [{"name": "Lamp", "weightKg": 1}, {"name": "Bad", "weightKg": 0}]
    with pytest.raises(ValidationError) as exc:
        await ProductImportPipeline(db).run(
            BulkImportRequest(records=records, options={"strict": True}), merchant
        )
    assert exc.value.message == "Validation errors in product data"
    assert exc.value.details["errors"][0]["record"] == 2
    assert await count(db, Product) == 0


async def test_product_validate_only(db, business, merchant):
    result = await ProductImportPipeline(db).run(
        BulkImportRequest(records=[{"name": "Lamp", "weightKg": 1}], options={"validate_only": True}), merchant
    )
    assert result["validate_only"] is True
    assert result["summary"]["created"] == 1
    assert await count(db, Product) == 0
    assert await count(db, AuditLog) == 0


async def test_merchant_cannot_import_into_other_business(db, business, other_business, merchant):
    with pytest.raises(PermissionDeniedError):
        await ProductImportPipeline(db).run(
            BulkImportRequest(records=[{"name": "Lamp", "weightKg": 1, "businessId": str(other_business.id)}]),
            merchant,
        )


async def test_admin_import_checks_businesses(db, admin):
    closed = await factories.make_business(db, name="Closed", is_active=False)
    with pytest.raises(ValidationError, match="Invalid or inactive business IDs"):
        await ProductImportPipeline(db).run(
            BulkImportRequest(records=[{"name": "Lamp", "weightKg": 1}], business_id=closed.id), admin
        )
    with pytest.raises(ValidationError, match="business_id is required"):
        await ProductImportPipeline(db).run(BulkImportRequest(records=[{"name": "Lamp", "weightKg": 1}]), admin)


async def test_logistics_cannot_import(db, logistics):
    with pytest.raises(PermissionDeniedError):
        await ProductImportPipeline(db).run(BulkImportRequest(records=[{"name": "Lamp"}]), logistics)


async def test_empty_and_oversized_batches(db, business, merchant, monkeypatch):
    from fulfillment.config import settings

    with pytest.raises(ValidationError, match="No records to import"):
        await ProductImportPipeline(db).run(BulkImportRequest(records=[]), merchant)

    monkeypatch.setattr(settings, "BULK_MAX_RECORDS", 2)
    with pytest.raises(ValidationError, match="Too many records"):
        await ProductImportPipeline(db).run(
            BulkImportRequest(records=[{"name": "A"}, {"name": "B"}, {"name": "C"}]), merchant
        )


# =============================================================================
# Orders
# =============================================================================

async def test_order_batch_reports_the_bad_order(db, business, merchant, product):
    records = [order_record(n) for n in range(1, 6)]
    records[2] = order_record(3, quantity=0)

    result = await OrderImportPipeline(db).run(BulkImportRequest(records=records), merchant)

    assert result["summary"]["created"] == 4
    assert result["summary"]["errors"] == 1
    assert result["errors"][0]["record"] == 3
    assert result["errors"][0]["identifier"] == "EXT-3"
    assert "Valid quantity is required (order 3, item 1)" in result["errors"][0]["error"]

    stored = (await db.execute(select(Order.external_order_id))).scalars().all()
    assert sorted(stored) == ["EXT-1", "EXT-2", "EXT-4", "EXT-5"]


async def test_order_csv_rows_grouped_into_orders(db, business, merchant, product):
    await factories.make_product(db, business, name="Keyboard", sku="KEY-1")
    csv_data = (
        "external_order_id,customer_name,customer_address,customer_phone,total_amount,product_sku,quantity\n"
        "A-1,Jane Doe,1 Main Street,+15550100,40,MOUSE-1,1\n"
        "A-1,Jane Doe,1 Main Street,+15550100,40,KEY-1,2\n"
        "A-2,John Roe,2 High Road,+15550101,15,MOUSE-1,1\n"
    )
    result = await OrderImportPipeline(db).run(BulkImportRequest(csv_data=csv_data), merchant)

    assert result["summary"] == {"total": 2, "created": 2, "updated": 0, "skipped": 0, "errors": 0}
    first = next(c for c in result["created"] if c["external_order_id"] == "A-1")
    assert first["items"] == 2

    order = (await db.execute(select(Order).where(Order.external_order_id == "A-1"))).scalar_one()
    assert order.status == "NEW"


async def test_unknown_sku_fails_order_unless_skipped(db, business, merchant, product):
    record = order_record(1, items=[{"productSku": "MOUSE-1", "quantity": 1}, {"productSku": "NOPE", "quantity": 1}])

    failed = await OrderImportPipeline(db).run(BulkImportRequest(records=[record]), merchant)
    assert failed["errors"][0]["error"] == 'Product with SKU "NOPE" not found for this merchant (order 1)'

    created = await OrderImportPipeline(db).run(
        BulkImportRequest(records=[record], options={"skip_invalid_products": True}), merchant
    )
    assert created["created"][0]["items"] == 1


async def test_other_business_sku_is_unknown(db, business, other_business, merchant):
    await factories.make_product(db, other_business, sku="GLOBEX-1")
    result = await OrderImportPipeline(db).run(
        BulkImportRequest(records=[order_record(1, sku="GLOBEX-1")]), merchant
    )
    assert result["summary"]["errors"] == 1


async def test_external_ids_in_batch_and_storage(db, business, merchant, product):
    await factories.make_order(db, business, [(product, 1)], external_order_id="EXT-1")
    records = [order_record(1), order_record(2), order_record(2)]

    result = await OrderImportPipeline(db).run(BulkImportRequest(records=records), merchant)
    assert result["summary"]["skipped"] == 1
    assert result["summary"]["created"] == 1
    assert 'Duplicate external order ID "EXT-2"' in result["errors"][0]["error"]

    strict = await OrderImportPipeline(db).run(
        BulkImportRequest(records=[order_record(1)], options={"skip_duplicates": False}), merchant
    )
    assert "already exists" in strict["errors"][0]["error"]


async def test_order_missing_fields_collected_in_one_entry(db, business, merchant):
    result = await OrderImportPipeline(db).run(
        BulkImportRequest(records=[{"customerName": "Jane", "items": []}]), merchant
    )
    error = result["errors"][0]["error"]
    assert "Customer address is required (order 1)" in error
    assert "Valid total amount is required (order 1)" in error
    assert "At least one item is required (order 1)" in error
    assert result["summary"]["errors"] == 1


async def test_order_strict_and_validate_only(db, business, merchant, product):
    records = [order_record(1), order_record(2, quantity=0)]
    with pytest.raises(ValidationError, match="Validation errors in order data"):
        await OrderImportPipeline(db).run(
            BulkImportRequest(records=records, options={"strict": True}), merchant
        )

    preview = await OrderImportPipeline(db).run(
        BulkImportRequest(records=records, options={"validate_only": True}), merchant
    )
    assert preview["summary"]["created"] == 1
    assert preview["summary"]["errors"] == 1
    assert await count(db, Order) == 0


def test_request_needs_exactly_one_source():
    from pydantic import ValidationError as SchemaValidationError

    with pytest.raises(SchemaValidationError):
        BulkImportRequest()
    with pytest.raises(SchemaValidationError):
        BulkImportRequest(records=[], csv_data="a,b")
