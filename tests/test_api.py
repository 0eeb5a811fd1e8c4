"""HTTP-level tests: identity headers, status codes and the error body."""
import uuid

import pytest

from fulfillment.models.order import OrderStatus

from tests import factories
from tests.conftest import headers_for


@pytest.fixture
async def seeded(db, business, other_business, merchant_user, product, warehouse, second_warehouse, logistics_user):
    """Commit fixture rows so the app's own sessions can see them."""
    await db.commit()


# =============================================================================
# Identity
# =============================================================================

async def test_missing_identity_is_401(client, seeded):
    response = await client.get("/api/v1/products")
    assert response.status_code == 401
    assert response.json() == {"error": "Missing caller identity", "kind": "UNAUTHENTICATED"}


async def test_bad_identity_headers(client, seeded):
    bad_role = await client.get("/api/v1/products", headers={"X-User-Id": str(uuid.uuid4()), "X-User-Role": "OWNER"})
    bad_id = await client.get("/api/v1/products", headers={"X-User-Id": "abc", "X-User-Role": "ADMIN"})
    no_business = await client.get(
        "/api/v1/products", headers={"X-User-Id": str(uuid.uuid4()), "X-User-Role": "MERCHANT"}
    )
    assert (bad_role.status_code, bad_id.status_code, no_business.status_code) == (401, 401, 403)
    assert [r.json()["kind"] for r in (bad_role, bad_id, no_business)] == [
        "UNAUTHENTICATED", "UNAUTHENTICATED", "PERMISSION_DENIED",
    ]
    assert bad_id.json()["details"] == {"header": "X-User-Id"}


# =============================================================================
# Products and stock
# =============================================================================

async def test_merchant_creates_product_with_generated_sku(client, seeded, merchant):
    response = await client.post(
        "/api/v1/products",
        json={"name": "Wireless Earbuds", "weight_kg": 0.1},
        headers=headers_for(merchant),
    )
    assert response.status_code == 201
    assert response.json()["sku"] == "SKU-WS_01"

    listed = await client.get("/api/v1/products", headers=headers_for(merchant))
    assert listed.json()["total"] == 2


async def test_safety_stock_error_body(client, seeded, admin, product, warehouse):
    response = await client.post(
        "/api/v1/stock-allocations",
        json={
            "product_id": str(product.id),
            "warehouse_id": str(warehouse.id),
            "allocated_quantity": 10,
            "safety_stock": 15,
        },
        headers=headers_for(admin),
    )
    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Safety stock cannot exceed allocated quantity"
    assert body["kind"] == "VALIDATION_ERROR"


async def test_merchant_cannot_allocate_stock(client, seeded, merchant, product, warehouse):
    response = await client.post(
        "/api/v1/stock-allocations",
        json={"product_id": str(product.id), "warehouse_id": str(warehouse.id), "allocated_quantity": 1},
        headers=headers_for(merchant),
    )
    assert response.status_code == 403
    assert response.json()["kind"] == "PERMISSION_DENIED"


async def test_allocation_then_low_stock_listing(client, seeded, admin, merchant, product, warehouse):
    created = await client.post(
        "/api/v1/stock-allocations",
        json={
            "product_id": str(product.id),
            "warehouse_id": str(warehouse.id),
            "allocated_quantity": 8,
            "safety_stock": 5,
        },
        headers=headers_for(admin),
    )
    assert created.status_code == 200
    assert created.json()["available_stock"] == 3

    low = await client.get("/api/v1/stock-allocations", params={"low_stock": "true"}, headers=headers_for(merchant))
    assert low.json()["total"] == 1
    assert low.json()["items"][0]["is_low_stock"] is True


async def test_transfer_by_other_merchant_denied(client, seeded, other_merchant, product, warehouse, second_warehouse):
    response = await client.post(
        "/api/v1/stock/transfer",
        json={
            "product_id": str(product.id),
            "from_warehouse_id": str(warehouse.id),
            "to_warehouse_id": str(second_warehouse.id),
            "quantity": 1,
        },
        headers=headers_for(other_merchant),
    )
    assert response.status_code == 403


# =============================================================================
# Warehouses
# =============================================================================

async def test_warehouse_with_stock_needs_plan(client, db, business, warehouse, admin):
    for name in ("Alpha", "Bravo", "Charlie"):
        item = await factories.make_product(db, business, name=name)
        await factories.make_allocation(db, item, warehouse, allocated=5)
    await db.commit()

    response = await client.delete(f"/api/v1/warehouses/{warehouse.id}", headers=headers_for(admin))
    assert response.status_code == 409
    assert response.json()["details"]["stockCount"] == 3

    forced = await client.request(
        "DELETE", f"/api/v1/warehouses/{warehouse.id}", json={"force": True}, headers=headers_for(admin)
    )
    assert forced.status_code == 200
    assert forced.json()["deleted_allocations"] == 3


async def test_default_warehouse_reference_via_product(client, seeded, merchant):
    payload = {
        "name": "Desk Lamp",
        "weight_kg": 1,
        "stock_allocations": [{"warehouse_id": "DEFAULT_WAREHOUSE", "allocated_quantity": 2}],
    }
    first = await client.post("/api/v1/products", json=payload, headers=headers_for(merchant))
    second = await client.post("/api/v1/products", json=payload, headers=headers_for(merchant))
    assert (first.status_code, second.status_code) == (201, 201)

    detail = await client.get(f"/api/v1/products/{second.json()['id']}", headers=headers_for(merchant))
    allocation = detail.json()["stock_allocations"][0]
    assert allocation["warehouse_code"] == "DEFAULT"

    warehouses = await client.get("/api/v1/warehouses", params={"search": "DEFAULT"}, headers=headers_for(merchant))
    assert warehouses.json()["total"] == 1


# =============================================================================
# Orders
# =============================================================================

async def test_order_flow(client, seeded, admin, merchant, logistics, logistics_user, other_merchant):
    created = await client.post(
        "/api/v1/orders",
        json={
            "external_order_id": "WEB-1",
            "customer_name": "Jane Doe",
            "customer_address": "1 Main Street",
            "total_amount": "10.00",
            "items": [{"product_sku": "MOUSE-1", "quantity": 1}],
        },
        headers=headers_for(merchant),
    )
    assert created.status_code == 201
    order_id = created.json()["id"]

    # Merchant cannot drive status
    denied = await client.put(
        f"/api/v1/orders/{order_id}", json={"status": "CANCELED"}, headers=headers_for(merchant)
    )
    assert denied.status_code == 403

    hidden = await client.get(f"/api/v1/orders/{order_id}", headers=headers_for(other_merchant))
    assert hidden.status_code == 404

    queued = await client.put(
        f"/api/v1/orders/{order_id}", json={"status": "AWAITING_ALLOC"}, headers=headers_for(admin)
    )
    assert queued.json()["status"] == "AWAITING_ALLOC"

    assigned = await client.post(
        f"/api/v1/orders/{order_id}/assign",
        json={"logistics_id": str(logistics_user.id)},
        headers=headers_for(admin),
    )
    assert assigned.status_code == 200
    assert assigned.json()["status"] == "DISPATCHED"
    assert assigned.json()["shipment"] is not None

    for status in ("PICKED_UP", "DELIVERING", "DELIVERED"):
        step = await client.put(
            f"/api/v1/orders/{order_id}", json={"status": status}, headers=headers_for(logistics)
        )
        assert step.status_code == 200, step.json()

    final = await client.put(
        f"/api/v1/orders/{order_id}", json={"status": "RETURNED"}, headers=headers_for(admin)
    )
    assert final.status_code == 400
    assert "terminal state" in final.json()["error"]

    blocked = await client.delete(f"/api/v1/orders/{order_id}", headers=headers_for(admin))
    assert blocked.status_code == 409


async def test_bulk_order_endpoint_returns_summary(client, seeded, merchant):
    records = [
        {
            "externalOrderId": f"B-{n}",
            "customerName": "Jane",
            "customerAddress": "1 Main Street",
            "customerPhone": "+15550100",
            "totalAmount": 5,
            "items": [{"productSku": "MOUSE-1", "quantity": 0 if n == 3 else 1}],
        }
        for n in range(1, 6)
    ]
    response = await client.post("/api/v1/orders/bulk", json={"records": records}, headers=headers_for(merchant))

    assert response.status_code == 200
    body = response.json()
    assert body["summary"]["created"] == 4
    assert body["errors"][0]["record"] == 3

    listed = await client.get("/api/v1/orders", headers=headers_for(merchant))
    assert listed.json()["total"] == 4


async def test_bulk_status_endpoint_is_admin_only(client, db, business, product, merchant, admin):
    order = await factories.make_order(db, business, [(product, 1)], status=OrderStatus.NEW)
    await db.commit()

    payload = {"order_ids": [str(order.id)], "status": "CANCELED"}
    denied = await client.post("/api/v1/orders/bulk-update-status", json=payload, headers=headers_for(merchant))
    allowed = await client.post("/api/v1/orders/bulk-update-status", json=payload, headers=headers_for(admin))

    assert denied.status_code == 403
    assert allowed.json()["count"] == 1


async def test_request_body_validation_is_422(client, seeded, merchant):
    response = await client.post(
        "/api/v1/orders", json={"customer_name": "Jane", "items": []}, headers=headers_for(merchant)
    )
    assert response.status_code == 422


# =============================================================================
# Audit
# =============================================================================

async def test_audit_log_visible_to_admin_only(client, seeded, admin, merchant):
    await client.post("/api/v1/products", json={"name": "Lamp", "weight_kg": 1}, headers=headers_for(merchant))

    denied = await client.get("/api/v1/audit-logs", headers=headers_for(merchant))
    logs = await client.get("/api/v1/audit-logs", params={"entity_type": "product"}, headers=headers_for(admin))

    assert denied.status_code == 403
    assert logs.json()["total"] == 1
    assert logs.json()["items"][0]["action"] == "CREATE"
