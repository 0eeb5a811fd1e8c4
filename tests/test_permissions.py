"""Tests for the role capability table."""
import uuid

import pytest

from fulfillment.core.exceptions import PermissionDeniedError
from fulfillment.core.permissions import (
    Actor, Operation, Role, get_capability, require, require_fields, require_tenant,
)


BUSINESS = uuid.uuid4()
ADMIN = Actor(user_id=uuid.uuid4(), role=Role.ADMIN)
MERCHANT = Actor(user_id=uuid.uuid4(), role=Role.MERCHANT, business_id=BUSINESS)
STAFF = Actor(user_id=uuid.uuid4(), role=Role.MERCHANT_STAFF, business_id=BUSINESS)
DRIVER = Actor(user_id=uuid.uuid4(), role=Role.LOGISTICS)


@pytest.mark.parametrize(
    "operation",
    [v for k, v in vars(Operation).items() if not k.startswith("_")],
)
def test_admin_may_do_everything(operation):
    assert require(ADMIN, operation).allowed


@pytest.mark.parametrize(
    "actor, operation, allowed",
    [
        (MERCHANT, Operation.PRODUCT_CREATE, True),
        (MERCHANT, Operation.PRODUCT_BULK_IMPORT, True),
        (MERCHANT, Operation.ORDER_BULK_IMPORT, True),
        (MERCHANT, Operation.STOCK_TRANSFER, True),
        (MERCHANT, Operation.STOCK_ALLOCATE, False),
        (MERCHANT, Operation.WAREHOUSE_CREATE, False),
        (MERCHANT, Operation.ORDER_DELETE, False),
        (MERCHANT, Operation.AUDIT_VIEW, False),
        (STAFF, Operation.ORDER_CREATE, True),
        (DRIVER, Operation.ORDER_UPDATE, True),
        (DRIVER, Operation.STOCK_TRANSFER, True),
        (DRIVER, Operation.PRODUCT_CREATE, False),
        (DRIVER, Operation.ORDER_ASSIGN, False),
    ],
)
def test_capabilities(actor, operation, allowed):
    assert get_capability(actor.role, operation).allowed is allowed
    if not allowed:
        with pytest.raises(PermissionDeniedError):
            require(actor, operation)


def test_merchant_order_fields():
    require_fields(MERCHANT, Operation.ORDER_UPDATE, ["customer_name", "customer_phone"])
    with pytest.raises(PermissionDeniedError) as exc:
        require_fields(MERCHANT, Operation.ORDER_UPDATE, ["customer_name", "status", "assigned_logistics_id"])
    assert exc.value.details["fields"] == ["assigned_logistics_id", "status"]


def test_logistics_order_fields():
    require_fields(DRIVER, Operation.ORDER_UPDATE, ["status"])
    with pytest.raises(PermissionDeniedError):
        require_fields(DRIVER, Operation.ORDER_UPDATE, ["customer_address"])


def test_tenant_check():
    require_tenant(MERCHANT, BUSINESS)
    require_tenant(ADMIN, uuid.uuid4())
    with pytest.raises(PermissionDeniedError):
        require_tenant(STAFF, uuid.uuid4())
