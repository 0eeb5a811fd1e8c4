"""
Capability table for role-based authorization.

Every (role, operation) pair maps to a Capability: whether the operation is
allowed at all, and which fields the role may set when the operation edits a
record. Services evaluate this table once per call instead of branching on
role strings.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Tuple
import uuid

from fulfillment.core.exceptions import PermissionDeniedError


class Role(str, Enum):
    """Caller roles supplied by the identity provider."""
    ADMIN = "ADMIN"
    MERCHANT = "MERCHANT"
    MERCHANT_STAFF = "MERCHANT_STAFF"
    LOGISTICS = "LOGISTICS"


MERCHANT_ROLES = frozenset({Role.MERCHANT, Role.MERCHANT_STAFF})


@dataclass(frozen=True)
class Actor:
    """The authenticated caller: who they are, what role, which tenant."""
    user_id: uuid.UUID
    role: Role
    business_id: Optional[uuid.UUID] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN

    @property
    def is_merchant(self) -> bool:
        return self.role in MERCHANT_ROLES

    @property
    def is_logistics(self) -> bool:
        return self.role == Role.LOGISTICS


@dataclass(frozen=True)
class Capability:
    allowed: bool
    # None means every field; an empty set means no field edits
    fields: Optional[FrozenSet[str]] = None

    def permits_field(self, field: str) -> bool:
        return self.fields is None or field in self.fields


DENY = Capability(allowed=False, fields=frozenset())
ALLOW_ALL = Capability(allowed=True)


class Operation:
    """Operation names used as capability-table keys."""
    PRODUCT_CREATE = "product:create"
    PRODUCT_UPDATE = "product:update"
    PRODUCT_DELETE = "product:delete"
    PRODUCT_BULK_IMPORT = "product:bulk_import"

    WAREHOUSE_CREATE = "warehouse:create"
    WAREHOUSE_UPDATE = "warehouse:update"
    WAREHOUSE_DELETE = "warehouse:delete"

    STOCK_ALLOCATE = "stock:allocate"
    STOCK_DELETE = "stock:delete"
    STOCK_TRANSFER = "stock:transfer"

    ORDER_CREATE = "order:create"
    ORDER_UPDATE = "order:update"
    ORDER_DELETE = "order:delete"
    ORDER_ASSIGN = "order:assign"
    ORDER_BULK_IMPORT = "order:bulk_import"
    ORDER_BULK_STATUS = "order:bulk_status"

    AUDIT_VIEW = "audit:view"


MERCHANT_ORDER_FIELDS = frozenset({
    "customer_name", "customer_address", "customer_phone", "external_order_id",
})
LOGISTICS_ORDER_FIELDS = frozenset({
    "status", "assigned_logistics_id", "fulfillment_warehouse_id",
})
PRODUCT_EDIT_FIELDS = frozenset({
    "name", "weight_kg", "dimensions", "description", "category",
    "barcode", "hs_code", "unit_cost", "selling_price", "stock_allocations",
})

_merchant_caps: Dict[str, Capability] = {
    Operation.PRODUCT_CREATE: ALLOW_ALL,
    Operation.PRODUCT_UPDATE: Capability(True, PRODUCT_EDIT_FIELDS),
    Operation.PRODUCT_DELETE: ALLOW_ALL,
    Operation.PRODUCT_BULK_IMPORT: ALLOW_ALL,
    Operation.STOCK_TRANSFER: ALLOW_ALL,
    Operation.ORDER_CREATE: ALLOW_ALL,
    Operation.ORDER_UPDATE: Capability(True, MERCHANT_ORDER_FIELDS),
    Operation.ORDER_BULK_IMPORT: ALLOW_ALL,
}

CAPABILITIES: Dict[Tuple[Role, str], Capability] = {
    **{(Role.MERCHANT, op): cap for op, cap in _merchant_caps.items()},
    **{(Role.MERCHANT_STAFF, op): cap for op, cap in _merchant_caps.items()},
    (Role.LOGISTICS, Operation.STOCK_TRANSFER): ALLOW_ALL,
    (Role.LOGISTICS, Operation.ORDER_UPDATE): Capability(True, LOGISTICS_ORDER_FIELDS),
}


def get_capability(role: Role, operation: str) -> Capability:
    """Look up what a role may do. ADMIN is allowed everything."""
    if role == Role.ADMIN:
        return ALLOW_ALL
    return CAPABILITIES.get((role, operation), DENY)


def require(actor: Actor, operation: str) -> Capability:
    """Return the actor's capability for an operation or raise if denied."""
    capability = get_capability(actor.role, operation)
    if not capability.allowed:
        raise PermissionDeniedError(
            "Insufficient permissions",
            details={"role": actor.role.value, "operation": operation},
        )
    return capability


def require_fields(actor: Actor, operation: str, fields: Iterable[str]) -> None:
    """Reject the call if any field is outside the actor's whitelist."""
    capability = require(actor, operation)
    disallowed = sorted(f for f in fields if not capability.permits_field(f))
    if disallowed:
        raise PermissionDeniedError(
            "Insufficient permissions to update these fields",
            details={"fields": disallowed, "role": actor.role.value},
        )


def require_tenant(actor: Actor, business_id: Optional[uuid.UUID]) -> None:
    """Merchants may only touch records of their own business."""
    if actor.is_merchant and business_id != actor.business_id:
        raise PermissionDeniedError("Can only access records of your own business")
