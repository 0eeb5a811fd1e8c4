"""
Order Fulfillment State Machine

This module is the SINGLE SOURCE OF TRUTH for all order status transitions.
All status changes must go through this module.

Happy path:
    NEW -> AWAITING_ALLOC -> DISPATCHED -> PICKED_UP -> DELIVERING -> DELIVERED

Side branches: RETURNED and CANCELED from any non-terminal status, ON_HOLD
from any non-terminal status (admin only), and release from ON_HOLD back to
NEW or AWAITING_ALLOC.

ASSIGNED_TO_LOGISTICS is accepted as another name for DISPATCHED and is
stored as DISPATCHED.
"""

from typing import Optional, List, Dict, FrozenSet, Tuple
import uuid

from fulfillment.core.exceptions import ValidationError, PermissionDeniedError
from fulfillment.core.permissions import Actor, Role
from fulfillment.models.order import OrderStatus


# =============================================================================
# STATUS DEFINITIONS
# =============================================================================

ALIASES: Dict[str, str] = {
    OrderStatus.ASSIGNED_TO_LOGISTICS.value: OrderStatus.DISPATCHED.value,
}

TERMINAL_STATUSES = frozenset({
    OrderStatus.DELIVERED.value,
    OrderStatus.RETURNED.value,
    OrderStatus.CANCELED.value,
})


def canonical_status(status) -> str:
    """Upper-case a status and fold aliases onto their canonical name."""
    value = status.value if isinstance(status, OrderStatus) else str(status).strip().upper()
    return ALIASES.get(value, value)


# =============================================================================
# TRANSITION RULES
# =============================================================================

_EXITS = [
    OrderStatus.RETURNED.value,
    OrderStatus.CANCELED.value,
    OrderStatus.ON_HOLD.value,
]

# Format: current_status -> [list of allowed next statuses]
ORDER_TRANSITIONS: Dict[str, List[str]] = {
    OrderStatus.NEW.value: [
        OrderStatus.AWAITING_ALLOC.value,   # Ready for allocation
        *_EXITS,
    ],
    OrderStatus.AWAITING_ALLOC.value: [
        OrderStatus.DISPATCHED.value,       # Assigned to logistics
        *_EXITS,
    ],
    OrderStatus.DISPATCHED.value: [
        OrderStatus.PICKED_UP.value,        # Collected from warehouse
        *_EXITS,
    ],
    OrderStatus.PICKED_UP.value: [
        OrderStatus.DELIVERING.value,       # Out for delivery
        *_EXITS,
    ],
    OrderStatus.DELIVERING.value: [
        OrderStatus.DELIVERED.value,        # Handed to customer
        *_EXITS,
    ],
    OrderStatus.ON_HOLD.value: [
        OrderStatus.NEW.value,              # Release hold
        OrderStatus.AWAITING_ALLOC.value,   # Release hold, ready for allocation
        OrderStatus.RETURNED.value,
        OrderStatus.CANCELED.value,
    ],
    OrderStatus.DELIVERED.value: [],        # Terminal state
    OrderStatus.RETURNED.value: [],         # Terminal state
    OrderStatus.CANCELED.value: [],         # Terminal state
}

ADMIN_ONLY: FrozenSet[Role] = frozenset({Role.ADMIN})
ADMIN_OR_ASSIGNEE: FrozenSet[Role] = frozenset({Role.ADMIN, Role.LOGISTICS})

# Who may move an order INTO each status. LOGISTICS always means the assignee.
TARGET_ROLES: Dict[str, FrozenSet[Role]] = {
    OrderStatus.NEW.value: ADMIN_ONLY,
    OrderStatus.AWAITING_ALLOC.value: ADMIN_ONLY,
    OrderStatus.DISPATCHED.value: ADMIN_ONLY,
    OrderStatus.ON_HOLD.value: ADMIN_ONLY,
    OrderStatus.PICKED_UP.value: ADMIN_OR_ASSIGNEE,
    OrderStatus.DELIVERING.value: ADMIN_OR_ASSIGNEE,
    OrderStatus.DELIVERED.value: ADMIN_OR_ASSIGNEE,
    OrderStatus.RETURNED.value: ADMIN_OR_ASSIGNEE,
    OrderStatus.CANCELED.value: ADMIN_OR_ASSIGNEE,
}

# Human-readable action names for each transition
TRANSITION_ACTIONS: Dict[Tuple[str, str], str] = {
    (OrderStatus.NEW.value, OrderStatus.AWAITING_ALLOC.value): "Queue for Allocation",
    (OrderStatus.AWAITING_ALLOC.value, OrderStatus.DISPATCHED.value): "Dispatch",
    (OrderStatus.DISPATCHED.value, OrderStatus.PICKED_UP.value): "Pick Up",
    (OrderStatus.PICKED_UP.value, OrderStatus.DELIVERING.value): "Start Delivery",
    (OrderStatus.DELIVERING.value, OrderStatus.DELIVERED.value): "Mark Delivered",
    (OrderStatus.ON_HOLD.value, OrderStatus.NEW.value): "Release Hold",
    (OrderStatus.ON_HOLD.value, OrderStatus.AWAITING_ALLOC.value): "Release Hold",
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition(current_status: str, new_status: str) -> bool:
    """Check if a transition is allowed by the table (ignores roles)."""
    allowed = ORDER_TRANSITIONS.get(canonical_status(current_status), [])
    return canonical_status(new_status) in allowed


def get_allowed_transitions(current_status: str) -> List[str]:
    """Get list of statuses that can be transitioned to from current status."""
    return ORDER_TRANSITIONS.get(canonical_status(current_status), [])


def get_transition_action(current_status: str, new_status: str) -> str:
    """Get human-readable action name for a transition."""
    current, new = canonical_status(current_status), canonical_status(new_status)
    if new == OrderStatus.CANCELED.value:
        return "Cancel"
    if new == OrderStatus.RETURNED.value:
        return "Return"
    if new == OrderStatus.ON_HOLD.value:
        return "Put On Hold"
    return TRANSITION_ACTIONS.get((current, new), f"{current} -> {new}")


def is_terminal(status: str) -> bool:
    """Is this a terminal (final) state?"""
    return canonical_status(status) in TERMINAL_STATUSES


def can_delete(status: str) -> bool:
    """Delivered orders are permanent."""
    return canonical_status(status) != OrderStatus.DELIVERED.value


def can_assign(status: str) -> bool:
    """Only orders awaiting allocation may be given to a logistics user."""
    return canonical_status(status) == OrderStatus.AWAITING_ALLOC.value


def validate_transition(current_status: str, new_status: str) -> None:
    """
    Validate a status transition against the table. Raises ValidationError
    if invalid.
    """
    current, new = canonical_status(current_status), canonical_status(new_status)
    if current == new:
        return  # No change, always allowed

    if new not in ORDER_TRANSITIONS:
        raise ValidationError(f"Invalid order status '{new_status}'")

    if not can_transition(current, new):
        allowed = get_allowed_transitions(current)
        if not allowed:
            raise ValidationError(
                f"Order in '{current}' status cannot be modified. This is a terminal state.",
                details={"current_status": current, "requested_status": new},
            )
        raise ValidationError(
            f"Cannot change order from '{current}' to '{new}'. "
            f"Allowed transitions: {', '.join(allowed)}",
            details={"current_status": current, "requested_status": new, "allowed": allowed},
        )


def authorize_transition(
    actor: Actor,
    new_status: str,
    assigned_logistics_id: Optional[uuid.UUID],
) -> None:
    """
    Check the actor may move an order into ``new_status``. Logistics users
    may act only on orders assigned to them.
    """
    new = canonical_status(new_status)
    roles = TARGET_ROLES.get(new, ADMIN_ONLY)
    if actor.role not in roles:
        raise PermissionDeniedError(
            f"Role {actor.role.value} cannot move an order to {new}",
            details={"role": actor.role.value, "requested_status": new},
        )
    if actor.role == Role.LOGISTICS and assigned_logistics_id != actor.user_id:
        raise PermissionDeniedError(
            "Only the assigned logistics user can update this order",
            details={"requested_status": new},
        )


# =============================================================================
# TRANSITION EXECUTOR
# =============================================================================

def transition_order(order, new_status: str, actor: Actor) -> str:
    """
    Transition an order to a new status.

    This function:
    1. Validates the transition is allowed
    2. Checks the actor's role (and assignment, for logistics users)
    3. Updates the status

    Returns:
        The previous status.

    Raises:
        ValidationError: transition not in the table
        PermissionDeniedError: actor may not perform it
    """
    current_status = order.status
    new = canonical_status(new_status)

    validate_transition(current_status, new)
    if canonical_status(current_status) != new:
        authorize_transition(actor, new, order.assigned_logistics_id)

    order.status = new
    return current_status
