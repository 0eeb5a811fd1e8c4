from typing import Annotated, Optional
import uuid
import logging

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.database import get_db
from fulfillment.core.exceptions import PermissionDeniedError, UnauthenticatedError
from fulfillment.core.permissions import Actor, Role, require


logger = logging.getLogger(__name__)


def _parse_uuid(value: str, header: str) -> uuid.UUID:
    try:
        return uuid.UUID(value)
    except ValueError:
        logger.warning(f"Invalid {header} header: {value}")
        raise UnauthenticatedError(f"Invalid {header} header", details={"header": header})


async def get_current_actor(
    x_user_id: Annotated[Optional[str], Header()] = None,
    x_user_role: Annotated[Optional[str], Header()] = None,
    x_business_id: Annotated[Optional[str], Header()] = None,
) -> Actor:
    """
    Dependency to get the calling actor.

    Authentication happens upstream; the identity provider forwards the
    caller as X-User-Id, X-User-Role and X-Business-Id headers.
    """
    if not x_user_id or not x_user_role:
        raise UnauthenticatedError("Missing caller identity")

    try:
        role = Role(x_user_role.strip().upper())
    except ValueError:
        logger.warning(f"Unknown role in X-User-Role: {x_user_role}")
        raise UnauthenticatedError("Invalid X-User-Role header", details={"header": "X-User-Role"})

    business_id = _parse_uuid(x_business_id, "X-Business-Id") if x_business_id else None
    if role in (Role.MERCHANT, Role.MERCHANT_STAFF) and business_id is None:
        raise PermissionDeniedError("Merchant callers must belong to a business")

    return Actor(
        user_id=_parse_uuid(x_user_id, "X-User-Id"),
        role=role,
        business_id=business_id,
    )


def require_operation(operation: str):
    """
    Dependency factory to require an operation from the capability table.

    Usage:
        @router.delete("/{id}", dependencies=[Depends(require_operation(Operation.ORDER_DELETE))])
        async def delete_order():
            ...
    """
    async def operation_dependency(
        actor: Annotated[Actor, Depends(get_current_actor)],
    ):
        require(actor, operation)
        return True

    return operation_dependency


# Type aliases for cleaner endpoint signatures
CurrentActor = Annotated[Actor, Depends(get_current_actor)]
DB = Annotated[AsyncSession, Depends(get_db)]
