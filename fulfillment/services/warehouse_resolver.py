"""
Warehouse Resolver

Turns a caller-supplied warehouse reference (id, name, or the
DEFAULT_WAREHOUSE sentinel) into a concrete active warehouse. References that
do not resolve fall back to the default warehouse, which is created on first
use.
"""
import logging
from typing import Optional, Union
import uuid

from sqlalchemy import select, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.config import settings
from fulfillment.core.exceptions import ConflictError
from fulfillment.models.warehouse import Warehouse, WarehouseStatus, WarehouseType


logger = logging.getLogger(__name__)

DEFAULT_WAREHOUSE_REF = "DEFAULT_WAREHOUSE"


def _parse_uuid(ref: Union[str, uuid.UUID, None]) -> Optional[uuid.UUID]:
    if isinstance(ref, uuid.UUID):
        return ref
    try:
        return uuid.UUID(str(ref).strip())
    except (ValueError, AttributeError, TypeError):
        return None


class WarehouseResolver:
    """Resolve warehouse references, provisioning the default warehouse lazily."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def resolve(self, ref: Union[str, uuid.UUID, None]) -> Warehouse:
        """
        Resolution order:
        1. DEFAULT_WAREHOUSE (or empty) -> default warehouse
        2. exact id of an ACTIVE warehouse
        3. case-insensitive name of an ACTIVE warehouse
        4. default warehouse
        """
        if ref is None or (isinstance(ref, str) and ref.strip() in ("", DEFAULT_WAREHOUSE_REF)):
            return await self.get_default_warehouse()

        warehouse_id = _parse_uuid(ref)
        if warehouse_id:
            warehouse = await self.db.get(Warehouse, warehouse_id)
            if warehouse and warehouse.status == WarehouseStatus.ACTIVE.value:
                return warehouse

        if isinstance(ref, str):
            result = await self.db.execute(
                select(Warehouse)
                .where(
                    func.lower(Warehouse.name) == ref.strip().lower(),
                    Warehouse.status == WarehouseStatus.ACTIVE.value,
                )
                .order_by(Warehouse.created_at)
                .limit(1)
            )
            warehouse = result.scalar_one_or_none()
            if warehouse:
                return warehouse

        logger.info(f"Warehouse reference '{ref}' did not resolve, using default warehouse")
        return await self.get_default_warehouse()

    async def find_default_warehouse(self) -> Optional[Warehouse]:
        """ACTIVE warehouse named Default (any case) or coded DEFAULT."""
        result = await self.db.execute(
            select(Warehouse)
            .where(
                Warehouse.status == WarehouseStatus.ACTIVE.value,
                or_(
                    func.lower(Warehouse.name) == settings.DEFAULT_WAREHOUSE_NAME.lower(),
                    Warehouse.code == settings.DEFAULT_WAREHOUSE_CODE,
                ),
            )
            # Prefer the canonical row when both match
            .order_by((Warehouse.code == settings.DEFAULT_WAREHOUSE_CODE).desc(), Warehouse.created_at)
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_default_warehouse(self) -> Warehouse:
        """
        Return the default warehouse, creating it if missing.

        The unique code is the guard against concurrent creation: a caller
        that loses the insert race re-reads the winner's row.
        """
        warehouse = await self.find_default_warehouse()
        if warehouse:
            return warehouse

        try:
            async with self.db.begin_nested():
                warehouse = Warehouse(
                    name=settings.DEFAULT_WAREHOUSE_NAME,
                    code=settings.DEFAULT_WAREHOUSE_CODE,
                    region=settings.DEFAULT_WAREHOUSE_REGION,
                    capacity=settings.DEFAULT_WAREHOUSE_CAPACITY,
                    current_stock=0,
                    status=WarehouseStatus.ACTIVE.value,
                    warehouse_type=WarehouseType.STORAGE.value,
                    description="Automatically created default warehouse",
                )
                self.db.add(warehouse)
                await self.db.flush()
            logger.info(f"Created default warehouse {warehouse.id}")
            return warehouse
        except IntegrityError:
            logger.info("Default warehouse created concurrently, re-fetching")

        result = await self.db.execute(
            select(Warehouse).where(Warehouse.code == settings.DEFAULT_WAREHOUSE_CODE)
        )
        warehouse = result.scalar_one_or_none()
        if warehouse is None:
            raise ConflictError("Default warehouse could not be created")
        if warehouse.status != WarehouseStatus.ACTIVE.value:
            logger.warning(
                f"Default warehouse {warehouse.id} is {warehouse.status}; using it anyway"
            )
        return warehouse
