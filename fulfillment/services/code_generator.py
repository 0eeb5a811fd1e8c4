"""
SKU and warehouse code generation.

The pure functions take the set of codes already in use and return the first
free candidate; the async helpers load that set from the database. Storage
uniqueness constraints remain the final arbiter: callers that lose a race on
insert regenerate instead of trusting the pre-check.
"""
from typing import AbstractSet, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from fulfillment.core.exceptions import GenerationError, ValidationError
from fulfillment.models.product import Product
from fulfillment.models.warehouse import Warehouse


SKU_PREFIX = "SKU"
MAX_SKU_COUNTER = 99
MAX_WAREHOUSE_COUNTER = 999


def normalize_sku(sku: str) -> str:
    """Supplied SKUs are stored trimmed and uppercase."""
    return sku.strip().upper()


def sku_stem(name: str) -> str:
    """``SKU-{first}{last}`` for a product name."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Product name is required to generate a SKU")
    return f"{SKU_PREFIX}-{cleaned[0].upper()}{cleaned[-1].upper()}"


def generate_sku(name: str, existing: AbstractSet[str]) -> str:
    """
    First ``SKU-{first}{last}_{NN}`` not in ``existing``.

    >>> generate_sku("Wireless Mouse", set())
    'SKU-WE_01'
    >>> generate_sku("Wide Frame", {"SKU-WE_01"})
    'SKU-WE_02'
    """
    stem = sku_stem(name)
    for counter in range(1, MAX_SKU_COUNTER + 1):
        candidate = f"{stem}_{counter:02d}"
        if candidate not in existing:
            return candidate
    raise GenerationError(
        "Could not generate unique SKU. Please provide a custom SKU.",
        details={"stem": stem, "attempts": MAX_SKU_COUNTER},
    )


def warehouse_code_prefix(region: str) -> str:
    cleaned = (region or "").strip()
    if not cleaned:
        raise ValidationError("Region is required to generate a warehouse code")
    return cleaned[:3].upper()


def generate_warehouse_code(region: str, existing: AbstractSet[str]) -> str:
    """
    First ``{REGION[:3]}{NNN}`` not in ``existing``.

    >>> generate_warehouse_code("Lagos", {"LAG001"})
    'LAG002'
    """
    prefix = warehouse_code_prefix(region)
    for counter in range(1, MAX_WAREHOUSE_COUNTER + 1):
        candidate = f"{prefix}{counter:03d}"
        if candidate not in existing:
            return candidate
    raise GenerationError(
        f"Could not generate a warehouse code for region '{region}'",
        details={"prefix": prefix, "attempts": MAX_WAREHOUSE_COUNTER},
    )


async def existing_skus_with_stem(db: AsyncSession, stem: str) -> set:
    result = await db.execute(
        select(Product.sku).where(Product.sku.startswith(f"{stem}_", autoescape=True))
    )
    return set(result.scalars().all())


async def next_available_sku(
    db: AsyncSession,
    name: str,
    reserved: Optional[Iterable[str]] = None,
) -> str:
    """
    Generate a SKU checked against every product of every business.

    ``reserved`` holds SKUs already claimed in the current batch but not yet
    flushed.
    """
    existing = await existing_skus_with_stem(db, sku_stem(name))
    if reserved:
        existing.update(reserved)
    return generate_sku(name, existing)


async def next_warehouse_code(db: AsyncSession, region: str) -> str:
    prefix = warehouse_code_prefix(region)
    result = await db.execute(
        select(Warehouse.code).where(Warehouse.code.startswith(prefix, autoescape=True))
    )
    return generate_warehouse_code(region, set(result.scalars().all()))
