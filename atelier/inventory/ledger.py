"""Inventory ledger: the only code that reads availability for, or mutates, ``Variation.quantity``.

Every mutation is one conditional statement at the storage layer, so concurrent
callers across processes cannot drive stock negative. Nothing here commits; the
caller owns the transaction.

Availability is what is left for one cart once stock held by every *other*
cart is subtracted. Carts hold stock softly: a cart line keeps its quantity
admitted until the line is removed or checked out, which is what keeps the sum
of admitted quantities across carts within the physical stock.

Holds gate admission only. Checkout compares each line with the physical
quantity, so stock that shrank below the total held never strands every cart.
"""
from dataclasses import dataclass
from typing import Optional
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.common.errors import InsufficientStock, ValidationFailed, VariationNotFound
from atelier.inventory.constants import logger
from atelier.schema.full_schema import CartLine, Product, Variation


@dataclass(frozen=True)
class Availability:
    ok: bool
    available: int


async def held_in_carts(session: AsyncSession, variation_id: int, exclude_cart_id: Optional[int] = None) -> int:
    stmt = select(func.coalesce(func.sum(CartLine.quantity), 0)).where(CartLine.variation_id == variation_id)
    if exclude_cart_id is not None:
        stmt = stmt.where(CartLine.cart_id != exclude_cart_id)
    res = await session.execute(stmt)
    return int(res.scalar_one())


async def lock_variation(session: AsyncSession, variation_id: int) -> None:
    """Write-lock the variation row until the caller's transaction ends.

    A no-op UPDATE rather than ``SELECT ... FOR UPDATE``: SQLite ignores FOR UPDATE
    but serializes writers, so the same call orders admissions on both backends.
    """
    stmt = (
        update(Variation)
        .where(Variation.id == variation_id)
        .values(quantity=Variation.quantity)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        raise VariationNotFound(f"Variation {variation_id} not found")


async def check_availability(session: AsyncSession, variation_id: int, requested_qty: int,
                             cart_id: Optional[int] = None, lock: bool = False,
                             count_holds: bool = True) -> Availability:
    """No stock changes. ``lock`` first takes the variation lock (see ``lock_variation``)
    so that admission decisions for the same variation serialize until the caller's commit.
    With ``count_holds`` off the answer is against the physical quantity alone."""
    stmt = (
        select(Variation.quantity, Product.is_active, Product.in_stock)
        .join(Product, Product.id == Variation.product_id)
        .where(Variation.id == variation_id)
    )
    if lock:
        await lock_variation(session, variation_id)
    res = await session.execute(stmt)
    row = res.one_or_none()
    if row is None:
        raise VariationNotFound(f"Variation {variation_id} not found")

    quantity, is_active, in_stock = int(row[0]), bool(row[1]), bool(row[2])
    if not (is_active and in_stock):
        return Availability(ok=False, available=0)

    held = await held_in_carts(session, variation_id, exclude_cart_id=cart_id) if count_holds else 0
    available = max(0, quantity - held)
    return Availability(ok=requested_qty <= available, available=available)


async def current_quantity(session: AsyncSession, variation_id: int) -> Optional[int]:
    res = await session.execute(select(Variation.quantity).where(Variation.id == variation_id))
    qty = res.scalar_one_or_none()
    return None if qty is None else int(qty)


async def reserve(session: AsyncSession, variation_id: int, qty: int) -> None:
    """Decrement-if-sufficient. Raises InsufficientStock leaving the row untouched."""
    if qty <= 0:
        raise ValidationFailed("Reservation quantity must be positive")

    stmt = (
        update(Variation)
        .where(Variation.id == variation_id, Variation.quantity >= qty)
        .values(quantity=Variation.quantity - qty)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount == 1:
        logger.debug("ledger.reserve.success", extra={"variation_id": variation_id, "qty": qty})
        return

    available = await current_quantity(session, variation_id)
    if available is None:
        raise VariationNotFound(f"Variation {variation_id} not found")
    logger.info("ledger.reserve.insufficient",
                extra={"variation_id": variation_id, "qty": qty, "available": available})
    raise InsufficientStock(variation_id, qty, available)


async def release(session: AsyncSession, variation_id: int, qty: int) -> None:
    if qty <= 0:
        raise ValidationFailed("Release quantity must be positive")

    stmt = (
        update(Variation)
        .where(Variation.id == variation_id)
        .values(quantity=Variation.quantity + qty)
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    if res.rowcount != 1:
        raise VariationNotFound(f"Variation {variation_id} not found")
    logger.debug("ledger.release.success", extra={"variation_id": variation_id, "qty": qty})


async def restock(session: AsyncSession, variation_id: int, delta: int) -> int:
    """Administrative adjustment routed through reserve/release. Returns the new quantity."""
    if delta == 0:
        raise ValidationFailed("Stock adjustment must be non-zero")
    if delta > 0:
        await release(session, variation_id, delta)
    else:
        await reserve(session, variation_id, -delta)

    new_qty = await current_quantity(session, variation_id)
    logger.info("ledger.restock", extra={"variation_id": variation_id, "delta": delta, "quantity": new_qty})
    return new_qty
