from dataclasses import dataclass, asdict
from datetime import timedelta
from typing import Any, Dict, List, Optional
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.auth.models import Identity
from atelier.cart import repository as repo
from atelier.cart.constants import logger
from atelier.common.errors import (CartLineNotFound, InsufficientStock, LineNotInCart, ProductUnavailable,
                                   ValidationFailed, VariationNotFound)
from atelier.common.utils import now
from atelier.inventory import ledger
from atelier.products.utils import serialize_variation
from atelier.schema.full_schema import Cart


@dataclass
class MergeResult:
    merged: int = 0      # lines folded into an existing user line
    moved: int = 0       # lines reassigned to the user cart
    dropped_qty: int = 0  # anonymous quantity discarded by the stock clamp
    converted: bool = False  # anonymous cart became the user cart

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)


async def resolve_cart(session: AsyncSession, identity: Identity) -> Cart:
    """Existing cart for the identity, created empty on first access."""
    cart_id = await repo.get_or_create_cart(session, identity)
    return await repo.load_cart(session, cart_id)


async def _ensure_sellable(session: AsyncSession, variation_id: int) -> None:
    row = await repo.get_variation_flags(session, variation_id)
    if row is None:
        raise VariationNotFound(f"Variation {variation_id} not found")
    if not (row.is_active and row.in_stock):
        raise ProductUnavailable(f"Variation {variation_id} is not available for sale")


async def _admit(session: AsyncSession, cart_id: int, variation_id: int, total_qty: int,
                 line_id: Optional[int] = None, lock: bool = True) -> None:
    avail = await ledger.check_availability(session, variation_id, total_qty, cart_id=cart_id, lock=lock)
    if not avail.ok:
        raise InsufficientStock(variation_id, total_qty, avail.available, line_id=line_id)


async def add_line(session: AsyncSession, identity: Identity, variation_id: int, qty: int,
                   max_line_qty: int = 1000) -> Dict[str, Any]:
    """Upsert a line: adding an existing variation grows its quantity, never a second line."""
    if qty <= 0:
        raise ValidationFailed("Quantity must be positive")

    await _ensure_sellable(session, variation_id)
    cart_id = await repo.get_or_create_cart(session, identity)

    # lock before reading the line, a concurrent add of the same variation then sees ours
    await ledger.lock_variation(session, variation_id)
    existing = await repo.get_line_for_variation(session, cart_id, variation_id)
    existing_qty = int(existing.quantity) if existing else 0
    new_qty = existing_qty + qty
    if new_qty > max_line_qty:
        raise ValidationFailed(f"Quantity per line cannot exceed {max_line_qty}")

    # the whole resulting quantity is checked, not just the increment
    await _admit(session, cart_id, variation_id, new_qty, line_id=existing.id if existing else None, lock=False)

    if existing:
        await repo.set_line_quantity(session, existing.id, new_qty)
        line_id, created = existing.id, False
    else:
        line_id, created = await repo.insert_line(session, cart_id, variation_id, new_qty), True
    await repo.touch_cart(session, cart_id)

    logger.info("cart.add_line.success", extra={"cart_id": cart_id, "variation_id": variation_id,
                                                "quantity": new_qty, "line_created": created})
    return {"cart_id": cart_id, "line_id": line_id, "variation_id": variation_id,
            "quantity": new_qty, "created": created}


async def _owned_line(session: AsyncSession, cart_id: int, line_id: int):
    line = await repo.get_line(session, line_id)
    if line is None:
        raise CartLineNotFound(f"Cart line {line_id} not found")
    if line.cart_id != cart_id:
        logger.warning("cart.line.foreign", extra={"cart_id": cart_id, "line_id": line_id})
        raise LineNotInCart(f"Cart line {line_id} does not belong to this cart")
    return line


async def update_line(session: AsyncSession, cart_id: int, line_id: int, new_qty: int,
                      max_line_qty: int = 1000) -> Dict[str, Any]:
    line = await _owned_line(session, cart_id, line_id)

    if new_qty <= 0:
        await repo.delete_line(session, line_id, cart_id)
        await repo.touch_cart(session, cart_id)
        logger.info("cart.update_line.removed", extra={"cart_id": cart_id, "line_id": line_id})
        return {"cart_id": cart_id, "line_id": line_id, "quantity": 0, "removed": True}

    if new_qty > max_line_qty:
        raise ValidationFailed(f"Quantity per line cannot exceed {max_line_qty}")

    await _ensure_sellable(session, line.variation_id)
    # full new quantity, not the delta
    await _admit(session, cart_id, line.variation_id, new_qty, line_id=line_id)

    await repo.set_line_quantity(session, line_id, new_qty)
    await repo.touch_cart(session, cart_id)
    logger.info("cart.update_line.success", extra={"cart_id": cart_id, "line_id": line_id, "quantity": new_qty})
    return {"cart_id": cart_id, "line_id": line_id, "quantity": new_qty, "removed": False}


async def remove_line(session: AsyncSession, line_id: int, cart_id: Optional[int] = None) -> None:
    if cart_id is not None:
        await _owned_line(session, cart_id, line_id)
    removed = await repo.delete_line(session, line_id, cart_id)
    if not removed:
        raise CartLineNotFound(f"Cart line {line_id} not found")
    if cart_id is not None:
        await repo.touch_cart(session, cart_id)
    logger.info("cart.remove_line.success", extra={"cart_id": cart_id, "line_id": line_id})


async def clear(session: AsyncSession, cart_id: int) -> int:
    removed = await repo.delete_all_lines(session, cart_id)
    await repo.touch_cart(session, cart_id)
    logger.info("cart.clear", extra={"cart_id": cart_id, "removed": removed})
    return removed


async def merge_on_login(session: AsyncSession, anonymous_key: Optional[str], user_id: int) -> MergeResult:
    """Fold the anonymous cart into the user's cart. Absent or empty source short-circuits,
    which makes a repeated call a no-op."""
    result = MergeResult()
    if not anonymous_key:
        return result

    anon_cart_id = await repo.get_cart_by_session_key(session, anonymous_key)
    if anon_cart_id is None:
        return result

    anon_lines = await repo.list_lines(session, anon_cart_id)
    if not anon_lines:
        await repo.delete_cart(session, anon_cart_id)
        logger.info("cart.merge.empty_source", extra={"user_id": user_id})
        return result

    user_cart_id = await repo.get_cart_id_by_user(session, user_id)
    if user_cart_id is None:
        await repo.reassign_cart_to_user(session, anon_cart_id, user_id)
        result.converted = True
        result.moved = len(anon_lines)
        logger.info("cart.merge.converted", extra={"user_id": user_id, "cart_id": anon_cart_id})
        return result

    for line in anon_lines:
        user_line = await repo.get_line_for_variation(session, user_cart_id, line.variation_id)
        if user_line is None:
            await repo.move_line(session, line.id, user_cart_id)
            result.moved += 1
            continue

        # drop the anonymous hold first so availability sees only what other carts keep
        await repo.delete_line(session, line.id)
        avail = await ledger.check_availability(session, line.variation_id, 0, cart_id=user_cart_id, lock=True)
        user_qty, anon_qty = int(user_line.quantity), int(line.quantity)
        # excess is dropped, the user's own line is never reduced
        merged_qty = min(user_qty + anon_qty, max(user_qty, avail.available))
        if merged_qty != user_qty:
            await repo.set_line_quantity(session, user_line.id, merged_qty)
        result.merged += 1
        result.dropped_qty += user_qty + anon_qty - merged_qty

    await repo.delete_cart(session, anon_cart_id)
    await repo.touch_cart(session, user_cart_id)
    logger.info("cart.merge.success", extra={"user_id": user_id, **result.as_dict()})
    return result


def _line_total(line) -> int:
    return int(line.quantity) * int(line.variation.product.price)


async def compute_total(session: AsyncSession, identity: Identity) -> int:
    """Live total: current product prices, never a snapshot."""
    cart_id = await repo.find_cart_id(session, identity)
    if cart_id is None:
        return 0
    cart = await repo.load_cart(session, cart_id)
    return sum(_line_total(line) for line in cart.lines)


async def count_items(session: AsyncSession, identity: Identity) -> int:
    cart_id = await repo.find_cart_id(session, identity)
    if cart_id is None:
        return 0
    return await repo.count_quantity(session, cart_id)


async def validate_cart(session: AsyncSession, identity: Identity) -> List[Dict[str, Any]]:
    """Re-check every line against live stock and product flags. Read only."""
    cart_id = await repo.find_cart_id(session, identity)
    if cart_id is None:
        return []
    cart = await repo.load_cart(session, cart_id)

    warnings = []
    for line in cart.lines:
        product = line.variation.product
        if not product.is_active or not product.in_stock:
            warnings.append({"line_id": line.id, "variation_id": line.variation_id,
                             "message": f"{product.name} is no longer available"})
            continue
        # same check checkout runs
        avail = await ledger.check_availability(session, line.variation_id, line.quantity, count_holds=False)
        if not avail.ok:
            warnings.append({"line_id": line.id, "variation_id": line.variation_id,
                             "message": f"Only {avail.available} of {product.name} left, "
                                        f"{line.quantity} requested"})
    return warnings


def serialize_cart(cart: Optional[Cart]) -> Dict[str, Any]:
    if cart is None:
        return {"id": None, "lines": [], "total": 0, "item_count": 0}

    lines = []
    for line in cart.lines:
        lines.append({
            "id": line.id,
            "variation_id": line.variation_id,
            "quantity": int(line.quantity),
            "unit_price": int(line.variation.product.price),
            "line_total": _line_total(line),
            "variation": serialize_variation(line.variation),
        })
    return {
        "id": cart.id,
        "lines": lines,
        "total": sum(l["line_total"] for l in lines),
        "item_count": sum(l["quantity"] for l in lines),
    }


async def get_cart_detail(session: AsyncSession, identity: Identity) -> Dict[str, Any]:
    cart_id = await repo.find_cart_id(session, identity)
    cart = await repo.load_cart(session, cart_id) if cart_id is not None else None
    return serialize_cart(cart)


async def purge_stale_anonymous_carts(session: AsyncSession, older_than_seconds: int) -> int:
    """Drop anonymous carts idle for longer than the cookie lifetime, releasing what they hold."""
    cutoff = now() - timedelta(seconds=older_than_seconds)
    cart_ids = await repo.stale_anonymous_cart_ids(session, cutoff)
    for cid in cart_ids:
        await repo.delete_cart(session, cid)
    logger.info("cart.purge_stale", extra={"removed": len(cart_ids)})
    return len(cart_ids)
