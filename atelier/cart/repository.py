from datetime import datetime
from typing import List, Optional
from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from atelier.auth.models import Identity
from atelier.common.utils import now
from atelier.schema.full_schema import Cart, CartLine, Product, Variation


def _owner_clause(identity: Identity):
    if identity.user_id is not None:
        return Cart.user_id == identity.user_id
    return Cart.session_key == identity.session_key


async def find_cart_id(session: AsyncSession, identity: Identity) -> Optional[int]:
    if identity.user_id is None and not identity.session_key:
        return None
    stmt = select(Cart.id).where(_owner_clause(identity)).limit(1)
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_or_create_cart(session: AsyncSession, identity: Identity) -> int:
    cart_id = await find_cart_id(session, identity)
    if cart_id is not None:
        return cart_id

    if identity.user_id is not None:
        cart = Cart(user_id=identity.user_id)
    else:
        cart = Cart(session_key=identity.session_key)
    try:
        # savepoint, the caller's transaction survives a lost race
        async with session.begin_nested():
            session.add(cart)
            await session.flush()
        return cart.id
    except IntegrityError:
        # a concurrent request created it first
        cart_id = await find_cart_id(session, identity)
        if cart_id is None:
            raise
        return cart_id


async def get_cart_by_session_key(session: AsyncSession, session_key: str) -> Optional[int]:
    res = await session.execute(select(Cart.id).where(Cart.session_key == session_key))
    return res.scalar_one_or_none()


async def get_cart_id_by_user(session: AsyncSession, user_id: int) -> Optional[int]:
    res = await session.execute(select(Cart.id).where(Cart.user_id == user_id))
    return res.scalar_one_or_none()


async def load_cart(session: AsyncSession, cart_id: int) -> Optional[Cart]:
    stmt = (
        select(Cart)
        .where(Cart.id == cart_id)
        .options(
            selectinload(Cart.lines).selectinload(CartLine.variation).selectinload(Variation.product),
            selectinload(Cart.lines).selectinload(CartLine.variation).selectinload(Variation.size),
            selectinload(Cart.lines).selectinload(CartLine.variation).selectinload(Variation.color),
        )
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_variation_flags(session: AsyncSession, variation_id: int):
    stmt = (
        select(Variation.id, Product.is_active, Product.in_stock)
        .join(Product, Product.id == Variation.product_id)
        .where(Variation.id == variation_id)
    )
    res = await session.execute(stmt)
    return res.one_or_none()


async def get_line(session: AsyncSession, line_id: int):
    stmt = select(CartLine.id, CartLine.cart_id, CartLine.variation_id, CartLine.quantity).where(CartLine.id == line_id)
    res = await session.execute(stmt)
    return res.one_or_none()


async def get_line_for_variation(session: AsyncSession, cart_id: int, variation_id: int):
    stmt = (
        select(CartLine.id, CartLine.quantity)
        .where(CartLine.cart_id == cart_id, CartLine.variation_id == variation_id)
        .with_for_update()
        .limit(1)
    )
    res = await session.execute(stmt)
    return res.one_or_none()


async def list_lines(session: AsyncSession, cart_id: int):
    stmt = (
        select(CartLine.id, CartLine.variation_id, CartLine.quantity)
        .where(CartLine.cart_id == cart_id)
        .order_by(CartLine.id)
    )
    res = await session.execute(stmt)
    return res.all()


async def insert_line(session: AsyncSession, cart_id: int, variation_id: int, qty: int) -> int:
    line = CartLine(cart_id=cart_id, variation_id=variation_id, quantity=qty)
    session.add(line)
    await session.flush()
    return line.id


async def set_line_quantity(session: AsyncSession, line_id: int, qty: int) -> None:
    stmt = (
        update(CartLine)
        .where(CartLine.id == line_id)
        .values(quantity=qty)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def move_line(session: AsyncSession, line_id: int, target_cart_id: int) -> None:
    stmt = (
        update(CartLine)
        .where(CartLine.id == line_id)
        .values(cart_id=target_cart_id)
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def delete_line(session: AsyncSession, line_id: int, cart_id: Optional[int] = None) -> int:
    stmt = delete(CartLine).where(CartLine.id == line_id)
    if cart_id is not None:
        stmt = stmt.where(CartLine.cart_id == cart_id)
    res = await session.execute(stmt.execution_options(synchronize_session=False))
    return res.rowcount


async def delete_all_lines(session: AsyncSession, cart_id: int) -> int:
    stmt = delete(CartLine).where(CartLine.cart_id == cart_id).execution_options(synchronize_session=False)
    res = await session.execute(stmt)
    return res.rowcount


async def delete_cart(session: AsyncSession, cart_id: int) -> None:
    await delete_all_lines(session, cart_id)
    await session.execute(delete(Cart).where(Cart.id == cart_id).execution_options(synchronize_session=False))


async def reassign_cart_to_user(session: AsyncSession, cart_id: int, user_id: int) -> None:
    stmt = (
        update(Cart)
        .where(Cart.id == cart_id)
        .values(user_id=user_id, session_key=None, updated_at=now())
        .execution_options(synchronize_session=False)
    )
    await session.execute(stmt)


async def touch_cart(session: AsyncSession, cart_id: int) -> None:
    stmt = update(Cart).where(Cart.id == cart_id).values(updated_at=now()).execution_options(synchronize_session=False)
    await session.execute(stmt)


async def stale_anonymous_cart_ids(session: AsyncSession, before: datetime) -> List[int]:
    stmt = select(Cart.id).where(Cart.session_key.is_not(None), Cart.updated_at < before)
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def count_quantity(session: AsyncSession, cart_id: int) -> int:
    stmt = select(func.coalesce(func.sum(CartLine.quantity), 0)).where(CartLine.cart_id == cart_id)
    res = await session.execute(stmt)
    return int(res.scalar_one())
