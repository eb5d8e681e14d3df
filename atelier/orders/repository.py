from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from atelier.common.utils import now
from atelier.schema.full_schema import CartLine, Order, OrderLine, Variation


def _order_loader_options():
    return (
        selectinload(Order.lines).selectinload(OrderLine.variation).selectinload(Variation.product),
        selectinload(Order.lines).selectinload(OrderLine.variation).selectinload(Variation.size),
        selectinload(Order.lines).selectinload(OrderLine.variation).selectinload(Variation.color),
    )


async def lock_cart_variations(session: AsyncSession, cart_id: int) -> List[int]:
    # fixed lock order (by id) so concurrent checkouts sharing variations cannot deadlock
    stmt = (
        select(Variation.id)
        .join(CartLine, CartLine.variation_id == Variation.id)
        .where(CartLine.cart_id == cart_id)
        .order_by(Variation.id)
        .with_for_update(of=Variation)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def load_cart_lines_for_checkout(session: AsyncSession, cart_id: int) -> List[CartLine]:
    stmt = (
        select(CartLine)
        .where(CartLine.cart_id == cart_id)
        .options(selectinload(CartLine.variation).selectinload(Variation.product))
        .order_by(CartLine.id)
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def insert_order(session: AsyncSession, order_values: Dict[str, Any], lines: List[Dict[str, Any]]) -> Order:
    order = Order(**order_values)
    session.add(order)
    await session.flush()

    for line in lines:
        session.add(OrderLine(order_id=order.id, **line))
    await session.flush()
    return order


async def load_order(session: AsyncSession, order_id: int) -> Optional[Order]:
    stmt = (
        select(Order)
        .where(Order.id == order_id)
        .options(*_order_loader_options())
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def get_order_state(session: AsyncSession, order_id: int):
    stmt = select(Order.id, Order.user_id, Order.status, Order.payment_status).where(Order.id == order_id)
    res = await session.execute(stmt)
    return res.one_or_none()


async def get_order_lines_qty(session: AsyncSession, order_id: int) -> List[Tuple[int, int]]:
    stmt = select(OrderLine.variation_id, OrderLine.quantity).where(OrderLine.order_id == order_id).order_by(OrderLine.variation_id)
    res = await session.execute(stmt)
    return [(int(r[0]), int(r[1])) for r in res.all()]


async def conditional_status_update(session: AsyncSession, order_id: int, expected: str,
                                    values: Dict[str, Any], column=Order.status) -> bool:
    """Compare-and-set on the current status; False when another writer moved it first."""
    stmt = (
        update(Order)
        .where(Order.id == order_id, column == expected)
        .values(**values, updated_at=now())
        .execution_options(synchronize_session=False)
    )
    res = await session.execute(stmt)
    return res.rowcount == 1


async def list_orders_for_user(session: AsyncSession, user_id: int) -> List[Order]:
    stmt = (
        select(Order)
        .where(Order.user_id == user_id)
        .options(*_order_loader_options())
        .order_by(Order.created_at.desc(), Order.id.desc())
    )
    res = await session.execute(stmt)
    return list(res.scalars().all())


async def list_orders(session: AsyncSession, status: Optional[str] = None, user_id: Optional[int] = None,
                      date_from: Optional[datetime] = None, date_to: Optional[datetime] = None,
                      page: int = 1, limit: int = 20) -> Tuple[List[Order], int]:
    filters = []
    if status:
        filters.append(Order.status == status)
    if user_id is not None:
        filters.append(Order.user_id == user_id)
    if date_from is not None:
        filters.append(Order.created_at >= date_from)
    if date_to is not None:
        filters.append(Order.created_at <= date_to)

    count_stmt = select(func.count()).select_from(Order).where(*filters)
    total = int((await session.execute(count_stmt)).scalar_one())

    stmt = (
        select(Order)
        .where(*filters)
        .options(*_order_loader_options())
        .order_by(Order.created_at.desc(), Order.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all()), total
