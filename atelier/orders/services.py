import asyncio
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.cart import repository as cart_repo
from atelier.common.errors import (CheckoutTimeout, EmptyCart, Forbidden, InsufficientStock, InvalidStatusTransition,
                                   OrderNotFound, ValidationFailed)
from atelier.config.settings import Settings
from atelier.inventory import ledger
from atelier.orders import repository as repo
from atelier.orders.constants import logger
from atelier.orders.utils import (ORDER_TRANSITIONS, PAYMENT_TRANSITIONS, can_transition, compute_order_totals,
                                  generate_order_number)
from atelier.schema.full_schema import Order, OrderStatus, PaymentStatus


async def _checkout_txn(session: AsyncSession, user_id: int, shipping_address: Dict[str, Any],
                        shipping_method: str, payment_method: str, settings: Settings) -> int:
    # 1. cart with lines, variations locked in a fixed order
    cart_id = await cart_repo.get_cart_id_by_user(session, user_id)
    if cart_id is None:
        raise EmptyCart("Cart is empty")
    await repo.lock_cart_variations(session, cart_id)
    lines = await repo.load_cart_lines_for_checkout(session, cart_id)
    if not lines:
        raise EmptyCart("Cart is empty")

    # 2. every line must still fit physical stock, or nothing happens
    for line in lines:
        avail = await ledger.check_availability(session, line.variation_id, line.quantity, count_holds=False)
        if not avail.ok:
            raise InsufficientStock(line.variation_id, line.quantity, avail.available, line_id=line.id)

    # 3. capture prices
    order_lines = []
    subtotal = 0
    for line in lines:
        unit_price = int(line.variation.product.price)
        line_total = unit_price * int(line.quantity)
        subtotal += line_total
        order_lines.append({
            "variation_id": line.variation_id,
            "product_name": line.variation.product.name,
            "quantity": int(line.quantity),
            "unit_price": unit_price,
            "line_total": line_total,
        })

    # 4. totals
    totals = compute_order_totals(subtotal, shipping_method, settings)

    # 5. persist
    order = await repo.insert_order(session, {
        "order_number": generate_order_number(),
        "user_id": user_id,
        "status": OrderStatus.PENDING.value,
        "payment_status": PaymentStatus.PENDING.value,
        "payment_method": payment_method,
        "shipping_method": shipping_method,
        "shipping_address": shipping_address,
        **totals,
    }, order_lines)

    # 6. decrement stock; a failure here rolls back the order and earlier reservations
    for ol in order_lines:
        await ledger.reserve(session, ol["variation_id"], ol["quantity"])

    # 7. empty the cart
    await cart_repo.delete_all_lines(session, cart_id)
    await cart_repo.touch_cart(session, cart_id)
    return order.id


async def checkout(session: AsyncSession, user_id: int, shipping_address: Dict[str, Any],
                   shipping_method: str, payment_method: str, settings: Settings) -> Order:
    """Convert the user's cart into a pending order, all or nothing."""
    logger.info("checkout.attempt", extra={"user_id": user_id, "shipping_method": shipping_method})

    try:
        order_id = await asyncio.wait_for(
            _checkout_txn(session, user_id, shipping_address, shipping_method, payment_method, settings),
            timeout=settings.CHECKOUT_TIMEOUT_SECONDS,
        )
    except asyncio.TimeoutError:
        await session.rollback()
        logger.error("checkout.timeout", extra={"user_id": user_id, "timeout": settings.CHECKOUT_TIMEOUT_SECONDS})
        raise CheckoutTimeout("Checkout did not complete in time and was rolled back, no order was placed")
    except BaseException:
        await session.rollback()
        raise

    # commit sits outside the timed budget
    await session.commit()

    # 8. fully loaded order; identity map holds pre-reservation stock values
    session.expire_all()
    order = await repo.load_order(session, order_id)
    logger.info("checkout.success", extra={"user_id": user_id, "order_id": order_id,
                                           "order_number": order.order_number, "final_amount": order.final_amount})
    return order


async def get_order_detail(session: AsyncSession, order_id: int) -> Order:
    order = await repo.load_order(session, order_id)
    if order is None:
        raise OrderNotFound(f"Order {order_id} not found")
    return order


async def list_user_orders(session: AsyncSession, user_id: int) -> List[Order]:
    return await repo.list_orders_for_user(session, user_id)


async def list_orders(session: AsyncSession, **filters) -> Tuple[List[Order], int]:
    return await repo.list_orders(session, **filters)


async def transition_status(session: AsyncSession, order_id: int, new_status: str) -> Order:
    """Move an order along pending -> paid -> shipped -> delivered, or pending -> cancelled.
    Cancelling hands every line's quantity back to the ledger in the same transaction.
    Does not commit."""
    if new_status not in {s.value for s in OrderStatus}:
        raise ValidationFailed(f"Unknown order status {new_status}")

    state = await repo.get_order_state(session, order_id)
    if state is None:
        raise OrderNotFound(f"Order {order_id} not found")

    current = state.status
    if not can_transition(current, new_status, ORDER_TRANSITIONS):
        raise InvalidStatusTransition(current, new_status)

    values = {"status": new_status}
    if new_status == OrderStatus.PAID.value:
        values["payment_status"] = PaymentStatus.PAID.value

    if not await repo.conditional_status_update(session, order_id, current, values):
        # lost the race, report what the winner left behind
        latest = await repo.get_order_state(session, order_id)
        raise InvalidStatusTransition(latest.status if latest else current, new_status)

    if new_status == OrderStatus.CANCELLED.value:
        for variation_id, qty in await repo.get_order_lines_qty(session, order_id):
            await ledger.release(session, variation_id, qty)

    logger.info("order.status.changed", extra={"order_id": order_id, "from": current, "to": new_status})
    session.expire_all()
    return await repo.load_order(session, order_id)


async def update_payment_status(session: AsyncSession, order_id: int, payment_status: str) -> Order:
    if payment_status not in {s.value for s in PaymentStatus}:
        raise ValidationFailed(f"Unknown payment status {payment_status}")

    state = await repo.get_order_state(session, order_id)
    if state is None:
        raise OrderNotFound(f"Order {order_id} not found")

    current = state.payment_status
    if not can_transition(current, payment_status, PAYMENT_TRANSITIONS):
        raise InvalidStatusTransition(current, payment_status)

    ok = await repo.conditional_status_update(session, order_id, current, {"payment_status": payment_status},
                                              column=Order.payment_status)
    if not ok:
        latest = await repo.get_order_state(session, order_id)
        raise InvalidStatusTransition(latest.payment_status if latest else current, payment_status)

    logger.info("order.payment_status.changed", extra={"order_id": order_id, "from": current, "to": payment_status})
    session.expire_all()
    return await repo.load_order(session, order_id)


async def cancel_order(session: AsyncSession, user_id: int, order_id: int) -> Optional[Order]:
    """Owner initiated cancellation, same rules as any other move to cancelled."""
    state = await repo.get_order_state(session, order_id)
    if state is None:
        raise OrderNotFound(f"Order {order_id} not found")
    if state.user_id != user_id:
        raise Forbidden("Order belongs to another user")
    return await transition_status(session, order_id, OrderStatus.CANCELLED.value)
