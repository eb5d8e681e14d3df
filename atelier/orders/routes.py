from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.auth.dependencies import get_settings, require_admin, require_user
from atelier.auth.models import Identity
from atelier.common.errors import Forbidden
from atelier.common.utils import success_response
from atelier.config.settings import Settings
from atelier.db.dependencies import get_session
from atelier.orders import services
from atelier.orders.constants import logger
from atelier.orders.models import CheckoutIn, PaymentStatusUpdateIn, StatusUpdateIn
from atelier.orders.utils import serialize_order

orders_router = APIRouter()


@orders_router.post("")
async def place_order(payload: CheckoutIn, identity: Identity = Depends(require_user),
                      settings: Settings = Depends(get_settings), session: AsyncSession = Depends(get_session)):

    order = await services.checkout(
        session, identity.user_id,
        shipping_address=payload.shipping_address.model_dump(),
        shipping_method=payload.shipping_method,
        payment_method=payload.payment_method,
        settings=settings,
    )
    return success_response(serialize_order(order), status_code=status.HTTP_201_CREATED)


@orders_router.get("")
async def my_orders(identity: Identity = Depends(require_user), session: AsyncSession = Depends(get_session)):
    orders = await services.list_user_orders(session, identity.user_id)
    return success_response({"items": [serialize_order(o) for o in orders]})


@orders_router.get("/{order_id}")
async def order_detail(order_id: int, identity: Identity = Depends(require_user),
                       session: AsyncSession = Depends(get_session)):
    order = await services.get_order_detail(session, order_id)
    if order.user_id != identity.user_id and not identity.is_admin:
        raise Forbidden("Order belongs to another user")
    return success_response(serialize_order(order))


@orders_router.post("/{order_id}/cancel")
async def cancel_order(order_id: int, identity: Identity = Depends(require_user),
                       session: AsyncSession = Depends(get_session)):
    order = await services.cancel_order(session, identity.user_id, order_id)
    await session.commit()
    logger.info("order.cancel.success", extra={"order_id": order_id, "user_id": identity.user_id})
    return success_response(serialize_order(order))


@orders_router.put("/{order_id}/status")
async def update_order_status(order_id: int, payload: StatusUpdateIn, identity: Identity = Depends(require_admin),
                              session: AsyncSession = Depends(get_session)):
    order = await services.transition_status(session, order_id, payload.status.value)
    await session.commit()
    return success_response(serialize_order(order))


@orders_router.put("/{order_id}/payment-status")
async def update_payment_status(order_id: int, payload: PaymentStatusUpdateIn,
                                identity: Identity = Depends(require_admin),
                                session: AsyncSession = Depends(get_session)):
    order = await services.update_payment_status(session, order_id, payload.payment_status.value)
    await session.commit()
    return success_response(serialize_order(order))
