from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.auth.dependencies import cart_identity, current_identity, get_settings
from atelier.auth.models import Identity
from atelier.cart import services
from atelier.cart.constants import logger
from atelier.cart.models import AddLineIn, UpdateLineIn
from atelier.cart.repository import get_or_create_cart
from atelier.common.utils import success_response
from atelier.config.settings import Settings
from atelier.db.dependencies import get_session

carts_router = APIRouter()


@carts_router.get("")
async def get_cart(identity: Identity = Depends(current_identity), session: AsyncSession = Depends(get_session)):
    cart = await services.get_cart_detail(session, identity)
    return success_response(cart)


@carts_router.get("/count")
async def get_cart_count(identity: Identity = Depends(current_identity), session: AsyncSession = Depends(get_session)):
    count = await services.count_items(session, identity)
    return success_response({"count": count})


@carts_router.get("/validate")
async def validate_cart(identity: Identity = Depends(current_identity), session: AsyncSession = Depends(get_session)):
    warnings = await services.validate_cart(session, identity)
    return success_response({"valid": not warnings, "warnings": warnings})


@carts_router.post("")
async def add_to_cart(payload: AddLineIn, identity: Identity = Depends(cart_identity),
                      settings: Settings = Depends(get_settings), session: AsyncSession = Depends(get_session)):

    logger.info("cart.add_line.attempt", extra={"variation_id": payload.variation_id, "qty": payload.quantity,
                                                "user_id": identity.user_id})

    line = await services.add_line(session, identity, payload.variation_id, payload.quantity,
                                   max_line_qty=settings.MAX_LINE_QTY)
    await session.commit()

    cart = await services.get_cart_detail(session, identity)
    status_code = status.HTTP_201_CREATED if line["created"] else status.HTTP_200_OK
    return success_response({"line": line, "cart": cart}, status_code=status_code)


@carts_router.put("/{line_id}")
async def update_cart_line(line_id: int, payload: UpdateLineIn, identity: Identity = Depends(cart_identity),
                           settings: Settings = Depends(get_settings), session: AsyncSession = Depends(get_session)):

    cart_id = await get_or_create_cart(session, identity)
    line = await services.update_line(session, cart_id, line_id, payload.quantity,
                                      max_line_qty=settings.MAX_LINE_QTY)
    await session.commit()

    cart = await services.get_cart_detail(session, identity)
    return success_response({"line": line, "cart": cart})


@carts_router.delete("/{line_id}")
async def remove_cart_line(line_id: int, identity: Identity = Depends(cart_identity),
                           session: AsyncSession = Depends(get_session)):

    cart_id = await get_or_create_cart(session, identity)
    await services.remove_line(session, line_id, cart_id)
    await session.commit()

    cart = await services.get_cart_detail(session, identity)
    return success_response({"message": "line removed", "cart": cart})


@carts_router.delete("")
async def clear_cart(identity: Identity = Depends(cart_identity),
                     session: AsyncSession = Depends(get_session)):

    cart_id = await get_or_create_cart(session, identity)
    removed = await services.clear(session, cart_id)
    await session.commit()
    return success_response({"message": "cart cleared", "removed": removed})
