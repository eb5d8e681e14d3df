from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.admin.constants import logger
from atelier.auth.dependencies import get_session_store, get_settings, require_admin
from atelier.auth.models import Identity
from atelier.cache.sessions import SessionStore
from atelier.cart.services import purge_stale_anonymous_carts
from atelier.common.utils import success_response
from atelier.config.settings import Settings
from atelier.db.dependencies import get_session
from atelier.orders import services as order_services
from atelier.orders.utils import serialize_order
from atelier.schema.full_schema import OrderStatus

admin_orders_router = APIRouter()
admin_sessions_router = APIRouter()
admin_carts_router = APIRouter()


@admin_orders_router.get("")
async def list_all_orders(
    status: Optional[OrderStatus] = Query(None),
    user_id: Optional[int] = Query(None),
    date_from: Optional[datetime] = Query(None),
    date_to: Optional[datetime] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session)):

    orders, total = await order_services.list_orders(
        session, status=status.value if status else None, user_id=user_id,
        date_from=date_from, date_to=date_to, page=page, limit=limit)
    return success_response({
        "items": [serialize_order(o, with_lines=False) for o in orders],
        "total": total,
        "page": page,
        "limit": limit,
    })


@admin_sessions_router.get("")
async def count_sessions(store: SessionStore = Depends(get_session_store)):
    return success_response({"active_sessions": await store.count()})


@admin_sessions_router.delete("")
async def clear_sessions(identity: Identity = Depends(require_admin), store: SessionStore = Depends(get_session_store)):
    removed = await store.clear_all()
    logger.warning("admin.sessions.cleared", extra={"removed": removed, "user_id": identity.user_id})
    return success_response({"removed": removed})


@admin_sessions_router.delete("/{user_id}")
async def revoke_session(user_id: int, identity: Identity = Depends(require_admin),
                         store: SessionStore = Depends(get_session_store)):
    existed = await store.delete(user_id)
    logger.info("admin.sessions.revoked", extra={"target_user_id": user_id, "user_id": identity.user_id})
    return success_response({"revoked": existed})


@admin_carts_router.delete("/stale")
async def purge_carts(settings: Settings = Depends(get_settings), session: AsyncSession = Depends(get_session)):
    removed = await purge_stale_anonymous_carts(session, settings.ANON_COOKIE_MAX_AGE)
    await session.commit()
    return success_response({"removed": removed})
