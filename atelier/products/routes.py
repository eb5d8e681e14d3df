from typing import Optional
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from atelier.auth.dependencies import require_admin
from atelier.auth.models import Identity
from atelier.common.utils import success_response
from atelier.db.dependencies import get_session
from atelier.inventory import ledger
from atelier.products import repository as repo
from atelier.products.constants import DEFAULT_PAGE_SIZE, logger
from atelier.products.models import ProductCreateIn, RestockIn
from atelier.products.utils import (serialize_category, serialize_color, serialize_product_detail,
                                    serialize_product_summary, serialize_size)

prods_public_router = APIRouter()
catalog_router = APIRouter()
prods_admin_router = APIRouter()
stock_admin_router = APIRouter()


@prods_public_router.get("")
async def get_products(
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_SIZE, ge=1, le=100),
    q: Optional[str] = Query(None),
    category: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session)):

    products, total = await repo.fetch_products(session, category_slug=category, q=q, page=page, limit=limit)
    resp = {
        "items": [serialize_product_summary(p) for p in products],
        "total": total,
        "page": page,
        "limit": limit,
        "has_more": page * limit < total,
    }
    return success_response(resp)


@prods_public_router.get("/{slug}")
async def get_product_details(slug: str, session: AsyncSession = Depends(get_session)):
    product = await repo.fetch_product_by_slug(session, slug)
    return success_response(serialize_product_detail(product))


@catalog_router.get("/categories")
async def get_categories(session: AsyncSession = Depends(get_session)):
    rows = await repo.list_categories(session)
    return success_response({"items": [serialize_category(c) for c in rows]})


@catalog_router.get("/colors")
async def get_colors(session: AsyncSession = Depends(get_session)):
    rows = await repo.list_colors(session)
    return success_response({"items": [serialize_color(c) for c in rows]})


@catalog_router.get("/sizes")
async def get_sizes(session: AsyncSession = Depends(get_session)):
    rows = await repo.list_sizes(session)
    return success_response({"items": [serialize_size(s) for s in rows]})


@prods_admin_router.post("")
async def create_product(payload: ProductCreateIn, identity: Identity = Depends(require_admin),
                         session: AsyncSession = Depends(get_session)):

    logger.info("product.create.attempt", extra={"user_id": identity.user_id, "slug": payload.slug})

    product_id = await repo.create_product_with_variations(session, payload)
    await session.commit()
    product = await repo.load_product(session, product_id)

    logger.info("product.create.success", extra={"product_id": product_id, "user_id": identity.user_id})
    return success_response({"message": "product created", "product": serialize_product_detail(product)},
                            status_code=status.HTTP_201_CREATED)


@stock_admin_router.patch("/{variation_id}/stock")
async def restock_variation(variation_id: int, payload: RestockIn, identity: Identity = Depends(require_admin),
                            session: AsyncSession = Depends(get_session)):

    new_qty = await ledger.restock(session, variation_id, payload.delta)
    await session.commit()
    return success_response({"variation_id": variation_id, "quantity": new_qty})
