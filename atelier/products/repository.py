from typing import List, Optional, Tuple
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from atelier.common.errors import DuplicateSlug, ProductNotFound
from atelier.products.models import ProductCreateIn
from atelier.products.utils import slugify
from atelier.schema.full_schema import Category, Color, Product, Size, Variation


def _detail_options():
    return (
        selectinload(Product.category),
        selectinload(Product.variations).selectinload(Variation.size),
        selectinload(Product.variations).selectinload(Variation.color),
    )


async def fetch_products(session: AsyncSession, category_slug: Optional[str] = None, q: Optional[str] = None,
                         page: int = 1, limit: int = 20) -> Tuple[List[Product], int]:
    filters = [Product.is_active.is_(True)]
    if category_slug:
        filters.append(Product.category.has(Category.slug == category_slug))
    if q:
        filters.append(func.lower(Product.name).contains(q.lower()))

    total = int((await session.execute(select(func.count()).select_from(Product).where(*filters))).scalar_one())

    stmt = (
        select(Product)
        .where(*filters)
        .order_by(Product.created_at.desc(), Product.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    res = await session.execute(stmt)
    return list(res.scalars().all()), total


async def fetch_product_by_slug(session: AsyncSession, slug: str) -> Product:
    stmt = (
        select(Product)
        .where(Product.slug == slug, Product.is_active.is_(True))
        .options(*_detail_options())
    )
    res = await session.execute(stmt)
    product = res.scalar_one_or_none()
    if product is None:
        raise ProductNotFound(f"Product {slug} not found")
    return product


async def load_product(session: AsyncSession, product_id: int) -> Optional[Product]:
    stmt = (
        select(Product)
        .where(Product.id == product_id)
        .options(*_detail_options())
        .execution_options(populate_existing=True)
    )
    res = await session.execute(stmt)
    return res.scalar_one_or_none()


async def list_categories(session: AsyncSession) -> List[Category]:
    res = await session.execute(select(Category).order_by(Category.name))
    return list(res.scalars().all())


async def list_colors(session: AsyncSession) -> List[Color]:
    res = await session.execute(select(Color).order_by(Color.name))
    return list(res.scalars().all())


async def list_sizes(session: AsyncSession) -> List[Size]:
    res = await session.execute(select(Size).order_by(Size.id))
    return list(res.scalars().all())


async def create_product_with_variations(session: AsyncSession, payload: ProductCreateIn) -> int:
    product = Product(
        name=payload.name,
        slug=payload.slug or slugify(payload.name),
        description=payload.description,
        price=payload.price,
        compare_price=payload.compare_price,
        sku=payload.sku,
        category_id=payload.category_id,
        in_stock=payload.in_stock,
        is_active=payload.is_active,
        images=list(payload.images),
        features=list(payload.features),
    )
    session.add(product)
    try:
        await session.flush()
        for v in payload.variations:
            session.add(Variation(product_id=product.id, size_id=v.size_id, color_id=v.color_id,
                                  quantity=v.quantity, image_url=v.image_url))
        await session.flush()
    except IntegrityError:
        await session.rollback()
        raise DuplicateSlug("Product slug, sku or variation combination already exists")
    return product.id
