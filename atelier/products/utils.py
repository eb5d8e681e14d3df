import re
import unicodedata
from typing import Any, Dict, Optional
from atelier.schema.full_schema import Category, Color, Product, Size, Variation


def slugify(value: str) -> str:
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^\w\s-]", "", value).strip().lower()
    return re.sub(r"[-\s_]+", "-", value)


def serialize_category(c: Optional[Category]) -> Optional[Dict[str, Any]]:
    if c is None:
        return None
    return {"id": c.id, "name": c.name, "slug": c.slug, "description": c.description, "image_url": c.image_url}


def serialize_size(s: Optional[Size]) -> Optional[Dict[str, Any]]:
    if s is None:
        return None
    return {"id": s.id, "name": s.name, "value": s.value}


def serialize_color(c: Optional[Color]) -> Optional[Dict[str, Any]]:
    if c is None:
        return None
    return {"id": c.id, "name": c.name, "value": c.value}


def serialize_product_summary(p: Product) -> Dict[str, Any]:
    return {
        "id": p.id,
        "name": p.name,
        "slug": p.slug,
        "price": int(p.price),
        "compare_price": p.compare_price,
        "sku": p.sku,
        "in_stock": p.in_stock,
        "is_active": p.is_active,
        "images": list(p.images or []),
    }


def serialize_variation(v: Variation, with_product: bool = True) -> Dict[str, Any]:
    """Requires product, size and color to be eagerly loaded."""
    out = {
        "id": v.id,
        "product_id": v.product_id,
        "quantity": int(v.quantity),
        "image_url": v.image_url,
        "size": serialize_size(v.size),
        "color": serialize_color(v.color),
    }
    if with_product:
        out["product"] = serialize_product_summary(v.product)
    return out


def serialize_product_detail(p: Product) -> Dict[str, Any]:
    out = serialize_product_summary(p)
    out.update({
        "description": p.description,
        "features": list(p.features or []),
        "category": serialize_category(p.category),
        "variations": [serialize_variation(v, with_product=False) for v in p.variations],
        "created_at": p.created_at.isoformat() if p.created_at else None,
    })
    return out
