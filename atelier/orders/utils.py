import secrets
from datetime import datetime
from typing import Any, Dict, Optional
from atelier.common.utils import now
from atelier.config.settings import Settings
from atelier.orders.constants import ORDER_NUMBER_PREFIX
from atelier.products.utils import serialize_variation
from atelier.schema.full_schema import Order, OrderStatus, PaymentStatus

SHIPPING_EXPRESS = "express"
SHIPPING_STANDARD = "standard"

# allowed moves, anything not listed is rejected
ORDER_TRANSITIONS = {
    OrderStatus.PENDING.value: {OrderStatus.PAID.value, OrderStatus.CANCELLED.value},
    OrderStatus.PAID.value: {OrderStatus.SHIPPED.value},
    OrderStatus.SHIPPED.value: {OrderStatus.DELIVERED.value},
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING.value: {PaymentStatus.PAID.value, PaymentStatus.FAILED.value},
    PaymentStatus.FAILED.value: {PaymentStatus.PAID.value},
}


def can_transition(current: str, new: str, table=ORDER_TRANSITIONS) -> bool:
    return new in table.get(current, set())


def compute_shipping(method: str, subtotal: int, settings: Settings) -> int:
    if method == SHIPPING_EXPRESS:
        return settings.SHIPPING_EXPRESS_FEE
    if method == SHIPPING_STANDARD:
        if subtotal > settings.FREE_SHIPPING_THRESHOLD:
            return 0
        return settings.SHIPPING_STANDARD_FEE
    return settings.SHIPPING_DEFAULT_FEE


def compute_tax(subtotal: int, settings: Settings) -> int:
    return subtotal * settings.TAX_RATE_PERCENT // 100


def compute_order_totals(subtotal: int, shipping_method: str, settings: Settings, discount: int = 0) -> Dict[str, int]:
    shipping = compute_shipping(shipping_method, subtotal, settings)
    tax = compute_tax(subtotal, settings)
    return {
        "subtotal": subtotal,
        "shipping_cost": shipping,
        "tax": tax,
        "discount": discount,
        "final_amount": subtotal + shipping + tax - discount,
    }


def generate_order_number(at: Optional[datetime] = None) -> str:
    # second granularity timestamp plus a random disambiguator
    at = at or now()
    return f"{ORDER_NUMBER_PREFIX}-{at.strftime('%Y%m%d%H%M%S')}-{secrets.token_hex(3).upper()}"


def serialize_order(order: Order, with_lines: bool = True) -> Dict[str, Any]:
    out = {
        "id": order.id,
        "order_number": order.order_number,
        "user_id": order.user_id,
        "status": order.status,
        "payment_status": order.payment_status,
        "payment_method": order.payment_method,
        "shipping_method": order.shipping_method,
        "shipping_address": order.shipping_address,
        "subtotal": order.subtotal,
        "shipping_cost": order.shipping_cost,
        "tax": order.tax,
        "discount": order.discount,
        "final_amount": order.final_amount,
        "created_at": order.created_at.isoformat() if order.created_at else None,
    }
    if with_lines:
        out["lines"] = [
            {
                "id": line.id,
                "variation_id": line.variation_id,
                "product_name": line.product_name,
                "quantity": line.quantity,
                "unit_price": line.unit_price,
                "line_total": line.line_total,
                "variation": serialize_variation(line.variation),
            }
            for line in order.lines
        ]
    return out
