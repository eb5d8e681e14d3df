import re
from datetime import datetime, timezone
import pytest
from atelier.config.settings import Settings
from atelier.orders.utils import (ORDER_TRANSITIONS, PAYMENT_TRANSITIONS, can_transition, compute_order_totals,
                                  compute_shipping, compute_tax, generate_order_number)

ORDER_NUMBER_RE = re.compile(r"^ORD-\d{14}-[0-9A-F]{6}$")


@pytest.fixture
def pricing_settings():
    return Settings(JWT_SECRET="test-secret")


@pytest.mark.parametrize("method, subtotal, expected", [
    ("express", 100, 50000),
    ("express", 900000, 50000),
    ("standard", 500000, 30000),
    ("standard", 500001, 0),
    ("pickup", 900000, 30000),
])
def test_shipping_fee(pricing_settings, method, subtotal, expected):
    assert compute_shipping(method, subtotal, pricing_settings) == expected


def test_tax_is_twenty_percent_rounded_down(pricing_settings):
    assert compute_tax(100000, pricing_settings) == 20000
    assert compute_tax(99, pricing_settings) == 19
    assert compute_tax(0, pricing_settings) == 0


def test_order_totals_add_up(pricing_settings):
    totals = compute_order_totals(330000, "standard", pricing_settings)
    assert totals == {
        "subtotal": 330000,
        "shipping_cost": 30000,
        "tax": 66000,
        "discount": 0,
        "final_amount": 426000,
    }


def test_order_number_format():
    number = generate_order_number(datetime(2026, 3, 1, 9, 5, 7, tzinfo=timezone.utc))
    assert ORDER_NUMBER_RE.match(number)
    assert number.startswith("ORD-20260301090507-")

    numbers = {generate_order_number() for _ in range(50)}
    assert all(ORDER_NUMBER_RE.match(n) for n in numbers)
    assert len(numbers) > 1


def test_transition_tables():
    assert can_transition("pending", "paid", ORDER_TRANSITIONS)
    assert can_transition("pending", "cancelled", ORDER_TRANSITIONS)
    assert can_transition("shipped", "delivered", ORDER_TRANSITIONS)
    assert not can_transition("paid", "cancelled", ORDER_TRANSITIONS)
    assert not can_transition("delivered", "pending", ORDER_TRANSITIONS)
    assert not can_transition("cancelled", "paid", ORDER_TRANSITIONS)

    assert can_transition("failed", "paid", PAYMENT_TRANSITIONS)
    assert not can_transition("paid", "failed", PAYMENT_TRANSITIONS)
