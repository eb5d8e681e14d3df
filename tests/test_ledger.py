import asyncio
import pytest
from sqlalchemy import update
from atelier.auth.models import Identity
from atelier.cart import services as cart_services
from atelier.common.errors import InsufficientStock, ValidationFailed, VariationNotFound
from atelier.inventory import ledger
from atelier.schema.full_schema import Product


async def test_reserve_decrements_when_sufficient(db_session, catalog, stock_of):
    await ledger.reserve(db_session, catalog.dress_v, 3)
    await db_session.commit()

    assert await stock_of(catalog.dress_v) == 2


async def test_reserve_insufficient_leaves_stock_untouched(db_session, catalog, stock_of):
    with pytest.raises(InsufficientStock) as exc:
        await ledger.reserve(db_session, catalog.dress_v, 6)
    await db_session.rollback()

    assert exc.value.available == 5
    assert exc.value.requested == 6
    assert await stock_of(catalog.dress_v) == 5


async def test_reserve_exact_stock_reaches_zero_then_rejects(db_session, catalog, stock_of):
    await ledger.reserve(db_session, catalog.dress_v, 5)
    with pytest.raises(InsufficientStock):
        await ledger.reserve(db_session, catalog.dress_v, 1)
    await db_session.commit()

    assert await stock_of(catalog.dress_v) == 0


async def test_non_positive_quantities_are_rejected(db_session, catalog):
    with pytest.raises(ValidationFailed):
        await ledger.reserve(db_session, catalog.dress_v, 0)
    with pytest.raises(ValidationFailed):
        await ledger.release(db_session, catalog.dress_v, -2)


async def test_unknown_variation(db_session, catalog):
    with pytest.raises(VariationNotFound):
        await ledger.reserve(db_session, 99999, 1)
    with pytest.raises(VariationNotFound):
        await ledger.release(db_session, 99999, 1)
    with pytest.raises(VariationNotFound):
        await ledger.check_availability(db_session, 99999, 1)


async def test_release_increments(db_session, catalog, stock_of):
    await ledger.release(db_session, catalog.scarf_v, 4)
    await db_session.commit()

    assert await stock_of(catalog.scarf_v) == 14


async def test_check_availability_is_read_only(db_session, catalog, stock_of):
    ok = await ledger.check_availability(db_session, catalog.dress_v, 5)
    too_many = await ledger.check_availability(db_session, catalog.dress_v, 6)

    assert ok.ok and ok.available == 5
    assert not too_many.ok and too_many.available == 5
    assert await stock_of(catalog.dress_v) == 5


async def test_inactive_or_out_of_stock_product_reports_zero(db_session, catalog):
    coat = await ledger.check_availability(db_session, catalog.coat_v, 1)
    assert coat.ok is False and coat.available == 0

    await db_session.execute(update(Product).where(Product.id == catalog.scarf).values(in_stock=False))
    scarf = await ledger.check_availability(db_session, catalog.scarf_v, 1)
    assert scarf.available == 0


async def test_holds_count_for_admission_but_not_physical_checks(db_session, catalog, stock_of):
    await cart_services.add_line(db_session, Identity(session_key="holder"), catalog.dress_v, 4)
    await db_session.commit()

    held = await ledger.check_availability(db_session, catalog.dress_v, 2)
    physical = await ledger.check_availability(db_session, catalog.dress_v, 2, count_holds=False)
    assert held.ok is False and held.available == 1
    assert physical.ok is True and physical.available == 5

    await ledger.lock_variation(db_session, catalog.dress_v)
    with pytest.raises(VariationNotFound):
        await ledger.lock_variation(db_session, 99999)
    await db_session.commit()
    assert await stock_of(catalog.dress_v) == 5


async def test_restock_routes_through_reserve_and_release(db_session, catalog, stock_of):
    assert await ledger.restock(db_session, catalog.dress_v, 7) == 12
    assert await ledger.restock(db_session, catalog.dress_v, -10) == 2
    with pytest.raises(InsufficientStock):
        await ledger.restock(db_session, catalog.dress_v, -3)
    with pytest.raises(ValidationFailed):
        await ledger.restock(db_session, catalog.dress_v, 0)
    await db_session.commit()

    assert await stock_of(catalog.dress_v) == 2


async def test_concurrent_reservations_never_oversell(session_maker, catalog, stock_of):
    async def attempt():
        async with session_maker() as s:
            try:
                await ledger.reserve(s, catalog.dress_v, 1)
                await s.commit()
                return True
            except InsufficientStock:
                await s.rollback()
                return False

    results = await asyncio.gather(*(attempt() for _ in range(8)))

    assert sum(results) == 5
    assert await stock_of(catalog.dress_v) == 0
