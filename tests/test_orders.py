from datetime import datetime, timezone
from decimal import Decimal
import random
import re
import uuid

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession

from dinenow.core.exceptions import (
    ConflictError,
    NotFoundError,
    StorageError,
    UnavailableError,
    ValidationError,
)
from dinenow.models import MenuItemVariant, Order, OrderItem, OrderStatus, SpiceLevel
from dinenow.services.orders import (
    OrderBuilder,
    calculate_subtotal,
    calculate_total,
    generate_order_number,
    line_preparation_minutes,
)


async def _count(database, model) -> int:
    async with database.transaction() as session:
        return await session.scalar(select(func.count()).select_from(model))


# =============================================================================
# PURE HELPERS
# =============================================================================

def test_subtotal_is_exact_decimal():
    assert calculate_subtotal(Decimal("0.10"), 3) == Decimal("0.30")
    assert calculate_total([Decimal("0.10")] * 10) == Decimal("1.00")


def test_line_preparation_minutes():
    assert line_preparation_minutes(20, 1) == 20
    assert line_preparation_minutes(20, 3) == 20 + 2 * 6
    assert line_preparation_minutes(5, 2) == 5 + 2


def test_order_number_format():
    number = generate_order_number(datetime(2026, 3, 14, tzinfo=timezone.utc))
    assert re.fullmatch(r"ORD-20260314-\d{6}", number)


# =============================================================================
# CREATE ORDER
# =============================================================================

async def test_two_lines_total_21(service, menu, customer):
    bread = await service.register_menu_item({
        "category_id": menu.category_id,
        "name": "Num Pang",
        "preparation_time_minutes": 5,
        "variants": [{"size": "medium", "price": "4.50", "is_default": True}],
    })
    crab = await service.register_menu_item({
        "category_id": menu.category_id,
        "name": "Kep Crab",
        "preparation_time_minutes": 25,
        "variants": [{"size": "large", "price": "12.00", "is_default": True}],
    })

    order = await service.create_order(
        menu.table_id,
        customer,
        [
            {"menu_item_id": bread.id, "variant_id": bread.variants[0].id, "quantity": 2},
            {"menu_item_id": crab.id, "variant_id": crab.variants[0].id, "quantity": 1},
        ],
    )

    assert order.total_amount == Decimal("21.00")
    assert [item.subtotal for item in order.items] == [Decimal("9.00"), Decimal("12.00")]
    assert [item.unit_price for item in order.items] == [Decimal("4.50"), Decimal("12.00")]


async def test_created_order_shape(service, menu, place_order, clock):
    order = await place_order(
        items=[
            {"menu_item_id": menu.coffee_id, "variant_id": menu.coffee_small_id, "quantity": 2,
             "spice_level": "none", "notes": "less ice"},
            {"menu_item_id": menu.amok_id, "variant_id": menu.amok_large_id, "quantity": 1,
             "spice_level": "spicy"},
        ],
        notes="window seat",
    )

    assert order.status == OrderStatus.PENDING
    assert order.restaurant_id == menu.restaurant_id
    assert order.table.number == "1"
    assert order.restaurant.name == "Riverside"
    assert order.customer_telegram_id == 555_000_111
    assert order.customer_name == "Sokha"
    assert order.notes == "window seat"
    assert order.created_at == clock.now
    assert order.confirmed_at is None
    assert re.fullmatch(r"ORD-20260314-\d{6}", order.order_number)

    # Items keep the order they were submitted in
    assert [item.menu_item.name for item in order.items] == ["Iced Coffee", "Fish Amok"]
    assert order.items[0].notes == "less ice"
    assert order.items[1].spice_level == SpiceLevel.SPICY
    assert order.items[1].variant.size.value == "large"
    assert order.total_amount == Decimal("13.50")

    # Empty kitchen: no queue delay, slowest line is the amok
    assert order.estimated_preparation_minutes == 20


@pytest.mark.parametrize("seed", [3, 17, 42, 2026])
async def test_total_equals_sum_of_subtotals(service, menu, place_order, seed):
    rng = random.Random(seed)
    choices = [
        (menu.amok_id, menu.amok_small_id),
        (menu.amok_id, menu.amok_medium_id),
        (menu.amok_id, menu.amok_large_id),
        (menu.coffee_id, menu.coffee_small_id),
        (menu.coffee_id, menu.coffee_medium_id),
    ]
    lines = [
        {"menu_item_id": item_id, "variant_id": variant_id, "quantity": rng.randint(1, 9)}
        for item_id, variant_id in (rng.choice(choices) for _ in range(rng.randint(1, 8)))
    ]

    order = await place_order(items=lines)

    assert order.total_amount == sum(item.subtotal for item in order.items)
    for item in order.items:
        assert item.subtotal == item.unit_price * item.quantity


async def test_price_is_frozen_at_order_time(service, database, menu, place_order):
    order = await place_order()

    async with database.transaction() as session:
        variant = await session.get(MenuItemVariant, menu.amok_medium_id)
        variant.price = Decimal("99.00")

    stored = await service.get_order(order.id)
    assert stored.items[0].unit_price == Decimal("8.50")
    assert stored.total_amount == Decimal("8.50")
    assert stored.items[0].variant.price == Decimal("99.00")


async def test_estimate_includes_queue_delay(service, menu, place_order):
    for _ in range(4):
        await place_order()

    # 4 active orders × 15 min average × 0.1 = 6 min of queue
    order = await place_order(
        items=[{"menu_item_id": menu.coffee_id, "variant_id": menu.coffee_small_id, "quantity": 3}]
    )
    assert order.estimated_preparation_minutes == 6 + line_preparation_minutes(5, 3)


async def test_creation_refreshes_kitchen_load(service, menu, place_order):
    await place_order()
    await place_order()

    load = await service.get_kitchen_load(menu.restaurant_id)
    assert load.current_orders == 2


# =============================================================================
# REJECTIONS
# =============================================================================

async def test_unavailable_line_aborts_whole_order(service, database, menu, customer):
    with pytest.raises(UnavailableError):
        await service.create_order(
            menu.table_id,
            customer,
            [
                {"menu_item_id": menu.amok_id, "variant_id": menu.amok_medium_id, "quantity": 1},
                {"menu_item_id": menu.coffee_id, "variant_id": menu.coffee_large_id, "quantity": 1},
            ],
        )

    assert await _count(database, Order) == 0
    assert await _count(database, OrderItem) == 0


async def test_item_from_other_restaurant(service, database, menu, customer):
    with pytest.raises(ValidationError):
        await service.create_order(
            menu.table_id,
            customer,
            [{"menu_item_id": menu.other_item_id, "variant_id": menu.other_variant_id, "quantity": 1}],
        )
    assert await _count(database, Order) == 0


async def test_unknown_table(service, menu, customer):
    with pytest.raises(NotFoundError):
        await service.create_order(
            uuid.uuid4(),
            customer,
            [{"menu_item_id": menu.amok_id, "variant_id": menu.amok_medium_id, "quantity": 1}],
        )


async def test_inactive_table(service, menu, customer):
    with pytest.raises(UnavailableError):
        await service.create_order(
            menu.inactive_table_id,
            customer,
            [{"menu_item_id": menu.amok_id, "variant_id": menu.amok_medium_id, "quantity": 1}],
        )


@pytest.mark.parametrize(
    "items",
    [
        [],
        [{"quantity": 1}],
    ],
)
async def test_malformed_lines(service, menu, customer, items):
    with pytest.raises(ValidationError) as exc:
        await service.create_order(menu.table_id, customer, items)
    assert exc.value.details["errors"]


@pytest.mark.parametrize(
    "bad_customer",
    [
        {"telegram_id": 0, "name": "Sokha"},
        {"telegram_id": 42, "name": "   "},
        {"name": "Sokha"},
    ],
)
async def test_malformed_customer(place_order, bad_customer):
    with pytest.raises(ValidationError):
        await place_order(customer=bad_customer)


async def test_quantity_limit(service, menu, place_order, settings):
    too_many = settings.max_quantity_per_item + 1
    with pytest.raises(ValidationError):
        await place_order(
            items=[{"menu_item_id": menu.amok_id, "variant_id": menu.amok_medium_id, "quantity": too_many}]
        )


async def test_line_count_limit(service, menu, place_order, settings):
    line = {"menu_item_id": menu.coffee_id, "variant_id": menu.coffee_small_id, "quantity": 1}
    with pytest.raises(ValidationError):
        await place_order(items=[line] * (settings.max_items_per_order + 1))


async def test_order_number_collision_is_retried(service, menu, place_order, monkeypatch):
    first = await place_order()

    numbers = iter([first.order_number, first.order_number, "ORD-20260314-000777"])
    monkeypatch.setattr(
        "dinenow.services.orders.generate_order_number", lambda now=None: next(numbers)
    )

    second = await place_order()
    assert second.order_number == "ORD-20260314-000777"


async def test_order_number_exhaustion_is_a_conflict(service, menu, place_order, monkeypatch):
    first = await place_order()
    monkeypatch.setattr(
        "dinenow.services.orders.generate_order_number", lambda now=None: first.order_number
    )

    with pytest.raises(ConflictError):
        await place_order()


async def test_duplicate_number_rejected_by_constraint_is_retried(
    service, database, menu, place_order, monkeypatch
):
    first = await place_order()
    numbers = iter([first.order_number, "ORD-20260314-000888"])

    async def reuse_then_fresh(self, session, now):
        return next(numbers)

    # Skip the lookup so the unique index is what catches the duplicate
    monkeypatch.setattr(OrderBuilder, "_unused_order_number", reuse_then_fresh)

    second = await place_order()
    assert second.order_number == "ORD-20260314-000888"
    assert await _count(database, Order) == 2
    assert await _count(database, OrderItem) == 2


async def test_storage_failure_rolls_back_order(service, database, menu, place_order, monkeypatch):
    async def failing_flush(self, objects=None):
        raise OperationalError("INSERT INTO orders", {}, Exception("database is locked"))

    monkeypatch.setattr(AsyncSession, "flush", failing_flush)

    with pytest.raises(StorageError):
        await place_order()

    monkeypatch.undo()
    assert await _count(database, Order) == 0
    assert await _count(database, OrderItem) == 0
