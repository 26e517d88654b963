"""Shared fixtures: a throwaway SQLite database seeded with a small menu."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
import uuid

import pytest

from dinenow.core.config import Settings
from dinenow.database import Database
from dinenow.models import (
    ItemSize,
    MenuCategory,
    MenuItem,
    MenuItemVariant,
    Restaurant,
    Table,
)
from dinenow.services import OrderingService


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, start: datetime = datetime(2026, 3, 14, 12, 0, tzinfo=timezone.utc)):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@dataclass
class SeededMenu:
    restaurant_id: uuid.UUID
    table_id: uuid.UUID
    inactive_table_id: uuid.UUID
    category_id: uuid.UUID
    hidden_category_id: uuid.UUID

    # Fish Amok: 20 min, small 6.50 / medium 8.50 (default) / large 10.50
    amok_id: uuid.UUID
    amok_small_id: uuid.UUID
    amok_medium_id: uuid.UUID
    amok_large_id: uuid.UUID

    # Iced Coffee: 5 min, small 1.50 / medium 2.00 (default) / large 2.50 (unavailable)
    coffee_id: uuid.UUID
    coffee_small_id: uuid.UUID
    coffee_medium_id: uuid.UUID
    coffee_large_id: uuid.UUID

    # Sold out for today
    soldout_id: uuid.UUID
    soldout_variant_id: uuid.UUID

    # Belongs to another restaurant
    other_restaurant_id: uuid.UUID
    other_item_id: uuid.UUID
    other_variant_id: uuid.UUID


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings(tmp_path) -> Settings:
    return Settings(
        _env_file=None,
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'dinenow.db'}",
        kitchen_recompute_mode="sync",
        db_statement_timeout_ms=0,
    )


@pytest.fixture
async def database(settings):
    db = Database.from_settings(settings)
    await db.create_all()
    yield db
    await db.dispose()


@pytest.fixture
def service(database, settings, clock) -> OrderingService:
    return OrderingService(database, settings, clock=clock)


def _variant(size: ItemSize, price: str, sort_order: int, **kwargs) -> MenuItemVariant:
    return MenuItemVariant(
        id=uuid.uuid4(), size=size, price=Decimal(price), sort_order=sort_order, **kwargs
    )


@pytest.fixture
async def menu(database) -> SeededMenu:
    async with database.transaction() as session:
        restaurant = Restaurant(id=uuid.uuid4(), name="Riverside", name_kh="មាត់ទន្លេ")
        other = Restaurant(id=uuid.uuid4(), name="Hilltop")
        session.add_all([restaurant, other])
        await session.flush()

        table = Table(id=uuid.uuid4(), restaurant_id=restaurant.id, number="1")
        closed_table = Table(id=uuid.uuid4(), restaurant_id=restaurant.id, number="2", is_active=False)
        other_table = Table(id=uuid.uuid4(), restaurant_id=other.id, number="1")
        mains = MenuCategory(id=uuid.uuid4(), restaurant_id=restaurant.id, name="Mains", sort_order=1)
        hidden = MenuCategory(
            id=uuid.uuid4(), restaurant_id=restaurant.id, name="Seasonal", sort_order=0, is_active=False
        )
        other_category = MenuCategory(id=uuid.uuid4(), restaurant_id=other.id, name="Mains")
        session.add_all([table, closed_table, other_table, mains, hidden, other_category])
        await session.flush()

        amok = MenuItem(
            id=uuid.uuid4(), category_id=mains.id, restaurant_id=restaurant.id,
            name="Fish Amok", name_kh="អាម៉ុកត្រី", preparation_time_minutes=20, sort_order=2,
        )
        amok.variants = [
            _variant(ItemSize.SMALL, "6.50", 0),
            _variant(ItemSize.MEDIUM, "8.50", 1, is_default=True),
            _variant(ItemSize.LARGE, "10.50", 2),
        ]
        coffee = MenuItem(
            id=uuid.uuid4(), category_id=mains.id, restaurant_id=restaurant.id,
            name="Iced Coffee", preparation_time_minutes=5, sort_order=1,
        )
        coffee.variants = [
            _variant(ItemSize.SMALL, "1.50", 0),
            _variant(ItemSize.MEDIUM, "2.00", 1, is_default=True),
            _variant(ItemSize.LARGE, "2.50", 2, is_available=False),
        ]
        soldout = MenuItem(
            id=uuid.uuid4(), category_id=mains.id, restaurant_id=restaurant.id,
            name="Crab Curry", preparation_time_minutes=30, is_available=False,
        )
        soldout.variants = [_variant(ItemSize.MEDIUM, "12.00", 0, is_default=True)]
        seasonal = MenuItem(
            id=uuid.uuid4(), category_id=hidden.id, restaurant_id=restaurant.id,
            name="Mango Sticky Rice", preparation_time_minutes=10,
        )
        seasonal.variants = [_variant(ItemSize.MEDIUM, "3.00", 0, is_default=True)]
        other_item = MenuItem(
            id=uuid.uuid4(), category_id=other_category.id, restaurant_id=other.id,
            name="Lok Lak", preparation_time_minutes=15,
        )
        other_item.variants = [_variant(ItemSize.MEDIUM, "7.00", 0, is_default=True)]
        session.add_all([amok, coffee, soldout, seasonal, other_item])
        await session.flush()

        return SeededMenu(
            restaurant_id=restaurant.id,
            table_id=table.id,
            inactive_table_id=closed_table.id,
            category_id=mains.id,
            hidden_category_id=hidden.id,
            amok_id=amok.id,
            amok_small_id=amok.variants[0].id,
            amok_medium_id=amok.variants[1].id,
            amok_large_id=amok.variants[2].id,
            coffee_id=coffee.id,
            coffee_small_id=coffee.variants[0].id,
            coffee_medium_id=coffee.variants[1].id,
            coffee_large_id=coffee.variants[2].id,
            soldout_id=soldout.id,
            soldout_variant_id=soldout.variants[0].id,
            other_restaurant_id=other.id,
            other_item_id=other_item.id,
            other_variant_id=other_item.variants[0].id,
        )


@pytest.fixture
def customer() -> dict:
    return {"telegram_id": 555_000_111, "name": "Sokha"}


@pytest.fixture
def place_order(service, menu, customer):
    """Place an order at the seeded table; lines default to one medium amok."""

    async def _place(items=None, **kwargs):
        items = items or [
            {"menu_item_id": menu.amok_id, "variant_id": menu.amok_medium_id, "quantity": 1}
        ]
        return await service.create_order(menu.table_id, kwargs.pop("customer", customer), items, **kwargs)

    return _place
