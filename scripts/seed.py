"""
Demo Data Seeder

Creates one restaurant with a few tables and a small two-locale menu so
the API and scripts/simulate.py have something to order from.
Run from project root: python scripts/seed.py
"""

import asyncio
from decimal import Decimal

from dinenow.core.config import get_settings, setup_logging
from dinenow.database import Database
from dinenow.models import (
    ItemSize,
    MenuCategory,
    MenuItem,
    MenuItemVariant,
    Restaurant,
    Table,
)

MENU = {
    ("Mains", "ម្ហូបចម្បង"): [
        ("Fish Amok", "អាម៉ុកត្រី", 20, {"small": "6.50", "medium": "8.50", "large": "10.50"}),
        ("Beef Lok Lak", "ឡុកឡាក់សាច់គោ", 15, {"medium": "7.00", "large": "9.00"}),
        ("Nom Banh Chok", "នំបញ្ចុក", 10, {"small": "3.50", "medium": "4.50"}),
    ],
    ("Drinks", "ភេសជ្ជៈ"): [
        ("Iced Coffee", "កាហ្វេទឹកកក", 5, {"small": "1.50", "medium": "2.00", "large": "2.50"}),
        ("Sugarcane Juice", "ទឹកអំពៅ", 5, {"medium": "1.75"}),
    ],
}


async def seed() -> None:
    settings = get_settings()
    database = Database.from_settings(settings)
    await database.create_all()

    async with database.transaction() as session:
        restaurant = Restaurant(name="DineNow Riverside", name_kh="ឌីណោ មាត់ទន្លេ")
        restaurant.tables = [Table(number=str(n)) for n in range(1, 6)]
        session.add(restaurant)
        await session.flush()

        for sort_order, ((name, name_kh), dishes) in enumerate(MENU.items()):
            category = MenuCategory(
                restaurant_id=restaurant.id, name=name, name_kh=name_kh, sort_order=sort_order
            )
            session.add(category)
            await session.flush()

            for dish_order, (dish, dish_kh, minutes, prices) in enumerate(dishes):
                item = MenuItem(
                    category_id=category.id,
                    restaurant_id=restaurant.id,
                    name=dish,
                    name_kh=dish_kh,
                    preparation_time_minutes=minutes,
                    sort_order=dish_order,
                )
                item.variants = [
                    MenuItemVariant(
                        size=ItemSize(size),
                        price=Decimal(price),
                        is_default=index == 0,
                        sort_order=index,
                    )
                    for index, (size, price) in enumerate(prices.items())
                ]
                session.add(item)

        await session.flush()
        tables = [(table.number, table.id) for table in restaurant.tables]
        restaurant_id = restaurant.id

    await database.dispose()

    print("=" * 60)
    print("🌱 Seeded demo restaurant")
    print(f"   Restaurant: {restaurant_id}")
    for number, table_id in tables:
        print(f"   Table {number}: {table_id}")
    print("=" * 60)
    print(f"python scripts/simulate.py --restaurant {restaurant_id} --table {tables[0][1]}")


if __name__ == "__main__":
    setup_logging()
    asyncio.run(seed())
