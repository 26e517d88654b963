"""
Pricing & Variant Resolver

Resolves a menu item + variant selection to the variant's current price.
Called once per order line while the order is being built; the price is
copied onto the order item and never looked up again.
"""

import uuid
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dinenow.core.exceptions import NotFoundError, UnavailableError
from dinenow.models import MenuItem, MenuItemVariant

MONEY = Decimal("0.01")


@dataclass(frozen=True)
class ResolvedPrice:
    """
    Price and kitchen metadata for one orderable variant.

    Attributes:
        menu_item_id: The resolved menu item
        variant_id: The resolved variant
        restaurant_id: Owner of the menu item
        price: Unit price, quantized to cents
        preparation_minutes: Base preparation time of the menu item
    """
    menu_item_id: uuid.UUID
    variant_id: uuid.UUID
    restaurant_id: uuid.UUID
    size: str
    price: Decimal
    preparation_minutes: int


async def resolve_variant_price(
    session: AsyncSession,
    menu_item_id: uuid.UUID,
    variant_id: uuid.UUID,
) -> ResolvedPrice:
    """
    Look up a variant's price and confirm it can be ordered.

    Args:
        session: Open session (read only)
        menu_item_id: Menu item the caller selected
        variant_id: Variant the caller selected

    Returns:
        ResolvedPrice for the pair

    Raises:
        NotFoundError: item or variant missing, or variant belongs to another item
        UnavailableError: item inactive/unavailable or variant unavailable
    """
    item = await session.get(MenuItem, menu_item_id)
    if item is None:
        raise NotFoundError(
            f"Menu item {menu_item_id} not found",
            {"menu_item_id": str(menu_item_id)},
        )

    result = await session.execute(
        select(MenuItemVariant).where(MenuItemVariant.id == variant_id)
    )
    variant = result.scalar_one_or_none()
    if variant is None or variant.menu_item_id != item.id:
        raise NotFoundError(
            f"Variant {variant_id} not found for menu item {menu_item_id}",
            {"menu_item_id": str(menu_item_id), "variant_id": str(variant_id)},
        )

    if not item.is_active or not item.is_available:
        raise UnavailableError(
            f"Menu item {item.name} is not available",
            {"menu_item_id": str(item.id)},
        )
    if not variant.is_available:
        raise UnavailableError(
            f"Menu item variant {variant_id} is not available",
            {"menu_item_id": str(item.id), "variant_id": str(variant.id)},
        )

    return ResolvedPrice(
        menu_item_id=item.id,
        variant_id=variant.id,
        restaurant_id=item.restaurant_id,
        size=variant.size.value,
        price=Decimal(str(variant.price)).quantize(MONEY),
        preparation_minutes=item.preparation_time_minutes,
    )
