"""
Menu Maintenance

Operations staff use these to keep the menu orderable: pick the default
variant, flip availability, retire items and register new dishes.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dinenow.core.exceptions import NotFoundError, ValidationError
from dinenow.models import MenuCategory, MenuItem, MenuItemVariant
from dinenow.schemas import MenuItemCreate, MenuItemResponse, MenuItemStateResponse, VariantResponse

logger = logging.getLogger(__name__)


def parse_menu_item(data: dict[str, Any]) -> MenuItemCreate:
    try:
        return MenuItemCreate.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic("Invalid menu item", e) from e


async def _lock_menu_item(session: AsyncSession, menu_item_id: uuid.UUID) -> MenuItem:
    result = await session.execute(
        select(MenuItem)
        .where(MenuItem.id == menu_item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    item = result.scalar_one_or_none()
    if item is None:
        raise NotFoundError(f"Menu item {menu_item_id} not found", {"menu_item_id": str(menu_item_id)})
    return item


async def _variant_of(
    session: AsyncSession, menu_item_id: uuid.UUID, variant_id: uuid.UUID
) -> MenuItemVariant:
    result = await session.execute(
        select(MenuItemVariant)
        .where(MenuItemVariant.id == variant_id, MenuItemVariant.menu_item_id == menu_item_id)
        .execution_options(populate_existing=True)
    )
    variant = result.scalar_one_or_none()
    if variant is None:
        raise NotFoundError(
            f"Variant {variant_id} not found for menu item {menu_item_id}",
            {"menu_item_id": str(menu_item_id), "variant_id": str(variant_id)},
        )
    return variant


async def set_default_variant(
    session: AsyncSession,
    menu_item_id: uuid.UUID,
    variant_id: uuid.UUID,
    now: datetime,
) -> VariantResponse:
    """
    Make one variant the item's default and clear the flag on its siblings.

    The parent row is locked first so two concurrent calls for the same
    item run one after the other and exactly one default remains.
    """
    await _lock_menu_item(session, menu_item_id)
    await _variant_of(session, menu_item_id, variant_id)

    # Clear first: the partial unique index allows one default per item
    await session.execute(
        update(MenuItemVariant)
        .where(
            MenuItemVariant.menu_item_id == menu_item_id,
            MenuItemVariant.is_default.is_(True),
        )
        .values(is_default=False, updated_at=now)
    )
    await session.execute(
        update(MenuItemVariant)
        .where(MenuItemVariant.id == variant_id)
        .values(is_default=True, updated_at=now)
    )

    variant = await _variant_of(session, menu_item_id, variant_id)
    logger.info(f"Default variant of {menu_item_id} is now {variant.size.value}")
    return VariantResponse.model_validate(variant)


async def toggle_menu_item_availability(
    session: AsyncSession,
    menu_item_id: uuid.UUID,
    now: datetime,
    variant_id: Optional[uuid.UUID] = None,
) -> MenuItemStateResponse:
    """Flip availability of the item, or of one of its variants when variant_id is given."""
    item = await _lock_menu_item(session, menu_item_id)

    if variant_id is not None:
        variant = await _variant_of(session, menu_item_id, variant_id)
        variant.is_available = not variant.is_available
        variant.updated_at = now
        await session.flush()
        logger.info(f"Variant {variant_id} available={variant.is_available}")
        return MenuItemStateResponse(
            menu_item_id=item.id,
            variant_id=variant.id,
            is_available=variant.is_available,
            is_active=item.is_active,
        )

    item.is_available = not item.is_available
    item.updated_at = now
    await session.flush()
    logger.info(f"Menu item {item.name} available={item.is_available}")
    return MenuItemStateResponse(
        menu_item_id=item.id,
        is_available=item.is_available,
        is_active=item.is_active,
    )


async def toggle_menu_item_active(
    session: AsyncSession, menu_item_id: uuid.UUID, now: datetime
) -> MenuItemStateResponse:
    """Retire or restore an item. Inactive items drop off the menu entirely."""
    item = await _lock_menu_item(session, menu_item_id)
    item.is_active = not item.is_active
    item.updated_at = now
    await session.flush()
    logger.info(f"Menu item {item.name} active={item.is_active}")
    return MenuItemStateResponse(
        menu_item_id=item.id,
        is_available=item.is_available,
        is_active=item.is_active,
    )


async def register_menu_item(
    session: AsyncSession, data: MenuItemCreate, now: datetime
) -> MenuItemResponse:
    """
    Add a menu item with its variants to an existing category.

    Raises:
        NotFoundError: category does not exist
        ValidationError: duplicate sizes or not exactly one default variant
    """
    category = await session.get(MenuCategory, data.category_id)
    if category is None:
        raise NotFoundError(
            f"Menu category {data.category_id} not found",
            {"category_id": str(data.category_id)},
        )

    sizes = [variant.size for variant in data.variants]
    if len(set(sizes)) != len(sizes):
        raise ValidationError("Each variant size may appear only once", {"sizes": [s.value for s in sizes]})

    defaults = sum(1 for variant in data.variants if variant.is_default)
    if defaults != 1:
        raise ValidationError("Exactly one variant must be the default", {"defaults": defaults})

    item = MenuItem(
        category_id=category.id,
        restaurant_id=category.restaurant_id,
        name=data.name,
        name_kh=data.name_kh,
        description=data.description,
        description_kh=data.description_kh,
        image_url=data.image_url,
        preparation_time_minutes=data.preparation_time_minutes,
        is_available=data.is_available,
        is_active=True,
        sort_order=data.sort_order,
        created_at=now,
        updated_at=now,
    )
    item.variants = [
        MenuItemVariant(
            size=variant.size,
            name=variant.name,
            name_kh=variant.name_kh,
            price=variant.price,
            is_available=variant.is_available,
            is_default=variant.is_default,
            sort_order=variant.sort_order,
            created_at=now,
            updated_at=now,
        )
        for variant in data.variants
    ]
    session.add(item)
    await session.flush()

    result = await session.execute(
        select(MenuItem)
        .where(MenuItem.id == item.id)
        .options(selectinload(MenuItem.variants))
        .execution_options(populate_existing=True)
    )
    logger.info(f"🍽️ Registered menu item {data.name} with {len(sizes)} variants")
    return MenuItemResponse.model_validate(result.scalar_one())
