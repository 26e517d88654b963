from decimal import Decimal
import uuid

import pytest

from dinenow.core.exceptions import NotFoundError, UnavailableError
from dinenow.models import ItemSize


async def test_resolves_current_variant_price(service, menu):
    price = await service.resolve_variant_price(menu.amok_id, menu.amok_large_id)
    assert price.size == ItemSize.LARGE
    assert price.price == Decimal("10.50")


async def test_missing_item(service, menu):
    with pytest.raises(NotFoundError):
        await service.resolve_variant_price(uuid.uuid4(), menu.amok_large_id)


async def test_missing_variant(service, menu):
    with pytest.raises(NotFoundError):
        await service.resolve_variant_price(menu.amok_id, uuid.uuid4())


async def test_variant_of_another_item_is_not_found(service, menu):
    with pytest.raises(NotFoundError):
        await service.resolve_variant_price(menu.amok_id, menu.coffee_small_id)


async def test_unavailable_variant(service, menu):
    with pytest.raises(UnavailableError):
        await service.resolve_variant_price(menu.coffee_id, menu.coffee_large_id)


async def test_unavailable_item(service, menu):
    with pytest.raises(UnavailableError):
        await service.resolve_variant_price(menu.soldout_id, menu.soldout_variant_id)


async def test_retired_item(service, menu):
    await service.toggle_menu_item_active(menu.amok_id)
    with pytest.raises(UnavailableError):
        await service.resolve_variant_price(menu.amok_id, menu.amok_small_id)
