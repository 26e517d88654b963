"""
Read Projections

Order, menu, kitchen status and sales views for the HTTP layer. Entity
queries eager-load the relationships the response model touches, so nothing
is lazily fetched once the response is being serialized. Sales figures are
aggregated in SQL and summed as Decimal.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Optional, Union

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from dinenow.core.config import Settings
from dinenow.core.exceptions import NotFoundError, ValidationError
from dinenow.models import (
    ACCEPTED_ORDER_STATUSES,
    ACTIVE_ORDER_STATUSES,
    ItemSize,
    MenuCategory,
    MenuItem,
    MenuItemVariant,
    Order,
    OrderItem,
    OrderStatus,
    Restaurant,
)
from dinenow.schemas import (
    KitchenStatusResponse,
    MenuCategoryResponse,
    MenuItemResponse,
    OrderResponse,
    OrderStatsResponse,
    OrderWithItemsResponse,
    PopularVariantResponse,
    RestaurantMenuResponse,
    RestaurantSummary,
)
from dinenow.services.filters import (
    AtLeast,
    AtMost,
    Before,
    Contains,
    Equals,
    Predicate,
    in_set,
    to_clauses,
)
from dinenow.services.kitchen import KitchenLoadEstimator
from dinenow.services.pricing import MONEY
from dinenow.services.status import coerce_status

ORDER_OPTIONS = (selectinload(Order.table),)

ORDER_WITH_ITEMS_OPTIONS = (
    selectinload(Order.table),
    selectinload(Order.restaurant),
    selectinload(Order.items).selectinload(OrderItem.menu_item),
    selectinload(Order.items).selectinload(OrderItem.variant),
)


@dataclass(frozen=True)
class Page:
    page: int
    limit: int

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def resolve_page(page: Optional[int], limit: Optional[int], settings: Settings) -> Page:
    """
    Normalize paging input.

    page must be 1 or greater. limit falls back to the configured default
    and is silently capped at the configured maximum.
    """
    page = 1 if page is None else page
    if page < 1:
        raise ValidationError("page must be 1 or greater", {"page": page})

    if limit is None:
        limit = settings.default_page_size
    if limit < 1:
        raise ValidationError("limit must be 1 or greater", {"limit": limit})
    return Page(page=page, limit=min(limit, settings.max_page_size))


# =============================================================================
# ORDERS
# =============================================================================

async def load_order(
    session: AsyncSession, order_id: uuid.UUID, with_items: bool = True
) -> Optional[Order]:
    options = ORDER_WITH_ITEMS_OPTIONS if with_items else ORDER_OPTIONS
    result = await session.execute(
        select(Order)
        .where(Order.id == order_id)
        .options(*options)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_order_with_items(session: AsyncSession, order_id: uuid.UUID) -> OrderWithItemsResponse:
    """Order with table, restaurant and items (in the order they were placed)."""
    order = await load_order(session, order_id)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", {"order_id": str(order_id)})
    return OrderWithItemsResponse.model_validate(order)


async def get_order_summary(session: AsyncSession, order_id: uuid.UUID) -> OrderResponse:
    order = await load_order(session, order_id, with_items=False)
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", {"order_id": str(order_id)})
    return OrderResponse.model_validate(order)


async def _list_orders(
    session: AsyncSession, predicates: list[Predicate], page: Page
) -> list[OrderResponse]:
    result = await session.execute(
        select(Order)
        .where(*to_clauses(predicates))
        .options(*ORDER_OPTIONS)
        .order_by(Order.created_at.desc(), Order.order_number.desc())
        .offset(page.offset)
        .limit(page.limit)
    )
    return [OrderResponse.model_validate(order) for order in result.scalars().all()]


async def list_restaurant_orders(
    session: AsyncSession,
    restaurant_id: uuid.UUID,
    page: Page,
    statuses: Optional[Iterable[Union[str, OrderStatus]]] = None,
) -> list[OrderResponse]:
    """A restaurant's orders, newest first, optionally narrowed to some statuses."""
    predicates: list[Predicate] = [Equals(Order.restaurant_id, restaurant_id)]
    if statuses:
        predicates.append(in_set(Order.status, (coerce_status(s) for s in statuses)))
    return await _list_orders(session, predicates, page)


async def list_customer_orders(
    session: AsyncSession, telegram_id: int, page: Page
) -> list[OrderResponse]:
    """Order history for one customer, newest first."""
    return await _list_orders(session, [Equals(Order.customer_telegram_id, telegram_id)], page)


async def get_active_kitchen_orders(
    session: AsyncSession, restaurant_id: uuid.UUID
) -> list[OrderWithItemsResponse]:
    """Orders the kitchen still has to work on, oldest first."""
    predicates = [
        Equals(Order.restaurant_id, restaurant_id),
        in_set(Order.status, ACTIVE_ORDER_STATUSES),
    ]
    result = await session.execute(
        select(Order)
        .where(*to_clauses(predicates))
        .options(*ORDER_WITH_ITEMS_OPTIONS)
        .order_by(Order.created_at.asc(), Order.order_number.asc())
    )
    return [OrderWithItemsResponse.model_validate(order) for order in result.scalars().all()]


# =============================================================================
# MENU
# =============================================================================

async def get_restaurant_menu(
    session: AsyncSession, restaurant_id: uuid.UUID
) -> RestaurantMenuResponse:
    """
    Active categories with their orderable items and available variants,
    each level in sort order.
    """
    restaurant = await session.get(Restaurant, restaurant_id)
    if restaurant is None:
        raise NotFoundError(f"Restaurant {restaurant_id} not found", {"restaurant_id": str(restaurant_id)})

    categories_result = await session.execute(
        select(MenuCategory)
        .where(MenuCategory.restaurant_id == restaurant_id, MenuCategory.is_active.is_(True))
        .order_by(MenuCategory.sort_order, MenuCategory.name)
    )
    categories = categories_result.scalars().all()

    items_result = await session.execute(
        select(MenuItem)
        .where(
            MenuItem.restaurant_id == restaurant_id,
            MenuItem.is_active.is_(True),
            MenuItem.is_available.is_(True),
        )
        .options(selectinload(MenuItem.variants.and_(MenuItemVariant.is_available.is_(True))))
        .order_by(MenuItem.sort_order, MenuItem.name)
        .execution_options(populate_existing=True)
    )
    items_by_category: dict[uuid.UUID, list[MenuItemResponse]] = {}
    for item in items_result.scalars().all():
        items_by_category.setdefault(item.category_id, []).append(
            MenuItemResponse.model_validate(item)
        )

    return RestaurantMenuResponse(
        restaurant=RestaurantSummary.model_validate(restaurant),
        categories=[
            MenuCategoryResponse(
                id=category.id,
                name=category.name,
                name_kh=category.name_kh,
                description=category.description,
                description_kh=category.description_kh,
                sort_order=category.sort_order,
                items=items_by_category.get(category.id, []),
            )
            for category in categories
        ],
    )


async def search_menu_items(
    session: AsyncSession,
    restaurant_id: uuid.UUID,
    page: Page,
    category_id: Optional[uuid.UUID] = None,
    search: Optional[str] = None,
    size: Optional[ItemSize] = None,
    min_price: Optional[Decimal] = None,
    max_price: Optional[Decimal] = None,
    available_only: bool = True,
) -> list[MenuItemResponse]:
    """
    Filter a restaurant's active menu items in active categories.

    Variant filters (size, price range) narrow both which items match and
    which of their variants are returned.
    """
    item_predicates: list[Predicate] = [
        Equals(MenuItem.restaurant_id, restaurant_id),
        Equals(MenuItem.is_active, True),
    ]
    if available_only:
        item_predicates.append(Equals(MenuItem.is_available, True))
    if category_id is not None:
        item_predicates.append(Equals(MenuItem.category_id, category_id))
    if search and search.strip():
        item_predicates.append(Contains((MenuItem.name, MenuItem.name_kh), search.strip()))

    variant_predicates: list[Predicate] = [Equals(MenuItemVariant.is_available, True)]
    if size is not None:
        variant_predicates.append(Equals(MenuItemVariant.size, size))
    if min_price is not None:
        variant_predicates.append(AtLeast(MenuItemVariant.price, min_price))
    if max_price is not None:
        variant_predicates.append(AtMost(MenuItemVariant.price, max_price))
    variant_clause = and_(*to_clauses(variant_predicates))

    result = await session.execute(
        select(MenuItem)
        .where(
            *to_clauses(item_predicates),
            MenuItem.category.has(MenuCategory.is_active.is_(True)),
            MenuItem.variants.any(variant_clause),
        )
        .options(selectinload(MenuItem.variants.and_(variant_clause)))
        .order_by(MenuItem.sort_order, MenuItem.name)
        .offset(page.offset)
        .limit(page.limit)
        .execution_options(populate_existing=True)
    )
    return [MenuItemResponse.model_validate(item) for item in result.scalars().all()]


# =============================================================================
# KITCHEN STATUS
# =============================================================================

async def get_kitchen_status(
    session: AsyncSession, restaurant_id: uuid.UUID, estimator: KitchenLoadEstimator
) -> KitchenStatusResponse:
    """
    Active orders per status and the wait a customer ordering now can expect.

    Counts come from order history, not the cached snapshot.
    """
    result = await session.execute(
        select(Order.status, func.count(Order.id))
        .where(*to_clauses([
            Equals(Order.restaurant_id, restaurant_id),
            in_set(Order.status, ACTIVE_ORDER_STATUSES),
        ]))
        .group_by(Order.status)
    )
    by_status = {status: 0 for status in ACTIVE_ORDER_STATUSES}
    for status, count in result.all():
        by_status[coerce_status(status)] = count

    snapshot = await estimator.calculate(session, restaurant_id)
    cached = await estimator.read_cached(session, restaurant_id)

    wait = estimator.queue_delay(
        snapshot.current_orders, snapshot.average_preparation_time
    ) + snapshot.average_preparation_time

    return KitchenStatusResponse(
        restaurant_id=restaurant_id,
        active_orders=snapshot.current_orders,
        orders_by_status=by_status,
        average_preparation_time=snapshot.average_preparation_time,
        estimated_wait_minutes=wait,
        load_level=estimator.load_level(snapshot),
        last_updated=cached.last_updated if cached else None,
    )


# =============================================================================
# ANALYTICS
# =============================================================================

def _check_range(date_from: datetime, date_to: datetime) -> None:
    if date_to <= date_from:
        raise ValidationError(
            "date_to must be after date_from",
            {"date_from": date_from.isoformat(), "date_to": date_to.isoformat()},
        )


def _in_range(restaurant_id: uuid.UUID, date_from: datetime, date_to: datetime) -> list[Predicate]:
    return [
        Equals(Order.restaurant_id, restaurant_id),
        AtLeast(Order.created_at, date_from),
        Before(Order.created_at, date_to),
    ]


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(MONEY, rounding=ROUND_HALF_UP)


async def order_stats(
    session: AsyncSession,
    restaurant_id: uuid.UUID,
    date_from: datetime,
    date_to: datetime,
) -> OrderStatsResponse:
    """
    Order count, revenue and average order value for orders placed in
    [date_from, date_to). Cancelled orders are counted but earn nothing.
    """
    _check_range(date_from, date_to)

    result = await session.execute(
        select(Order.status, func.count(Order.id), func.sum(Order.total_amount))
        .where(*to_clauses(_in_range(restaurant_id, date_from, date_to)))
        .group_by(Order.status)
    )

    total_orders = cancelled = 0
    revenue = Decimal("0.00")
    for status, count, amount in result.all():
        total_orders += count
        if coerce_status(status) == OrderStatus.CANCELLED:
            cancelled = count
        else:
            revenue += _money(amount)

    billed = total_orders - cancelled
    average = _money(revenue / billed) if billed else Decimal("0.00")

    return OrderStatsResponse(
        restaurant_id=restaurant_id,
        date_from=date_from,
        date_to=date_to,
        total_orders=total_orders,
        cancelled_orders=cancelled,
        total_revenue=revenue.quantize(MONEY),
        average_order_value=average,
    )


async def popular_variants(
    session: AsyncSession,
    restaurant_id: uuid.UUID,
    date_from: datetime,
    date_to: datetime,
    limit: int,
) -> list[PopularVariantResponse]:
    """Best-selling item/variant pairs by quantity among accepted orders."""
    _check_range(date_from, date_to)

    quantity = func.sum(OrderItem.quantity).label("total_quantity")
    predicates = _in_range(restaurant_id, date_from, date_to)
    predicates.append(in_set(Order.status, ACCEPTED_ORDER_STATUSES))

    result = await session.execute(
        select(
            OrderItem.menu_item_id,
            OrderItem.variant_id,
            MenuItem.name,
            MenuItemVariant.size,
            quantity,
            func.sum(OrderItem.subtotal),
            func.count(OrderItem.order_id.distinct()),
        )
        .join(Order, OrderItem.order_id == Order.id)
        .join(MenuItem, OrderItem.menu_item_id == MenuItem.id)
        .join(MenuItemVariant, OrderItem.variant_id == MenuItemVariant.id)
        .where(*to_clauses(predicates))
        .group_by(
            OrderItem.menu_item_id,
            OrderItem.variant_id,
            MenuItem.name,
            MenuItemVariant.size,
            MenuItemVariant.sort_order,
        )
        .order_by(quantity.desc(), MenuItem.name, MenuItemVariant.sort_order)
        .limit(limit)
    )
    return [
        PopularVariantResponse(
            menu_item_id=menu_item_id,
            variant_id=variant_id,
            name=name,
            size=size,
            total_quantity=total_quantity,
            total_revenue=_money(revenue),
            order_count=order_count,
        )
        for menu_item_id, variant_id, name, size, total_quantity, revenue, order_count in result.all()
    ]
