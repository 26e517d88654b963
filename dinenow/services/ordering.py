"""
Ordering Service

Single entry point for everything the HTTP layer (or a bot, or a script)
can do with orders, menus and kitchen load. Each method runs in exactly
one transaction and returns pydantic responses built before it closes.

Usage:
    database = Database.from_settings(settings)
    service = OrderingService(database, settings)
    order = await service.create_order(table_id, customer, items)
"""

import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

from dinenow.core.clock import Clock, ensure_utc, utcnow
from dinenow.core.config import RecomputeMode, Settings
from dinenow.core.exceptions import ConflictError, NotFoundError, StorageError
from dinenow.database import Database
from dinenow.models import ItemSize, OrderStatus, Restaurant
from dinenow.schemas import (
    CustomerRef,
    KitchenLoadResponse,
    KitchenStatusResponse,
    MenuItemCreate,
    MenuItemResponse,
    MenuItemStateResponse,
    OrderItemCreate,
    OrderResponse,
    OrderStatsResponse,
    OrderWithItemsResponse,
    PopularVariantResponse,
    RestaurantAnalyticsResponse,
    RestaurantMenuResponse,
    VariantPriceResponse,
    VariantResponse,
)
from dinenow.services import menu, projections
from dinenow.services.kitchen import KitchenLoadEstimator, KitchenSnapshot
from dinenow.services.orders import OrderBuilder, build_order_request
from dinenow.services.pricing import resolve_variant_price
from dinenow.services.status import transition_order

logger = logging.getLogger(__name__)

POPULAR_VARIANTS_LIMIT = 10


def queue_kitchen_recompute(restaurant_id: uuid.UUID) -> None:
    # Imported here so the worker module is only loaded when it is used
    from dinenow.tasks import recompute_kitchen_load

    recompute_kitchen_load.delay(str(restaurant_id))


class OrderingService:
    """
    Facade over the ordering core.

    Attributes:
        database: Transaction provider
        settings: Business limits and kitchen tuning
        clock: Source of "now" (injectable for tests)
        estimator: Kitchen load estimator shared by builder and recomputes
    """

    def __init__(
        self,
        database: Database,
        settings: Settings,
        clock: Clock = utcnow,
        estimator: Optional[KitchenLoadEstimator] = None,
    ):
        self.database = database
        self.settings = settings
        self.clock = clock
        self.estimator = estimator or KitchenLoadEstimator(settings, clock)
        self.builder = OrderBuilder(settings, self.estimator, clock)

    # =========================================================================
    # ORDERS
    # =========================================================================

    async def create_order(
        self,
        table_id: Union[uuid.UUID, str],
        customer: Union[CustomerRef, dict[str, Any]],
        items: Iterable[Union[OrderItemCreate, dict[str, Any]]],
        notes: Optional[str] = None,
    ) -> OrderWithItemsResponse:
        """
        Place an order atomically.

        Either the order and all of its items are stored or nothing is.
        An order number collision retries the whole transaction.
        """
        request = build_order_request(table_id, customer, items, notes)

        attempts = self.settings.order_number_max_attempts
        for attempt in range(1, attempts + 1):
            try:
                async with self.database.transaction() as session:
                    order = await self.builder.build(session, request)
                    created = await projections.get_order_with_items(session, order.id)
                break
            except ConflictError:
                if attempt == attempts:
                    logger.error(f"Order for table {request.table_id} still conflicting after {attempts} attempts")
                    raise
                logger.warning(f"Order write conflicted, retrying ({attempt}/{attempts})")

        logger.info(f"✅ Order {created.order_number} created, total {created.total_amount}")
        await self._refresh_kitchen_load(created.restaurant_id)
        return created

    async def transition_order_status(
        self,
        order_id: uuid.UUID,
        status: Union[str, OrderStatus],
        notes: Optional[str] = None,
    ) -> OrderResponse:
        async with self.database.transaction() as session:
            order = await transition_order(session, order_id, status, self.clock(), notes)
            updated = await projections.get_order_summary(session, order.id)

        await self._refresh_kitchen_load(updated.restaurant_id)
        return updated

    async def get_order(self, order_id: uuid.UUID) -> OrderWithItemsResponse:
        async with self.database.transaction() as session:
            return await projections.get_order_with_items(session, order_id)

    async def list_orders(
        self,
        restaurant_id: uuid.UUID,
        statuses: Optional[Iterable[Union[str, OrderStatus]]] = None,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[OrderResponse]:
        window = projections.resolve_page(page, limit, self.settings)
        async with self.database.transaction() as session:
            return await projections.list_restaurant_orders(session, restaurant_id, window, statuses)

    async def list_customer_orders(
        self,
        telegram_id: int,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[OrderResponse]:
        window = projections.resolve_page(page, limit, self.settings)
        async with self.database.transaction() as session:
            return await projections.list_customer_orders(session, telegram_id, window)

    async def get_active_kitchen_orders(self, restaurant_id: uuid.UUID) -> list[OrderWithItemsResponse]:
        async with self.database.transaction() as session:
            return await projections.get_active_kitchen_orders(session, restaurant_id)

    # =========================================================================
    # KITCHEN LOAD
    # =========================================================================

    def _kitchen_response(self, snapshot: KitchenSnapshot) -> KitchenLoadResponse:
        return KitchenLoadResponse(
            restaurant_id=snapshot.restaurant_id,
            current_orders=snapshot.current_orders,
            average_preparation_time=snapshot.average_preparation_time,
            last_updated=snapshot.last_updated,
            load_level=self.estimator.load_level(snapshot),
        )

    async def _require_restaurant(self, session, restaurant_id: uuid.UUID) -> None:
        if await session.get(Restaurant, restaurant_id) is None:
            raise NotFoundError(
                f"Restaurant {restaurant_id} not found",
                {"restaurant_id": str(restaurant_id)},
            )

    async def get_kitchen_load(self, restaurant_id: uuid.UUID) -> KitchenLoadResponse:
        """Cached kitchen load; computed on the spot for a restaurant without one."""
        async with self.database.transaction() as session:
            await self._require_restaurant(session, restaurant_id)
            snapshot = await self.estimator.get(session, restaurant_id)
        return self._kitchen_response(snapshot)

    async def recompute_kitchen_load(self, restaurant_id: uuid.UUID) -> KitchenLoadResponse:
        async with self.database.transaction() as session:
            await self._require_restaurant(session, restaurant_id)
            snapshot = await self.estimator.recompute(session, restaurant_id)
        return self._kitchen_response(snapshot)

    async def get_kitchen_status(self, restaurant_id: uuid.UUID) -> KitchenStatusResponse:
        async with self.database.transaction() as session:
            await self._require_restaurant(session, restaurant_id)
            return await projections.get_kitchen_status(session, restaurant_id, self.estimator)

    async def _refresh_kitchen_load(self, restaurant_id: uuid.UUID) -> None:
        """
        Bring the snapshot up to date after an order changed.

        Runs after the order's own commit; a failure here is logged and
        never undoes or fails the order.
        """
        if self.settings.kitchen_recompute_mode == RecomputeMode.CELERY:
            try:
                queue_kitchen_recompute(restaurant_id)
            except Exception as e:
                logger.warning(f"⚠️ Could not queue kitchen load refresh for {restaurant_id}: {e}")
            return

        try:
            async with self.database.transaction() as session:
                await self.estimator.recompute(session, restaurant_id)
        except (StorageError, ConflictError) as e:
            logger.warning(f"⚠️ Kitchen load refresh failed for {restaurant_id}: {e}")

    # =========================================================================
    # ANALYTICS
    # =========================================================================

    def _popular_limit(self, limit: Optional[int]) -> int:
        return projections.resolve_page(1, limit or POPULAR_VARIANTS_LIMIT, self.settings).limit

    async def get_order_stats(
        self, restaurant_id: uuid.UUID, date_from: datetime, date_to: datetime
    ) -> OrderStatsResponse:
        async with self.database.transaction() as session:
            await self._require_restaurant(session, restaurant_id)
            return await projections.order_stats(
                session, restaurant_id, ensure_utc(date_from), ensure_utc(date_to)
            )

    async def get_popular_variants(
        self,
        restaurant_id: uuid.UUID,
        date_from: datetime,
        date_to: datetime,
        limit: Optional[int] = None,
    ) -> list[PopularVariantResponse]:
        top = self._popular_limit(limit)
        async with self.database.transaction() as session:
            await self._require_restaurant(session, restaurant_id)
            return await projections.popular_variants(
                session, restaurant_id, ensure_utc(date_from), ensure_utc(date_to), top
            )

    async def get_restaurant_analytics(
        self,
        restaurant_id: uuid.UUID,
        date_from: datetime,
        date_to: datetime,
        limit: Optional[int] = None,
    ) -> RestaurantAnalyticsResponse:
        """Order stats and best sellers for one period, read in one transaction."""
        top = self._popular_limit(limit)
        date_from, date_to = ensure_utc(date_from), ensure_utc(date_to)
        async with self.database.transaction() as session:
            await self._require_restaurant(session, restaurant_id)
            stats = await projections.order_stats(session, restaurant_id, date_from, date_to)
            popular = await projections.popular_variants(
                session, restaurant_id, date_from, date_to, top
            )
        return RestaurantAnalyticsResponse(stats=stats, popular_variants=popular)

    # =========================================================================
    # MENU
    # =========================================================================

    async def resolve_variant_price(
        self, menu_item_id: uuid.UUID, variant_id: uuid.UUID
    ) -> VariantPriceResponse:
        async with self.database.transaction() as session:
            resolved = await resolve_variant_price(session, menu_item_id, variant_id)
        return VariantPriceResponse(
            menu_item_id=resolved.menu_item_id,
            variant_id=resolved.variant_id,
            size=resolved.size,
            price=resolved.price,
        )

    async def get_restaurant_menu(self, restaurant_id: uuid.UUID) -> RestaurantMenuResponse:
        async with self.database.transaction() as session:
            return await projections.get_restaurant_menu(session, restaurant_id)

    async def search_menu_items(
        self,
        restaurant_id: uuid.UUID,
        category_id: Optional[uuid.UUID] = None,
        search: Optional[str] = None,
        size: Optional[ItemSize] = None,
        min_price: Optional[Decimal] = None,
        max_price: Optional[Decimal] = None,
        available_only: bool = True,
        page: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[MenuItemResponse]:
        window = projections.resolve_page(page, limit, self.settings)
        async with self.database.transaction() as session:
            return await projections.search_menu_items(
                session,
                restaurant_id,
                window,
                category_id=category_id,
                search=search,
                size=size,
                min_price=min_price,
                max_price=max_price,
                available_only=available_only,
            )

    async def set_default_variant(
        self, menu_item_id: uuid.UUID, variant_id: uuid.UUID
    ) -> VariantResponse:
        async with self.database.transaction() as session:
            return await menu.set_default_variant(session, menu_item_id, variant_id, self.clock())

    async def toggle_menu_item_availability(
        self, menu_item_id: uuid.UUID, variant_id: Optional[uuid.UUID] = None
    ) -> MenuItemStateResponse:
        async with self.database.transaction() as session:
            return await menu.toggle_menu_item_availability(
                session, menu_item_id, self.clock(), variant_id
            )

    async def toggle_menu_item_active(self, menu_item_id: uuid.UUID) -> MenuItemStateResponse:
        async with self.database.transaction() as session:
            return await menu.toggle_menu_item_active(session, menu_item_id, self.clock())

    async def register_menu_item(
        self, data: Union[MenuItemCreate, dict[str, Any]]
    ) -> MenuItemResponse:
        if not isinstance(data, MenuItemCreate):
            data = menu.parse_menu_item(data)
        async with self.database.transaction() as session:
            return await menu.register_menu_item(session, data, self.clock())
