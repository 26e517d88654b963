"""
Order Aggregate Builder

Turns a validated order request into an Order with its OrderItems:

    1. resolve every line's price (any failure aborts the whole order)
    2. subtotal = unit price × quantity, total = Σ subtotals (Decimal, cents)
    3. pick an unused human-readable order number
    4. estimate preparation time from the kitchen snapshot and the slowest line
    5. add order + items to the caller's transaction

Nothing is committed here. The caller's transaction makes the insert atomic.
"""

import logging
import math
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Iterable, Optional, Union

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import exists, select
from sqlalchemy.ext.asyncio import AsyncSession

from dinenow.core.clock import Clock, utcnow
from dinenow.core.config import Settings
from dinenow.core.exceptions import (
    ConflictError,
    NotFoundError,
    UnavailableError,
    ValidationError,
)
from dinenow.models import Order, OrderItem, OrderStatus, Restaurant, SpiceLevel, Table
from dinenow.schemas import CustomerRef, OrderCreate, OrderItemCreate
from dinenow.services.kitchen import KitchenLoadEstimator
from dinenow.services.pricing import MONEY, ResolvedPrice, resolve_variant_price

logger = logging.getLogger(__name__)

# Extra time per additional portion of the same dish, as a share of its base time
EXTRA_PORTION_FACTOR = Decimal("0.3")


@dataclass(frozen=True)
class PricedLine:
    request: OrderItemCreate
    price: ResolvedPrice
    subtotal: Decimal
    preparation_minutes: int


# =============================================================================
# PURE HELPERS
# =============================================================================

def calculate_subtotal(unit_price: Decimal, quantity: int) -> Decimal:
    return (Decimal(unit_price) * quantity).quantize(MONEY)


def calculate_total(subtotals: Iterable[Decimal]) -> Decimal:
    return sum(subtotals, Decimal("0.00")).quantize(MONEY)


def line_preparation_minutes(base_minutes: int, quantity: int) -> int:
    """Base time for the first portion plus a share of it for each extra portion."""
    per_extra = math.ceil(base_minutes * EXTRA_PORTION_FACTOR)
    return base_minutes + (quantity - 1) * per_extra


def generate_order_number(now: Optional[datetime] = None) -> str:
    """ORD-YYYYMMDD-NNNNNN with a random six digit suffix."""
    now = now or utcnow()
    return f"ORD-{now:%Y%m%d}-{secrets.randbelow(1_000_000):06d}"


def build_order_request(
    table_id: Union[uuid.UUID, str],
    customer: Union[CustomerRef, dict[str, Any]],
    items: Iterable[Union[OrderItemCreate, dict[str, Any]]],
    notes: Optional[str] = None,
) -> OrderCreate:
    """
    Validate raw order input into an OrderCreate.

    Raises:
        ValidationError: malformed input (nothing has been read or written yet)
    """
    try:
        return OrderCreate.model_validate(
            {
                "table_id": table_id,
                "customer": customer,
                "items": list(items),
                "notes": notes,
            }
        )
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic("Invalid order request", e) from e


# =============================================================================
# BUILDER
# =============================================================================

class OrderBuilder:
    """
    Builds and stages a new order inside an open transaction.

    Example:
        >>> builder = OrderBuilder(settings, estimator)
        >>> async with database.transaction() as session:
        ...     order = await builder.build(session, request)
    """

    def __init__(
        self,
        settings: Settings,
        estimator: KitchenLoadEstimator,
        clock: Clock = utcnow,
    ):
        self.settings = settings
        self.estimator = estimator
        self.clock = clock

    def validate_limits(self, request: OrderCreate) -> None:
        """Reject requests outside the configured order limits."""
        if len(request.items) > self.settings.max_items_per_order:
            raise ValidationError(
                f"Cannot order more than {self.settings.max_items_per_order} items",
                {"items": len(request.items)},
            )
        for index, line in enumerate(request.items):
            if line.quantity > self.settings.max_quantity_per_item:
                raise ValidationError(
                    f"Quantity too high (max {self.settings.max_quantity_per_item})",
                    {"line": index, "quantity": line.quantity},
                )

    async def _resolve_table(self, session: AsyncSession, table_id: uuid.UUID) -> Table:
        table = await session.get(Table, table_id)
        if table is None:
            raise NotFoundError(f"Table {table_id} not found", {"table_id": str(table_id)})
        if not table.is_active:
            raise UnavailableError(f"Table {table.number} is not active", {"table_id": str(table_id)})

        restaurant = await session.get(Restaurant, table.restaurant_id)
        if restaurant is None or not restaurant.is_active:
            raise UnavailableError(
                "Restaurant is not accepting orders",
                {"restaurant_id": str(table.restaurant_id)},
            )
        return table

    async def _price_lines(
        self,
        session: AsyncSession,
        request: OrderCreate,
        restaurant_id: uuid.UUID,
    ) -> list[PricedLine]:
        lines = []
        for line in request.items:
            price = await resolve_variant_price(session, line.menu_item_id, line.variant_id)
            if price.restaurant_id != restaurant_id:
                raise ValidationError(
                    f"Menu item {line.menu_item_id} is not served at this table's restaurant",
                    {"menu_item_id": str(line.menu_item_id)},
                )
            lines.append(
                PricedLine(
                    request=line,
                    price=price,
                    subtotal=calculate_subtotal(price.price, line.quantity),
                    preparation_minutes=line_preparation_minutes(
                        price.preparation_minutes, line.quantity
                    ),
                )
            )
        return lines

    async def _unused_order_number(self, session: AsyncSession, now: datetime) -> str:
        for _ in range(self.settings.order_number_max_attempts):
            candidate = generate_order_number(now)
            taken = await session.scalar(
                select(exists().where(Order.order_number == candidate))
            )
            if not taken:
                return candidate
            logger.debug(f"Order number {candidate} already taken, drawing another")
        raise ConflictError("Could not allocate a unique order number")

    async def estimate_preparation_minutes(
        self,
        session: AsyncSession,
        restaurant_id: uuid.UUID,
        lines: list[PricedLine],
    ) -> int:
        """Queue delay from the kitchen snapshot plus the slowest line."""
        snapshot = await self.estimator.peek(session, restaurant_id)
        slowest = max(line.preparation_minutes for line in lines)
        return self.estimator.queue_delay(
            snapshot.current_orders, snapshot.average_preparation_time
        ) + slowest

    async def build(self, session: AsyncSession, request: OrderCreate) -> Order:
        """
        Validate, price and stage the order and its items.

        Raises:
            ValidationError: limits exceeded or item from another restaurant
            NotFoundError: table, menu item or variant missing
            UnavailableError: table, restaurant, item or variant unavailable
            ConflictError: no free order number could be drawn
        """
        self.validate_limits(request)
        now = self.clock()

        table = await self._resolve_table(session, request.table_id)
        lines = await self._price_lines(session, request, table.restaurant_id)
        total = calculate_total(line.subtotal for line in lines)
        estimate = await self.estimate_preparation_minutes(session, table.restaurant_id, lines)
        order_number = await self._unused_order_number(session, now)

        order = Order(
            customer_telegram_id=request.customer.telegram_id,
            customer_name=request.customer.name,
            restaurant_id=table.restaurant_id,
            table_id=table.id,
            order_number=order_number,
            status=OrderStatus.PENDING,
            total_amount=total,
            estimated_preparation_minutes=estimate,
            notes=request.notes,
            created_at=now,
            updated_at=now,
        )
        order.items = [
            OrderItem(
                menu_item_id=line.price.menu_item_id,
                variant_id=line.price.variant_id,
                position=position,
                quantity=line.request.quantity,
                spice_level=line.request.spice_level or SpiceLevel.NONE,
                notes=line.request.notes,
                unit_price=line.price.price,
                subtotal=line.subtotal,
            )
            for position, line in enumerate(lines)
        ]
        session.add(order)
        await session.flush()

        logger.info(
            f"Order {order_number} staged: {len(lines)} lines, "
            f"total {total}, estimate {estimate} min"
        )
        return order
