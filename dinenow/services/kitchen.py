"""
Kitchen Load Estimator

Keeps one snapshot row per restaurant with the number of active orders and
the rolling average preparation time of recently served orders. The row is
a cache: it can always be rebuilt from order history, and order creation
never waits on it being fresh.
"""

import logging
import math
import uuid
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from dinenow.core.clock import Clock, ensure_utc, utcnow
from dinenow.core.config import Settings
from dinenow.core.exceptions import StorageError
from dinenow.models import ACTIVE_ORDER_STATUSES, KitchenLoad, Order, OrderStatus
from dinenow.services.filters import AtLeast, Equals, in_set, to_clauses

logger = logging.getLogger(__name__)

HIGH_LOAD = "high_load"
NORMAL_LOAD = "normal"


@dataclass(frozen=True)
class KitchenSnapshot:
    restaurant_id: uuid.UUID
    current_orders: int
    average_preparation_time: int
    last_updated: Optional[datetime] = None


class KitchenLoadEstimator:
    """
    Computes and caches kitchen load per restaurant.

    Attributes:
        settings: Window, sample cap, default average and load factor
        clock: Source of "now" for windows and last_updated stamps

    Example:
        >>> estimator = KitchenLoadEstimator(settings)
        >>> snapshot = await estimator.get(session, restaurant_id)
        >>> estimator.queue_delay(snapshot.current_orders, snapshot.average_preparation_time)
    """

    def __init__(self, settings: Settings, clock: Clock = utcnow):
        self.settings = settings
        self.clock = clock

    # =========================================================================
    # ESTIMATION
    # =========================================================================

    def queue_delay(self, current_orders: int, average_preparation_time: int) -> int:
        """Minutes of queueing ahead of a new order; grows with current_orders."""
        if current_orders <= 0:
            return 0
        factor = Decimal(str(self.settings.kitchen_load_factor))
        return math.ceil(current_orders * average_preparation_time * factor)

    def load_level(self, snapshot: KitchenSnapshot) -> str:
        if snapshot.current_orders > self.settings.high_load_threshold:
            return HIGH_LOAD
        return NORMAL_LOAD

    # =========================================================================
    # SNAPSHOT OPERATIONS
    # =========================================================================

    async def calculate(self, session: AsyncSession, restaurant_id: uuid.UUID) -> KitchenSnapshot:
        """Derive the load from order history without writing anything."""
        now = self.clock()

        active = [
            Equals(Order.restaurant_id, restaurant_id),
            in_set(Order.status, ACTIVE_ORDER_STATUSES),
        ]
        count_result = await session.execute(
            select(func.count(Order.id)).where(*to_clauses(active))
        )
        current_orders = count_result.scalar() or 0

        served = [
            Equals(Order.restaurant_id, restaurant_id),
            Equals(Order.status, OrderStatus.SERVED),
            AtLeast(Order.served_at, now - timedelta(hours=self.settings.kitchen_window_hours)),
        ]
        samples_result = await session.execute(
            select(Order.actual_preparation_minutes)
            .where(*to_clauses(served), Order.actual_preparation_minutes.is_not(None))
            .order_by(Order.served_at.desc())
            .limit(self.settings.kitchen_sample_size)
        )
        samples = [minutes for minutes in samples_result.scalars().all() if minutes is not None]

        if samples:
            mean = Decimal(sum(samples)) / len(samples)
            average = int(mean.quantize(Decimal(1), rounding=ROUND_HALF_UP))
        else:
            average = self.settings.default_preparation_minutes

        return KitchenSnapshot(
            restaurant_id=restaurant_id,
            current_orders=current_orders,
            average_preparation_time=average,
        )

    async def recompute(self, session: AsyncSession, restaurant_id: uuid.UUID) -> KitchenSnapshot:
        """
        Recalculate the load and replace the restaurant's snapshot row.

        The upsert is a single statement, so a concurrent recompute can never
        observe the row missing between a delete and an insert.
        """
        snapshot = await self.calculate(session, restaurant_id)
        snapshot = replace(snapshot, last_updated=self.clock())

        insert = _insert_for(session)
        values = {
            "current_orders": snapshot.current_orders,
            "average_preparation_time": snapshot.average_preparation_time,
            "last_updated": snapshot.last_updated,
        }
        stmt = insert(KitchenLoad).values(restaurant_id=restaurant_id, **values)
        stmt = stmt.on_conflict_do_update(
            index_elements=[KitchenLoad.restaurant_id],
            set_=values,
        )
        await session.execute(stmt)

        logger.info(
            f"Kitchen load for {restaurant_id}: "
            f"{snapshot.current_orders} active, avg {snapshot.average_preparation_time} min"
        )
        return snapshot

    async def read_cached(
        self, session: AsyncSession, restaurant_id: uuid.UUID
    ) -> Optional[KitchenSnapshot]:
        result = await session.execute(
            select(KitchenLoad)
            .where(KitchenLoad.restaurant_id == restaurant_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return None
        return KitchenSnapshot(
            restaurant_id=row.restaurant_id,
            current_orders=row.current_orders,
            average_preparation_time=row.average_preparation_time,
            last_updated=ensure_utc(row.last_updated),
        )

    async def get(self, session: AsyncSession, restaurant_id: uuid.UUID) -> KitchenSnapshot:
        """Cached snapshot, recomputed on the spot when the restaurant has none."""
        cached = await self.read_cached(session, restaurant_id)
        if cached is not None:
            return cached
        return await self.recompute(session, restaurant_id)

    async def peek(self, session: AsyncSession, restaurant_id: uuid.UUID) -> KitchenSnapshot:
        """Cached snapshot, or a freshly calculated one that is not written back."""
        cached = await self.read_cached(session, restaurant_id)
        if cached is not None:
            return cached
        return await self.calculate(session, restaurant_id)


def _insert_for(session: AsyncSession):
    dialect = session.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise StorageError(f"Kitchen load upsert is not supported on {dialect}")
