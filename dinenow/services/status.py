"""
Order Status State Machine

    pending → confirmed → preparing → ready → served
        └──────────┴───────────┴─────────┴──→ cancelled

served and cancelled are terminal. Every other move (skipping ahead,
going back, leaving a terminal state) raises InvalidTransitionError.
"""

import logging
import uuid
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dinenow.core.clock import ensure_utc
from dinenow.core.exceptions import InvalidTransitionError, NotFoundError, ValidationError
from dinenow.models import Order, OrderStatus

logger = logging.getLogger(__name__)

ORDER_TRANSITIONS: dict[OrderStatus, tuple[OrderStatus, ...]] = {
    OrderStatus.PENDING: (OrderStatus.CONFIRMED, OrderStatus.CANCELLED),
    OrderStatus.CONFIRMED: (OrderStatus.PREPARING, OrderStatus.CANCELLED),
    OrderStatus.PREPARING: (OrderStatus.READY, OrderStatus.CANCELLED),
    OrderStatus.READY: (OrderStatus.SERVED, OrderStatus.CANCELLED),
    OrderStatus.SERVED: (),
    OrderStatus.CANCELLED: (),
}

TERMINAL_STATUSES = frozenset(
    status for status, targets in ORDER_TRANSITIONS.items() if not targets
)


def coerce_status(value: Union[str, OrderStatus]) -> OrderStatus:
    if isinstance(value, OrderStatus):
        return value
    try:
        return OrderStatus(str(value).lower())
    except ValueError:
        valid = [s.value for s in OrderStatus]
        raise ValidationError(f"Invalid status '{value}'. Options: {valid}", {"status": str(value)})


def allowed_transitions(current: OrderStatus) -> tuple[OrderStatus, ...]:
    return ORDER_TRANSITIONS[current]


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ORDER_TRANSITIONS[current]


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    if not can_transition(current, target):
        raise InvalidTransitionError(current.value, target.value)


def preparation_minutes(confirmed_at: Optional[datetime], served_at: datetime) -> Optional[int]:
    """Whole minutes between confirmation and service, None without a confirmation."""
    if confirmed_at is None:
        return None
    elapsed = ensure_utc(served_at) - ensure_utc(confirmed_at)
    return int(elapsed.total_seconds() // 60)


def apply_transition(
    order: Order,
    target: OrderStatus,
    now: datetime,
    notes: Optional[str] = None,
) -> Order:
    """
    Move an order to `target` and stamp the matching lifecycle timestamp.

    Mutates the ORM object only; the caller owns the transaction.

    Raises:
        InvalidTransitionError: target is not reachable from the current status
    """
    ensure_transition(order.status, target)

    order.status = target
    order.updated_at = now
    if notes:
        order.notes = notes

    if target == OrderStatus.CONFIRMED:
        order.confirmed_at = now
    elif target == OrderStatus.READY:
        order.ready_at = now
    elif target == OrderStatus.SERVED:
        order.served_at = now
        order.actual_preparation_minutes = preparation_minutes(order.confirmed_at, now)

    return order


async def transition_order(
    session: AsyncSession,
    order_id: uuid.UUID,
    target: Union[str, OrderStatus],
    now: datetime,
    notes: Optional[str] = None,
) -> Order:
    """
    Load the order under a row lock and apply one transition.

    Raises:
        ValidationError: unknown target status
        NotFoundError: no order with that id
        InvalidTransitionError: illegal move
    """
    target_status = coerce_status(target)

    result = await session.execute(
        select(Order).where(Order.id == order_id).with_for_update()
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError(f"Order {order_id} not found", {"order_id": str(order_id)})

    previous = order.status
    apply_transition(order, target_status, now, notes)
    await session.flush()

    logger.info(
        f"Order {order.order_number}: {previous.value} → {target_status.value}"
        + (
            f" (actual {order.actual_preparation_minutes} min)"
            if order.actual_preparation_minutes is not None
            else ""
        )
    )
    return order
