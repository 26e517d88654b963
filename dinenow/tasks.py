"""
Celery Tasks
Background refresh of the per-restaurant kitchen load snapshot.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone

from dinenow.celery_worker import celery_app
from dinenow.core.config import get_settings
from dinenow.core.exceptions import NotFoundError, StorageError
from dinenow.database import Database
from dinenow.models import Restaurant
from dinenow.services.kitchen import KitchenLoadEstimator

logger = logging.getLogger(__name__)


async def _recompute(restaurant_id: uuid.UUID) -> dict:
    settings = get_settings()
    database = Database.from_settings(settings)
    estimator = KitchenLoadEstimator(settings)
    try:
        async with database.transaction() as session:
            # Unknown restaurants fail without retry
            if await session.get(Restaurant, restaurant_id) is None:
                raise NotFoundError(
                    f"Restaurant {restaurant_id} not found",
                    {"restaurant_id": str(restaurant_id)},
                )
            snapshot = await estimator.recompute(session, restaurant_id)
    finally:
        await database.dispose()

    return {
        'restaurant_id': str(snapshot.restaurant_id),
        'current_orders': snapshot.current_orders,
        'average_preparation_time': snapshot.average_preparation_time,
        'load_level': estimator.load_level(snapshot),
    }


@celery_app.task(
    bind=True,
    max_retries=3,
    default_retry_delay=5,
    autoretry_for=(StorageError,),
    retry_backoff=True
)
def recompute_kitchen_load(self, restaurant_id: str) -> dict:
    """
    Recompute and store the kitchen load for one restaurant.

    Args:
        restaurant_id: Restaurant UUID as a string

    Returns:
        dict: The stored snapshot
    """
    task_id = self.request.id
    logger.info(f"📋 Task {task_id}: recomputing kitchen load for {restaurant_id}")
    start_time = time.time()

    result = asyncio.run(_recompute(uuid.UUID(restaurant_id)))

    elapsed = round(time.time() - start_time, 3)
    result['task_id'] = task_id
    result['processing_time_seconds'] = elapsed
    logger.info(
        f"✅ Task {task_id}: {result['current_orders']} active orders, "
        f"avg {result['average_preparation_time']} min ({elapsed}s)"
    )
    return result


@celery_app.task
def health_check() -> dict:
    """
    Simple health check task to verify Celery is working.
    """
    return {
        'status': 'healthy',
        'worker': 'celery',
        'timestamp': datetime.now(timezone.utc).isoformat()
    }
