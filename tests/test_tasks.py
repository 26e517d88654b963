import asyncio
import uuid

import pytest
from sqlalchemy import delete

from dinenow import tasks
from dinenow.celery_worker import create_celery_app
from dinenow.core.exceptions import NotFoundError, StorageError
from dinenow.models import KitchenLoad
from dinenow.services.kitchen import KitchenLoadEstimator


@pytest.fixture
def worker_settings(settings, monkeypatch):
    monkeypatch.setattr(tasks, "get_settings", lambda: settings)
    return settings


async def _snapshot(database, settings, restaurant_id):
    async with database.transaction() as session:
        return await KitchenLoadEstimator(settings).read_cached(session, restaurant_id)


def test_worker_routes_recompute_to_kitchen_queue(settings):
    app = create_celery_app(settings.model_copy(update={"celery_queue": "kitchen-riverside"}))
    routes = app.conf.task_routes
    assert routes["dinenow.tasks.recompute_kitchen_load"] == {"queue": "kitchen-riverside"}
    assert app.conf.task_time_limit == settings.celery_task_time_limit


def test_only_storage_errors_are_retried():
    assert tasks.recompute_kitchen_load.autoretry_for == (StorageError,)


async def test_recompute_task_writes_snapshot(worker_settings, database, menu, place_order):
    await place_order()
    await place_order()
    async with database.transaction() as session:
        await session.execute(delete(KitchenLoad))

    # The task starts its own event loop, so run it off this one
    result = await asyncio.to_thread(
        tasks.recompute_kitchen_load.apply, args=[str(menu.restaurant_id)]
    )

    assert result.successful()
    assert result.get()["current_orders"] == 2
    snapshot = await _snapshot(database, worker_settings, menu.restaurant_id)
    assert snapshot.current_orders == 2


async def test_recompute_task_fails_for_unknown_restaurant(worker_settings, database, menu):
    missing = uuid.uuid4()

    result = await asyncio.to_thread(tasks.recompute_kitchen_load.apply, args=[str(missing)])

    assert result.failed()
    assert isinstance(result.result, NotFoundError)
    assert await _snapshot(database, worker_settings, missing) is None


async def test_recompute_helper_rejects_unknown_restaurant(worker_settings, menu):
    with pytest.raises(NotFoundError):
        await tasks._recompute(uuid.uuid4())
