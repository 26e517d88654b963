"""
Celery Worker Configuration

Kitchen load recomputes run on their own queue so a burst of orders never
waits behind other work. Broker, result backend, concurrency and time
limits all come from Settings.

Run with:
    celery -A dinenow.celery_worker worker -Q kitchen,celery --loglevel=info
"""

from celery import Celery

from dinenow.core.config import Settings, get_settings


def create_celery_app(settings: Settings) -> Celery:
    app = Celery(
        'dinenow_worker',
        broker=settings.redis_url,
        backend=settings.redis_url,
        include=['dinenow.tasks'],
    )

    app.conf.update(
        task_serializer='json',
        accept_content=['json'],
        result_serializer='json',
        timezone='UTC',
        enable_utc=True,

        task_routes={
            'dinenow.tasks.recompute_kitchen_load': {'queue': settings.celery_queue},
        },
        task_time_limit=settings.celery_task_time_limit,
        task_soft_time_limit=max(1, settings.celery_task_time_limit - 5),

        worker_prefetch_multiplier=1,
        worker_concurrency=settings.celery_concurrency,

        # Snapshots go stale within minutes; nobody reads old results
        result_expires=600,

        # Recomputes are idempotent, so redelivery after a crash is fine
        task_acks_late=True,
        task_reject_on_worker_lost=True,

        broker_connection_retry_on_startup=True,
    )
    return app


celery_app = create_celery_app(get_settings())


if __name__ == '__main__':
    celery_app.start()
