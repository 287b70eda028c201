"""Celery application and worker configuration.

Defines the shared Celery instance used for out-of-band lifecycle effects
(receipt e-mails, proposal notifications). A ``worker_init`` hook runs the
legacy status backfill so workers never read pre-migration values.
"""
import logging
from celery import Celery
from celery.signals import worker_init
from tiro.config import get_settings

settings = get_settings()

celery_app = Celery(
    "tiro_worker",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
    include=["tiro.tasks.notifications"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    worker_prefetch_multiplier=1,
    result_expires=86400,  # 24 hours
    broker_connection_retry_on_startup=True,
)


@worker_init.connect
def setup_worker(**kwargs):
    """Run once when the Celery worker process starts."""
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("stripe").setLevel(logging.WARNING)

    from tiro.utils.startup import backfill_legacy_statuses
    backfill_legacy_statuses()
