"""Celery application configuration and beat schedule."""

import logging

from celery import Celery
from celery.schedules import crontab
from celery.signals import after_setup_logger

from boothbeacon.config import get_settings

settings = get_settings()

celery_app = Celery(
    "boothbeacon",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=["boothbeacon.tasks.crawl_tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    task_track_started=True,
    task_time_limit=1800,
    task_soft_time_limit=1700,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

celery_app.conf.beat_schedule = {
    "dispatch-due-crawls": {
        "task": "boothbeacon.tasks.crawl_tasks.dispatch_due_crawls",
        "schedule": crontab(minute="*/30"),
    },
}


@after_setup_logger.connect
def _configure_logging(logger, *args, **kwargs):
    logging.getLogger("boothbeacon").setLevel(logging.INFO)
