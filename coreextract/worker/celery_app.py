from celery import Celery
from celery.signals import setup_logging

from coreextract.core.config import settings
from coreextract.core.logging import configure_logging

celery_app = Celery(
    "coreextract",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["coreextract.worker.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A file is only acknowledged once its outcome is recorded.
    task_acks_late=True,
    worker_prefetch_multiplier=1,
)


@setup_logging.connect
def _configure_worker_logging(**kwargs):
    # Connecting here stops Celery from installing its own handlers.
    configure_logging()
