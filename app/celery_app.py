from celery import Celery
from celery.signals import setup_logging, worker_process_init

from app.config import settings

celery_app = Celery(
    "feedback_notify",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["app.tasks.events", "app.tasks.hooks"],
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
    worker_prefetch_multiplier=1,
    task_always_eager=settings.celery_task_always_eager,
    task_routes={"app.tasks.hooks.*": {"queue": "event-hooks"}},
)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    from app.logging import configure_logging

    configure_logging()


@worker_process_init.connect
def _init_worker_hooks(**kwargs) -> None:
    from app.services.hooks.registry import hook_registry

    hook_registry.load_defaults()
