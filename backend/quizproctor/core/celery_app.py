import asyncio
import logging

from celery import Celery
from celery.signals import worker_process_init, worker_process_shutdown

from .config import settings

logger = logging.getLogger(__name__)
logging.getLogger('celery.backends.redis').setLevel(logging.ERROR)

TASK_MODULES = [
    'quizproctor.tasks.maintenance',
    'quizproctor.tasks.notifications',
]

# Async task bodies of one worker process all run on this loop
_worker_loop = None


@worker_process_init.connect
def open_worker_loop(**kwargs):
    global _worker_loop
    _worker_loop = asyncio.new_event_loop()
    asyncio.set_event_loop(_worker_loop)
    logger.info(f"Worker process {kwargs.get('sender', 'unknown')} has its event loop")


@worker_process_shutdown.connect
def close_worker_loop(**kwargs):
    global _worker_loop
    loop, _worker_loop = _worker_loop, None
    if loop is not None:
        loop.close()
        asyncio.set_event_loop(None)
        logger.info("Worker event loop closed")


def get_worker_loop():
    """The worker process loop, or None outside a worker"""
    return _worker_loop


celery_app = Celery(
    "quizproctor_worker",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=TASK_MODULES,
)

celery_app.conf.update(
    task_serializer='json',
    result_serializer='json',
    accept_content=['json'],
    enable_utc=True,
    timezone='UTC',
    task_routes={
        'submit_overdue_sessions': {'queue': 'maintenance'},
        'notify_session_flagged': {'queue': 'notifications'},
    },
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    task_soft_time_limit=60,
    task_time_limit=120,
    result_expires=settings.overdue_sweep_interval_seconds * 10,
    broker_connection_retry_on_startup=True,
    task_default_retry_delay=10,
    beat_schedule={
        'submit-overdue-sessions': {
            'task': 'submit_overdue_sessions',
            'schedule': settings.overdue_sweep_interval_seconds,
        },
    },
)
