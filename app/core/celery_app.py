"""Celery application configuration"""

from celery import Celery
from kombu import Exchange, Queue
from app.core.config import settings

# Create Celery app
celery_app = Celery(
    "metchi",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=[
        "app.tasks.settlement_tasks",
    ]
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.CELERY_TIMEZONE,
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,  # 10 minutes
    task_soft_time_limit=8 * 60,  # 8 minutes
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    worker_max_tasks_per_child=1000,

    # Task routing
    task_routes={
        "app.tasks.settlement_tasks.*": {"queue": "settlement"},
    },

    # Retry configuration
    task_default_retry_delay=60,  # 1 minute
    task_max_retries=3,

    # Result backend configuration
    result_expires=3600,  # 1 hour
)

# Define queues
celery_app.conf.task_queues = (
    Queue("default", Exchange("default"), routing_key="default"),
    Queue("settlement", Exchange("settlement"), routing_key="settlement"),
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "expire-stale-requests": {
        "task": "expire_stale_requests",
        "schedule": 60,  # Every minute
        "options": {"queue": "settlement"}
    },
    "expire-stale-payments": {
        "task": "expire_stale_payments",
        "schedule": 60,  # Every minute
        "options": {"queue": "settlement"}
    },
    "deactivate-expired-boosts": {
        "task": "deactivate_expired_boosts",
        "schedule": 60 * 60,  # Every hour
        "options": {"queue": "settlement"}
    },
}
