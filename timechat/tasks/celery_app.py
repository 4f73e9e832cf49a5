from celery import Celery

from timechat.config import settings

celery_app = Celery(
    "timechat",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["timechat.tasks.cleanup_tasks"]
)

# Celery Configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    task_soft_time_limit=240,  # 4 minutes
    worker_max_tasks_per_child=100,
    worker_prefetch_multiplier=1,
)

celery_app.conf.task_routes = {
    "sweep_expired_chats": {"queue": "cleanup"}
}

celery_app.conf.beat_schedule = {
    "sweep-expired-chats": {
        "task": "sweep_expired_chats",
        "schedule": settings.cleanup_interval_seconds,
    }
}

celery_app.conf.task_default_retry_delay = 60  # 1 minute
celery_app.conf.task_max_retries = 1
