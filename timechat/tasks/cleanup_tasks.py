import asyncio

from celery import Task
from celery.utils.log import get_task_logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from timechat.config import settings
from timechat.services.chat_service import sweep_expired
from timechat.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


class BaseTaskWithRetry(Task):
    """Base task class with retry logic."""
    max_retries = 1
    default_retry_delay = 60  # 1 minute

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        logger.error(
            "Task failed: %s (task_id: %s, task_args: %s, task_kwargs: %s)",
            str(exc),
            task_id,
            args,
            kwargs,
            exc_info=exc
        )
        super().on_failure(exc, task_id, args, kwargs, einfo)


async def _sweep_with_own_engine() -> int:
    # Each task run gets a fresh event loop, so it cannot share the web app's pool
    engine = create_async_engine(settings.sqlalchemy_database_url, poolclass=NullPool)
    try:
        session_factory = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)
        return await sweep_expired(session_factory)
    finally:
        await engine.dispose()


@celery_app.task(
    bind=True,
    base=BaseTaskWithRetry,
    name="sweep_expired_chats"
)
def sweep_expired_chats(self) -> dict:
    """Delete expired chats with their messages and invite codes."""
    logger.info("Starting expired chat sweep")
    try:
        removed = asyncio.run(_sweep_with_own_engine())
    except Exception as exc:
        logger.error(f"Expired chat sweep failed: {exc}")
        raise self.retry(exc=exc)

    logger.info(f"Expired chat sweep removed {removed} chats")
    return {"status": "success", "removed": removed}
