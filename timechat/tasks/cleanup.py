"""
In-process expiry sweep.

``start_cleanup_loop()`` is called from the application lifespan: it waits
``cleanup_startup_delay_seconds``, runs ``sweep_expired()`` and then repeats
every ``cleanup_interval_seconds`` until the task is cancelled on shutdown.
"""
import asyncio
import logging
from typing import Optional

from timechat.config import settings
from timechat.services.chat_service import sweep_expired

logger = logging.getLogger(__name__)


async def run_cleanup_once() -> int:
    removed = await sweep_expired()
    logger.info(f"Cleanup run finished, {removed} expired chats removed")
    return removed


async def _cleanup_loop(startup_delay: float, interval: float) -> None:
    await asyncio.sleep(startup_delay)
    while True:
        try:
            await run_cleanup_once()
        except Exception:
            logger.exception("Cleanup loop iteration failed")
        await asyncio.sleep(interval)


def start_cleanup_loop(
    startup_delay: Optional[float] = None, interval: Optional[float] = None
) -> Optional[asyncio.Task]:
    """
    Schedule the sweep loop on the running event loop.

    Returns:
        asyncio.Task: The loop task, to be cancelled on shutdown; None when
            there is no running loop
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        logger.warning("No running event loop, cleanup loop not started")
        return None

    startup_delay = settings.cleanup_startup_delay_seconds if startup_delay is None else startup_delay
    interval = settings.cleanup_interval_seconds if interval is None else interval
    logger.info(f"Starting cleanup loop: first run in {startup_delay}s, then every {interval}s")
    return loop.create_task(_cleanup_loop(startup_delay, interval))
