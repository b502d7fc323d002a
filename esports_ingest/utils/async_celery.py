"""
Shared event loop for Celery async tasks.

Sync jobs are coroutines; Celery workers call them through ``run_async`` so
that every task in a worker process reuses one loop. The TokenManager and
RateLimiter hold asyncio primitives bound to that loop, so they survive
between task invocations only if the loop does.
"""
import asyncio
import logging
from typing import Coroutine, Any, TypeVar

logger = logging.getLogger(__name__)

_loop: asyncio.AbstractEventLoop | None = None

T = TypeVar("T")


def get_event_loop() -> asyncio.AbstractEventLoop:
    """Get or create the worker-wide event loop."""
    global _loop

    if _loop is None or _loop.is_closed():
        _loop = asyncio.new_event_loop()
        asyncio.set_event_loop(_loop)
        logger.debug("Created new shared event loop for Celery tasks")

    return _loop


def run_async(coro: Coroutine[Any, Any, T]) -> T:
    """
    Run an async coroutine in the shared event loop.

    Example:
        @celery_app.task
        def sync_players():
            return run_async(run_job("players"))
    """
    loop = get_event_loop()
    return loop.run_until_complete(coro)


def cleanup_event_loop() -> None:
    """Cancel pending tasks and close the shared loop (worker shutdown)."""
    global _loop

    if _loop is not None and not _loop.is_closed():
        try:
            pending = asyncio.all_tasks(_loop)
            for task in pending:
                task.cancel()

            if pending:
                _loop.run_until_complete(
                    asyncio.gather(*pending, return_exceptions=True)
                )

            _loop.close()
            logger.info("Shared event loop cleaned up successfully")
        except Exception as e:
            logger.error(f"Error cleaning up event loop: {e}")
        finally:
            _loop = None
