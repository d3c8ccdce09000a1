"""Supervised background tasks for work that runs after a response is sent."""

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any

import structlog

from app.config import settings

logger = structlog.get_logger(__name__)

CompletionCallback = Callable[[bool], None]


class SagaSupervisor:
    """
    Runs detached coroutines with a timeout and a completion callback.

    Every task is tracked until it finishes so that failures are logged,
    callers are told whether the work succeeded, and shutdown can wait for
    in-flight work instead of dropping it.
    """

    def __init__(self, timeout: float | None = None):
        """Initialize supervisor with the per-task timeout in seconds."""
        self.timeout = timeout or settings.saga_timeout_seconds
        self._tasks: set[asyncio.Task[Any]] = set()

    @property
    def active_count(self) -> int:
        """Number of tasks still running."""
        return len(self._tasks)

    def spawn(
        self,
        name: str,
        work: Awaitable[Any],
        on_complete: CompletionCallback | None = None,
    ) -> asyncio.Task[Any]:
        """
        Start ``work`` in the background.

        Args:
            name: Task name used in logs
            work: Coroutine to run
            on_complete: Called with True on success, False on error or timeout

        Returns:
            The created task
        """
        task = asyncio.create_task(self._run(name, work), name=name)
        self._tasks.add(task)

        def _done(finished: asyncio.Task[Any]) -> None:
            self._tasks.discard(finished)
            succeeded = not finished.cancelled() and finished.result() is True
            if on_complete is not None:
                try:
                    on_complete(succeeded)
                except Exception as e:
                    logger.error("saga_completion_callback_failed", task=name, error=str(e))

        task.add_done_callback(_done)
        logger.info("saga_spawned", task=name)
        return task

    async def _run(self, name: str, work: Awaitable[Any]) -> bool:
        try:
            await asyncio.wait_for(work, timeout=self.timeout)
        except TimeoutError:
            logger.error("saga_timed_out", task=name, timeout=self.timeout)
            return False
        except Exception as e:
            logger.exception("saga_failed", task=name, error=str(e))
            return False
        logger.info("saga_completed", task=name)
        return True

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for running tasks, cancelling whatever is left after ``timeout``."""
        if not self._tasks:
            return

        pending = list(self._tasks)
        _, still_running = await asyncio.wait(pending, timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            logger.warning("saga_tasks_cancelled", count=len(still_running))
            await asyncio.gather(*still_running, return_exceptions=True)


_supervisor: SagaSupervisor | None = None


def get_saga_supervisor() -> SagaSupervisor:
    """Get or create the process-wide supervisor."""
    global _supervisor

    if _supervisor is None:
        _supervisor = SagaSupervisor()

    return _supervisor
