import contextvars
import logging
from concurrent.futures import Future, ThreadPoolExecutor, wait
from threading import Lock
from typing import Any, Callable

from paycomplete.core.observability import log_event


class FanoutDispatcher:
    """Bounded worker pool for fan-out that must not hold up an HTTP response.

    Tasks are tracked until they finish so failures are logged and
    ``shutdown`` can wait for in-flight work instead of dropping it.
    """

    def __init__(self, *, max_workers: int):
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="fanout")
        self._pending: set[Future] = set()
        self._lock = Lock()
        self._failed = 0
        self._completed = 0

    def submit(self, task_name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Future:
        # Carry the request id into the worker thread.
        context = contextvars.copy_context()
        future = self._executor.submit(context.run, fn, *args, **kwargs)
        with self._lock:
            self._pending.add(future)
        future.add_done_callback(lambda done: self._on_done(task_name, context, done))
        return future

    def _on_done(self, task_name: str, context: contextvars.Context, future: Future) -> None:
        with self._lock:
            self._pending.discard(future)
        exc = None if future.cancelled() else future.exception()
        if exc is None:
            with self._lock:
                self._completed += 1
            return
        with self._lock:
            self._failed += 1
        context.run(
            log_event,
            "background_task_failed",
            level=logging.ERROR,
            task=task_name,
            error=f"{type(exc).__name__}: {exc}",
        )

    def drain(self, timeout: float | None = None) -> bool:
        """Wait for the tasks submitted so far. Returns False on timeout."""
        with self._lock:
            pending = list(self._pending)
        if not pending:
            return True
        _, not_done = wait(pending, timeout=timeout)
        return not not_done

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "pending": len(self._pending),
                "completed": self._completed,
                "failed": self._failed,
            }

    def shutdown(self, *, wait_for_pending: bool = True) -> None:
        self._executor.shutdown(wait=wait_for_pending)
