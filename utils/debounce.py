# utils/debounce.py

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Dict, Set, Union

logger = logging.getLogger("atelier.debounce")

Callback = Callable[[], Union[None, Awaitable[Any]]]


class Debouncer:
    """
    Per-key trailing-edge debounce on the running event loop.

    schedule(key, fn) (re)starts the timer for `key`; fn runs once the key
    has been quiet for `delay` seconds. Different keys never cancel each
    other. Coroutine callbacks run as tasks; their errors are logged.
    """

    def __init__(self, delay: float):
        self.delay = delay
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._callbacks: Dict[str, Callback] = {}
        self._tasks: Set[asyncio.Task] = set()

    def schedule(self, key: str, fn: Callback) -> None:
        loop = asyncio.get_running_loop()
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._callbacks[key] = fn
        self._timers[key] = loop.call_later(self.delay, self._fire, key)

    def is_pending(self, key: str) -> bool:
        return key in self._timers

    def cancel(self, key: str) -> None:
        timer = self._timers.pop(key, None)
        if timer is not None:
            timer.cancel()
        self._callbacks.pop(key, None)

    def cancel_all(self) -> None:
        for key in list(self._timers):
            self.cancel(key)

    async def flush(self) -> None:
        """Run every pending callback now and wait for running ones."""
        for key in list(self._timers):
            self._timers.pop(key).cancel()
            fn = self._callbacks.pop(key)
            result = fn()
            if inspect.isawaitable(result):
                await result
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    def _fire(self, key: str) -> None:
        self._timers.pop(key, None)
        fn = self._callbacks.pop(key, None)
        if fn is None:
            return
        try:
            result = fn()
        except Exception:
            logger.exception("Debounced callback for %s failed", key)
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(lambda t, k=key: self._task_done(k, t))

    def _task_done(self, key: str, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Debounced callback for %s failed: %s", key, exc)
