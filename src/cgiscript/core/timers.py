"""
=============================================================================
TIMER QUEUE
=============================================================================

set_timeout / set_interval for template code, run on a private asyncio
event loop that belongs to one execution.

    <? set_timeout(lambda: append("later"), 0.05) ?>now
            │
            ▼
    segments run ──► "now" ──► drain() ──► "later" ──► execute() returns

Nothing runs while segments are executing: the loop only turns inside
drain(), after the last segment. drain() returns when no timer is pending,
so a request waits for its timers. An interval that is never cleared keeps
the request open forever.

Delays are in seconds, like asyncio's call_later().

=============================================================================
"""

from typing import Any, Callable, Dict, Optional
import asyncio
import logging


logger = logging.getLogger(__name__)


class TimerQueue:
    """
    Single-threaded timers for one template execution.

    Usage:
        timers = TimerQueue()
        timer_id = timers.set_timeout(callback, 0.1, "arg")
        timers.clear(timer_id)
        timers.drain()
        timers.close()
    """

    def __init__(self):
        self._loop = asyncio.new_event_loop()
        self._handles: Dict[int, asyncio.TimerHandle] = {}
        self._next_id = 1
        self._error: Optional[BaseException] = None
        self._idle: Optional[asyncio.Event] = None

    @property
    def pending(self) -> int:
        return len(self._handles)

    def set_timeout(self, callback: Callable[..., Any], delay: float = 0, *args: Any) -> int:
        """Run `callback(*args)` once after `delay` seconds. Returns a timer id."""
        timer_id = self._allocate_id()

        def fire() -> None:
            self._handles.pop(timer_id, None)
            self._invoke(callback, args)

        self._handles[timer_id] = self._loop.call_later(max(delay, 0), fire)
        return timer_id

    def set_interval(self, callback: Callable[..., Any], delay: float, *args: Any) -> int:
        """Run `callback(*args)` every `delay` seconds until cleared."""
        timer_id = self._allocate_id()
        delay = max(delay, 0)

        def fire() -> None:
            self._invoke(callback, args)
            # The callback may have cleared its own interval
            if timer_id in self._handles and self._error is None:
                self._handles[timer_id] = self._loop.call_later(delay, fire)

        self._handles[timer_id] = self._loop.call_later(delay, fire)
        return timer_id

    def clear(self, timer_id: int) -> None:
        """Cancel a timeout or interval. Unknown ids are ignored."""
        handle = self._handles.pop(timer_id, None)
        if handle is not None:
            handle.cancel()
        self._notify_if_idle()

    def drain(self) -> None:
        """
        Run the loop until no timer is pending.

        Raises:
            Exception: the first exception (or SystemExit) raised by a callback. Remaining
                timers are cancelled.
        """
        if self._handles:
            self._loop.run_until_complete(self._wait_idle())
        if self._error is not None:
            error, self._error = self._error, None
            raise error

    def close(self) -> None:
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()
        if not self._loop.is_closed():
            self._loop.close()

    # =========================================================================
    # INTERNALS
    # =========================================================================

    def _allocate_id(self) -> int:
        timer_id = self._next_id
        self._next_id += 1
        return timer_id

    def _invoke(self, callback: Callable[..., Any], args: tuple) -> None:
        try:
            callback(*args)
        except (Exception, SystemExit) as e:
            logger.debug(f"Timer callback failed: {type(e).__name__}: {e}")
            if self._error is None:
                self._error = e
            for handle in self._handles.values():
                handle.cancel()
            self._handles.clear()
        self._notify_if_idle()

    def _notify_if_idle(self) -> None:
        if self._idle is not None and not self._handles:
            self._idle.set()

    async def _wait_idle(self) -> None:
        self._idle = asyncio.Event()
        try:
            if self._handles:
                await self._idle.wait()
        finally:
            self._idle = None
