"""
Repeatedly call a function and notify only when its result changes.

Used for polling listings (e.g. mappings) and for watching a build-info
document. The next invocation is scheduled ``interval`` seconds after the
previous one *finished*, so the effective period is interval plus call
duration.
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Callable, Optional

from .errors import FederationError
from .logging import get_logger

LOGGER = get_logger(__name__)

RepeatCallback = Callable[[Optional[BaseException], Any, Any], None]


class Repeater:
    """
    Two-state (active/paused) polling loop bound to the running event loop.

    Parameters
    ----------
    function:
        Callable to invoke; may return an awaitable.
    callback:
        Called as ``callback(error, result, previous_result)``. Results are
        reported only when they differ from the last stored result; the first
        success and the first success after an error always count as changes.
        Errors are reported as ``callback(error, None, None)``.
    interval:
        Seconds to wait between the end of one call and the start of the next.
        Can be changed at any time; the new value applies from the next
        scheduling decision.
    call_immediately:
        Invoke once right away instead of waiting one interval first.
    """

    def __init__(
        self,
        function: Callable[[], Any],
        callback: RepeatCallback,
        *,
        interval: float = 15.0,
        call_immediately: bool = True,
    ) -> None:
        if not callable(function):
            raise FederationError.validation("function", "function needs to be callable")
        if not callable(callback):
            raise FederationError.validation("callback", "callback needs to be callable")
        try:
            interval = float(interval)
        except (TypeError, ValueError):
            raise FederationError.validation("interval") from None

        self._function = function
        self._callback = callback
        self.interval = interval
        self._call_immediately = call_immediately
        self._loop = asyncio.get_running_loop()
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._result: Any = None
        self._has_result = False
        self._error: Optional[BaseException] = None
        self._paused = False
        self._setup(call_immediately)

    # ------------------------------------------------------------------ state

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def last_result(self) -> Any:
        return self._result

    @property
    def has_errored(self) -> bool:
        return self._error is not None

    # ------------------------------------------------------------------ control

    def start(self, call_immediately: Optional[bool] = None) -> None:
        """Resume scheduling, optionally skipping the immediate call."""

        self._paused = False
        self._cancel_timer()
        self._setup(self._call_immediately if call_immediately is None else call_immediately)

    def stop(self) -> None:
        """Pause scheduling. An in-flight call is left to finish but not rescheduled."""

        self._paused = True
        if self._timer is not None:
            self._cancel_timer()
        else:
            # A call is in flight; clear whatever timer exists on the next tick.
            self._loop.call_soon(self._cancel_timer)

    # ------------------------------------------------------------------ internals

    def _setup(self, call_immediately: bool) -> None:
        if call_immediately:
            self._call()
        else:
            self._schedule()

    def _schedule(self) -> None:
        if self._paused:
            return
        self._timer = self._loop.call_later(self.interval, self._call)

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _call(self) -> None:
        self._timer = None
        self._task = self._loop.create_task(self._invoke())

    async def _invoke(self) -> None:
        try:
            result = self._function()
            if inspect.isawaitable(result):
                result = await result
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            self._handle_error(exc)
        else:
            self._handle_result(result)
        self._schedule()

    def _handle_result(self, result: Any) -> None:
        previous = self._result
        changed = not self._has_result or self._error is not None or result != previous
        self._error = None
        if not changed:
            return
        self._result = result
        self._has_result = True
        self._notify(None, result, previous)

    def _handle_error(self, error: BaseException) -> None:
        self._error = error
        LOGGER.debug("Repeated call failed", extra={"error": str(error)})
        self._notify(error, None, None)

    def _notify(self, error: Optional[BaseException], result: Any, previous: Any) -> None:
        try:
            self._callback(error, result, previous)
        except Exception:
            LOGGER.exception("Repeat callback raised")
