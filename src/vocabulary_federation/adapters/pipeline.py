"""
Request pipeline wrapped around every adapter operation.

Each public operation call goes through :meth:`RequestPipeline.submit`, which

* reuses an identical in-flight request (same operation, equal arguments),
* waits for the adapter's one-time initialization,
* runs the kind's implementation as an asyncio task that can be cancelled
  through the returned :class:`RequestHandle`,
* normalizes the result into a :class:`~vocabulary_federation.catalog.ResultPage`,
* hands entries to the adapter's enrichment hooks, and
* classifies failures into :class:`~vocabulary_federation.core.errors.FederationError`.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, Generator, List, Optional

from ..catalog import CatalogEntry, EntryKind, ResultPage, plain
from ..core.errors import ErrorKind, FederationError, classify_error
from ..core.logging import get_logger
from .api.base import ApiResponse

if TYPE_CHECKING:  # pragma: no cover
    from .base import BaseAdapter

LOGGER = get_logger(__name__)


class CancellationToken:
    """
    Flag shared between a request handle and the running implementation.

    Callbacks registered with :meth:`add_callback` run once when the token is
    cancelled, so cancelling a caller-supplied token aborts the request it was
    handed to.
    """

    __slots__ = ("_cancelled", "reason", "_callbacks")

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: Optional[str] = None
        self._callbacks: List[Callable[[Optional[str]], Any]] = []

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def add_callback(self, callback: Callable[[Optional[str]], Any]) -> None:
        if self._cancelled:
            callback(self.reason)
        else:
            self._callbacks.append(callback)

    def cancel(self, reason: Optional[str] = None) -> None:
        if self._cancelled:
            return
        self._cancelled = True
        self.reason = reason
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback(reason)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise FederationError(ErrorKind.CANCELLED, self.reason or "")


class RequestHandle:
    """
    Awaitable result of an adapter operation.

    Awaiting the handle yields the operation's result. Several callers may
    await the same handle when their requests were deduplicated; cancelling
    one caller's await does not cancel the shared request, only
    :meth:`cancel` does.
    """

    def __init__(self, operation: str, task: "asyncio.Task[Any]", token: CancellationToken, on_cancel: Callable[["RequestHandle"], None]) -> None:
        self.operation = operation
        self.token = token
        self._task = task
        self._on_cancel = on_cancel

    def __await__(self) -> Generator[Any, None, Any]:
        return self._wait().__await__()

    async def _wait(self) -> Any:
        try:
            return await asyncio.shield(self._task)
        except asyncio.CancelledError:
            # The task was cancelled before its coroutine ever ran.
            if self._task.cancelled() and self.token.cancelled:
                raise FederationError(ErrorKind.CANCELLED, self.token.reason or "") from None
            raise

    def cancel(self, reason: Optional[str] = None) -> bool:
        """Cancel the request. Returns ``False`` when it had already settled."""

        if self._task.done():
            return False
        self.token.cancel(reason)
        return True

    def _abort(self, reason: Optional[str] = None) -> None:
        if self._task.done():
            return
        self._on_cancel(self)
        self._task.cancel()

    def done(self) -> bool:
        return self._task.done()

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled


@dataclass(slots=True)
class PendingRequest:
    operation: str
    arguments: Dict[str, Any]
    handle: RequestHandle


class RequestPipeline:
    """
    Per-adapter request wrapper.

    Parameters
    ----------
    adapter:
        Owning adapter; provides ``initialize()``, the operation
        implementations and the enrichment hooks.
    connectivity_probe:
        Optional callable reporting whether the machine appears online. Used
        to tell unreachable backends from missing network access.
    """

    def __init__(self, adapter: "BaseAdapter", *, connectivity_probe: Optional[Callable[[], Optional[bool]]] = None) -> None:
        self._adapter = adapter
        self._pending: List[PendingRequest] = []
        self.connectivity_probe = connectivity_probe

    @property
    def pending(self) -> List[PendingRequest]:
        return list(self._pending)

    def submit(self, operation: str, implementation: Callable[..., Any], kind: Optional[EntryKind], options: Dict[str, Any]) -> RequestHandle:
        token = options.pop("cancel_token", None)
        arguments = plain(options)
        for pending in self._pending:
            if pending.operation == operation and pending.arguments == arguments:
                LOGGER.debug("Reusing in-flight request", extra={"operation": operation, "source": self._adapter.uri})
                if token is not None:
                    token.add_callback(pending.handle.cancel)
                return pending.handle

        if token is None:
            token = CancellationToken()
        task = asyncio.get_running_loop().create_task(self._run(operation, implementation, kind, options, token))
        handle = RequestHandle(operation, task, token, self._forget)
        record = PendingRequest(operation=operation, arguments=arguments, handle=handle)
        self._pending.append(record)
        task.add_done_callback(lambda settled: self._settled(handle, settled))
        # Registered last so an already cancelled token finds the record to drop.
        token.add_callback(handle._abort)
        return handle

    def _settled(self, handle: RequestHandle, task: "asyncio.Task[Any]") -> None:
        self._forget(handle)
        if handle.cancelled and not task.cancelled():
            # Cancelled requests are not necessarily awaited by anyone.
            task.exception()

    def _forget(self, handle: RequestHandle) -> None:
        self._pending = [pending for pending in self._pending if pending.handle is not handle]

    async def _run(self, operation: str, implementation: Callable[..., Any], kind: Optional[EntryKind], options: Dict[str, Any], token: CancellationToken) -> Any:
        try:
            await self._adapter.initialize()
            token.raise_if_cancelled()
            result = await implementation(**options)
            token.raise_if_cancelled()
            result = self.normalize(result, kind)
            if kind is not None and isinstance(result, ResultPage):
                self._adapter.enrich(result.items, kind)
            return result
        except asyncio.CancelledError:
            if token.cancelled:
                raise FederationError(ErrorKind.CANCELLED, token.reason or "") from None
            raise
        except Exception as exc:
            error = classify_error(exc, connectivity_probe=self.connectivity_probe)
            if error is exc:
                raise
            LOGGER.debug(
                "Request failed",
                extra={"operation": operation, "source": self._adapter.uri, "status_code": error.status_code, "error_kind": error.kind.value},
            )
            raise error from exc

    @staticmethod
    def normalize(result: Any, kind: Optional[EntryKind]) -> Any:
        """
        Turn an implementation's return value into the public result shape.

        ``ApiResponse`` and plain lists/mappings of entity data become a
        :class:`ResultPage`. Booleans (deletions) and results of operations
        without an entity type (suggestions) pass through unchanged, apart
        from unwrapping an ``ApiResponse``.
        """

        if isinstance(result, bool):
            return result
        if isinstance(result, ResultPage):
            if kind is not None:
                result.items = [CatalogEntry.wrap(item, kind) if _is_entry(item) else item for item in result.items]
            return result

        total_count: Optional[int] = None
        url: Optional[str] = None
        if isinstance(result, ApiResponse):
            total_count, url, result = result.total_count, result.url, result.data

        if kind is None:
            return result
        if result is None:
            return ResultPage(items=[], total_count=0, url=url)
        if isinstance(result, list):
            items = [CatalogEntry.wrap(item, kind) if _is_entry(item) else item for item in result]
            return ResultPage(items=items, total_count=len(items) if total_count is None else total_count, url=url)
        if _is_entry(result):
            return ResultPage(items=[CatalogEntry.wrap(result, kind)], total_count=1 if total_count is None else total_count, url=url)
        return result


def _is_entry(value: Any) -> bool:
    return isinstance(value, (CatalogEntry, dict))
