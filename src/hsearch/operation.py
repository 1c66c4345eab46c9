"""
Cancellable asynchronous operations.

Every public call on :class:`~hsearch.index.Index` and
:class:`~hsearch.client.SearchClient` returns an :class:`Operation`: a unit
of asynchronous work that is started once, can be cancelled cooperatively,
and resolves exactly once. The same operation supports three call styles::

    op = index.search(query, completion=on_done)   # callback, on a worker thread
    content = index.search(query).result()          # blocking
    content = await index.search(query)             # from any event loop

Network I/O and workflow coroutines run on one background event loop owned
by an :class:`OperationRunner`; completion callbacks are delivered on a
bounded thread pool, so they never fire inside the call that started the
operation.

Cancellation is advisory. :meth:`Operation.cancel` sets a
:class:`CancellationToken` that workflows check at step boundaries (after
each network round-trip, before each retry or next step). It never
interrupts in-flight I/O, and once it is set the completion callback is
never invoked.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import contextvars
import enum
import logging
import threading
from collections.abc import Awaitable, Callable, Coroutine, Generator
from typing import Any, Generic, TypeVar

from hsearch.logging import get_request_id, request_id_bound
from hsearch.models import OperationCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")

Completion = Callable[[Any, "BaseException | None"], None]


class CancellationToken:
    """Cooperative cancellation flag shared by every step of one operation."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        """Raise :class:`OperationCancelled` if cancellation was requested."""
        if self._event.is_set():
            raise OperationCancelled("operation cancelled")


class OperationRunner:
    """Background event loop for network work plus a bounded pool for callbacks."""

    def __init__(self, callback_workers: int = 4, *, name: str = "hsearch") -> None:
        self._loop = asyncio.new_event_loop()
        self._thread = threading.Thread(target=self._run_loop, name=f"{name}-loop", daemon=True)
        self._callbacks = concurrent.futures.ThreadPoolExecutor(
            max_workers=callback_workers,
            thread_name_prefix=f"{name}-callback",
        )
        self._callback_local = threading.local()
        self._closed = False
        self._thread.start()

    def _run_loop(self) -> None:
        asyncio.set_event_loop(self._loop)
        self._loop.run_forever()

    @property
    def closed(self) -> bool:
        return self._closed

    def in_loop_thread(self) -> bool:
        return threading.current_thread() is self._thread

    def in_callback_thread(self) -> bool:
        return getattr(self._callback_local, "active", False)

    def submit(self, coro: Coroutine[Any, Any, T]) -> concurrent.futures.Future[T]:
        """Schedule *coro* on the background loop."""
        if self._closed:
            coro.close()
            raise RuntimeError("OperationRunner is closed")
        return asyncio.run_coroutine_threadsafe(coro, self._loop)

    def run(self, coro: Coroutine[Any, Any, T], timeout: float | None = None) -> T:
        """Run *coro* on the background loop and block for its result."""
        if self.in_loop_thread():
            coro.close()
            raise RuntimeError("cannot block the event loop thread")
        return self.submit(coro).result(timeout)

    def dispatch(self, fn: Callable[..., Any], *args: Any) -> None:
        """Run *fn* on the callback pool."""
        self._callbacks.submit(self._run_callback, fn, *args)

    def _run_callback(self, fn: Callable[..., Any], *args: Any) -> None:
        self._callback_local.active = True
        fn(*args)

    async def _cancel_pending(self) -> None:
        current = asyncio.current_task()
        tasks = [t for t in asyncio.all_tasks() if t is not current]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def close(self) -> None:
        """Cancel outstanding work, stop the loop and drain the callback pool.

        Called from a completion callback, the pool is shut down without
        waiting. Callbacks already queued still run.
        """
        if self._closed:
            return
        if self.in_loop_thread():
            raise RuntimeError("OperationRunner cannot be closed from its own loop thread")
        self.run(self._cancel_pending())
        self._closed = True
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join()
        self._loop.close()
        self._callbacks.shutdown(wait=not self.in_callback_thread())
        logger.debug("OperationRunner closed")


class OperationState(enum.Enum):
    PENDING = "pending"
    RUNNING = "running"
    FINISHED = "finished"


class Operation(Generic[T]):
    """A started-once, cancellable unit of asynchronous work.

    Args:
        work: Coroutine function receiving the operation's
            :class:`CancellationToken` and returning the result.
        runner: Where the work runs and where the callback is delivered.
        completion: Optional ``completion(content, error)`` callback. Exactly
            one of the two arguments is non-None. Never invoked if the
            operation is cancelled first.
        name: Label used in log lines.
    """

    def __init__(
        self,
        work: Callable[[CancellationToken], Awaitable[T]],
        runner: OperationRunner,
        completion: Completion | None = None,
        *,
        name: str = "operation",
    ) -> None:
        self._work = work
        self._runner = runner
        self._completion = completion
        self._name = name
        self._token = CancellationToken()
        self._lock = threading.Lock()
        self._state = OperationState.PENDING
        self._delivered = False
        self._future: concurrent.futures.Future[T] = concurrent.futures.Future()
        self._context: contextvars.Context | None = None

    @property
    def name(self) -> str:
        return self._name

    @property
    def state(self) -> OperationState:
        return self._state

    @property
    def pending(self) -> bool:
        return self._state is OperationState.PENDING

    @property
    def running(self) -> bool:
        return self._state is OperationState.RUNNING

    @property
    def finished(self) -> bool:
        return self._state is OperationState.FINISHED

    @property
    def cancelled(self) -> bool:
        return self._token.cancelled

    def start(self) -> Operation[T]:
        """Begin the work. Only the first call has any effect."""
        with self._lock:
            if self._state is not OperationState.PENDING:
                return self
            self._state = OperationState.RUNNING
        self._context = contextvars.copy_context()
        if self._token.cancelled:
            self._finish(None, None)
            return self
        logger.debug("%s started", self._name)
        self._runner.submit(self._run(get_request_id()))
        return self

    def cancel(self) -> None:
        """Request cooperative cancellation. No-op once the result was delivered."""
        with self._lock:
            if self._delivered:
                return
            if self._state is OperationState.FINISHED and self._completion is None:
                return
            self._token.cancel()
        logger.debug("%s cancellation requested", self._name)

    async def _run(self, request_id: str) -> None:
        with request_id_bound(request_id):
            try:
                self._token.raise_if_cancelled()
                result = await self._work(self._token)
            except OperationCancelled:
                logger.debug("%s stopped after cancellation", self._name)
                self._finish(None, None)
            except asyncio.CancelledError:
                self._token.cancel()
                self._finish(None, None)
                raise
            except Exception as exc:
                self._finish(None, exc)
            else:
                self._finish(result, None)

    def _finish(self, result: Any, error: BaseException | None) -> None:
        with self._lock:
            self._state = OperationState.FINISHED
            cancelled = self._token.cancelled
        if cancelled:
            self._future.cancel()
            return
        if error is not None:
            logger.debug("%s failed: %s", self._name, error)
            self._future.set_exception(error)
        else:
            self._future.set_result(result)
        if self._completion is not None:
            self._runner.dispatch(self._deliver, result, error)

    def _deliver(self, result: Any, error: BaseException | None) -> None:
        with self._lock:
            if self._token.cancelled:
                return
            self._delivered = True
        assert self._completion is not None
        context = self._context or contextvars.copy_context()
        try:
            context.run(self._completion, result, error)
        except Exception:
            logger.exception("Completion callback of %s raised", self._name)

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the operation finished, was cancelled, or *timeout* elapsed.

        Returns True if the operation is done.
        """
        done, _ = concurrent.futures.wait([self._future], timeout=timeout)
        return bool(done)

    def result(self, timeout: float | None = None) -> T:
        """Block for the result (synchronous call style).

        Raises:
            SearchError: The operation failed.
            concurrent.futures.CancelledError: The operation was cancelled.
            TimeoutError: *timeout* elapsed first.
            RuntimeError: Called on the event loop thread, or before ``start()``.
        """
        if self.pending:
            raise RuntimeError(f"{self._name} has not been started")
        if self._runner.in_loop_thread():
            raise RuntimeError(
                "Operation.result() would block the event loop thread; await the operation instead"
            )
        try:
            return self._future.result(timeout)
        except concurrent.futures.TimeoutError:
            raise TimeoutError(f"{self._name} did not finish within {timeout}s") from None

    def __await__(self) -> Generator[Any, None, T]:
        return self._await_result().__await__()

    async def _await_result(self) -> T:
        """Await the result from any event loop (asynchronous call style).

        Cancelling the awaiting task leaves the operation running. A cancelled
        operation raises :class:`concurrent.futures.CancelledError`, as
        ``result()`` does, so it cannot be mistaken for cancellation of the
        awaiting task itself.
        """
        try:
            return await asyncio.shield(asyncio.wrap_future(self._future))
        except asyncio.CancelledError:
            if self._future.cancelled():
                raise concurrent.futures.CancelledError(f"{self._name} was cancelled") from None
            raise

    def __repr__(self) -> str:
        flag = " cancelled" if self.cancelled else ""
        return f"<Operation {self._name} {self._state.value}{flag}>"
