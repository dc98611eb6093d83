"""Abortable asynchronous operations.

A `CancelableOperation` pairs a result future with an abort callback. Aborting
is not undoing: it only asks the underlying work to stop as soon as possible.
Every aborted operation still settles, usually by rejecting with the
OPERATION_ABORTED error.

Operations compose with `chain()`. The derived operation's abort always
targets whichever stage is live at the time it is called, so a single abort
on the outermost operation stops exactly the work in progress.

All constructors must be called with a running event loop.
"""

from __future__ import annotations

import asyncio
import inspect
from collections.abc import Awaitable, Callable, Coroutine, Generator, Iterable
from typing import Any, Generic, TypeVar

from streamfetch.errors import abort_error

T = TypeVar("T")
U = TypeVar("U")

AbortCallback = Callable[[], Awaitable[None]]


async def _noop() -> None:
    return None


def _observe(future: asyncio.Future[Any]) -> None:
    """Mark a rejection as retrieved so asyncio does not log it at GC time."""
    if not future.cancelled():
        future.exception()


def _resolve(future: asyncio.Future[Any], value: Any) -> None:
    if not future.done():
        future.set_result(value)


def _reject(future: asyncio.Future[Any], error: BaseException) -> None:
    if not future.done():
        future.set_exception(error)


def _relay(source: asyncio.Future[Any], target: asyncio.Future[Any]) -> None:
    """Settle `target` with the outcome of `source` once it completes."""

    def _copy(done: asyncio.Future[Any]) -> None:
        if done.cancelled():
            _reject(target, abort_error())
            return
        error = done.exception()
        if error is not None:
            _reject(target, error)
        else:
            _resolve(target, done.result())

    source.add_done_callback(_copy)


async def _wait_quietly(future: asyncio.Future[Any]) -> None:
    """Wait for a future to settle, ignoring its outcome."""
    await asyncio.wait([future])
    _observe(future)


class _AbortLatch:
    """Indirection cell holding the abort target of the live chain stage."""

    def __init__(self, target: AbortCallback):
        self.target = target

    async def __call__(self) -> None:
        await self.target()


class CancelableOperation(Generic[T]):
    """A deferred result plus an abort function."""

    def __init__(self, result: Awaitable[T], on_abort: AbortCallback):
        self.result: asyncio.Future[T] = asyncio.ensure_future(result)
        self._on_abort = on_abort
        self._aborted = False

    def __await__(self) -> Generator[Any, None, T]:
        return self.result.__await__()

    async def abort(self) -> None:
        """Ask the underlying work to stop. Never raises."""
        self._aborted = True
        await self._on_abort()

    @classmethod
    def completed(cls, value: U) -> "CancelableOperation[U]":
        future = asyncio.get_running_loop().create_future()
        future.set_result(value)
        return cls(future, _noop)

    @classmethod
    def failed(cls, error: BaseException) -> "CancelableOperation[Any]":
        future = asyncio.get_running_loop().create_future()
        future.set_exception(error)
        return cls(future, _noop)

    @classmethod
    def aborted(cls) -> "CancelableOperation[Any]":
        """Return an operation already failed with OPERATION_ABORTED."""
        future = asyncio.get_running_loop().create_future()
        future.set_exception(abort_error())
        _observe(future)
        return cls(future, _noop)

    @classmethod
    def not_abortable(cls, awaitable: Awaitable[U]) -> "CancelableOperation[U]":
        """Wrap work that cannot be stopped; abort waits for it to settle."""
        future = asyncio.ensure_future(awaitable)
        return cls(future, lambda: _wait_quietly(future))

    @classmethod
    def from_coroutine(cls, coro: Coroutine[Any, Any, U]) -> "CancelableOperation[U]":
        """Run a coroutine as a task; aborting cancels the task.

        A cancelled task rejects the result with OPERATION_ABORTED.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(coro)
        result = loop.create_future()
        _relay(task, result)

        async def _cancel() -> None:
            task.cancel()
            await _wait_quietly(task)

        return cls(result, _cancel)

    @classmethod
    def all(cls, operations: Iterable["CancelableOperation[Any]"]) -> "CancelableOperation[list[Any]]":
        """Succeed when every operation succeeds; abort aborts every member."""
        members = list(operations)
        result = asyncio.gather(*(op.result for op in members))

        async def _abort_all() -> None:
            await asyncio.gather(*(op.abort() for op in members))

        return cls(result, _abort_all)

    def on_settled(self, callback: Callable[[bool], Any]) -> "CancelableOperation[T]":
        """Call `callback(succeeded)` once the result settles."""

        def _done(future: asyncio.Future[T]) -> None:
            succeeded = not future.cancelled() and future.exception() is None
            callback(succeeded)

        self.result.add_done_callback(_done)
        return self

    def chain(
        self,
        on_success: Callable[[T], Any] | None = None,
        on_error: Callable[[BaseException], Any] | None = None,
    ) -> "CancelableOperation[Any]":
        """Run a callback after this operation settles and return the combined operation.

        Either callback may return a plain value, an awaitable, or another
        `CancelableOperation`; in the last case the combined operation's
        abort targets the nested operation from then on.
        """
        loop = asyncio.get_running_loop()
        new_result: asyncio.Future[Any] = loop.create_future()
        chain_aborted = False

        async def _abort_upstream() -> None:
            nonlocal chain_aborted
            chain_aborted = True
            _reject(new_result, abort_error())
            await self.abort()

        latch = _AbortLatch(_abort_upstream)

        def _settled(future: asyncio.Future[T]) -> None:
            if chain_aborted:
                _observe(future)
                return
            if future.cancelled():
                succeeded, value = False, abort_error()
            else:
                error = future.exception()
                succeeded = error is None
                value = future.result() if succeeded else error

            if succeeded and self._aborted:
                # Upstream finished even though it was aborted; stop here.
                _reject(new_result, abort_error())
                return

            callback = on_success if succeeded else on_error
            if callback is None:
                if succeeded:
                    _resolve(new_result, value)
                else:
                    _reject(new_result, value)
                return

            latch.target = _wrap_chain_callback(callback, value, new_result)

        self.result.add_done_callback(_settled)
        return CancelableOperation(new_result, latch)


def _wrap_chain_callback(
    callback: Callable[[Any], Any],
    value: Any,
    new_result: asyncio.Future[Any],
) -> AbortCallback:
    """Invoke a chain callback, settle `new_result`, and return the next abort target."""
    try:
        returned = callback(value)
    except Exception as exc:  # noqa: BLE001
        _reject(new_result, exc)
        return _noop

    if isinstance(returned, CancelableOperation):
        _relay(returned.result, new_result)
        return returned.abort

    if inspect.isawaitable(returned):
        pending = asyncio.ensure_future(returned)
        _relay(pending, new_result)
        return lambda: _wait_quietly(pending)

    _resolve(new_result, returned)
    return _noop
