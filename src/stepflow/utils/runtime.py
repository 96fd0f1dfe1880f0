"""Runtime helpers: cancellation signals, metadata cloning, run ids, fail-fast gathering."""

from __future__ import annotations

import asyncio
import copy
import logging
import uuid
from collections.abc import Awaitable, Callable, Iterable, Sequence
from typing import Any, TypeVar

from pydantic import BaseModel

from stepflow.errors import AbortError

logger = logging.getLogger(__name__)

T = TypeVar("T")
Meta = TypeVar("Meta")

AbortListener = Callable[[AbortError], None]


def _as_abort_error(reason: object) -> AbortError:
    if isinstance(reason, AbortError):
        return reason
    if reason is None:
        return AbortError()
    if isinstance(reason, BaseException):
        error = AbortError(f"Workflow run aborted: {reason}")
        error.__cause__ = reason
        return error
    return AbortError(str(reason))


class CancellationSignal:
    """A monotonic cancellation flag with listener registration.

    Once aborted a signal stays aborted; its ``reason`` is always an
    ``AbortError`` so callers can tell cancellation apart from failures.
    """

    def __init__(self) -> None:
        self._reason: AbortError | None = None
        self._listeners: list[AbortListener] = []

    @property
    def aborted(self) -> bool:
        return self._reason is not None

    @property
    def reason(self) -> AbortError | None:
        return self._reason

    def add_listener(self, listener: AbortListener) -> Callable[[], None]:
        """Register ``listener``; it runs immediately if the signal already fired."""

        if self._reason is not None:
            listener(self._reason)
            return lambda: None
        self._listeners.append(listener)
        return lambda: self.remove_listener(listener)

    def remove_listener(self, listener: AbortListener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def raise_if_aborted(self) -> None:
        if self._reason is not None:
            raise self._reason

    async def wait(self) -> AbortError:
        """Suspend until the signal fires and return its reason."""

        if self._reason is not None:
            return self._reason
        future: asyncio.Future[AbortError] = asyncio.get_running_loop().create_future()

        def _resolve(reason: AbortError) -> None:
            if not future.done():
                future.set_result(reason)

        remove = self.add_listener(_resolve)
        try:
            return await future
        finally:
            remove()

    def _trigger(self, reason: object) -> bool:
        if self._reason is not None:
            return False
        self._reason = _as_abort_error(reason)
        listeners, self._listeners = self._listeners, []
        for listener in listeners:
            listener(self._reason)
        return True


class CancellationController:
    """Owner side of a ``CancellationSignal``."""

    def __init__(self) -> None:
        self.signal = CancellationSignal()

    def abort(self, reason: object = None) -> None:
        """Signal cancellation. Later calls keep the first reason."""

        self.signal._trigger(reason)


class MergedSignal(CancellationSignal):
    """A signal derived from several sources.

    Fires with the first observed reason and detaches from every source when
    it fires or when ``release()`` is called.
    """

    def __init__(self, sources: Sequence[CancellationSignal]) -> None:
        super().__init__()
        self._detach: list[Callable[[], None]] = []
        for source in sources:
            if source.aborted:
                self._trigger(source.reason)
                break
            self._detach.append(source.add_listener(self._on_source_abort))
        if self.aborted:
            self.release()

    def _on_source_abort(self, reason: AbortError) -> None:
        self._trigger(reason)
        self.release()

    @property
    def attached(self) -> int:
        return len(self._detach)

    def release(self) -> None:
        detach, self._detach = self._detach, []
        for remove in detach:
            remove()


def merge_signals(signals: Iterable[CancellationSignal]) -> MergedSignal:
    """Combine ``signals`` into one signal that fires as soon as any of them does."""

    return MergedSignal(list(signals))


def clone_metadata(metadata: Meta | None) -> Meta | dict[str, Any]:
    """Deep-copy run metadata so a run never shares state with its definition."""

    if metadata is None:
        return {}
    if isinstance(metadata, BaseModel):
        return metadata.model_copy(deep=True)
    return copy.deepcopy(metadata)


def create_run_id(prefix: str = "run_") -> str:
    return f"{prefix}{uuid.uuid4().hex[:8]}"


async def gather_fail_fast(awaitables: Sequence[Awaitable[T]]) -> list[T]:
    """Await every awaitable concurrently, failing on the first exception.

    When one task fails, the remaining tasks are cancelled and awaited until
    they settle before the failure propagates, so no task outlives the call.
    Among failures observed in the same wake-up, the lowest position wins.
    """

    tasks = [asyncio.ensure_future(item) for item in awaitables]
    if not tasks:
        return []
    try:
        pending: set[asyncio.Future[T]] = set(tasks)
        while pending:
            done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_EXCEPTION)
            failed = [t for t in tasks if t in done and not t.cancelled() and t.exception()]
            if failed:
                for task in pending:
                    task.cancel()
                if pending:
                    await asyncio.gather(*pending, return_exceptions=True)
                error = failed[0].exception()
                assert error is not None
                raise error
    except asyncio.CancelledError:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return [task.result() for task in tasks]
