"""In-process event emitter with wildcard fan-out, one-shot listeners and waiters.

Every listener runs in its own asyncio task, so ``emit`` never waits on a
listener and a failing listener never affects its siblings::

    emitter = EventEmitter()
    off = emitter.on("ready", lambda *args: print(args))
    emitter.emit("ready", 1, 2)
    args = await emitter.wait_for("ready")
    off()
"""

from __future__ import annotations

import asyncio
import inspect
import io
import logging
import threading
from collections.abc import Callable
from typing import Any, Final

from event_emitter.config import EmitterConfig
from event_emitter.diagnostics import CANCEL_REASON, CancelledWaiter, DiagnosticsLog

Callback = Callable[..., Any]
Unsubscribe = Callable[[], None]


class _Wildcard:
    """Reserved event name whose listeners receive every dispatched emission."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "WILDCARD"


WILDCARD: Final = _Wildcard()

EventName = str | _Wildcard


def _running_loop() -> asyncio.AbstractEventLoop | None:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return None


def _resolve(future: asyncio.Future[tuple[Any, ...]], args: tuple[Any, ...]) -> None:
    if not future.done():
        future.set_result(args)


def _same_callback(registered: Callback, callback: Callback) -> bool:
    if registered is callback:
        return True
    # Bound methods are rebuilt on every attribute access.
    if inspect.ismethod(registered) and inspect.ismethod(callback):
        return (
            registered.__self__ is callback.__self__
            and registered.__func__ is callback.__func__
        )
    return False


class EventEmitter:
    """Registry of named listener lists plus the tasks suspended in ``wait_for``."""

    def __init__(
        self,
        config: EmitterConfig | None = None,
        *,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> None:
        self.config = config or EmitterConfig()
        self.logger = logging.getLogger(self.config.logger_name)
        self._loop = loop
        self._lock = threading.Lock()
        self._listeners: dict[EventName, list[Callback]] = {}
        self._waiting: dict[asyncio.Task[Any], EventName] | None = None
        self._running: set[asyncio.Task[Any]] = set()
        self._diagnostics = (
            DiagnosticsLog(self.config.diagnostics_path)
            if self.config.diagnostics_path is not None
            else None
        )

    def __repr__(self) -> str:
        return (
            f"<EventEmitter events={len(self._listeners)} "
            f"waiting={self.waiting_count}>"
        )

    def on(self, event: EventName, callback: Callback) -> Unsubscribe:
        """Register ``callback`` for ``event`` and return a handle that removes it."""
        with self._lock:
            self._listeners.setdefault(event, []).append(callback)

        def off() -> None:
            self.off(event, callback)

        return off

    def off(self, event: EventName, callback: Callback) -> None:
        """Remove the most recently added registration of ``callback`` for ``event``.

        Removing a callback that is not registered is a no-op. The event key
        disappears from the registry once its last listener is gone.
        """
        with self._lock:
            callbacks = self._listeners.get(event)
            if callbacks is None:
                return
            for index in range(len(callbacks) - 1, -1, -1):
                if _same_callback(callbacks[index], callback):
                    del callbacks[index]
                    break
            if not callbacks:
                del self._listeners[event]

    def emit(self, event: EventName, *args: Any) -> None:
        """Spawn one task per listener of ``event``, then one per wildcard listener.

        Emitting an event nobody listens to does nothing, wildcard listeners
        included.
        """
        with self._lock:
            callbacks = self._listeners.get(event)
            if callbacks is None:
                return
            batch = list(callbacks)
            if event is not WILDCARD:
                batch.extend(self._listeners.get(WILDCARD, ()))

        loop = self._dispatch_loop()
        if loop is _running_loop():
            self._spawn_all(loop, batch, args)
        else:
            loop.call_soon_threadsafe(self._spawn_all, loop, batch, args)

    def once(self, event: EventName, callback: Callback) -> Unsubscribe:
        """Register ``callback`` to run at most once, on the next emission of ``event``."""
        fired = False

        def wrapper(*args: Any) -> Any:
            nonlocal fired
            if fired:
                return None
            fired = True
            off()
            return callback(*args)

        off = self.on(event, wrapper)
        return off

    async def wait_for(self, event: EventName) -> tuple[Any, ...]:
        """Suspend the current task until ``event`` fires and return its arguments.

        The only way out besides the emission is ``remove_all``, which cancels
        the waiting task instead of resuming it.
        """
        task = asyncio.current_task()
        if task is None:
            raise RuntimeError("wait_for must be awaited from inside a task")
        future: asyncio.Future[tuple[Any, ...]] = asyncio.get_running_loop().create_future()

        with self._lock:
            if self._waiting is None:
                self._waiting = {}
            waiting = self._waiting
            waiting[task] = event

        def resume(*args: Any) -> None:
            with self._lock:
                waiting.pop(task, None)
            # The emission may be dispatched on another thread's loop.
            loop = future.get_loop()
            if loop is _running_loop():
                _resolve(future, args)
            else:
                loop.call_soon_threadsafe(_resolve, future, args)

        off = self.once(event, resume)
        try:
            return await future
        finally:
            with self._lock:
                waiting.pop(task, None)
            off()

    def remove_all(self) -> None:
        """Drop every listener and cancel every task still suspended in ``wait_for``."""
        with self._lock:
            for callbacks in self._listeners.values():
                callbacks.clear()
            self._listeners.clear()
            if not self._waiting:
                return
            waiting = dict(self._waiting)
            self._waiting.clear()

        for task, event in waiting.items():
            if task.done():
                continue
            self._report_cancelled(task, event)
            self._cancel(task)

    destroy = remove_all

    def listener_count(self, event: EventName) -> int:
        """Return how many registrations ``event`` currently has."""
        with self._lock:
            return len(self._listeners.get(event, ()))

    def event_names(self) -> list[EventName]:
        """Return registered event names in first-subscription order."""
        with self._lock:
            return list(self._listeners)

    @property
    def waiting_count(self) -> int:
        waiting = self._waiting
        return len(waiting) if waiting else 0

    async def drain(self) -> None:
        """Wait until every listener task spawned on the current loop has finished.

        Tasks that belong to other loops are left alone.
        """
        loop = asyncio.get_running_loop()
        current = asyncio.current_task()
        while True:
            with self._lock:
                pending = [
                    task
                    for task in self._running
                    if task.get_loop() is loop and task is not current and not task.done()
                ]
            if not pending:
                return
            await asyncio.wait(pending)

    def _dispatch_loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is not None:
            return self._loop
        loop = _running_loop()
        if loop is None:
            raise RuntimeError("EventEmitter needs a running event loop to dispatch listeners")
        return loop

    def _spawn_all(
        self,
        loop: asyncio.AbstractEventLoop,
        callbacks: list[Callback],
        args: tuple[Any, ...],
    ) -> None:
        for callback in callbacks:
            task = loop.create_task(self._invoke(callback, args))
            with self._lock:
                self._running.add(task)
            task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task[Any]) -> None:
        with self._lock:
            self._running.discard(task)

    async def _invoke(self, callback: Callback, args: tuple[Any, ...]) -> None:
        try:
            result = callback(*args)
            if inspect.isawaitable(result):
                await result
        except Exception:
            level = logging.ERROR if self.config.log_listener_errors else logging.DEBUG
            self.logger.log(level, "Listener %r failed", callback, exc_info=True)

    def _report_cancelled(self, task: asyncio.Task[Any], event: EventName) -> None:
        stack = ""
        if self.config.capture_waiter_stack:
            buffer = io.StringIO()
            task.print_stack(file=buffer)
            stack = buffer.getvalue()
        waiter = CancelledWaiter(task_name=task.get_name(), event=str(event), stack=stack)
        self.logger.warning(
            "[EventEmitter]: Event removed; waiting task disconnected "
            "(task=%s, event=%s, reason=%s)\n%s",
            waiter.task_name,
            waiter.event,
            waiter.reason,
            waiter.stack,
        )
        if self._diagnostics is not None:
            self._diagnostics.record(waiter)

    @staticmethod
    def _cancel(task: asyncio.Task[Any]) -> None:
        loop = task.get_loop()
        if loop is _running_loop():
            task.cancel(CANCEL_REASON)
        else:
            loop.call_soon_threadsafe(task.cancel, CANCEL_REASON)
