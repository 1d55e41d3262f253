"""Single-threaded task queue driving a recording session.

Every state change of a session runs as a callback on one scheduler. Device
callbacks and dispatch completions that originate on other threads are
posted with :meth:`Scheduler.call_soon`, which is the only thread-safe entry
point besides :meth:`Scheduler.call_blocking`.
"""

from __future__ import annotations

import abc
import heapq
import itertools
import threading
import time
from collections import deque
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Deque, List, Optional, Tuple, TypeVar

from ...logging import get_logger

LOGGER = get_logger(__name__)

T = TypeVar("T")
Callback = Callable[[], None]
DoneCallback = Callable[["Future[Any]"], None]


class TimerHandle:
    """Cancellation handle for a scheduled callback."""

    def __init__(self) -> None:
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class _PeriodicHandle(TimerHandle):
    def __init__(self, scheduler: "Scheduler", interval: float, callback: Callback) -> None:
        super().__init__()
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self._inner = scheduler.call_later(interval, self._fire)

    def _fire(self) -> None:
        if self._cancelled:
            return
        # Re-arm before running so the callback may cancel this handle.
        self._inner = self._scheduler.call_later(self._interval, self._fire)
        self._callback()

    def cancel(self) -> None:
        super().cancel()
        self._inner.cancel()


class Scheduler(abc.ABC):
    """Clock, timers and background work for one logical thread."""

    @abc.abstractmethod
    def now(self) -> float:
        """Monotonic time in seconds."""

    @abc.abstractmethod
    def call_soon(self, callback: Callback) -> None:
        """Queue ``callback`` to run on the scheduler thread (thread-safe)."""

    @abc.abstractmethod
    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        """Run ``callback`` once after ``delay`` seconds."""

    @abc.abstractmethod
    def run_in_background(self, fn: Callable[[], T], on_done: DoneCallback) -> "Future[T]":
        """Run blocking ``fn`` off the scheduler thread.

        ``on_done`` receives the finished future back on the scheduler thread.
        """

    @abc.abstractmethod
    def call_blocking(self, fn: Callable[..., T], *args: Any) -> T:
        """Run ``fn`` on the scheduler thread and return its result to the caller."""

    def call_every(self, interval: float, callback: Callback) -> TimerHandle:
        if interval <= 0:
            raise ValueError("interval must be positive")
        return _PeriodicHandle(self, interval, callback)


def _invoke(callback: Callback) -> None:
    try:
        callback()
    except Exception:
        LOGGER.exception("Scheduled callback %r raised", callback)


class LoopScheduler(Scheduler):
    """Scheduler backed by a dedicated loop thread and a one-worker pool."""

    def __init__(self, name: str = "lecturescribe-loop") -> None:
        self._name = name
        self._condition = threading.Condition()
        self._ready: Deque[Callback] = deque()
        self._timers: List[Tuple[float, int, TimerHandle, Callback]] = []
        self._counter = itertools.count()
        self._running = False
        self._thread: Optional[threading.Thread] = None
        self._executor: Optional[ThreadPoolExecutor] = None

    def start(self) -> None:
        with self._condition:
            if self._running:
                return
            self._running = True
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"{self._name}-worker")
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 2.0) -> None:
        with self._condition:
            self._running = False
            self._condition.notify_all()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=timeout)
        self._thread = None
        if self._executor is not None:
            # Abandoned service calls are bounded by their own timeout.
            self._executor.shutdown(wait=False, cancel_futures=True)
            self._executor = None

    def __enter__(self) -> "LoopScheduler":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.stop()

    def now(self) -> float:
        return time.monotonic()

    def call_soon(self, callback: Callback) -> None:
        with self._condition:
            self._ready.append(callback)
            self._condition.notify()

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle()
        with self._condition:
            heapq.heappush(
                self._timers,
                (self.now() + max(delay, 0.0), next(self._counter), handle, callback),
            )
            self._condition.notify()
        return handle

    def run_in_background(self, fn: Callable[[], T], on_done: DoneCallback) -> "Future[T]":
        if self._executor is None:
            raise RuntimeError("LoopScheduler is not running")
        future = self._executor.submit(fn)
        future.add_done_callback(lambda done: self.call_soon(lambda: on_done(done)))
        return future

    def call_blocking(self, fn: Callable[..., T], *args: Any) -> T:
        if threading.current_thread() is self._thread:
            return fn(*args)
        result: "Future[T]" = Future()

        def runner() -> None:
            if not result.set_running_or_notify_cancel():
                return
            try:
                result.set_result(fn(*args))
            except BaseException as exc:
                result.set_exception(exc)

        self.call_soon(runner)
        return result.result()

    def _run(self) -> None:
        while True:
            with self._condition:
                while self._running and not self._ready and not self._due():
                    timeout = None
                    if self._timers:
                        timeout = max(self._timers[0][0] - self.now(), 0.0)
                    self._condition.wait(timeout)
                if not self._running:
                    return
                batch = list(self._ready)
                self._ready.clear()
                now = self.now()
                while self._timers and self._timers[0][0] <= now:
                    _, _, handle, callback = heapq.heappop(self._timers)
                    if not handle.cancelled:
                        batch.append(callback)
            for callback in batch:
                _invoke(callback)

    def _due(self) -> bool:
        return bool(self._timers) and self._timers[0][0] <= self.now()


class ManualScheduler(Scheduler):
    """Deterministic scheduler with a fake clock, for tests and simulations.

    Background jobs run inline by default and their completion is queued like
    a real worker would post it. With ``hold_background=True`` jobs stay
    pending until :meth:`complete_background` runs them.
    """

    def __init__(self, start: float = 0.0, hold_background: bool = False) -> None:
        self._time = float(start)
        self.hold_background = hold_background
        self._lock = threading.Lock()
        self._ready: Deque[Callback] = deque()
        self._timers: List[Tuple[float, int, TimerHandle, Callback]] = []
        self._counter = itertools.count()
        self._held: Deque[Tuple[Callable[[], Any], "Future[Any]", DoneCallback]] = deque()

    def now(self) -> float:
        return self._time

    def call_soon(self, callback: Callback) -> None:
        with self._lock:
            self._ready.append(callback)

    def call_later(self, delay: float, callback: Callback) -> TimerHandle:
        handle = TimerHandle()
        with self._lock:
            heapq.heappush(
                self._timers,
                (self._time + max(delay, 0.0), next(self._counter), handle, callback),
            )
        return handle

    def run_in_background(self, fn: Callable[[], T], on_done: DoneCallback) -> "Future[T]":
        future: "Future[T]" = Future()
        job = (fn, future, on_done)
        if self.hold_background:
            self._held.append(job)
        else:
            self._execute(job)
        return future

    def call_blocking(self, fn: Callable[..., T], *args: Any) -> T:
        result = fn(*args)
        self.run_pending()
        return result

    @property
    def pending_background(self) -> int:
        return len(self._held)

    def complete_background(self, count: Optional[int] = None) -> int:
        """Finish up to ``count`` held jobs (all by default) in submission order."""

        completed = 0
        while self._held and (count is None or completed < count):
            self._execute(self._held.popleft())
            completed += 1
        self.run_pending()
        return completed

    def run_pending(self) -> None:
        """Run queued callbacks and timers that are due at the current time."""

        while True:
            callback = self._pop_next(self._time)
            if callback is None:
                return
            _invoke(callback)

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing timers at their due times in order."""

        if seconds < 0:
            raise ValueError("Cannot move the clock backwards")
        target = self._time + seconds
        self.run_pending()
        while True:
            with self._lock:
                while self._timers and self._timers[0][2].cancelled:
                    heapq.heappop(self._timers)
                if not self._timers or self._timers[0][0] > target:
                    break
                self._time = max(self._time, self._timers[0][0])
            self.run_pending()
        self._time = target
        self.run_pending()

    def _pop_next(self, now: float) -> Optional[Callback]:
        with self._lock:
            if self._ready:
                return self._ready.popleft()
            while self._timers and self._timers[0][0] <= now:
                _, _, handle, callback = heapq.heappop(self._timers)
                if not handle.cancelled:
                    return callback
        return None

    def _execute(self, job: Tuple[Callable[[], Any], "Future[Any]", DoneCallback]) -> None:
        fn, future, on_done = job
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(fn())
        except BaseException as exc:
            future.set_exception(exc)
        self.call_soon(lambda: on_done(future))


__all__ = [
    "LoopScheduler",
    "ManualScheduler",
    "Scheduler",
    "TimerHandle",
]
