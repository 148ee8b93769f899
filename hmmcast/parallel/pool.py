# hmmcast/parallel/pool.py
from __future__ import annotations

import logging
import threading
from collections import deque
from concurrent.futures import Executor, Future, ProcessPoolExecutor, ThreadPoolExecutor
from typing import Any, Callable, Deque, Tuple

logger = logging.getLogger(__name__)

_Pending = Tuple[Callable[..., Any], Tuple[Any, ...], Future]


class TaskPool:
    """Fixed set of persistent workers fed from a FIFO queue.

    The underlying executor is created once with ``size`` workers and never
    receives more than ``size`` tasks at a time: a submission goes straight to
    an idle worker if there is one and waits in the queue otherwise.  When a
    worker finishes, its future is resolved, the worker is marked idle and the
    next queued task is dispatched.

    There is no priority, cancellation of running tasks or retry.  An
    exception inside a task is set on that task's future.

    Parameters
    ----------
    size:
        Number of workers.
    backend:
        ``"process"`` for a :class:`ProcessPoolExecutor` (tasks and results
        must be picklable) or ``"thread"`` for a :class:`ThreadPoolExecutor`.
    """

    def __init__(self, size: int, backend: str = "process") -> None:
        if size < 1:
            raise ValueError("pool size must be >= 1")
        self.size = int(size)
        self.backend = backend
        self._executor = self._make_executor(backend, self.size)
        self._idle = self.size
        self._queue: Deque[_Pending] = deque()
        self._lock = threading.Lock()
        self._closed = False
        self.submitted = 0
        logger.debug("task pool started: backend=%s workers=%d", backend, self.size)

    @staticmethod
    def _make_executor(backend: str, size: int) -> Executor:
        if backend == "process":
            return ProcessPoolExecutor(max_workers=size)
        if backend == "thread":
            return ThreadPoolExecutor(max_workers=size, thread_name_prefix="hmmcast-worker")
        raise ValueError(f"unknown backend {backend!r}; expected 'process' or 'thread'")

    # ---------------- public ----------------

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        """Queue ``fn(*args)`` and return a future for its result."""
        fut: Future = Future()
        with self._lock:
            if self._closed:
                raise RuntimeError("cannot submit to a pool that has been shut down")
            self._queue.append((fn, args, fut))
            self.submitted += 1
        self._dispatch()
        return fut

    @property
    def idle(self) -> int:
        with self._lock:
            return self._idle

    @property
    def queued(self) -> int:
        with self._lock:
            return len(self._queue)

    def shutdown(self, wait: bool = True) -> None:
        """Stop the workers.  Tasks still queued are cancelled."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            abandoned = list(self._queue)
            self._queue.clear()
        for _, _, fut in abandoned:
            fut.cancel()
        if abandoned:
            logger.debug("task pool shut down with %d queued tasks abandoned", len(abandoned))
        self._executor.shutdown(wait=wait, cancel_futures=True)

    def __enter__(self) -> "TaskPool":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.shutdown()

    # ---------------- internal ----------------

    def _dispatch(self) -> None:
        while True:
            with self._lock:
                if self._closed or self._idle == 0 or not self._queue:
                    return
                fn, args, outer = self._queue.popleft()
                self._idle -= 1

            if not outer.set_running_or_notify_cancel():
                self._release_worker()
                continue
            try:
                inner = self._executor.submit(fn, *args)
            except RuntimeError as exc:
                # executor went away between the closed check and the submit
                outer.set_exception(exc)
                self._release_worker()
                continue
            inner.add_done_callback(lambda done, outer=outer: self._on_done(outer, done))

    def _on_done(self, outer: Future, inner: Future) -> None:
        if inner.cancelled():
            outer.set_exception(RuntimeError("task abandoned at pool shutdown"))
        else:
            exc = inner.exception()
            if exc is not None:
                outer.set_exception(exc)
            else:
                outer.set_result(inner.result())
        self._release_worker()
        self._dispatch()

    def _release_worker(self) -> None:
        with self._lock:
            self._idle += 1
