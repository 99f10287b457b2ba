from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from scoreprobe.errors import CheckTimeoutError

logger = logging.getLogger(__name__)

CANCELED = "context canceled"
DEADLINE_EXCEEDED = "context deadline exceeded"
TIMEOUT_PREFIX = "Timeout limit reached"

# Never hand a socket a zero or negative timeout; that switches it to
# non-blocking mode instead of failing fast.
MIN_TIMEOUT_S = 0.05


def timeout_message(ctx: "RunContext", stage: str | None = None) -> str:
    where = f" during {stage}" if stage else ""
    return f"{TIMEOUT_PREFIX}{where}: {ctx.reason or DEADLINE_EXCEEDED}"


class RunContext:
    """Cancellation signal and deadline passed down to every blocking call.

    A context is done once it is cancelled explicitly, its parent is
    cancelled, or its deadline passes. A daemon timer fires at the deadline
    so callbacks registered with on_cancel() can force-release sockets and
    sessions held by a probe that is still blocked in a library call.
    Deadlines use time.monotonic().
    """

    def __init__(
        self, deadline: float | None = None, parent: RunContext | None = None
    ) -> None:
        if parent is not None and parent.deadline is not None:
            deadline = (
                parent.deadline if deadline is None else min(deadline, parent.deadline)
            )
        self.deadline = deadline
        self._parent = parent
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._reason: str | None = None
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_handle = 0
        self._children: set[RunContext] = set()
        self._timer: threading.Timer | None = None

        if parent is not None:
            parent._attach(self)

        if deadline is not None and not self._done.is_set():
            delay = deadline - time.monotonic()
            if delay <= 0:
                self.cancel(DEADLINE_EXCEEDED)
            else:
                self._timer = threading.Timer(delay, self.cancel, args=(DEADLINE_EXCEEDED,))
                self._timer.daemon = True
                self._timer.start()

    @classmethod
    def background(cls) -> RunContext:
        return cls()

    @classmethod
    def with_timeout(cls, timeout_s: float) -> RunContext:
        return cls(deadline=time.monotonic() + timeout_s)

    def child(self, timeout_s: float | None = None) -> RunContext:
        deadline = None if timeout_s is None else time.monotonic() + timeout_s
        return RunContext(deadline=deadline, parent=self)

    def _attach(self, child: RunContext) -> None:
        with self._lock:
            if not self._done.is_set():
                self._children.add(child)
                return
            reason = self._reason
        child.cancel(reason or CANCELED)

    def _detach(self, child: RunContext) -> None:
        with self._lock:
            self._children.discard(child)

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str = CANCELED) -> None:
        with self._lock:
            if self._done.is_set():
                return
            self._reason = reason
            self._done.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
            children = list(self._children)
            self._children.clear()
            timer = self._timer

        if timer is not None:
            timer.cancel()
        for child in children:
            child.cancel(reason)
        for callback in callbacks:
            try:
                callback()
            except Exception:
                logger.warning("Cancellation callback failed", exc_info=True)
        if self._parent is not None:
            self._parent._detach(self)

    def done(self) -> bool:
        if self._done.is_set():
            return True
        if self.deadline is not None and time.monotonic() >= self.deadline:
            # The timer thread may not have been scheduled yet.
            self.cancel(DEADLINE_EXCEEDED)
            return True
        return False

    def remaining(self) -> float | None:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def timeout_for(self, limit: float) -> float:
        """Shorter of a protocol sub-timeout and the time left."""
        remaining = self.remaining()
        if remaining is None:
            return limit
        return max(MIN_TIMEOUT_S, min(limit, remaining))

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context is done or timeout elapses; True if done."""
        return self._done.wait(timeout)

    def raise_if_done(self) -> None:
        if self.done():
            raise CheckTimeoutError(timeout_message(self))

    def on_cancel(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register callback to run when the context is done.

        Returns a function that unregisters it. If the context is already
        done the callback runs immediately.
        """
        with self._lock:
            if not self._done.is_set():
                handle = self._next_handle
                self._next_handle += 1
                self._callbacks[handle] = callback

                def release() -> None:
                    with self._lock:
                        self._callbacks.pop(handle, None)

                return release

        callback()
        return lambda: None

    def __enter__(self) -> RunContext:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.cancel(CANCELED)
