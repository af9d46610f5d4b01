"""
Cancellation/deadline scope shared by every blocking step of one invocation.
"""

import time
from threading import Event

from .exceptions import Cancelled


class Scope:
    """
    A cancel signal plus an optional absolute deadline.

    One instance covers a whole CLI invocation. Blocking steps either poll
    `cancelled` or `remaining`; `check` turns a cancelled scope into
    a `.Cancelled` error.
    """

    def __init__(self, timeout=None, clock=time.monotonic):
        self._clock = clock
        self._event = Event()
        self.deadline = None
        if timeout:
            self.deadline = clock() + float(timeout)

    def cancel(self):
        self._event.set()

    @property
    def expired(self):
        return self.deadline is not None and self._clock() >= self.deadline

    @property
    def cancelled(self):
        return self._event.is_set() or self.expired

    def remaining(self, cap=None):
        """
        Seconds left before the deadline, optionally capped; ``None`` if
        neither a deadline nor a cap applies.
        """
        if self.deadline is None:
            return cap
        left = max(0.0, self.deadline - self._clock())
        if cap is not None:
            return min(left, cap)
        return left

    def check(self, what="operation"):
        if self._event.is_set():
            raise Cancelled("{} cancelled".format(what))
        if self.expired:
            raise Cancelled("{} cancelled: deadline exceeded".format(what))

    def __repr__(self):
        state = "cancelled" if self.cancelled else "active"
        return "<Scope {} deadline={!r}>".format(state, self.deadline)
