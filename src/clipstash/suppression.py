#!/usr/bin/env python3
"""
Self-write suppression for clipboard copy-back.

When the writer puts a history entry back on the clipboard, the watcher
sees an ordinary clipboard change. Without tracking, that change would be
recorded again and the entry would reappear at the top of history.

The guard holds at most one expected-content token: the fingerprint of
exactly what was written plus a deadline. An observation is suppressed only
if its fingerprint equals the token's and the deadline has not passed; the
token is consumed by that first match. A different observation (another
application won the race) leaves the token alone and is recorded normally.

Critical ordering: expect() must be called BEFORE writing to the clipboard
so the resulting change notification is recognized as self-originated.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field


@dataclass
class SelfWriteGuard:
    """
    Track the single pending self-write.

    Attributes:
        expected: Fingerprint of the content being written, or None.
        deadline: Clock value after which the token is void.
        clock: Monotonic time source, injectable for tests.
    """

    expected: str | None = None
    deadline: float = 0.0
    clock: Callable[[], float] = time.monotonic
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def expect(self, fingerprint: str, window: float) -> None:
        """
        Register the content about to be written.

        Replaces any earlier token: only the most recent copy-back can still
        be in flight.

        Args:
            fingerprint: Fingerprint of the exact content being written.
            window: Seconds the token stays valid.
        """
        with self._lock:
            self.expected = fingerprint
            self.deadline = self.clock() + window

    def should_suppress(self, fingerprint: str) -> bool:
        """
        Check whether an observed change is our own write.

        Returns True, and consumes the token, only for an exact match within
        the window. An expired token is discarded.

        Args:
            fingerprint: Fingerprint of the content the watcher observed.

        Returns:
            True if the observation must not enter the pipeline.
        """
        with self._lock:
            if self.expected is None:
                return False
            if self.clock() > self.deadline:
                self.expected = None
                return False
            if fingerprint != self.expected:
                return False
            self.expected = None
            return True

    def withdraw(self, fingerprint: str | None = None) -> None:
        """
        Drop the pending token.

        Used when the write failed, so a later identical external copy is
        not swallowed. With a fingerprint, only a matching token is dropped.
        """
        with self._lock:
            if fingerprint is None or fingerprint == self.expected:
                self.expected = None

    @property
    def pending(self) -> bool:
        with self._lock:
            return self.expected is not None and self.clock() <= self.deadline
