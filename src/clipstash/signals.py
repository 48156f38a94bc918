#!/usr/bin/env python3
"""Coalescing refresh notification.

The listener calls notify() after every published snapshot; the UI only
needs to know that something changed since it last looked, so any number of
notifications between two wakeups collapse into one.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

logger = logging.getLogger(__name__)


class RefreshSignal:
    """Thread-safe, coalescing "history changed" signal.

    Consumers either await wait() or register callbacks with subscribe();
    callbacks run on the event loop once per coalesced batch.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop
        self._event = asyncio.Event()
        self._callbacks: list[Callable[[], None]] = []
        self._dispatch_scheduled = False
        self.batches = 0

    def subscribe(self, callback: Callable[[], None]) -> Callable[[], None]:
        """Register a callback; returns a function that unregisters it."""
        self._callbacks.append(callback)

        def unsubscribe() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return unsubscribe

    def notify(self) -> None:
        """Mark history as changed. Safe to call from any thread.

        Raises:
            RuntimeError: If called outside the event loop before the signal
                was ever used inside one.
        """
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None and (self._loop is None or running is self._loop):
            self._loop = running
            self._set()
        elif self._loop is not None:
            self._loop.call_soon_threadsafe(self._set)
        else:
            raise RuntimeError("RefreshSignal is not bound to an event loop")

    def _set(self) -> None:
        if not self._event.is_set():
            self.batches += 1
        self._event.set()
        if self._callbacks and not self._dispatch_scheduled:
            self._dispatch_scheduled = True
            asyncio.get_running_loop().call_soon(self._dispatch)

    def _dispatch(self) -> None:
        self._dispatch_scheduled = False
        for callback in list(self._callbacks):
            try:
                callback()
            except Exception:
                logger.exception("Refresh subscriber %r failed", callback)

    @property
    def pending(self) -> bool:
        return self._event.is_set()

    async def wait(self) -> None:
        """Return once at least one notify() happened since the last wait()."""
        await self._event.wait()
        self._event.clear()
