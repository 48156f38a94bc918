#!/usr/bin/env python3
"""X11 clipboard backend.

Integrates the display connection into asyncio: the display fd is watched
with loop.add_reader(), and a pump task drains pending events whenever it
becomes readable. The pump serves SelectionRequests while we own CLIPBOARD
and turns XFixes owner changes into change notifications for the watcher.

The display is shared by the pump, reads and writes under one asyncio.Lock.
Blocking waits run in worker threads and defer unrelated events; the pump
is woken after each of them to replay what was deferred.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import TYPE_CHECKING, cast

from Xlib import X

from clipstash.errors import ClipboardWriteError
from clipstash.x11_display import (
    create_hidden_window,
    get_display_fd,
    open_display,
    register_xfixes_events,
    take_selection_ownership,
)
from clipstash.x11_events import get_server_timestamp, is_owner_change, process_pending_events
from clipstash.x11_incr import IncrSender
from clipstash.x11_read import read_clipboard
from clipstash.x11_serve import OwnedContent, handle_selection_request

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.event import SelectionRequest
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

    from clipstash.backend import ClipboardContent

logger = logging.getLogger(__name__)


class X11Backend:
    """CLIPBOARD access through python-xlib.

    Attributes:
        display: The X11 display connection.
        window: Hidden window used for transfers and ownership.
        clipboard_atom: Cached CLIPBOARD atom.
        owned: Content served while we own CLIPBOARD, else None.
        acquisition_time: Server time we took ownership, else None.
        deferred_events: Events read during blocking waits, for the pump.
    """

    name = "x11"

    def __init__(self, display_name: str | None = None) -> None:
        self.display_name = display_name
        self.display: Display | None = None
        self.window: Window | None = None
        self.clipboard_atom = 0
        self.owned: OwnedContent | None = None
        self.acquisition_time: int | None = None
        self.deferred_events: list[Event] = []
        self.incr: IncrSender | None = None
        self._lock = asyncio.Lock()
        self._x11_event = asyncio.Event()
        self._changed = asyncio.Event()
        self._pump_task: asyncio.Task | None = None
        self._fd: int | None = None

    async def start(self) -> None:
        """Connect, register for owner changes and start the event pump.

        Raises:
            BackendUnavailableError: If the display or XFixes is unavailable.
        """
        self.display = open_display(self.display_name)
        self.window = create_hidden_window(self.display)
        self.clipboard_atom = register_xfixes_events(self.display, self.window)
        self.incr = IncrSender(self.display)

        loop = asyncio.get_running_loop()
        self._fd = get_display_fd(self.display)
        loop.add_reader(self._fd, self._x11_event.set)
        self._pump_task = asyncio.create_task(self._pump())
        # Capture whatever is already on the clipboard.
        self._changed.set()
        self._x11_event.set()
        logger.debug("X11 backend connected to %s", self.display.get_display_name())

    async def _pump(self) -> None:
        while True:
            await self._x11_event.wait()
            self._x11_event.clear()
            async with self._lock:
                for event in process_pending_events(
                    self.display, self.deferred_events, self.incr
                ):
                    self._dispatch(event)

    def _dispatch(self, event: Event) -> None:
        if event.type == X.SelectionRequest:
            handle_selection_request(
                self.display,
                cast("SelectionRequest", event),
                self.owned,
                self.acquisition_time,
                self.incr,
            )
        elif is_owner_change(event):
            if event.selection != self.clipboard_atom:
                return
            if event.owner.id != self.window.id:
                self.owned = None
                self.acquisition_time = None
                self.incr.cancel(event.selection)
            self._changed.set()

    async def wait_for_change(self) -> None:
        """Return after the next CLIPBOARD owner change.

        Raises:
            Exception: Whatever ended the event pump (e.g. a closed display).
        """
        waiter = asyncio.create_task(self._changed.wait())
        done, _ = await asyncio.wait(
            {waiter, self._pump_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if waiter not in done:
            waiter.cancel()
            with suppress(asyncio.CancelledError):
                await waiter
            self._pump_task.result()
        self._changed.clear()

    async def read(self) -> ClipboardContent | None:
        async with self._lock:
            owner = self.display.get_selection_owner(self.clipboard_atom)
            if owner == X.NONE:
                logger.debug("No CLIPBOARD owner")
                return None
            if owner == self.window:
                # Never convert from ourselves: the pump cannot answer while
                # we hold the lock.
                return self.owned.content if self.owned is not None else None
            try:
                return await read_clipboard(
                    self.display, self.window, self.clipboard_atom, self.deferred_events
                )
            finally:
                self._x11_event.set()

    async def write_text(self, text: str) -> None:
        await self._take_ownership(OwnedContent.text(text))

    async def write_image(self, png: bytes) -> None:
        await self._take_ownership(OwnedContent.image(png))

    async def _take_ownership(self, owned: OwnedContent) -> None:
        async with self._lock:
            try:
                timestamp = await asyncio.to_thread(
                    get_server_timestamp, self.display, self.window, self.deferred_events
                )
            except TimeoutError as e:
                raise ClipboardWriteError("X server did not report a timestamp") from e
            finally:
                self._x11_event.set()
            self.owned = owned
            if not take_selection_ownership(
                self.display, self.window, self.clipboard_atom, timestamp
            ):
                self.owned = None
                raise ClipboardWriteError("Could not acquire CLIPBOARD ownership")
            self.acquisition_time = timestamp

    async def close(self) -> None:
        if self._pump_task is not None:
            self._pump_task.cancel()
            await asyncio.gather(self._pump_task, return_exceptions=True)
        if self._fd is not None:
            asyncio.get_running_loop().remove_reader(self._fd)
            self._fd = None
        if self.display is not None:
            self.display.close()
            self.display = None
