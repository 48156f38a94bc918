#!/usr/bin/env python3
"""X11 event waiting and dispatch helpers.

One display connection is shared by the event pump, clipboard reads and
ownership changes. A read blocks (in a worker thread) until a specific event
arrives; every other event seen meanwhile is appended to deferred_events so
the pump can replay it afterwards in order.
"""

from __future__ import annotations

import logging
import select
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from Xlib import X, Xatom

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

    from clipstash.x11_incr import IncrSender

logger = logging.getLogger(__name__)

# Seconds to wait for a reply from another client before giving up.
CLIPBOARD_TIMEOUT: float = 2.0

# Property used to query the server timestamp.
TIMESTAMP_PROPERTY: str = "CLIPSTASH_TIMESTAMP"


def is_owner_change(event: Event) -> bool:
    """True for an XFixes SetSelectionOwnerNotify event."""
    return type(event).__name__ == "SetSelectionOwnerNotify"


def wait_for_event_type(
    display: Display,
    target_event_type: int,
    deferred_events: list[Event],
    timeout: float = CLIPBOARD_TIMEOUT,
    match: Callable[[Event], bool] | None = None,
) -> Event:
    """Block until an event of the target type (and matching) arrives.

    Blocking; call through asyncio.to_thread.

    Args:
        display: The X11 display connection.
        target_event_type: The X11 event type to wait for.
        deferred_events: Receives every other event read meanwhile.
        timeout: Seconds before giving up.
        match: Optional extra condition on the event.

    Returns:
        The matching event.

    Raises:
        TimeoutError: If no matching event arrived in time.
    """
    deadline = time.monotonic() + timeout
    while True:
        while display.pending_events() > 0:
            event = display.next_event()
            if event.type == target_event_type and (match is None or match(event)):
                return event
            deferred_events.append(event)
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TimeoutError(f"No event of type {target_event_type} within {timeout}s")
        select.select([display], [], [], remaining)


def wait_for_property_notify(
    display: Display,
    window: Window,
    prop_atom: int,
    deferred_events: list[Event],
    timeout: float = CLIPBOARD_TIMEOUT,
) -> Event:
    """Block until prop_atom gets a new value on window (INCR receive)."""
    return wait_for_event_type(
        display,
        X.PropertyNotify,
        deferred_events,
        timeout,
        lambda e: e.window.id == window.id and e.atom == prop_atom
            and e.state == X.PropertyNewValue,
    )


def get_server_timestamp(
    display: Display,
    window: Window,
    deferred_events: list[Event],
) -> int:
    """Query the X server's current time.

    Changes a dummy property on window and waits for the resulting
    PropertyNotify, whose time field is the server's clock.

    Raises:
        TimeoutError: If the PropertyNotify does not arrive.
    """
    prop_atom = display.intern_atom(TIMESTAMP_PROPERTY)
    window.change_property(prop_atom, Xatom.INTEGER, 32, [0])
    display.flush()
    event = wait_for_event_type(
        display,
        X.PropertyNotify,
        deferred_events,
        match=lambda e: e.window.id == window.id and e.atom == prop_atom,
    )
    return event.time


def process_pending_events(
    display: Display,
    deferred_events: list[Event],
    incr: IncrSender | None = None,
) -> list[Event]:
    """Collect deferred and already-pending events without blocking.

    Events belonging to an in-progress INCR send are handled here. Returns
    the SelectionRequest and SetSelectionOwnerNotify events, in order, for
    the caller to dispatch; everything else is dropped.
    """
    if incr is not None:
        incr.expire()

    incoming = list(deferred_events)
    deferred_events.clear()
    while display.pending_events() > 0:
        incoming.append(display.next_event())

    events: list[Event] = []
    for event in incoming:
        logger.debug("X11 event type=%s class=%s", event.type, type(event).__name__)
        if incr is not None and incr.handle(event):
            continue
        if event.type == X.SelectionRequest or is_owner_change(event):
            events.append(event)
    return events
