#!/usr/bin/env python3
"""Serving CLIPBOARD content while we own it.

After a copy-back the hidden window owns CLIPBOARD and every paste in
another application arrives as a SelectionRequest. Supported targets:

- TARGETS: the list of targets below
- TIMESTAMP: the server time ownership was acquired
- UTF8_STRING, text/plain;charset=utf-8, text/plain, STRING: text content
- image/png: image content

Unsupported targets are refused with property None. Payloads larger than a
single request are sent with INCR.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from Xlib import X, Xatom
from Xlib.protocol.event import SelectionNotify as SelectionNotifyEvent

from clipstash.backend import ImageContent, TextContent

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.event import SelectionRequest

    from clipstash.backend import ClipboardContent
    from clipstash.x11_incr import IncrSender

logger = logging.getLogger(__name__)

TEXT_SERVE_TARGETS: tuple[str, ...] = (
    "UTF8_STRING", "text/plain;charset=utf-8", "text/plain", "STRING",
)

IMAGE_SERVE_TARGETS: tuple[str, ...] = ("image/png",)


@dataclass(frozen=True)
class OwnedContent:
    """What we serve while owning CLIPBOARD."""

    content: ClipboardContent

    @classmethod
    def text(cls, text: str) -> OwnedContent:
        return cls(TextContent(text, frozenset(TEXT_SERVE_TARGETS)))

    @classmethod
    def image(cls, png: bytes) -> OwnedContent:
        return cls(ImageContent(png, frozenset(IMAGE_SERVE_TARGETS)))

    @property
    def target_names(self) -> tuple[str, ...]:
        if isinstance(self.content, TextContent):
            return TEXT_SERVE_TARGETS
        return IMAGE_SERVE_TARGETS

    def payload(self, target_name: str) -> bytes:
        """Bytes to write for a supported target name."""
        if isinstance(self.content, ImageContent):
            return self.content.data
        if target_name == "STRING":
            return self.content.text.encode("latin-1", errors="replace")
        return self.content.text.encode("utf-8")


def handle_selection_request(
    display: Display,
    event: SelectionRequest,
    owned: OwnedContent | None,
    acquisition_time: int | None,
    incr: IncrSender,
) -> None:
    """Answer one SelectionRequest.

    Args:
        display: The X11 display connection.
        event: The SelectionRequest event.
        owned: Content we serve, or None if we hold nothing (refuse).
        acquisition_time: Server time ownership was taken, for TIMESTAMP.
        incr: Tracker for chunked sends.
    """
    if event.property == X.NONE:
        # Obsolete requestors leave property unset; ICCCM says use target.
        event.property = event.target

    if owned is None:
        event.property = X.NONE
        send_selection_notify(event, display)
        return

    targets_atom = display.intern_atom("TARGETS")
    timestamp_atom = display.intern_atom("TIMESTAMP")
    served = {display.intern_atom(name): name for name in owned.target_names}
    logger.debug("SelectionRequest target=%s property=%s served=%s",
        event.target, event.property, served)

    if event.target == targets_atom:
        targets = [targets_atom, timestamp_atom, *served]
        event.requestor.change_property(event.property, Xatom.ATOM, 32, targets)
    elif event.target == timestamp_atom:
        if acquisition_time is not None:
            event.requestor.change_property(
                event.property, Xatom.INTEGER, 32, [acquisition_time]
            )
        else:
            event.property = X.NONE
    elif event.target in served:
        payload = owned.payload(served[event.target])
        if incr.needs_incr(payload):
            incr.start(event, payload)
        else:
            event.requestor.change_property(event.property, event.target, 8, payload)
    else:
        event.property = X.NONE

    send_selection_notify(event, display)


def send_selection_notify(event: SelectionRequest, display: Display) -> None:
    """Send the SelectionNotify reply for event (property None refuses)."""
    event.requestor.send_event(
        SelectionNotifyEvent(
            time=event.time,
            requestor=event.requestor.id,
            selection=event.selection,
            target=event.target,
            property=event.property,
        ),
        event_mask=0,
    )
    display.flush()
