#!/usr/bin/env python3
"""INCR protocol, sending side.

A property write is limited by the server's maximum request size, so large
payloads (typically images) are served in chunks: the owner writes an INCR
property holding the total length, then writes the next chunk every time the
requestor deletes the property, and finishes with a zero-length chunk.

Transfers are keyed by (requestor window id, property atom). They end when
the final empty chunk is acknowledged, when the requestor window is
destroyed, when we lose the selection, or after INCR_SEND_TIMEOUT.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from Xlib import X

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.event import SelectionRequest
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

logger = logging.getLogger(__name__)

# Fraction of the maximum request size usable for one property write.
INCR_SAFETY_MARGIN: float = 0.9

# Bytes written per INCR chunk.
INCR_CHUNK_SIZE: int = 65536

# Seconds an unfinished transfer is kept before it is abandoned.
INCR_SEND_TIMEOUT: float = 30.0


@dataclass
class IncrTransfer:
    """State of one in-progress chunked send.

    Attributes:
        requestor: Window that asked for the content.
        property_atom: Property on requestor receiving the chunks.
        type_atom: Type the chunks are written with (the requested target).
        selection_atom: Selection being served.
        payload: Full content to send.
        offset: Bytes already written.
        started: Clock value when the transfer began.
        finished: True once the zero-length chunk was written.
    """

    requestor: Window
    property_atom: int
    type_atom: int
    selection_atom: int
    payload: bytes
    offset: int = 0
    started: float = 0.0
    finished: bool = False


@dataclass
class IncrSender:
    """All in-progress INCR sends of one display connection."""

    display: Display
    clock: Callable[[], float] = time.monotonic
    transfers: dict[tuple[int, int], IncrTransfer] = field(default_factory=dict)

    @property
    def incr_atom(self) -> int:
        return self.display.intern_atom("INCR")

    def max_property_size(self) -> int:
        # max_request_length is in 4-byte units
        max_bytes = self.display.info.max_request_length * 4
        return int(max_bytes * INCR_SAFETY_MARGIN)

    def needs_incr(self, payload: bytes) -> bool:
        return len(payload) > self.max_property_size()

    def start(self, event: SelectionRequest, payload: bytes) -> None:
        """Begin a chunked send in answer to event.

        Writes the INCR marker; the caller sends the SelectionNotify. The
        requestor's PropertyNotify and DestroyNotify events drive the rest.
        """
        requestor = event.requestor
        requestor.change_attributes(event_mask=X.PropertyChangeMask | X.StructureNotifyMask)
        requestor.change_property(event.property, self.incr_atom, 32, [len(payload)])
        key = (requestor.id, event.property)
        self.transfers[key] = IncrTransfer(
            requestor=requestor,
            property_atom=event.property,
            type_atom=event.target,
            selection_atom=event.selection,
            payload=payload,
            started=self.clock(),
        )
        logger.debug("Initiated INCR send: requestor=%s property=%s size=%s",
            requestor.id, event.property, len(payload))

    def handle(self, event: Event) -> bool:
        """Advance transfers affected by event.

        Returns:
            True if the event belonged to a transfer and was consumed.
        """
        if not self.transfers:
            return False
        if event.type == X.PropertyNotify and event.state == X.PropertyDelete:
            key = (event.window.id, event.atom)
            transfer = self.transfers.get(key)
            if transfer is None:
                return False
            if transfer.finished:
                logger.debug("INCR send: final ack received: %s", key)
                self._forget(key)
            else:
                self._send_next(key, transfer)
            return True
        if event.type == X.DestroyNotify:
            keys = [key for key in self.transfers if key[0] == event.window.id]
            for key in keys:
                logger.debug("INCR send: requestor window destroyed: %s", key)
                self._forget(key)
            return bool(keys)
        return False

    def expire(self) -> None:
        """Abandon transfers older than INCR_SEND_TIMEOUT."""
        now = self.clock()
        for key, transfer in list(self.transfers.items()):
            elapsed = now - transfer.started
            if elapsed > INCR_SEND_TIMEOUT:
                logger.warning("INCR send: transfer timed out after %.1f seconds: %s",
                    elapsed, key)
                self._forget(key)

    def cancel(self, selection_atom: int) -> None:
        """Abandon transfers of a selection we no longer own."""
        for key, transfer in list(self.transfers.items()):
            if transfer.selection_atom == selection_atom:
                logger.debug("INCR send: ownership lost, canceling transfer: %s", key)
                self._forget(key)

    def _send_next(self, key: tuple[int, int], transfer: IncrTransfer) -> None:
        chunk = transfer.payload[transfer.offset:transfer.offset + INCR_CHUNK_SIZE]
        transfer.requestor.change_property(transfer.property_atom, transfer.type_atom, 8, chunk)
        self.display.flush()
        transfer.offset += len(chunk)
        if not chunk:
            transfer.finished = True
            logger.debug("INCR send complete: %s", key)

    def _forget(self, key: tuple[int, int]) -> None:
        transfer = self.transfers.pop(key, None)
        if transfer is None:
            return
        if not any(other[0] == key[0] for other in self.transfers):
            # Last transfer to this window; stop receiving its events.
            transfer.requestor.change_attributes(event_mask=0)
            self.display.flush()
