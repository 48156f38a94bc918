#!/usr/bin/env python3
"""Reading CLIPBOARD from another X11 client.

A read asks the owner for TARGETS first, classifies the offered formats and
then converts the best target:

- text targets win when offered (UTF8_STRING preferred)
- otherwise the first image target (image/png preferred)
- anything else is unsupported and yields None

The offered target names travel with the content so the sensitive filter
can see password-manager hints.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from Xlib import X
from Xlib.error import XError

from clipstash.backend import ImageContent, TextContent
from clipstash.errors import ClipboardReadError
from clipstash.x11_events import CLIPBOARD_TIMEOUT, wait_for_event_type, wait_for_property_notify

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.protocol.rq import Event
    from Xlib.xobject.drawable import Window

    from clipstash.backend import ClipboardContent

logger = logging.getLogger(__name__)

# Property on our window that receives converted selections.
SELECTION_PROPERTY: str = "CLIPSTASH_SEL"

TEXT_TARGETS: tuple[str, ...] = (
    "UTF8_STRING", "text/plain;charset=utf-8", "STRING", "TEXT", "text/plain",
)

IMAGE_TARGETS: tuple[str, ...] = (
    "image/png", "image/bmp", "image/jpeg", "image/gif", "image/tiff", "image/webp",
)


def choose_target(formats: Iterable[str]) -> str | None:
    """Pick the target to convert from the offered names, or None."""
    offered = set(formats)
    for name in TEXT_TARGETS + IMAGE_TARGETS:
        if name in offered:
            return name
    for name in sorted(offered):
        if name.startswith("image/"):
            return name
    return None


def decode_text(target: str, data: bytes) -> str:
    if target == "STRING":
        return data.decode("latin-1")
    return data.decode("utf-8", errors="replace")


async def read_clipboard(
    display: Display,
    window: Window,
    selection_atom: int,
    deferred_events: list[Event],
) -> ClipboardContent | None:
    """Read the current content of selection_atom from its owner.

    Args:
        display: The X11 display connection.
        window: Our window, receives the converted data.
        selection_atom: The selection to read.
        deferred_events: Receives unrelated events read while waiting.

    Returns:
        Text or image content, or None for empty or unsupported content.

    Raises:
        ClipboardReadError: If the owner does not answer or a request fails.
    """
    try:
        formats = await read_targets(display, window, selection_atom, deferred_events)
        if formats:
            target = choose_target(formats)
            if target is None:
                logger.debug("No supported target among %s", sorted(formats))
                return None
        else:
            # Owner does not answer TARGETS; try plain text.
            target = "UTF8_STRING"

        data = await convert_selection(
            display, window, selection_atom, display.intern_atom(target), deferred_events
        )
    except XError as e:
        raise ClipboardReadError(f"Clipboard read failed: {e}") from e

    if not isinstance(data, bytes) or not data:
        return None
    if target in TEXT_TARGETS:
        return TextContent(decode_text(target, data), formats)
    return ImageContent(data, formats)


async def read_targets(
    display: Display,
    window: Window,
    selection_atom: int,
    deferred_events: list[Event],
) -> frozenset[str]:
    """Return the target names the owner offers (empty if refused)."""
    value = await convert_selection(
        display, window, selection_atom, display.intern_atom("TARGETS"), deferred_events
    )
    if not isinstance(value, list):
        return frozenset()
    names = set()
    for atom in value:
        if atom == X.NONE:
            continue
        try:
            names.add(display.get_atom_name(atom))
        except XError:
            logger.debug("Owner offered unknown atom %s", atom)
    return frozenset(names)


async def convert_selection(
    display: Display,
    window: Window,
    selection_atom: int,
    target_atom: int,
    deferred_events: list[Event],
) -> bytes | list[int] | None:
    """Ask the owner to convert the selection and return the result.

    Returns:
        Bytes for 8-bit data, a list of integers for 32-bit data, or None if
        the owner refused the target.

    Raises:
        ClipboardReadError: If the owner does not reply in time.
    """
    prop_atom = display.intern_atom(SELECTION_PROPERTY)
    window.convert_selection(selection_atom, target_atom, prop_atom, X.CurrentTime)
    display.flush()

    try:
        event = await asyncio.to_thread(
            wait_for_event_type,
            display,
            X.SelectionNotify,
            deferred_events,
            CLIPBOARD_TIMEOUT,
            lambda e: e.selection == selection_atom,
        )
    except TimeoutError as e:
        raise ClipboardReadError(
            f"Clipboard owner did not answer within {CLIPBOARD_TIMEOUT} seconds"
        ) from e

    if event.property == X.NONE:
        return None
    return await read_selection_property(display, window, prop_atom, deferred_events)


async def read_selection_property(
    display: Display,
    window: Window,
    prop_atom: int,
    deferred_events: list[Event],
) -> bytes | list[int] | None:
    """Read and delete the converted property, following INCR if used."""
    prop = window.get_full_property(prop_atom, X.AnyPropertyType)
    window.delete_property(prop_atom)
    display.flush()
    if prop is None:
        logger.debug("Selection property was empty")
        return None
    if prop.property_type == display.intern_atom("INCR"):
        # Deleting the INCR marker (above) tells the owner to start sending.
        return await receive_incr(display, window, prop_atom, deferred_events)
    return property_value(prop)


async def receive_incr(
    display: Display,
    window: Window,
    prop_atom: int,
    deferred_events: list[Event],
) -> bytes:
    """Collect INCR chunks until the owner writes a zero-length chunk."""
    chunks: list[bytes] = []
    while True:
        try:
            await asyncio.to_thread(
                wait_for_property_notify, display, window, prop_atom, deferred_events
            )
        except TimeoutError as e:
            raise ClipboardReadError("INCR transfer stalled") from e
        prop = window.get_full_property(prop_atom, X.AnyPropertyType)
        window.delete_property(prop_atom)
        display.flush()
        chunk = property_value(prop) if prop is not None else b""
        if not chunk:
            break
        chunks.append(bytes(chunk))
    logger.debug("INCR receive complete: %d chunks", len(chunks))
    return b"".join(chunks)


def property_value(prop) -> bytes | list[int]:
    data = prop.value
    if prop.format == 8:
        if isinstance(data, str):
            return data.encode("utf-8")
        return bytes(data)
    return list(data)
