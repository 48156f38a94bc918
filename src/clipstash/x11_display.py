#!/usr/bin/env python3
"""X11 connection setup via python-xlib and the XFixes extension.

XFixes delivers SetSelectionOwnerNotify whenever the CLIPBOARD owner
changes, which gives event-driven change detection without polling. Only
CLIPBOARD is watched; PRIMARY (mouse selection) changes with every drag and
is not history material.

The module handles:
- Opening the display connection
- Creating the hidden window used for reads and for owning CLIPBOARD
- Registering for XFixes selection owner notifications
- Taking CLIPBOARD ownership for write-back
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from Xlib import X
from Xlib.error import ConnectionClosedError, DisplayError, XError

from clipstash.errors import BackendUnavailableError

if TYPE_CHECKING:
    from Xlib.display import Display
    from Xlib.xobject.drawable import Window

logger = logging.getLogger(__name__)


def open_display(display_name: str | None = None) -> Display:
    """Open the X11 connection.

    Args:
        display_name: Display to open; defaults to $DISPLAY.

    Returns:
        Display object for X11 operations.

    Raises:
        BackendUnavailableError: If no display is configured or the
            connection fails.
    """
    display_name = display_name or os.environ.get("DISPLAY")
    if not display_name:
        raise BackendUnavailableError("DISPLAY environment variable is not set")

    from Xlib.display import Display as XDisplay

    try:
        return XDisplay(display_name)
    except (DisplayError, ConnectionClosedError, OSError) as e:
        raise BackendUnavailableError(f"Failed to connect to X11 display {display_name}: {e}") from e


def get_display_fd(display: Display) -> int:
    """File descriptor of the display connection, for loop.add_reader()."""
    return display.fileno()


def create_hidden_window(display: Display) -> Window:
    """Create a 1x1 unmapped window for selection transfers.

    PropertyChangeMask is selected so INCR reads and server timestamp
    queries receive PropertyNotify on this window.
    """
    screen = display.screen()
    return screen.root.create_window(
        0, 0, 1, 1, 0, screen.root_depth, event_mask=X.PropertyChangeMask,
    )


def register_xfixes_events(display: Display, window: Window) -> int:
    """Register for CLIPBOARD owner change notifications.

    Args:
        display: The X11 display connection.
        window: The window to receive selection events.

    Returns:
        The CLIPBOARD atom.

    Raises:
        BackendUnavailableError: If the server lacks the XFixes extension.
    """
    from Xlib.ext import xfixes

    if not display.has_extension("XFIXES"):
        raise BackendUnavailableError("X server does not support the XFixes extension")
    xfixes.query_version(display)

    clipboard_atom = display.intern_atom("CLIPBOARD")
    xfixes.select_selection_input(
        display, window.id, clipboard_atom, xfixes.XFixesSetSelectionOwnerNotifyMask,
    )
    display.flush()
    return clipboard_atom


def take_selection_ownership(
    display: Display, window: Window, selection_atom: int, timestamp: int
) -> bool:
    """Make window the owner of selection_atom.

    Args:
        display: The X11 display connection.
        window: The window to own the selection.
        selection_atom: The selection to take.
        timestamp: Server time of the triggering action (ICCCM forbids
            CurrentTime here).

    Returns:
        True if ownership was acquired.
    """
    try:
        window.set_selection_owner(selection_atom, timestamp)
        display.flush()
        owner = display.get_selection_owner(selection_atom)
    except XError as e:
        logger.error("Failed to take selection ownership: %s", e)
        return False
    if owner != window:
        logger.error("Failed to acquire selection ownership")
        return False
    return True
