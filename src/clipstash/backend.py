#!/usr/bin/env python3
"""Clipboard backend interface.

A backend is the only code that touches the OS clipboard. The watcher
drives it through wait_for_change()/read(), the writer through
write_text()/write_image(). Two implementations exist:

- X11Backend: python-xlib with XFixes change notification
- PollingBackend: pyperclip and PIL.ImageGrab, read every poll_interval
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, Union

from clipstash.errors import BackendUnavailableError
from clipstash.hashing import image_fingerprint, text_fingerprint

if TYPE_CHECKING:
    from clipstash.config import ConfigStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TextContent:
    """Text read from the clipboard, with the format names offered alongside."""

    text: str
    formats: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ImageContent:
    """Encoded image bytes read from the clipboard."""

    data: bytes
    formats: frozenset[str] = field(default_factory=frozenset)


ClipboardContent = Union[TextContent, ImageContent]


def content_fingerprint(content: ClipboardContent) -> str:
    """Fingerprint of exactly the payload a backend read or wrote."""
    if isinstance(content, TextContent):
        return text_fingerprint(content.text)
    return image_fingerprint(content.data)


class ClipboardBackend(Protocol):
    name: str

    async def start(self) -> None:
        """Connect to the clipboard.

        Raises:
            BackendUnavailableError: If the clipboard cannot be used.
        """

    async def wait_for_change(self) -> None:
        """Return when the clipboard may have changed."""

    async def read(self) -> ClipboardContent | None:
        """Read the current clipboard content.

        Returns:
            Text or image content, or None if empty or unsupported.

        Raises:
            ClipboardReadError: On a transient read failure.
        """

    async def write_text(self, text: str) -> None:
        """Put text on the clipboard. Raises ClipboardWriteError."""

    async def write_image(self, png: bytes) -> None:
        """Put a PNG image on the clipboard. Raises ClipboardWriteError."""

    async def close(self) -> None:
        """Release the clipboard connection."""


async def open_backend(config: ConfigStore) -> ClipboardBackend:
    """Create and start the backend selected by the settings.

    With backend="auto", X11 is used when DISPLAY is set and falls back to
    polling if the X11 connection cannot be established.

    Raises:
        BackendUnavailableError: If no backend can be started.
    """
    from clipstash.polling_backend import PollingBackend
    from clipstash.x11_backend import X11Backend

    choice = config.current.backend
    backend: ClipboardBackend
    if choice == "auto" and os.environ.get("DISPLAY"):
        backend = X11Backend()
        try:
            await backend.start()
        except BackendUnavailableError as e:
            logger.warning("X11 clipboard unavailable, falling back to polling: %s", e)
            backend = PollingBackend(config)
            await backend.start()
    elif choice == "x11":
        backend = X11Backend()
        await backend.start()
    else:
        backend = PollingBackend(config)
        await backend.start()
    logger.debug("Using %s clipboard backend", backend.name)
    return backend
