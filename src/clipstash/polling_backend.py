#!/usr/bin/env python3
"""Polling clipboard backend for systems without an X11 display.

Text goes through pyperclip (pbcopy/pbpaste, the Windows API, wl-clipboard
or xclip/xsel, whatever it finds). Images are read with PIL.ImageGrab and
re-encoded as PNG so an unchanged image yields identical bytes on every
poll. Image write-back is not supported here.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import pyperclip
from PIL import Image, ImageGrab

from clipstash.backend import ImageContent, TextContent
from clipstash.errors import BackendUnavailableError, ClipboardReadError, ClipboardWriteError
from clipstash.image_store import encode_png

if TYPE_CHECKING:
    from clipstash.backend import ClipboardContent
    from clipstash.config import ConfigStore

logger = logging.getLogger(__name__)

TEXT_FORMATS: frozenset[str] = frozenset({"text/plain"})
IMAGE_FORMATS: frozenset[str] = frozenset({"image/png"})


class PollingBackend:
    """Read the clipboard every poll_interval seconds."""

    name = "polling"

    def __init__(self, config: ConfigStore) -> None:
        self.config = config
        self._images_supported = True

    async def start(self) -> None:
        """Check that a text clipboard mechanism exists.

        Raises:
            BackendUnavailableError: If pyperclip finds no mechanism.
        """
        try:
            await asyncio.to_thread(pyperclip.paste)
        except pyperclip.PyperclipException as e:
            raise BackendUnavailableError(f"No clipboard mechanism available: {e}") from e

    async def wait_for_change(self) -> None:
        await asyncio.sleep(self.config.current.poll_interval)

    async def read(self) -> ClipboardContent | None:
        try:
            text = await asyncio.to_thread(pyperclip.paste)
        except pyperclip.PyperclipException as e:
            raise ClipboardReadError(f"Clipboard read failed: {e}") from e
        if text:
            return TextContent(text, TEXT_FORMATS)
        if not self._images_supported:
            return None
        png = await asyncio.to_thread(self._grab_image)
        if png is None:
            return None
        return ImageContent(png, IMAGE_FORMATS)

    def _grab_image(self) -> bytes | None:
        try:
            grabbed = ImageGrab.grabclipboard()
        except NotImplementedError as e:
            logger.warning("Image capture disabled: %s", e)
            self._images_supported = False
            return None
        except OSError as e:
            raise ClipboardReadError(f"Clipboard image read failed: {e}") from e
        # File lists (copied files in a file manager) are not images.
        if not isinstance(grabbed, Image.Image):
            return None
        return encode_png(grabbed)

    async def write_text(self, text: str) -> None:
        try:
            await asyncio.to_thread(pyperclip.copy, text)
        except pyperclip.PyperclipException as e:
            raise ClipboardWriteError(f"Clipboard write failed: {e}") from e

    async def write_image(self, png: bytes) -> None:
        raise ClipboardWriteError("Image write-back is not supported by the polling backend")

    async def close(self) -> None:
        pass
