#!/usr/bin/env python3
"""Clipboard watcher.

Waits for the backend to report a possible change, reads the clipboard and
emits at most one item per actual change: TextEvent to the listener,
RawImage to the image processor. Unsupported content is ignored.

The watcher keeps a private fingerprint of the last content it saw, so
repeated notifications (and every tick of the polling backend) for an
unchanged clipboard emit nothing. It also swallows content the writer put on
the clipboard, as recognized by the self-write guard.

Transient read failures are retried with exponential backoff through
tenacity; the watcher never writes the clipboard.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_never,
    wait_exponential,
)

from clipstash.backend import TextContent, content_fingerprint
from clipstash.errors import ClipboardReadError
from clipstash.events import RawImage, TextEvent

if TYPE_CHECKING:
    from clipstash.backend import ClipboardBackend, ClipboardContent
    from clipstash.config import ConfigStore
    from clipstash.events import ClipboardEvent
    from clipstash.image_processor import ImageProcessor
    from clipstash.suppression import SelfWriteGuard

logger = logging.getLogger(__name__)

# Longest delay between retries of a failing clipboard read, in seconds.
MAX_READ_BACKOFF: float = 30.0

# Multiplier for exponential backoff between failing reads.
READ_BACKOFF_MULTIPLIER: float = 2.0


class ClipboardWatcher:
    """Observe the clipboard and feed the capture pipeline."""

    def __init__(
        self,
        backend: ClipboardBackend,
        guard: SelfWriteGuard,
        events: asyncio.Queue[ClipboardEvent],
        images: ImageProcessor,
        config: ConfigStore,
    ) -> None:
        self.backend = backend
        self.guard = guard
        self.events = events
        self.images = images
        self.config = config
        self._last_fingerprint: str | None = None

    async def run(self) -> None:
        """Watch until cancelled.

        Raises:
            Exception: Anything other than ClipboardReadError ends the task.
        """
        while True:
            await self.backend.wait_for_change()
            await self.check()

    async def check(self) -> TextEvent | RawImage | None:
        """Read the clipboard once and emit what changed.

        Returns:
            The emitted TextEvent or RawImage, or None if nothing was emitted.
        """
        content = await self._read()
        if content is None:
            return None

        fingerprint = content_fingerprint(content)
        if fingerprint == self._last_fingerprint:
            return None
        self._last_fingerprint = fingerprint

        if self.guard.should_suppress(fingerprint):
            logger.debug("Ignoring clipboard change written by clipstash")
            return None

        if isinstance(content, TextContent):
            event = TextEvent(content.text, content.formats)
            await self.events.put(event)
            logger.debug("Captured %d characters of text", len(content.text))
            return event

        raw = RawImage(content.data, content.formats)
        self.images.submit(raw)
        logger.debug("Captured %d byte image", len(content.data))
        return raw

    async def _read(self) -> ClipboardContent | None:
        poll_interval = self.config.current.poll_interval
        retrying = AsyncRetrying(
            wait=wait_exponential(
                multiplier=READ_BACKOFF_MULTIPLIER * poll_interval,
                min=poll_interval,
                max=MAX_READ_BACKOFF,
            ),
            retry=retry_if_exception_type(ClipboardReadError),
            stop=stop_never,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self.backend.read()
        return None
