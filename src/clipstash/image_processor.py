#!/usr/bin/env python3
"""Image capture stage.

The watcher hands raw image bytes to the processor instead of decoding them
itself, so a large screenshot never delays the next clipboard read. The
processor stores each payload through the ImageStore in a worker thread and
forwards the outcome to the listener's inbound queue.

Backpressure: the intake queue is bounded. When it is full the oldest
pending payload is dropped, since a newer clipboard state supersedes it.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from clipstash.errors import ImageProcessingError
from clipstash.events import CaptureFailedEvent, ImageEvent

if TYPE_CHECKING:
    from clipstash.events import ClipboardEvent, RawImage
    from clipstash.image_store import ImageStore

logger = logging.getLogger(__name__)

# Pending raw images held before the oldest is dropped.
IMAGE_QUEUE_SIZE: int = 4


class ImageProcessor:
    """Decode and persist captured images off the event loop.

    Attributes:
        store: Destination of normalized image assets.
        output: Queue receiving ImageEvent or CaptureFailedEvent.
        dropped: Number of payloads discarded because the queue was full.
    """

    def __init__(
        self,
        store: ImageStore,
        output: asyncio.Queue[ClipboardEvent],
        maxsize: int = IMAGE_QUEUE_SIZE,
    ) -> None:
        self.store = store
        self.output = output
        self.dropped = 0
        self._queue: asyncio.Queue[RawImage] = asyncio.Queue(maxsize=maxsize)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def submit(self, raw: RawImage) -> None:
        """Queue a raw image, dropping the oldest pending one if full."""
        while True:
            try:
                self._queue.put_nowait(raw)
                return
            except asyncio.QueueFull:
                stale = self._queue.get_nowait()
                self._queue.task_done()
                self.dropped += 1
                logger.warning("Image queue full, dropped pending %d byte image",
                    len(stale.data))

    async def run(self) -> None:
        """Process queued images until cancelled."""
        while True:
            raw = await self._queue.get()
            try:
                await self.process(raw)
            except Exception:
                logger.exception("Dropped %d byte image after unexpected error", len(raw.data))
            finally:
                self._queue.task_done()

    async def process(self, raw: RawImage) -> ClipboardEvent:
        """Store one payload and forward the resulting event.

        Failures are reported once as CaptureFailedEvent and never retried.
        """
        try:
            asset, png = await asyncio.to_thread(self.store.capture, raw.data)
        except ImageProcessingError as e:
            event: ClipboardEvent = CaptureFailedEvent(str(e), len(raw.data))
        else:
            event = ImageEvent(asset, raw.formats, png)
        await self.output.put(event)
        return event

    async def drain(self) -> None:
        """Wait until every queued payload has been processed."""
        await self._queue.join()
