#!/usr/bin/env python3
"""Clipboard writer: puts history entries back on the clipboard.

Critical ordering: the self-write guard is armed with the fingerprint of
exactly what is about to be written BEFORE the backend write starts. The
backend may report the change before write_text()/write_image() returns, and
the watcher must already recognize it as ours.
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import TYPE_CHECKING

from clipstash.errors import ClipboardWriteError
from clipstash.hashing import image_fingerprint, text_fingerprint
from clipstash.models import ContentKind

if TYPE_CHECKING:
    from clipstash.backend import ClipboardBackend
    from clipstash.config import ConfigStore
    from clipstash.events import CopyRequest
    from clipstash.suppression import SelfWriteGuard

logger = logging.getLogger(__name__)


class ClipboardWriter:
    """Serialize CopyRequests onto the clipboard backend."""

    def __init__(
        self,
        backend: ClipboardBackend,
        guard: SelfWriteGuard,
        config: ConfigStore,
    ) -> None:
        self.backend = backend
        self.guard = guard
        self.config = config
        self.requests: asyncio.Queue[CopyRequest] = asyncio.Queue()
        self._accepting = True

    def submit(self, request: CopyRequest) -> bool:
        """Queue a request. Returns False once intake is closed."""
        if not self._accepting:
            logger.warning("Ignoring copy request during shutdown")
            return False
        self.requests.put_nowait(request)
        return True

    def close_intake(self) -> None:
        self._accepting = False

    async def run(self) -> None:
        while True:
            request = await self.requests.get()
            try:
                await self.write(request)
            except Exception:
                logger.exception("Dropped %s copy request after unexpected error",
                    request.kind.value)
            finally:
                self.requests.task_done()

    async def write(self, request: CopyRequest) -> bool:
        """Write one request to the clipboard.

        Args:
            request: Text, or the path of a stored PNG asset.

        Returns:
            True if the backend accepted the content.
        """
        if request.kind is ContentKind.IMAGE:
            try:
                png = await asyncio.to_thread(Path(request.content).read_bytes)
            except OSError as e:
                logger.error("Cannot copy image %s back: %s", request.content, e)
                return False
            fingerprint = image_fingerprint(png)
        else:
            fingerprint = text_fingerprint(request.content)

        self.guard.expect(fingerprint, self.config.current.self_write_window)
        try:
            if request.kind is ContentKind.IMAGE:
                await self.backend.write_image(png)
            else:
                await self.backend.write_text(request.content)
        except ClipboardWriteError as e:
            self.guard.withdraw(fingerprint)
            logger.error("Failed to write %s to clipboard: %s", request.kind.value, e)
            return False
        except Exception:
            self.guard.withdraw(fingerprint)
            raise

        logger.debug("Wrote %s to clipboard", request.kind.value)
        return True
