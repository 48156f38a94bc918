#!/usr/bin/env python3
"""Application wiring and lifecycle.

App owns every pipeline stage and is what a UI layer talks to:

- shared_records / refresh_signal: read history and learn about changes
- copy(): put an entry back on the clipboard
- listener.delete_record / clear_history / set_pinned: mutate history
- repository.search: query history
- request_shutdown(): quit

Lifecycle: start() opens and heals the repository, loads the snapshot,
starts the backend and spawns one task per stage. On SIGINT/SIGTERM the
watcher and the writer stop first, the image processor and listener get
SHUTDOWN_GRACE seconds to drain, then everything left is cancelled and the
repository closed. SIGHUP reloads the configuration.
"""

from __future__ import annotations

import asyncio
import functools
import logging
import signal
from typing import TYPE_CHECKING

from clipstash.backend import open_backend
from clipstash.image_processor import ImageProcessor
from clipstash.image_store import ImageStore
from clipstash.listener import ClipboardListener
from clipstash.repository import ClipboardRepository
from clipstash.shared_records import SharedRecords
from clipstash.signals import RefreshSignal
from clipstash.suppression import SelfWriteGuard
from clipstash.watcher import ClipboardWatcher
from clipstash.writer import ClipboardWriter

if TYPE_CHECKING:
    from clipstash.backend import ClipboardBackend
    from clipstash.config import ConfigStore
    from clipstash.events import CopyRequest
    from clipstash.sensitive import SensitiveFilter

logger = logging.getLogger(__name__)

# Seconds the image processor and listener get to drain at shutdown.
SHUTDOWN_GRACE: float = 5.0


class App:
    """The running clipboard history service."""

    def __init__(
        self,
        config: ConfigStore,
        backend: ClipboardBackend | None = None,
        sensitive_filter: SensitiveFilter | None = None,
    ) -> None:
        self.config = config
        self.backend = backend
        self.sensitive_filter = sensitive_filter
        self.guard = SelfWriteGuard()
        self.shared_records = SharedRecords()
        self.refresh_signal = RefreshSignal()
        self.repository: ClipboardRepository | None = None
        self.listener: ClipboardListener | None = None
        self.image_processor: ImageProcessor | None = None
        self.watcher: ClipboardWatcher | None = None
        self.writer: ClipboardWriter | None = None
        self.tasks: dict[str, asyncio.Task] = {}
        self._loop: asyncio.AbstractEventLoop | None = None
        self._shutdown = asyncio.Event()

    async def start(self) -> None:
        """Open storage, connect the clipboard and start all stages.

        Raises:
            StorageError: If the database cannot be opened.
            BackendUnavailableError: If no clipboard backend works.
        """
        self._loop = asyncio.get_running_loop()
        settings = self.config.current

        self.repository = await asyncio.to_thread(ClipboardRepository.from_config, self.config)
        await asyncio.to_thread(self.repository.heal)
        self.listener = ClipboardListener(
            self.repository,
            self.shared_records,
            self.refresh_signal,
            self.config,
            self.guard,
            self.sensitive_filter,
        )
        await self.listener.reload()

        try:
            if self.backend is None:
                self.backend = await open_backend(self.config)
            else:
                await self.backend.start()
        except BaseException:
            await asyncio.to_thread(self.repository.close)
            raise

        self.image_processor = ImageProcessor(ImageStore(settings.images_dir), self.listener.inbound)
        self.watcher = ClipboardWatcher(
            self.backend, self.guard, self.listener.inbound, self.image_processor, self.config,
        )
        self.writer = ClipboardWriter(self.backend, self.guard, self.config)

        self.tasks = {
            "listener": asyncio.create_task(self.listener.run()),
            "image_processor": asyncio.create_task(self.image_processor.run()),
            "writer": asyncio.create_task(self.writer.run()),
            "watcher": asyncio.create_task(self.watcher.run()),
        }
        for name, task in self.tasks.items():
            task.add_done_callback(functools.partial(self._on_task_done, name))
        logger.debug("clipstash started with %d records", len(self.shared_records.records))

    def _on_task_done(self, name: str, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if name == "watcher":
            message = "Clipboard watcher stopped, history is no longer recorded"
        else:
            message = f"Pipeline task {name} stopped"
        if exc is not None:
            logger.error("%s: %s", message, exc, exc_info=exc)
        else:
            logger.error("%s", message)

    @property
    def watcher_running(self) -> bool:
        task = self.tasks.get("watcher")
        return task is not None and not task.done()

    def copy(self, request: CopyRequest) -> bool:
        """Queue a history entry for write-back to the clipboard."""
        if self.writer is None:
            return False
        return self.writer.submit(request)

    def request_shutdown(self) -> None:
        """Ask the service to stop. Safe to call from any thread."""
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if self._loop is None or running is self._loop:
            self._shutdown.set()
        else:
            self._loop.call_soon_threadsafe(self._shutdown.set)

    def reload_config(self) -> None:
        self.config.reload()

    def install_signal_handlers(self) -> None:
        loop = asyncio.get_running_loop()
        loop.add_signal_handler(signal.SIGINT, self.request_shutdown)
        loop.add_signal_handler(signal.SIGTERM, self.request_shutdown)
        loop.add_signal_handler(signal.SIGHUP, self.reload_config)

    async def run(self) -> None:
        """Start, run until shutdown is requested, then stop."""
        await self.start()
        self.install_signal_handlers()
        try:
            await self._shutdown.wait()
        finally:
            await self.stop()

    async def stop(self) -> None:
        """Stop intake, drain in-flight captures, cancel the rest, close storage."""
        await self._cancel("watcher")
        if self.writer is not None:
            self.writer.close_intake()
        await self._cancel("writer")

        try:
            await asyncio.wait_for(self._drain(), SHUTDOWN_GRACE)
        except asyncio.TimeoutError:
            logger.warning("Shutdown grace period expired, discarding pending captures")

        for name in list(self.tasks):
            await self._cancel(name)
        if self.backend is not None:
            await self.backend.close()
        if self.repository is not None:
            await asyncio.to_thread(self.repository.close)
        logger.debug("clipstash stopped")

    async def _drain(self) -> None:
        if self.image_processor is not None:
            await self.image_processor.drain()
        if self.listener is not None:
            await self.listener.drain()

    async def _cancel(self, name: str) -> None:
        task = self.tasks.pop(name, None)
        if task is None:
            return
        task.cancel()
        await asyncio.gather(task, return_exceptions=True)
