#!/usr/bin/env python3
"""Clipboard listener: the pipeline's coordinator.

The listener is the only consumer of the inbound event queue and the only
writer of SharedRecords. For each event, in arrival order:

1. Compare with the most recently committed record; a consecutive
   duplicate is dropped without a trace.
2. Run the sensitive-content filter when enabled.
3. Insert into the repository (in a worker thread).
4. Publish a new snapshot with the record prepended.
5. Notify the refresh signal.

UI-initiated mutations (delete, clear, pin) go through the listener too and
share its lock with event handling, so the snapshot is never rebuilt from
two places at once.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, assert_never

from clipstash.errors import MissingAssetError, RepositoryError
from clipstash.events import CaptureFailedEvent, ImageEvent, TextEvent
from clipstash.models import ContentKind, RecordDraft
from clipstash.sensitive import SensitiveFilter

if TYPE_CHECKING:
    from clipstash.config import ConfigStore
    from clipstash.events import ClipboardEvent
    from clipstash.models import Record
    from clipstash.repository import ClipboardRepository
    from clipstash.shared_records import SharedRecords
    from clipstash.signals import RefreshSignal
    from clipstash.suppression import SelfWriteGuard

logger = logging.getLogger(__name__)


def draft_for(event: TextEvent | ImageEvent) -> RecordDraft:
    """Build the repository draft for a capture event."""
    match event:
        case TextEvent():
            return RecordDraft(ContentKind.TEXT, event.text)
        case ImageEvent():
            return RecordDraft(ContentKind.IMAGE, event.image.path, event.image, event.png)
        case _:
            assert_never(event)


class ClipboardListener:
    """Turn clipboard events into committed, published history records."""

    def __init__(
        self,
        repository: ClipboardRepository,
        shared: SharedRecords,
        signal: RefreshSignal,
        config: ConfigStore,
        guard: SelfWriteGuard,
        sensitive_filter: SensitiveFilter | None = None,
    ) -> None:
        self.repository = repository
        self.shared = shared
        self.signal = signal
        self.config = config
        self.guard = guard
        self.sensitive_filter = sensitive_filter or SensitiveFilter()
        self.inbound: asyncio.Queue[ClipboardEvent] = asyncio.Queue()
        self._lock = asyncio.Lock()

    async def run(self) -> None:
        """Consume the inbound queue until cancelled."""
        while True:
            event = await self.inbound.get()
            try:
                await self.handle(event)
            except Exception:
                logger.exception("Dropped %s after unexpected error", type(event).__name__)
            finally:
                self.inbound.task_done()

    async def handle(self, event: ClipboardEvent) -> Record | None:
        """Process one event.

        Returns:
            The committed record, or None if the event was dropped.
        """
        match event:
            case CaptureFailedEvent():
                logger.warning("Image capture failed (%d bytes): %s", event.byte_size, event.reason)
                return None
            case TextEvent() | ImageEvent():
                return await self._record(event)
            case _:
                assert_never(event)

    async def _record(self, event: TextEvent | ImageEvent) -> Record | None:
        async with self._lock:
            draft = draft_for(event)
            head = self.shared.latest()
            if head is not None and head.identity == draft.identity:
                logger.debug("Skipping consecutive duplicate of record %s", head.id)
                return None

            settings = self.config.current
            if settings.sensitive_filter_enabled and self.sensitive_filter.matches(event):
                logger.debug("Skipping %s capture flagged as sensitive", draft.kind.value)
                if isinstance(event, ImageEvent):
                    await asyncio.to_thread(self.repository.discard_asset, event.image)
                return None

            try:
                record = await asyncio.to_thread(
                    self.repository.insert, draft, settings.max_history_records
                )
            except MissingAssetError as e:
                logger.warning("Dropped image capture: %s", e)
                return None
            except RepositoryError as e:
                logger.error("Failed to store %s capture: %s", draft.kind.value, e)
                return None

            self.shared.publish(self.shared.prepend(record, settings.max_history_records))
        self.signal.notify()
        return record

    async def delete_record(self, record_id: int) -> bool:
        """Delete one record. Unknown ids return False.

        Raises:
            RepositoryError: If the repository fails.
        """
        async with self._lock:
            removed = await asyncio.to_thread(self.repository.delete, record_id)
            if removed:
                self.shared.publish(self.shared.without(record_id))
        if removed:
            self.signal.notify()
        return removed

    async def clear_history(self) -> int:
        """Delete every non-pinned record.

        Also drops any pending self-write token, so a copy-back issued
        before the clear cannot suppress a later capture.

        Returns:
            Number of records removed.
        """
        async with self._lock:
            removed = await asyncio.to_thread(self.repository.clear)
            self.guard.withdraw()
            self.shared.publish(await asyncio.to_thread(self.repository.all_records))
        self.signal.notify()
        return removed

    async def set_pinned(self, record_id: int, pinned: bool) -> Record | None:
        """Pin or unpin a record; returns the updated record or None."""
        async with self._lock:
            record = await asyncio.to_thread(self.repository.set_pinned, record_id, pinned)
            if record is not None:
                self.shared.publish(self.shared.replaced(record))
        if record is not None:
            self.signal.notify()
        return record

    async def reload(self) -> None:
        """Rebuild the snapshot from the repository."""
        async with self._lock:
            self.shared.publish(await asyncio.to_thread(self.repository.all_records))
        self.signal.notify()

    async def drain(self) -> None:
        """Wait until every queued event has been handled."""
        await self.inbound.join()
