#!/usr/bin/env python3
"""Tests for the clipboard listener."""
import asyncio
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from clipstash.config import ConfigStore
from clipstash.errors import StorageError
from clipstash.events import CaptureFailedEvent, ImageEvent, TextEvent
from clipstash.image_store import ImageStore
from clipstash.listener import ClipboardListener
from clipstash.repository import ClipboardRepository
from clipstash.shared_records import SharedRecords
from clipstash.signals import RefreshSignal
from clipstash.suppression import SelfWriteGuard
from conftest_pipeline import make_image_bytes

PASSWORD_HINT = frozenset({"UTF8_STRING", "x-kde-passwordManagerHint"})


@pytest.fixture
def listener(
    repository: ClipboardRepository, config_store: ConfigStore
) -> ClipboardListener:
    return ClipboardListener(
        repository, SharedRecords(), RefreshSignal(), config_store, SelfWriteGuard()
    )


def snapshot_contents(listener: ClipboardListener) -> list[str]:
    return [r.content for r in listener.shared.records]


class TestCapture:
    """Tests for handling capture events."""

    @pytest.mark.asyncio
    async def test_consecutive_duplicates_collapse(self, listener: ClipboardListener) -> None:
        """Test the same text three times in a row yields one record."""
        for _ in range(3):
            await listener.handle(TextEvent("abc"))
        assert listener.repository.count() == 1

    @pytest.mark.asyncio
    async def test_non_consecutive_duplicates_kept(self, listener: ClipboardListener) -> None:
        """Test a repeat after different content is a new record."""
        for text in ("abc", "xyz", "abc"):
            await listener.handle(TextEvent(text))
        assert snapshot_contents(listener) == ["abc", "xyz", "abc"]

    @pytest.mark.asyncio
    async def test_snapshot_matches_repository(self, listener: ClipboardListener) -> None:
        """Test the published ordering equals the stored ordering after eviction."""
        for i in range(8):
            await listener.handle(TextEvent(str(i)))
        assert list(listener.shared.records) == listener.repository.all_records()
        assert len(listener.shared.records) == 5

    @pytest.mark.asyncio
    async def test_each_commit_publishes_and_notifies(
        self, listener: ClipboardListener
    ) -> None:
        """Test a committed record bumps the snapshot version and the signal."""
        version = listener.shared.version
        record = await listener.handle(TextEvent("hello"))
        assert listener.shared.version == version + 1
        assert listener.shared.latest() == record
        assert listener.signal.pending is True

    @pytest.mark.asyncio
    async def test_image_event_recorded(self, listener: ClipboardListener) -> None:
        """Test a stored image becomes an image record."""
        asset = ImageStore(listener.repository.images_dir).store(make_image_bytes())
        record = await listener.handle(ImageEvent(asset))
        assert record.image == asset
        assert record.content == asset.path

    @pytest.mark.asyncio
    async def test_recapture_after_delete_recorded(self, listener: ClipboardListener) -> None:
        """Test a queued capture survives the delete of a record sharing its files."""
        store = ImageStore(listener.repository.images_dir)
        old = await listener.handle(ImageEvent(store.store(make_image_bytes())))
        asset, png = store.capture(make_image_bytes())
        assert await listener.delete_record(old.id) is True
        assert not Path(asset.path).exists()

        record = await listener.handle(ImageEvent(asset, png=png))
        assert record is not None
        assert Path(record.image.path).is_file()
        assert listener.shared.latest() == record

    @pytest.mark.asyncio
    async def test_capture_failure_dropped(self, listener: ClipboardListener) -> None:
        """Test a failed capture changes nothing."""
        assert await listener.handle(CaptureFailedEvent("not an image", 12)) is None
        assert listener.shared.version == 0
        assert listener.repository.count() == 0


class TestSensitive:
    """Tests for the sensitive content filter in the listener."""

    @pytest.mark.asyncio
    async def test_flagged_text_discarded(self, listener: ClipboardListener) -> None:
        """Test content offered with a password manager hint is not stored."""
        assert await listener.handle(TextEvent("hunter2", PASSWORD_HINT)) is None
        assert listener.repository.count() == 0
        assert listener.signal.pending is False

    @pytest.mark.asyncio
    async def test_flagged_image_files_removed(self, listener: ClipboardListener) -> None:
        """Test a discarded image leaves no asset behind."""
        asset = ImageStore(listener.repository.images_dir).store(make_image_bytes())
        assert await listener.handle(ImageEvent(asset, PASSWORD_HINT)) is None
        assert not Path(asset.path).exists()
        assert not Path(asset.thumbnail_path).exists()

    @pytest.mark.asyncio
    async def test_flagged_image_keeps_queued_copy(self, listener: ClipboardListener) -> None:
        """Test discarding a flagged image does not lose a queued plain copy of it."""
        asset, png = ImageStore(listener.repository.images_dir).capture(make_image_bytes())
        assert await listener.handle(ImageEvent(asset, PASSWORD_HINT, png)) is None
        assert not Path(asset.path).exists()

        record = await listener.handle(ImageEvent(asset, png=png))
        assert record is not None
        assert Path(record.image.path).is_file()
        assert Path(record.image.thumbnail_path).is_file()

    @pytest.mark.asyncio
    async def test_filter_disabled(
        self, repository: ClipboardRepository, settings, tmp_path
    ) -> None:
        """Test flagged content is stored when the filter is turned off."""
        config = ConfigStore(
            tmp_path / "config.toml",
            settings.model_copy(update={"sensitive_filter_enabled": False}),
        )
        listener = ClipboardListener(
            repository, SharedRecords(), RefreshSignal(), config, SelfWriteGuard()
        )
        assert await listener.handle(TextEvent("hunter2", PASSWORD_HINT)) is not None


class TestFailures:
    """Tests for repository failures."""

    @pytest.mark.asyncio
    async def test_unknown_event_rejected(self, listener: ClipboardListener) -> None:
        """Test an object outside the event union is refused, not ignored."""
        with pytest.raises(AssertionError):
            await listener.handle("not an event")
        assert listener.repository.count() == 0

    @pytest.mark.asyncio
    async def test_storage_error_keeps_running(self, listener: ClipboardListener) -> None:
        """Test a failed insert is dropped and the next event still commits."""
        real_insert = listener.repository.insert
        listener.repository.insert = MagicMock(side_effect=StorageError("disk full"))
        assert await listener.handle(TextEvent("lost")) is None
        assert listener.shared.version == 0

        listener.repository.insert = real_insert
        assert (await listener.handle(TextEvent("kept"))).content == "kept"

    @pytest.mark.asyncio
    async def test_run_survives_unexpected_error(self, listener: ClipboardListener) -> None:
        """Test the run loop logs and continues after a bug in handling."""
        listener.sensitive_filter.matches = MagicMock(side_effect=[KeyError("bug"), False])
        task = asyncio.create_task(listener.run())
        try:
            await listener.inbound.put(TextEvent("first"))
            await listener.inbound.put(TextEvent("second"))
            await asyncio.wait_for(listener.drain(), 2)
            assert snapshot_contents(listener) == ["second"]
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


class TestUserActions:
    """Tests for delete, clear, pin and reload."""

    @pytest.mark.asyncio
    async def test_delete_updates_snapshot(self, listener: ClipboardListener) -> None:
        """Test deleting removes the record from store and snapshot."""
        record = await listener.handle(TextEvent("a"))
        await listener.handle(TextEvent("b"))
        assert await listener.delete_record(record.id) is True
        assert snapshot_contents(listener) == ["b"]
        assert await listener.delete_record(record.id) is False

    @pytest.mark.asyncio
    async def test_clear_keeps_pinned_and_withdraws_token(
        self, listener: ClipboardListener
    ) -> None:
        """Test clear empties history except pinned and drops a pending self-write."""
        pinned = await listener.handle(TextEvent("pinned"))
        await listener.set_pinned(pinned.id, True)
        await listener.handle(TextEvent("other"))
        listener.guard.expect("text:abc", 10)

        assert await listener.clear_history() == 1
        assert snapshot_contents(listener) == ["pinned"]
        assert listener.guard.pending is False

    @pytest.mark.asyncio
    async def test_pin_replaces_record_in_snapshot(self, listener: ClipboardListener) -> None:
        """Test pinning publishes the updated record in place."""
        first = await listener.handle(TextEvent("a"))
        await listener.handle(TextEvent("b"))
        updated = await listener.set_pinned(first.id, True)
        assert listener.shared.records[1] == updated
        assert updated.pinned is True
        assert await listener.set_pinned(424242, True) is None

    @pytest.mark.asyncio
    async def test_reload_reads_repository(
        self, listener: ClipboardListener, repository: ClipboardRepository
    ) -> None:
        """Test reload() publishes what is already stored."""
        from clipstash.models import ContentKind, RecordDraft

        repository.insert(RecordDraft(ContentKind.TEXT, "from disk"))
        await listener.reload()
        assert snapshot_contents(listener) == ["from disk"]
