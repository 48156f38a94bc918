#!/usr/bin/env python3
"""Tests for the clipboard writer and the copy-back round trip."""
import asyncio
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from clipstash.backend import TextContent, content_fingerprint
from clipstash.config import ConfigStore
from clipstash.events import CopyRequest, TextEvent
from clipstash.image_processor import ImageProcessor
from clipstash.image_store import ImageStore
from clipstash.listener import ClipboardListener
from clipstash.repository import ClipboardRepository
from clipstash.shared_records import SharedRecords
from clipstash.signals import RefreshSignal
from clipstash.suppression import SelfWriteGuard
from clipstash.watcher import ClipboardWatcher
from clipstash.writer import ClipboardWriter
from conftest_pipeline import FakeBackend, make_image_bytes


@pytest.fixture
def writer(fake_backend: FakeBackend, config_store: ConfigStore) -> ClipboardWriter:
    return ClipboardWriter(fake_backend, SelfWriteGuard(), config_store)


class TestWrite:
    """Tests for ClipboardWriter.write."""

    @pytest.mark.asyncio
    async def test_guard_armed_before_backend_write(self, writer: ClipboardWriter) -> None:
        """Test the token exists when the backend write begins."""
        seen = []

        async def write_text(text: str) -> None:
            seen.append(writer.guard.pending)

        writer.backend.write_text = write_text
        assert await writer.write(CopyRequest.text("C")) is True
        assert seen == [True]
        assert writer.guard.expected == content_fingerprint(TextContent("C"))

    @pytest.mark.asyncio
    async def test_failed_write_withdraws_token(
        self, writer: ClipboardWriter, fake_backend: FakeBackend
    ) -> None:
        """Test a refused write leaves no token to swallow a later copy."""
        fake_backend.fail_writes = True
        assert await writer.write(CopyRequest.text("C")) is False
        assert writer.guard.pending is False

    @pytest.mark.asyncio
    async def test_image_written_from_asset(
        self, writer: ClipboardWriter, fake_backend: FakeBackend, tmp_path: Path
    ) -> None:
        """Test an image request writes the stored PNG bytes."""
        asset = ImageStore(tmp_path / "images").store(make_image_bytes())
        assert await writer.write(CopyRequest.image(asset.path)) is True
        assert fake_backend.writes == [Path(asset.path).read_bytes()]

    @pytest.mark.asyncio
    async def test_missing_asset_not_written(
        self, writer: ClipboardWriter, fake_backend: FakeBackend, tmp_path: Path
    ) -> None:
        """Test a deleted image file is reported and nothing is written."""
        assert await writer.write(CopyRequest.image(str(tmp_path / "gone.png"))) is False
        assert fake_backend.writes == []
        assert writer.guard.pending is False

    @pytest.mark.asyncio
    async def test_closed_intake_rejects(self, writer: ClipboardWriter) -> None:
        """Test no request is accepted after close_intake()."""
        assert writer.submit(CopyRequest.text("a")) is True
        writer.close_intake()
        assert writer.submit(CopyRequest.text("b")) is False
        assert writer.requests.qsize() == 1

    @pytest.mark.asyncio
    async def test_run_processes_in_order(
        self, writer: ClipboardWriter, fake_backend: FakeBackend
    ) -> None:
        """Test queued requests are written one after another."""
        task = asyncio.create_task(writer.run())
        try:
            writer.submit(CopyRequest.text("a"))
            writer.submit(CopyRequest.text("b"))
            await asyncio.wait_for(writer.requests.join(), 2)
            assert fake_backend.writes == ["a", "b"]
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    @pytest.mark.asyncio
    async def test_backend_error_other_than_write_propagates(
        self, writer: ClipboardWriter
    ) -> None:
        """Test unexpected backend failures are not reported as refused writes."""
        writer.backend.write_text = AsyncMock(side_effect=RuntimeError("bug"))
        with pytest.raises(RuntimeError):
            await writer.write(CopyRequest.text("x"))
        assert writer.guard.pending is False

    @pytest.mark.asyncio
    async def test_run_survives_unexpected_error(
        self, writer: ClipboardWriter, fake_backend: FakeBackend
    ) -> None:
        """Test one crashing request is dropped and the next is still written."""
        real_write_text = fake_backend.write_text
        calls = []

        async def write_text(text: str) -> None:
            calls.append(text)
            if len(calls) == 1:
                raise OSError("connection reset")
            await real_write_text(text)

        fake_backend.write_text = write_text
        task = asyncio.create_task(writer.run())
        try:
            writer.submit(CopyRequest.text("a"))
            writer.submit(CopyRequest.text("b"))
            await asyncio.wait_for(writer.requests.join(), 2)
            assert calls == ["a", "b"]
            assert fake_backend.writes == ["b"]
            assert task.done() is False
            assert writer.guard.expected == content_fingerprint(TextContent("b"))
        finally:
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


class TestCopyBack:
    """Round trip: copy a history entry back and watch it come around."""

    @pytest.fixture
    def pipeline(
        self,
        fake_backend: FakeBackend,
        repository: ClipboardRepository,
        config_store: ConfigStore,
    ):
        guard = SelfWriteGuard()
        listener = ClipboardListener(
            repository, SharedRecords(), RefreshSignal(), config_store, guard
        )
        images = ImageProcessor(ImageStore(repository.images_dir), listener.inbound)
        watcher = ClipboardWatcher(fake_backend, guard, listener.inbound, images, config_store)
        writer = ClipboardWriter(fake_backend, guard, config_store)
        return listener, watcher, writer

    async def _observe(self, listener: ClipboardListener, watcher: ClipboardWatcher) -> None:
        await watcher.check()
        while not listener.inbound.empty():
            await listener.handle(listener.inbound.get_nowait())

    @pytest.mark.asyncio
    async def test_copy_back_not_recorded(
        self, pipeline, fake_backend: FakeBackend
    ) -> None:
        """Test writing an entry back does not re-record it, but the next copy does."""
        listener, watcher, writer = pipeline
        for text in ("A", "B", "C"):
            fake_backend.copy_text(text)
            await self._observe(listener, watcher)

        await writer.write(CopyRequest.text("A"))
        await self._observe(listener, watcher)
        assert [r.content for r in listener.shared.records] == ["C", "B", "A"]

        fake_backend.copy_text("D")
        await self._observe(listener, watcher)
        assert [r.content for r in listener.shared.records] == ["D", "C", "B", "A"]

    @pytest.mark.asyncio
    async def test_expired_token_records_copy(
        self, pipeline, fake_backend: FakeBackend
    ) -> None:
        """Test a copy-back observed after the window is recorded normally."""
        listener, watcher, writer = pipeline
        clock = [0.0]
        writer.guard.clock = lambda: clock[0]
        fake_backend.copy_text("A")
        await self._observe(listener, watcher)
        fake_backend.copy_text("B")
        await self._observe(listener, watcher)

        await writer.write(CopyRequest.text("A"))
        clock[0] = 100.0
        await self._observe(listener, watcher)
        assert listener.shared.latest().content == "A"
        assert listener.repository.count() == 3

    @pytest.mark.asyncio
    async def test_watcher_sees_write_as_event(
        self, pipeline, fake_backend: FakeBackend
    ) -> None:
        """Test the fake backend reports the write like any clipboard change."""
        listener, watcher, writer = pipeline
        await writer.write(CopyRequest.text("X"))
        writer.guard.withdraw()
        assert await watcher.check() == TextEvent("X", frozenset({"UTF8_STRING"}))
