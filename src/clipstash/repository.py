#!/usr/bin/env python3
"""Durable clipboard history storage.

The repository is an ordered key-value store on top of sqlite3. Records are
keyed by their integer id (strictly increasing, so key order is capture
order) and the value is the JSON encoding from repository_codec. Two
derived columns, pinned and asset, exist only so eviction, clear() and asset
reference counting can be answered in SQL.

Concurrency: all mutations go through one writer connection under a
threading.Lock (the listener is the only mutating caller, the lock covers
UI-triggered deletes running in worker threads). Reads use one connection
per thread; with WAL journaling a reader sees the last committed state and
never waits for an in-progress write.

Durability: every mutation is committed (synchronous=FULL) before the call
returns. Image files are written by the image store before the record that
references them is committed, and deleted only after the record deletion is
committed. A crash can therefore leave an unreferenced file, never a record
without its file; heal() removes such leftovers at startup.
"""

from __future__ import annotations

import logging
import sqlite3
import threading
import time
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING

from clipstash.errors import (
    CorruptRecordError,
    ImageProcessingError,
    MissingAssetError,
    StorageError,
)
from clipstash.image_store import TEMP_SUFFIX, restore_asset
from clipstash.models import ContentKind, ImageAsset, Record, RecordDraft
from clipstash.repository_codec import decode_record, encode_record

if TYPE_CHECKING:
    from clipstash.config import ConfigStore

logger = logging.getLogger(__name__)

# Seconds a connection waits for sqlite's own file lock before failing.
BUSY_TIMEOUT: float = 5.0

SCHEMA = """
CREATE TABLE IF NOT EXISTS records (
    id INTEGER PRIMARY KEY,
    value TEXT NOT NULL,
    pinned INTEGER NOT NULL DEFAULT 0,
    asset TEXT
);
CREATE INDEX IF NOT EXISTS records_asset ON records (asset);
CREATE TABLE IF NOT EXISTS quarantine (
    id INTEGER PRIMARY KEY,
    value BLOB,
    reason TEXT NOT NULL,
    quarantined_at TEXT NOT NULL
);
"""


@dataclass
class HealReport:
    """Outcome of the startup self-healing pass.

    Attributes:
        quarantined: Ids moved to the quarantine table.
        removed_files: Asset files deleted because no record references them.
    """

    quarantined: list[int] = field(default_factory=list)
    removed_files: list[str] = field(default_factory=list)

    @property
    def clean(self) -> bool:
        return not self.quarantined and not self.removed_files


class ClipboardRepository:
    """Ordered, size-bounded store of clipboard history records."""

    def __init__(self, db_path: Path, images_dir: Path, config: ConfigStore) -> None:
        """Open (creating if needed) the database at db_path.

        Args:
            db_path: sqlite database file.
            images_dir: Directory holding image assets.
            config: Live settings; max_history_records is read on every insert.

        Raises:
            StorageError: If the database cannot be opened or initialized.
        """
        self.db_path = Path(db_path)
        self.images_dir = Path(images_dir)
        self._config = config
        self._write_lock = threading.Lock()
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()
        self._closed = False

        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            self.images_dir.mkdir(parents=True, exist_ok=True)
            self._writer = self._connect()
            self._writer.execute("PRAGMA journal_mode=WAL")
            self._writer.executescript(SCHEMA)
            self._last_id = self._max_id()
        except (sqlite3.Error, OSError) as e:
            raise StorageError(f"Failed to open history database {self.db_path}: {e}") from e
        logger.debug("Opened history database %s (last id %s)", self.db_path, self._last_id)

    @classmethod
    def from_config(cls, config: ConfigStore) -> ClipboardRepository:
        """Open the repository at the locations named by the current settings."""
        settings = config.current
        return cls(settings.database_path, settings.images_dir, config)

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=BUSY_TIMEOUT, check_same_thread=False)
        conn.execute("PRAGMA synchronous=FULL")
        return conn

    def _reader(self) -> sqlite3.Connection:
        """Return this thread's read connection, opening it on first use."""
        if self._closed:
            raise StorageError("Repository is closed")
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._connect()
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    def _max_id(self) -> int:
        row = self._writer.execute(
            "SELECT MAX(m) FROM (SELECT MAX(id) AS m FROM records"
            " UNION ALL SELECT MAX(id) FROM quarantine)"
        ).fetchone()
        return row[0] or 0

    def _next_id(self) -> int:
        # Nanosecond timestamps keep ids sortable by time; the bump keeps
        # them strictly increasing when the clock stalls or steps back.
        return max(time.time_ns(), self._last_id + 1)

    # Mutations

    def insert(self, draft: RecordDraft, max_records: int | None = None) -> Record:
        """Persist a new record and apply the size bound.

        Args:
            draft: Content to store. Image drafts must reference an asset
                file that exists, or carry the PNG bytes to re-create it.
            max_records: Size bound to apply; defaults to the current
                max_history_records setting.

        Returns:
            The committed Record with its assigned id and timestamp.

        Raises:
            MissingAssetError: If an image draft's asset file is missing and
                cannot be re-created.
            StorageError: If the database write fails; nothing is persisted.
        """
        if max_records is None:
            max_records = self._config.current.max_history_records
        with self._write_lock:
            self._check_open()
            if draft.kind is ContentKind.IMAGE:
                # Under the lock: a delete sharing this asset cannot run
                # between the check and the commit.
                self._ensure_asset(draft)
            record = Record(
                id=self._next_id(),
                kind=draft.kind,
                content=draft.content,
                created_at=datetime.now().astimezone(),
                pinned=False,
                image=draft.image,
            )
            try:
                with self._writer:
                    self._writer.execute(
                        "INSERT INTO records (id, value, pinned, asset) VALUES (?, ?, ?, ?)",
                        (record.id, encode_record(record), 0, _asset_key(record)),
                    )
                    evicted = self._evict(max_records, keep_id=record.id)
            except sqlite3.Error as e:
                raise StorageError(f"Insert failed: {e}") from e
            self._last_id = record.id
            self._release_assets(evicted)

        if evicted:
            logger.debug("Evicted %d record(s) over limit %d", len(evicted), max_records)
        logger.debug("Inserted %s record %s", record.kind.value, record.id)
        return record

    def _ensure_asset(self, draft: RecordDraft) -> None:
        if draft.image is None:
            raise MissingAssetError(f"Image draft without asset: {draft.content}")
        if Path(draft.image.path).is_file() and Path(draft.image.thumbnail_path).is_file():
            return
        if draft.png is None:
            if Path(draft.image.path).is_file():
                return
            raise MissingAssetError(f"Image asset missing: {draft.content}")
        try:
            restore_asset(draft.image, draft.png)
        except ImageProcessingError as e:
            raise MissingAssetError(f"Image asset missing: {draft.content}: {e}") from e

    def _evict(self, max_records: int, keep_id: int | None = None) -> list[Record]:
        """Delete the oldest non-pinned records beyond max_records.

        Runs inside the caller's transaction. The record identified by
        keep_id is never a candidate.
        """
        total = self._writer.execute("SELECT COUNT(*) FROM records").fetchone()[0]
        excess = total - max_records
        if excess <= 0:
            return []
        rows = self._writer.execute(
            "SELECT id, value FROM records WHERE pinned = 0 AND id != ? ORDER BY id ASC LIMIT ?",
            (keep_id if keep_id is not None else -1, excess),
        ).fetchall()
        self._writer.executemany("DELETE FROM records WHERE id = ?", [(row[0],) for row in rows])
        return self._decode_rows(rows)

    def delete(self, record_id: int) -> bool:
        """Remove a record and its asset files.

        Asset files shared with another record (the same image captured
        again later) are kept until the last reference goes.

        Args:
            record_id: Id to delete.

        Returns:
            True if a record was removed, False if the id did not exist.

        Raises:
            StorageError: If the database write fails.
        """
        with self._write_lock:
            self._check_open()
            try:
                row = self._writer.execute(
                    "SELECT id, value FROM records WHERE id = ?", (record_id,)
                ).fetchone()
                if row is None:
                    return False
                with self._writer:
                    self._writer.execute("DELETE FROM records WHERE id = ?", (record_id,))
            except sqlite3.Error as e:
                raise StorageError(f"Delete of {record_id} failed: {e}") from e
            self._release_assets(self._decode_rows([row]))
        logger.debug("Deleted record %s", record_id)
        return True

    def clear(self) -> int:
        """Remove every non-pinned record and its asset files.

        Returns:
            Number of records removed.

        Raises:
            StorageError: If the database write fails.
        """
        with self._write_lock:
            self._check_open()
            try:
                with self._writer:
                    rows = self._writer.execute(
                        "SELECT id, value FROM records WHERE pinned = 0"
                    ).fetchall()
                    self._writer.execute("DELETE FROM records WHERE pinned = 0")
            except sqlite3.Error as e:
                raise StorageError(f"Clear failed: {e}") from e
            self._release_assets(self._decode_rows(rows))
        logger.debug("Cleared %d record(s)", len(rows))
        return len(rows)

    def set_pinned(self, record_id: int, pinned: bool) -> Record | None:
        """Set the pinned flag of a record.

        Args:
            record_id: Record to update.
            pinned: New flag value.

        Returns:
            The updated Record, or None if the id does not exist.

        Raises:
            StorageError: If the database write fails.
            CorruptRecordError: If the stored value cannot be decoded.
        """
        with self._write_lock:
            self._check_open()
            try:
                row = self._writer.execute(
                    "SELECT value FROM records WHERE id = ?", (record_id,)
                ).fetchone()
                if row is None:
                    return None
                record = decode_record(record_id, row[0]).with_pinned(pinned)
                with self._writer:
                    self._writer.execute(
                        "UPDATE records SET value = ?, pinned = ? WHERE id = ?",
                        (encode_record(record), int(pinned), record_id),
                    )
            except sqlite3.Error as e:
                raise StorageError(f"Pin update of {record_id} failed: {e}") from e
        return record

    def cleanup_old_records(self, keep_count: int) -> int:
        """Evict the oldest non-pinned records until at most keep_count remain.

        Returns:
            Number of records removed.
        """
        with self._write_lock:
            self._check_open()
            try:
                with self._writer:
                    evicted = self._evict(keep_count)
            except sqlite3.Error as e:
                raise StorageError(f"Cleanup failed: {e}") from e
            self._release_assets(evicted)
        return len(evicted)

    def discard_asset(self, image: ImageAsset) -> bool:
        """Delete the files of a captured image that was never recorded.

        Files still referenced by a stored record are kept.

        Returns:
            True if the files were removed.
        """
        with self._write_lock:
            self._check_open()
            try:
                still_used = self._writer.execute(
                    "SELECT 1 FROM records WHERE asset = ? LIMIT 1", (image.path,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Query failed: {e}") from e
            if still_used:
                return False
            for path in (image.path, image.thumbnail_path):
                try:
                    Path(path).unlink(missing_ok=True)
                except OSError as e:
                    logger.warning("Could not remove asset %s: %s", path, e)
        return True

    # Reads

    def iter_records(self) -> Iterator[Record]:
        """Yield records newest first, skipping rows that cannot be decoded."""
        try:
            rows = self._reader().execute(
                "SELECT id, value FROM records ORDER BY id DESC"
            ).fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        for record_id, value in rows:
            try:
                yield decode_record(record_id, value)
            except CorruptRecordError as e:
                logger.warning("Skipping unreadable record: %s", e)

    def all_records(self) -> list[Record]:
        return list(self.iter_records())

    def get_recent(self, limit: int) -> list[Record]:
        """Return the newest limit records, newest first."""
        records = []
        for record in self.iter_records():
            if len(records) >= limit:
                break
            records.append(record)
        return records

    def get_latest(self) -> Record | None:
        return next(self.iter_records(), None)

    def get_by_id(self, record_id: int) -> Record | None:
        try:
            row = self._reader().execute(
                "SELECT value FROM records WHERE id = ?", (record_id,)
            ).fetchone()
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        if row is None:
            return None
        return decode_record(record_id, row[0])

    def search(self, query: str) -> list[Record]:
        """Case-insensitive substring search over text content and image labels.

        Args:
            query: Substring to look for. An empty query matches everything.

        Returns:
            Matching records in default order (newest first).
        """
        needle = query.casefold()
        return [
            record for record in self.iter_records()
            if needle in record.searchable_text().casefold()
        ]

    def count(self) -> int:
        try:
            return self._reader().execute("SELECT COUNT(*) FROM records").fetchone()[0]
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e

    def quarantined_ids(self) -> list[int]:
        try:
            rows = self._reader().execute("SELECT id FROM quarantine ORDER BY id").fetchall()
        except sqlite3.Error as e:
            raise StorageError(f"Query failed: {e}") from e
        return [row[0] for row in rows]

    # Maintenance

    def heal(self) -> HealReport:
        """Repair the store after an unclean shutdown.

        - Rows that cannot be decoded are moved to the quarantine table.
        - Image records whose asset file is missing are quarantined.
        - Asset files that no record references, and leftover temp files,
          are deleted.

        Returns:
            What was repaired.
        """
        report = HealReport()
        with self._write_lock:
            self._check_open()
            try:
                rows = self._writer.execute("SELECT id, value FROM records").fetchall()
                referenced: set[str] = set()
                with self._writer:
                    for record_id, value in rows:
                        reason = None
                        try:
                            record = decode_record(record_id, value)
                        except CorruptRecordError as e:
                            reason = str(e)
                        else:
                            if record.image is not None and not Path(record.image.path).is_file():
                                reason = f"asset file missing: {record.image.path}"
                            else:
                                referenced.update(record.asset_paths())
                        if reason is not None:
                            self._quarantine(record_id, value, reason)
                            report.quarantined.append(record_id)
            except sqlite3.Error as e:
                raise StorageError(f"Heal failed: {e}") from e
            report.removed_files = self._remove_orphan_files(referenced)

        for record_id in report.quarantined:
            logger.warning("Quarantined record %s", record_id)
        if report.removed_files:
            logger.warning("Removed %d orphaned asset file(s)", len(report.removed_files))
        return report

    def _quarantine(self, record_id: int, value: str | bytes, reason: str) -> None:
        self._writer.execute(
            "INSERT OR REPLACE INTO quarantine (id, value, reason, quarantined_at)"
            " VALUES (?, ?, ?, ?)",
            (record_id, value, reason, datetime.now().astimezone().isoformat()),
        )
        self._writer.execute("DELETE FROM records WHERE id = ?", (record_id,))

    def _remove_orphan_files(self, referenced: set[str]) -> list[str]:
        removed = []
        for path in sorted(self.images_dir.iterdir()):
            if not path.is_file():
                continue
            if path.name.endswith(TEMP_SUFFIX) or str(path) not in referenced:
                try:
                    path.unlink()
                except OSError as e:
                    logger.warning("Could not remove orphaned asset %s: %s", path, e)
                    continue
                removed.append(str(path))
        return removed

    def _release_assets(self, records: list[Record]) -> None:
        """Delete asset files of removed records that nothing references any more.

        Called after the removal is committed. A failure leaves an orphan
        for the next heal() and is not an error for the caller.
        """
        for record in records:
            if record.image is None:
                continue
            still_used = self._writer.execute(
                "SELECT 1 FROM records WHERE asset = ? LIMIT 1", (_asset_key(record),)
            ).fetchone()
            if still_used:
                continue
            for path in record.asset_paths():
                try:
                    Path(path).unlink(missing_ok=True)
                except OSError as e:
                    logger.warning("Could not remove asset %s: %s", path, e)

    def _decode_rows(self, rows: list[tuple[int, str]]) -> list[Record]:
        records = []
        for record_id, value in rows:
            try:
                records.append(decode_record(record_id, value))
            except CorruptRecordError as e:
                logger.warning("Removed unreadable record: %s", e)
        return records

    def _check_open(self) -> None:
        if self._closed:
            raise StorageError("Repository is closed")

    def close(self) -> None:
        """Close all connections. Further calls raise StorageError."""
        with self._write_lock:
            if self._closed:
                return
            self._closed = True
            self._writer.close()
            with self._readers_lock:
                for conn in self._readers:
                    conn.close()
                self._readers.clear()
        logger.debug("Closed history database %s", self.db_path)


def _asset_key(record: Record) -> str | None:
    return record.image.path if record.image is not None else None
