#!/usr/bin/env python3
"""In-memory view of history shared with readers.

The listener is the only writer. It builds a complete new ordering and
publishes it as an immutable Snapshot; publishing is a single reference
assignment, so readers (UI, search helpers, other threads) take no lock and
always see one whole version, never a partially updated list.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

from clipstash.models import Record


@dataclass(frozen=True)
class Snapshot:
    """One published version of the history ordering.

    Attributes:
        version: Increases by one with every publish.
        records: Records, most recent first.
    """

    version: int
    records: tuple[Record, ...]

    @property
    def head(self) -> Record | None:
        return self.records[0] if self.records else None


class SharedRecords:
    """Single-writer, lock-free-reader holder of the current Snapshot."""

    def __init__(self, records: Iterable[Record] = ()) -> None:
        self._snapshot = Snapshot(0, tuple(records))

    def snapshot(self) -> Snapshot:
        return self._snapshot

    @property
    def records(self) -> tuple[Record, ...]:
        return self._snapshot.records

    @property
    def version(self) -> int:
        return self._snapshot.version

    def latest(self) -> Record | None:
        """The most recently committed record, or None when history is empty."""
        return self._snapshot.head

    def publish(self, records: Iterable[Record]) -> Snapshot:
        """Install a new ordering. Listener only."""
        snapshot = Snapshot(self._snapshot.version + 1, tuple(records))
        self._snapshot = snapshot
        return snapshot

    def prepend(self, record: Record, max_records: int) -> tuple[Record, ...]:
        """Build the ordering that results from inserting record.

        Applies the same bound as the repository: the oldest non-pinned
        records other than the new one are dropped until the size fits.
        """
        ordered = [record, *self._snapshot.records]
        excess = len(ordered) - max_records
        if excess <= 0:
            return tuple(ordered)
        for index in range(len(ordered) - 1, 0, -1):
            if excess == 0:
                break
            if not ordered[index].pinned:
                del ordered[index]
                excess -= 1
        return tuple(ordered)

    def without(self, record_id: int) -> tuple[Record, ...]:
        return tuple(r for r in self._snapshot.records if r.id != record_id)

    def replaced(self, record: Record) -> tuple[Record, ...]:
        return tuple(record if r.id == record.id else r for r in self._snapshot.records)
