#!/usr/bin/env python3
"""
Exception hierarchy for clipstash.

Errors are grouped by the stage that raises them:
- ClipboardReadError / ClipboardWriteError: OS clipboard I/O (transient,
  logged and skipped by the watcher and writer)
- ImageProcessingError: decoding or persisting a captured image
- RepositoryError and subclasses: durable history storage

Duplicates and capacity overflow are not errors; the listener discards
duplicates silently and the repository evicts on overflow.
"""


class ClipstashError(Exception):
    """Base class for all clipstash errors."""

    pass


class BackendUnavailableError(ClipstashError):
    """
    Exception raised when no clipboard connection can be established.

    Raised at startup only (DISPLAY unset, X server unreachable, no
    clipboard tool for the polling backend); the launcher exits with code 1.
    """

    pass


class ClipboardReadError(ClipstashError):
    """
    Exception raised when reading the OS clipboard fails.

    Treated as transient: the watcher logs it and retries with backoff.
    """

    pass


class ClipboardWriteError(ClipstashError):
    """Exception raised when writing content to the OS clipboard fails."""

    pass


class ImageProcessingError(ClipstashError):
    """Exception raised when a captured image cannot be decoded or stored."""

    pass


class RepositoryError(ClipstashError):
    """Base class for history storage errors."""

    pass


class StorageError(RepositoryError):
    """
    Exception raised when the underlying database operation fails.

    Wraps sqlite3 and OS errors (disk full, locked database, permissions).
    """

    pass


class CorruptRecordError(RepositoryError):
    """
    Exception raised when a persisted record cannot be decoded.

    Attributes:
        record_id: Key of the unreadable row.
    """

    def __init__(self, record_id: int, reason: str) -> None:
        super().__init__(f"Record {record_id} is unreadable: {reason}")
        self.record_id = record_id


class MissingAssetError(RepositoryError):
    """Exception raised when an image record references a file that does not exist."""

    pass
