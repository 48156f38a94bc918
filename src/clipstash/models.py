#!/usr/bin/env python3
"""Clipboard history data model.

Records are the durable unit of history. They are frozen: content never
changes after capture, and the only mutation the repository supports is the
pinned flag, which produces a new Record value.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass, field, replace
from datetime import datetime
from pathlib import Path

# A text record that is exactly one hex color token gets a color preview.
HEX_COLOR_PATTERN = re.compile(r"#(?:[0-9a-fA-F]{3}|[0-9a-fA-F]{6}|[0-9a-fA-F]{8})")

# Length of the single-line preview shown for text records.
PREVIEW_LENGTH: int = 120


class ContentKind(str, enum.Enum):
    """Kind of clipboard content."""

    TEXT = "text"
    IMAGE = "image"


@dataclass(frozen=True)
class ImageAsset:
    """A content-addressed image file stored by the image store.

    Attributes:
        path: Absolute path of the normalized PNG file.
        thumbnail_path: Absolute path of the thumbnail PNG.
        digest: SHA-256 hex digest of the PNG bytes (the file's address).
        width: Image width in pixels.
        height: Image height in pixels.
        byte_size: Size of the PNG file in bytes.
    """

    path: str
    thumbnail_path: str
    digest: str
    width: int
    height: int
    byte_size: int

    @property
    def label(self) -> str:
        """Searchable label: file name plus dimensions."""
        return f"{Path(self.path).name} {self.width}x{self.height}"


@dataclass(frozen=True)
class RecordDraft:
    """Content handed to the repository for insertion, before id/timestamp."""

    kind: ContentKind
    content: str
    image: ImageAsset | None = None
    # Lets insert() re-create an asset file removed while the draft was queued.
    png: bytes | None = field(default=None, repr=False, compare=False)

    @property
    def identity(self) -> tuple[ContentKind, str]:
        return _identity(self.kind, self.content, self.image)


@dataclass(frozen=True)
class Record:
    """A persisted clipboard history entry.

    Attributes:
        id: Strictly increasing identifier assigned at insert time.
        kind: Text or image.
        content: The text, or the asset path for images.
        created_at: Local capture timestamp.
        pinned: Exempts the record from size-based eviction and clear().
        image: Asset details for image records, None for text.
    """

    id: int
    kind: ContentKind
    content: str
    created_at: datetime
    pinned: bool = False
    image: ImageAsset | None = None

    @property
    def identity(self) -> tuple[ContentKind, str]:
        """Value used for consecutive-duplicate comparison."""
        return _identity(self.kind, self.content, self.image)

    @property
    def preview(self) -> str:
        """Single-line preview for list display."""
        if self.kind is ContentKind.IMAGE and self.image is not None:
            return self.image.label
        line = " ".join(self.content.split())
        if len(line) > PREVIEW_LENGTH:
            return line[: PREVIEW_LENGTH - 1] + "…"
        return line

    @property
    def color(self) -> str | None:
        """The hex color token if the text content is exactly one, else None."""
        if self.kind is not ContentKind.TEXT:
            return None
        token = self.content.strip()
        if HEX_COLOR_PATTERN.fullmatch(token):
            return token.lower()
        return None

    def searchable_text(self) -> str:
        """Text that search() matches against."""
        if self.kind is ContentKind.IMAGE and self.image is not None:
            return self.image.label
        return self.content

    def asset_paths(self) -> list[str]:
        """Files owned by this record (empty for text)."""
        if self.image is None:
            return []
        return [self.image.path, self.image.thumbnail_path]

    def with_pinned(self, pinned: bool) -> Record:
        return replace(self, pinned=pinned)


def _identity(
    kind: ContentKind, content: str, image: ImageAsset | None
) -> tuple[ContentKind, str]:
    # Images compare by digest; the content-addressed path already encodes it
    # but the digest survives a moved data directory.
    if kind is ContentKind.IMAGE and image is not None:
        return (kind, image.digest)
    return (kind, content)
