#!/usr/bin/env python3
"""Messages passed between pipeline stages.

ClipboardEvent is a closed union of the three event classes the listener
accepts. Every stage communicates only through these values on asyncio
queues.

Capture:
- watcher -> listener: TextEvent
- watcher -> image processor: RawImage
- image processor -> listener: ImageEvent, CaptureFailedEvent

Write-back:
- UI -> writer: CopyRequest
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Union

from clipstash.models import ContentKind, ImageAsset


@dataclass(frozen=True)
class TextEvent:
    """A text clipboard change.

    Attributes:
        text: The clipboard text.
        formats: Format names the clipboard offered with this content.
    """

    text: str
    formats: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class ImageEvent:
    """An image change whose payload is already stored as an asset.

    Attributes:
        image: The stored asset.
        formats: Format names the clipboard offered with this content.
        png: The asset's PNG bytes, kept until the capture is recorded.
    """

    image: ImageAsset
    formats: frozenset[str] = field(default_factory=frozenset)
    png: bytes | None = field(default=None, repr=False, compare=False)


@dataclass(frozen=True)
class CaptureFailedEvent:
    """An image capture that could not be persisted.

    Attributes:
        reason: Human-readable failure description.
        byte_size: Size of the payload that was dropped.
    """

    reason: str
    byte_size: int = 0


ClipboardEvent = Union[TextEvent, ImageEvent, CaptureFailedEvent]


@dataclass(frozen=True)
class RawImage:
    """Undecoded image bytes read from the clipboard.

    Attributes:
        data: Encoded image bytes (PNG, BMP, JPEG, ...).
        formats: Format names the clipboard offered with this content.
    """

    data: bytes
    formats: frozenset[str] = field(default_factory=frozenset)


@dataclass(frozen=True)
class CopyRequest:
    """A request from the UI to put a history entry back on the clipboard.

    Attributes:
        kind: Text or image.
        content: The text, or the PNG asset path for images.
    """

    kind: ContentKind
    content: str

    @classmethod
    def text(cls, text: str) -> CopyRequest:
        return cls(ContentKind.TEXT, text)

    @classmethod
    def image(cls, path: str) -> CopyRequest:
        return cls(ContentKind.IMAGE, path)
