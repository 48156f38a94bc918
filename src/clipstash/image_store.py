#!/usr/bin/env python3
"""Content-addressed image asset storage.

Captured images are normalized to PNG with Pillow and stored under their
SHA-256 digest:

    <images_dir>/<digest>.png
    <images_dir>/<digest>_thumb.png

The same image captured twice maps to the same files, so nothing is written
the second time. Files are written to a temp name, fsynced and renamed into
place; a reader never sees a partial file under a final name.
"""

from __future__ import annotations

import io
import logging
import os
from pathlib import Path

from PIL import Image

from clipstash.errors import ImageProcessingError
from clipstash.hashing import compute_hash
from clipstash.models import ImageAsset

logger = logging.getLogger(__name__)

# Bounding box of generated thumbnails.
THUMBNAIL_SIZE: tuple[int, int] = (300, 300)

# Suffix of partially written files; the repository heal pass deletes them.
TEMP_SUFFIX: str = ".tmp"

# Modes PNG stores directly; anything else is converted to RGBA.
_PNG_MODES = frozenset({"1", "L", "LA", "I", "I;16", "P", "RGB", "RGBA"})


class ImageStore:
    """Write and locate image assets in one directory."""

    def __init__(self, images_dir: Path) -> None:
        self.images_dir = Path(images_dir)

    def asset_path(self, digest: str) -> Path:
        return self.images_dir / f"{digest}.png"

    def thumbnail_path(self, digest: str) -> Path:
        return self.images_dir / f"{digest}_thumb.png"

    def store(self, data: bytes) -> ImageAsset:
        """Decode raw clipboard image bytes and persist them as an asset."""
        return self.capture(data)[0]

    def capture(self, data: bytes) -> tuple[ImageAsset, bytes]:
        """Decode raw clipboard image bytes and persist them as an asset.

        Blocking; call from a worker thread.

        Args:
            data: Encoded image in any format Pillow reads.

        Returns:
            The stored (or already existing) asset and its PNG bytes. The
            bytes let the repository re-create the files if another record
            sharing them is removed before this capture is recorded.

        Raises:
            ImageProcessingError: If the bytes cannot be decoded or the files
                cannot be written.
        """
        try:
            with Image.open(io.BytesIO(data)) as image:
                image.load()
                if image.mode not in _PNG_MODES:
                    image = image.convert("RGBA")
                png = encode_png(image)
                digest = compute_hash(png)
                path = self.asset_path(digest)
                thumb_path = self.thumbnail_path(digest)
                if not path.exists():
                    self.images_dir.mkdir(parents=True, exist_ok=True)
                    _atomic_write(path, png)
                    logger.debug("Stored image %s (%dx%d)", path.name, *image.size)
                if not thumb_path.exists():
                    _atomic_write(thumb_path, _thumbnail(image))
                width, height = image.size
        except (OSError, ValueError, Image.DecompressionBombError) as e:
            raise ImageProcessingError(f"Cannot store {len(data)} byte image: {e}") from e

        asset = ImageAsset(
            path=str(path),
            thumbnail_path=str(thumb_path),
            digest=digest,
            width=width,
            height=height,
            byte_size=len(png),
        )
        return asset, png


def restore_asset(asset: ImageAsset, png: bytes) -> None:
    """Re-create whichever of an asset's files are missing.

    Blocking. Existing files are left alone.

    Raises:
        ImageProcessingError: If png is not the asset's content or the files
            cannot be written.
    """
    if compute_hash(png) != asset.digest:
        raise ImageProcessingError(f"PNG bytes do not match asset {asset.digest}")
    path = Path(asset.path)
    thumb_path = Path(asset.thumbnail_path)
    try:
        if not path.is_file():
            path.parent.mkdir(parents=True, exist_ok=True)
            _atomic_write(path, png)
            logger.debug("Restored image %s", path.name)
        if not thumb_path.is_file():
            with Image.open(io.BytesIO(png)) as image:
                image.load()
                _atomic_write(thumb_path, _thumbnail(image))
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        raise ImageProcessingError(f"Cannot restore image {asset.digest}: {e}") from e


def encode_png(image: Image.Image) -> bytes:
    """Encode a Pillow image as PNG bytes."""
    buffer = io.BytesIO()
    image.save(buffer, format="PNG")
    return buffer.getvalue()


def _thumbnail(image: Image.Image) -> bytes:
    thumb = image.copy()
    thumb.thumbnail(THUMBNAIL_SIZE)
    return encode_png(thumb)


def _atomic_write(path: Path, data: bytes) -> None:
    """Write data to path so that path is either absent or complete."""
    tmp_path = path.with_name(path.name + TEMP_SUFFIX)
    try:
        with open(tmp_path, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
    except OSError:
        tmp_path.unlink(missing_ok=True)
        raise
    _fsync_dir(path.parent)


def _fsync_dir(directory: Path) -> None:
    # Persist the rename itself; not every platform can open a directory.
    try:
        fd = os.open(directory, os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)
