#!/usr/bin/env python3
"""
JSON encoding of records for the key-value store.

Each row of the records table is (id, value) where value is a JSON object:

    {"kind": "text", "content": "...", "created_at": "<ISO 8601 with offset>",
     "pinned": false, "image": null}

For image records "image" holds the asset fields (path, thumbnail_path,
digest, width, height, byte_size) and "content" repeats the asset path.

The id is the row key and is not repeated in the value.
"""
from __future__ import annotations

import json
from dataclasses import asdict
from datetime import datetime

from clipstash.errors import CorruptRecordError
from clipstash.models import ContentKind, ImageAsset, Record

# Bumped when the value layout changes incompatibly.
FORMAT_VERSION: int = 1


def encode_record(record: Record) -> str:
    """
    Encode a record as the JSON value stored under its id.

    Args:
        record: Record to encode.

    Returns:
        Compact JSON string.
    """
    value = {
        "v": FORMAT_VERSION,
        "kind": record.kind.value,
        "content": record.content,
        "created_at": record.created_at.isoformat(),
        "pinned": record.pinned,
        "image": asdict(record.image) if record.image is not None else None,
    }
    return json.dumps(value, ensure_ascii=False, separators=(",", ":"))


def decode_record(record_id: int, value: str | bytes) -> Record:
    """
    Decode a stored value back into a Record.

    Args:
        record_id: Row key.
        value: Stored JSON value.

    Returns:
        The decoded Record.

    Raises:
        CorruptRecordError: If the value is not valid JSON or misses fields.
    """
    try:
        data = json.loads(value)
        if data.get("v", FORMAT_VERSION) > FORMAT_VERSION:
            raise ValueError(f"unsupported format version {data['v']}")
        kind = ContentKind(data["kind"])
        image = _decode_image(data.get("image"))
        if kind is ContentKind.IMAGE and image is None:
            raise ValueError("image record without asset")
        return Record(
            id=record_id,
            kind=kind,
            content=str(data["content"]),
            created_at=datetime.fromisoformat(data["created_at"]),
            pinned=bool(data.get("pinned", False)),
            image=image,
        )
    except (ValueError, KeyError, TypeError, AttributeError) as e:
        raise CorruptRecordError(record_id, str(e)) from e


def _decode_image(data: dict | None) -> ImageAsset | None:
    if data is None:
        return None
    return ImageAsset(
        path=str(data["path"]),
        thumbnail_path=str(data["thumbnail_path"]),
        digest=str(data["digest"]),
        width=int(data["width"]),
        height=int(data["height"]),
        byte_size=int(data["byte_size"]),
    )
