#!/usr/bin/env python3
"""
SHA-256 hashing and content fingerprints.

Fingerprints identify clipboard content by value. They are used in two
places:
- the watcher's private last-seen fingerprint, so an unchanged clipboard
  (every poll tick, or a repeated owner notification) emits nothing
- the self-write guard, so a copy-back is recognized when the watcher
  observes exactly the content that was written

A fingerprint is "<kind>:<sha256 hex>" so identical bytes of different kinds
never compare equal.
"""
import hashlib

from clipstash.models import ContentKind

__all__ = ["compute_hash", "fingerprint", "text_fingerprint", "image_fingerprint"]


def compute_hash(data: bytes) -> str:
    """
    Compute SHA-256 hash of clipboard content.

    Args:
        data: Raw content bytes to hash.

    Returns:
        Hexadecimal string representation of the SHA-256 digest.
    """
    return hashlib.sha256(data).hexdigest()


def fingerprint(kind: ContentKind, data: bytes) -> str:
    """
    Build the kind-qualified fingerprint of raw content.

    Args:
        kind: Content kind the bytes belong to.
        data: Raw content bytes.

    Returns:
        Fingerprint string "<kind>:<sha256 hex>".
    """
    return f"{kind.value}:{compute_hash(data)}"


def text_fingerprint(text: str) -> str:
    """Fingerprint a text payload (UTF-8 encoded)."""
    return fingerprint(ContentKind.TEXT, text.encode("utf-8"))


def image_fingerprint(data: bytes) -> str:
    """Fingerprint an image payload as raw bytes, whatever its format."""
    return fingerprint(ContentKind.IMAGE, data)
