#!/usr/bin/env python3
"""Tests for records, drafts and derived presentation fields."""
from datetime import datetime

from clipstash.models import ContentKind, ImageAsset, Record, RecordDraft


def make_asset(digest: str = "abc", path: str = "/data/images/abc.png") -> ImageAsset:
    return ImageAsset(
        path=path,
        thumbnail_path=path.replace(".png", "_thumb.png"),
        digest=digest,
        width=640,
        height=480,
        byte_size=1234,
    )


def make_record(content: str, kind: ContentKind = ContentKind.TEXT, **kwargs) -> Record:
    return Record(id=1, kind=kind, content=content, created_at=datetime.now().astimezone(),
        **kwargs)


def test_text_identity_is_content() -> None:
    """Test text drafts and records compare by kind and content."""
    assert RecordDraft(ContentKind.TEXT, "abc").identity == make_record("abc").identity


def test_image_identity_is_digest() -> None:
    """Test images with the same digest are identical whatever the path."""
    a = RecordDraft(ContentKind.IMAGE, "/old/abc.png", make_asset(path="/old/abc.png"))
    b = make_record("/new/abc.png", ContentKind.IMAGE, image=make_asset(path="/new/abc.png"))
    assert a.identity == b.identity


def test_preview_collapses_whitespace_and_truncates() -> None:
    """Test text preview is a single line of bounded length."""
    record = make_record("line one\n\n  line two\t" + "x" * 300)
    assert "\n" not in record.preview
    assert record.preview.startswith("line one line two")
    assert len(record.preview) == 120


def test_image_preview_is_label() -> None:
    """Test image records preview as file name and dimensions."""
    record = make_record("/data/images/abc.png", ContentKind.IMAGE, image=make_asset())
    assert record.preview == "abc.png 640x480"
    assert record.searchable_text() == "abc.png 640x480"


def test_color_token_detected() -> None:
    """Test a text record that is exactly a hex color exposes it."""
    assert make_record("#FFAA00").color == "#ffaa00"
    assert make_record("  #abc \n").color == "#abc"
    assert make_record("#11223344").color == "#11223344"


def test_non_color_text_has_no_color() -> None:
    """Test other text, and malformed tokens, expose no color."""
    assert make_record("color: #ffaa00").color is None
    assert make_record("#ffaa0").color is None
    assert make_record("#ggg").color is None


def test_with_pinned_returns_new_record() -> None:
    """Test pinning produces a copy and leaves the original untouched."""
    record = make_record("abc")
    pinned = record.with_pinned(True)
    assert pinned.pinned is True
    assert record.pinned is False
    assert pinned.content == record.content


def test_asset_paths() -> None:
    """Test text owns no files and images own file and thumbnail."""
    assert make_record("abc").asset_paths() == []
    image = make_record("/data/images/abc.png", ContentKind.IMAGE, image=make_asset())
    assert image.asset_paths() == ["/data/images/abc.png", "/data/images/abc_thumb.png"]
