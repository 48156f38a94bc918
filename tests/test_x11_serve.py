#!/usr/bin/env python3
"""Tests for answering SelectionRequests while we own CLIPBOARD."""
from unittest.mock import MagicMock

from Xlib import X, Xatom

from clipstash.x11_incr import IncrSender
from clipstash.x11_serve import TEXT_SERVE_TARGETS, OwnedContent, handle_selection_request
from conftest_x11 import ATOMS, make_display, make_request


def notify_property(event: MagicMock) -> int:
    """Property field of the SelectionNotify sent to the requestor."""
    event.requestor.send_event.assert_called_once()
    return event.requestor.send_event.call_args[0][0].property


def test_targets_lists_served_formats() -> None:
    """Test TARGETS answers TARGETS, TIMESTAMP and the text targets as ATOMs."""
    display = make_display()
    event = make_request("TARGETS")
    handle_selection_request(display, event, OwnedContent.text("hi"), 1, IncrSender(display))

    prop, prop_type, fmt, data = event.requestor.change_property.call_args[0]
    assert (prop, prop_type, fmt) == (200, Xatom.ATOM, 32)
    assert data[:2] == [ATOMS["TARGETS"], ATOMS["TIMESTAMP"]]
    assert set(data[2:]) == {ATOMS[name] for name in TEXT_SERVE_TARGETS}
    assert notify_property(event) == 200


def test_utf8_text_served() -> None:
    """Test UTF8_STRING is written as 8-bit UTF-8."""
    display = make_display()
    event = make_request("UTF8_STRING")
    handle_selection_request(display, event, OwnedContent.text("héllo"), 1, IncrSender(display))
    event.requestor.change_property.assert_called_once_with(
        200, ATOMS["UTF8_STRING"], 8, "héllo".encode()
    )


def test_string_target_is_latin1() -> None:
    """Test STRING is encoded as Latin-1."""
    display = make_display()
    event = make_request("STRING")
    handle_selection_request(display, event, OwnedContent.text("héllo"), 1, IncrSender(display))
    assert event.requestor.change_property.call_args[0][3] == "héllo".encode("latin-1")


def test_image_served_as_png() -> None:
    """Test an owned image answers image/png with the PNG bytes."""
    display = make_display()
    event = make_request("image/png")
    handle_selection_request(
        display, event, OwnedContent.image(b"\x89PNG data"), 1, IncrSender(display)
    )
    event.requestor.change_property.assert_called_once_with(
        200, ATOMS["image/png"], 8, b"\x89PNG data"
    )


def test_timestamp_returns_acquisition_time() -> None:
    """Test TIMESTAMP is a 32-bit INTEGER with the ownership time."""
    display = make_display()
    event = make_request("TIMESTAMP")
    handle_selection_request(display, event, OwnedContent.text("x"), 555, IncrSender(display))
    event.requestor.change_property.assert_called_once_with(200, Xatom.INTEGER, 32, [555])


def test_timestamp_refused_without_acquisition_time() -> None:
    """Test TIMESTAMP is refused when the ownership time is unknown."""
    display = make_display()
    event = make_request("TIMESTAMP")
    handle_selection_request(display, event, OwnedContent.text("x"), None, IncrSender(display))
    event.requestor.change_property.assert_not_called()
    assert notify_property(event) == X.NONE


def test_unsupported_target_refused() -> None:
    """Test a target we do not serve gets property None."""
    display = make_display()
    event = make_request("image/png")
    handle_selection_request(display, event, OwnedContent.text("x"), 1, IncrSender(display))
    event.requestor.change_property.assert_not_called()
    assert notify_property(event) == X.NONE


def test_nothing_owned_refuses() -> None:
    """Test every request is refused when we serve nothing."""
    display = make_display()
    event = make_request("UTF8_STRING")
    handle_selection_request(display, event, None, None, IncrSender(display))
    assert notify_property(event) == X.NONE


def test_obsolete_requestor_property_defaults_to_target() -> None:
    """Test property None is replaced by the target atom."""
    display = make_display()
    event = make_request("UTF8_STRING", prop=X.NONE)
    handle_selection_request(display, event, OwnedContent.text("x"), 1, IncrSender(display))
    assert event.requestor.change_property.call_args[0][0] == ATOMS["UTF8_STRING"]
    assert notify_property(event) == ATOMS["UTF8_STRING"]


def test_large_payload_uses_incr() -> None:
    """Test content over the request limit starts an INCR transfer."""
    display = make_display(max_request_length=64)
    incr = IncrSender(display)
    event = make_request("image/png")
    handle_selection_request(display, event, OwnedContent.image(b"x" * 1000), 1, incr)

    event.requestor.change_property.assert_called_once_with(200, ATOMS["INCR"], 32, [1000])
    assert (12345, 200) in incr.transfers
    assert notify_property(event) == 200
