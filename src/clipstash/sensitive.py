#!/usr/bin/env python3
"""Sensitive content filtering.

The filter is a list of predicates evaluated by the listener before a
capture is persisted. Any predicate returning True discards the capture.

Only one predicate ships: password managers announce secrets by offering
marker formats next to the content (KeePassXC and KDE Klipper use
x-kde-passwordManagerHint, Windows apps use the clipboard-history exclusion
formats). Heuristics on the content itself are left to callers through
add().
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from clipstash.events import ClipboardEvent, ImageEvent, TextEvent

logger = logging.getLogger(__name__)

SensitivePredicate = Callable[[ClipboardEvent], bool]

PASSWORD_MANAGER_FORMATS: frozenset[str] = frozenset({
    "x-kde-passwordmanagerhint",
    "excludeclipboardcontentfrommonitorprocessing",
    "canincludeinclipboardhistory",
    "canuploadtocloudclipboard",
    "org.nspasteboard.concealedtype",
})


def has_password_manager_hint(event: ClipboardEvent) -> bool:
    """Return True if the clipboard offered a password-manager marker format."""
    if not isinstance(event, (TextEvent, ImageEvent)):
        return False
    return any(name.lower() in PASSWORD_MANAGER_FORMATS for name in event.formats)


class SensitiveFilter:
    """Ordered collection of sensitive-content predicates."""

    def __init__(self, predicates: list[SensitivePredicate] | None = None) -> None:
        if predicates is None:
            predicates = [has_password_manager_hint]
        self._predicates = list(predicates)

    def add(self, predicate: SensitivePredicate) -> None:
        self._predicates.append(predicate)

    def matches(self, event: ClipboardEvent) -> bool:
        """Return True if any predicate flags the event.

        A predicate that raises is logged and treated as not matching.
        """
        for predicate in self._predicates:
            try:
                if predicate(event):
                    return True
            except Exception:
                logger.exception("Sensitive predicate %r failed", predicate)
        return False
