from __future__ import annotations

import re

_COMMITTED_RANGE = re.compile(r"^\s*bytes=(\d+)-(\d+)\s*$")


def content_range(start: int, end: int, total: int) -> str:
    """Header value for sending bytes ``start`` up to (not including) ``end``."""
    return f"bytes {start}-{end - 1}/{total}"


def unknown_range(total: int) -> str:
    return f"bytes */{total}"


def next_offset_from_range(value: str | None) -> int | None:
    """Next byte to send after a committed ``bytes=<start>-<end>`` range.

    Returns ``None`` when the header is absent or in any other format.
    """
    if not value:
        return None
    match = _COMMITTED_RANGE.match(value)
    if match is None:
        return None
    return int(match.group(2)) + 1
