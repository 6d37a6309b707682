"""A1-notation helpers for 0-based grid coordinates."""

from __future__ import annotations

import re

_A1_RE = re.compile(r"^\$?([A-Za-z]{1,3})\$?(\d+)$")


def column_letter_to_index(letters: str) -> int:
    """``"A"`` -> 0, ``"Z"`` -> 25, ``"AA"`` -> 26."""
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


def column_index_to_letter(index: int) -> str:
    """0 -> ``"A"``, 26 -> ``"AA"``."""
    if index < 0:
        raise ValueError(f"Invalid column index: {index}")
    letters = ""
    n = index + 1
    while n:
        n, rem = divmod(n - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def a1_to_rowcol(ref: str) -> tuple[int, int]:
    """Convert ``"B3"`` to 0-based ``(2, 1)``. Dollar signs are ignored."""
    m = _A1_RE.match(ref.strip())
    if not m:
        raise ValueError(f"Invalid cell reference: {ref!r}")
    row = int(m.group(2))
    if row < 1:
        raise ValueError(f"Invalid cell reference: {ref!r}")
    return row - 1, column_letter_to_index(m.group(1))


def rowcol_to_a1(row: int, column: int) -> str:
    """Convert 0-based ``(2, 1)`` to ``"B3"``."""
    if row < 0:
        raise ValueError(f"Invalid row index: {row}")
    return f"{column_index_to_letter(column)}{row + 1}"
