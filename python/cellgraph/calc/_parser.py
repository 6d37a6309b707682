"""Formula reference extraction: regex-based A1 parsing into grid points."""

from __future__ import annotations

import re

from cellgraph._point import Point, PointSet
from cellgraph._utils import a1_to_rowcol

# ---------------------------------------------------------------------------
# Regex patterns for A1 reference extraction
# ---------------------------------------------------------------------------

# Single cell ref: A1, $A$1, $A1, A$1.  Not part of a longer identifier
# (LOG10) and not a function call.
_CELL_REF = r"\$?([A-Z]{1,3})\$?(\d+)"
_SINGLE_REF_RE = re.compile(
    rf"(?<![A-Z0-9_.$]){_CELL_REF}(?![A-Z0-9_.(])",
    re.IGNORECASE,
)

# Range: A1:B5
_RANGE_REF_RE = re.compile(
    rf"(?<![A-Z0-9_.$]){_CELL_REF}\s*:\s*{_CELL_REF}(?![A-Z0-9_.(])",
    re.IGNORECASE,
)

# Strings in formulas (to skip refs inside string literals)
_STRING_RE = re.compile(r'"(?:[^"]|"")*"')


def _strip_strings(formula: str) -> str:
    """Blank out string literals so refs inside quotes aren't matched."""
    return _STRING_RE.sub(lambda m: " " * len(m.group(0)), formula)


def _to_point(col_str: str, row_str: str) -> Point:
    row, column = a1_to_rowcol(f"{col_str}{row_str}")
    return Point(row, column)


# ---------------------------------------------------------------------------
# Reference extraction
# ---------------------------------------------------------------------------


def parse_references(formula: str) -> list[Point]:
    """Extract single cell references from a formula, in order of appearance.

    Does NOT include cells that are part of a range - use
    parse_range_references for those.
    """
    clean = _strip_strings(formula)
    refs: list[Point] = []
    seen: set[Point] = set()

    # First extract ranges so we can skip their endpoints
    range_spans = [(m.start(), m.end()) for m in _RANGE_REF_RE.finditer(clean)]

    for m in _SINGLE_REF_RE.finditer(clean):
        pos = m.start()
        if any(s <= pos < e for s, e in range_spans):
            continue
        point = _to_point(m.group(1), m.group(2))
        if point not in seen:
            refs.append(point)
            seen.add(point)

    return refs


def parse_range_references(formula: str) -> list[tuple[Point, Point]]:
    """Extract range references as ``(start, end)`` point pairs."""
    clean = _strip_strings(formula)
    ranges: list[tuple[Point, Point]] = []
    seen: set[tuple[Point, Point]] = set()

    for m in _RANGE_REF_RE.finditer(clean):
        bounds = (_to_point(m.group(1), m.group(2)), _to_point(m.group(3), m.group(4)))
        if bounds not in seen:
            ranges.append(bounds)
            seen.add(bounds)

    return ranges


# ---------------------------------------------------------------------------
# Range expansion
# ---------------------------------------------------------------------------


def _range_bounds(range_ref: str) -> tuple[Point, Point]:
    parts = range_ref.replace("$", "").split(":")
    if len(parts) != 2:
        raise ValueError(f"Invalid range: {range_ref!r}")
    start_row, start_col = a1_to_rowcol(parts[0])
    end_row, end_col = a1_to_rowcol(parts[1])
    # Normalize order
    top_left = Point(min(start_row, end_row), min(start_col, end_col))
    bottom_right = Point(max(start_row, end_row), max(start_col, end_col))
    return top_left, bottom_right


def expand_range(range_ref: str) -> list[Point]:
    """Expand a range like ``"A1:B2"`` into its points, row-major."""
    top_left, bottom_right = _range_bounds(range_ref)
    return [
        Point(row, column)
        for row in range(top_left.row, bottom_right.row + 1)
        for column in range(top_left.column, bottom_right.column + 1)
    ]


def range_shape(range_ref: str) -> tuple[int, int]:
    """``(rows, columns)`` of a range like ``"A1:C4"``."""
    top_left, bottom_right = _range_bounds(range_ref)
    return bottom_right.row - top_left.row + 1, bottom_right.column - top_left.column + 1


# ---------------------------------------------------------------------------
# All-references extraction (combines singles + expanded ranges)
# ---------------------------------------------------------------------------


def all_references(formula: str) -> PointSet:
    """Every point a formula reads: single refs plus expanded ranges."""
    points: list[Point] = list(parse_references(formula))
    for start, end in parse_range_references(formula):
        for row in range(min(start.row, end.row), max(start.row, end.row) + 1):
            for column in range(min(start.column, end.column), max(start.column, end.column) + 1):
                points.append(Point(row, column))
    return PointSet.from_iterable(points)
