"""Matrix - immutable two-dimensional grid with copy-on-write rows.

Rows are tuples. A write copies only the rows it touches; every other row is
shared by reference with the previous version.  Row 0's length is the
column count of the whole matrix: every write that reaches past it widens
row 0, even when row 0 itself is not written.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Iterator
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from cellgraph._point import Point

T = TypeVar("T")
T2 = TypeVar("T2")

_LINE_BREAK_RE = re.compile(r"\r\n|\n|\r")
_QUOTED_RE = re.compile(r'"((?:[^"]|"")*)"')
_STASHED_RE = re.compile(r"\x00(\d+)\x00")


class _Empty:
    """Marker for an absent cell. Distinct from ``None``, ``0`` and ``""``."""

    __slots__ = ()
    _instance: _Empty | None = None

    def __new__(cls) -> _Empty:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "EMPTY"

    def __bool__(self) -> bool:
        return False

    def __reduce__(self) -> str:
        return "EMPTY"


EMPTY: Any = _Empty()

Row = tuple[Any, ...]


@dataclass(frozen=True)
class Size:
    """Row and column counts of a matrix."""

    rows: int
    columns: int


def _is_index(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 0


def _valid_point(point: Any) -> bool:
    return _is_index(getattr(point, "row", None)) and _is_index(getattr(point, "column", None))


def _require_point(point: Point) -> None:
    if not _valid_point(point):
        raise ValueError(f"Invalid point: {point!r}")


def _widen(row: Row, width: int) -> Row:
    if len(row) >= width:
        return row
    return row + (EMPTY,) * (width - len(row))


class Matrix(Generic[T]):
    """Sparse two-dimensional container keyed by :class:`Point`.

    Usage::

        m = Matrix.create_empty(2, 2)
        m2 = m.set(Point(0, 1), "x")
        m2.get(Point(0, 1))  # "x"
        m.get(Point(0, 1))   # EMPTY, m is untouched
    """

    __slots__ = ("_rows",)

    def __init__(self, rows: tuple[Row, ...] = ()) -> None:
        self._rows = rows

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[T]]) -> Matrix[T]:
        """Build a matrix from nested iterables; the first row sets the width."""
        return cls(tuple(tuple(row) for row in rows))

    @classmethod
    def create_empty(cls, rows: int, columns: int) -> Matrix[T]:
        """A ``rows x columns`` matrix of ``EMPTY`` slots."""
        empty_row: Row = (EMPTY,) * columns
        return cls((empty_row,) * rows)

    @property
    def rows(self) -> tuple[Row, ...]:
        return self._rows

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, point: Point) -> T | Any:
        """Value at *point*, or ``EMPTY`` when the slot does not exist."""
        if not _valid_point(point) or point.row >= len(self._rows):
            return EMPTY
        row = self._rows[point.row]
        if point.column >= len(row):
            return EMPTY
        return row[point.column]

    def has(self, point: Point) -> bool:
        """Whether *point* lies inside the matrix, measured against row 0."""
        if not self._rows or not _valid_point(point):
            return False
        return point.column < len(self._rows[0]) and point.row < len(self._rows)

    def rows_count(self) -> int:
        return len(self._rows)

    def columns_count(self) -> int:
        return len(self._rows[0]) if self._rows else 0

    def size(self) -> Size:
        return Size(rows=self.rows_count(), columns=self.columns_count())

    def max_point(self) -> Point:
        """Bottom-right point of the matrix."""
        size = self.size()
        return Point(size.rows - 1, size.columns - 1)

    # ------------------------------------------------------------------
    # Copy-on-write updates
    # ------------------------------------------------------------------

    def set(self, point: Point, value: T) -> Matrix[T]:
        """Return a copy with *value* at *point*. Missing rows are created."""
        _require_point(point)
        rows = list(self._rows)
        width = point.column + 1

        # Keep row 0 as wide as the widest written column
        first = rows[0] if rows else ()
        if len(first) < width:
            if rows:
                rows[0] = _widen(first, width)
            else:
                rows.append(_widen(first, width))

        while len(rows) <= point.row:
            rows.append(())

        row = _widen(rows[point.row], width)
        rows[point.row] = row[: point.column] + (value,) + row[point.column + 1 :]
        return Matrix(tuple(rows))

    def set_multiple(self, entries: Iterable[tuple[Point, T]]) -> Matrix[T]:
        """Apply many writes at once, copying each touched row a single time."""
        changes: dict[int, dict[int, T]] = {}
        max_column = self.columns_count()
        max_row = len(self._rows)

        for point, value in entries:
            _require_point(point)
            changes.setdefault(point.row, {})[point.column] = value
            if point.column >= max_column:
                max_column = point.column + 1
            if point.row >= max_row:
                max_row = point.row + 1

        if not changes:
            return self

        next_rows: list[Row] = []
        for index in range(max_row):
            original = self._rows[index] if index < len(self._rows) else ()
            row_changes = changes.get(index)
            if index == 0:
                original = _widen(original, max_column)
            if row_changes is None:
                next_rows.append(original)
                continue
            row = list(_widen(original, max(row_changes) + 1))
            for column, value in row_changes.items():
                row[column] = value
            next_rows.append(tuple(row))

        return Matrix(tuple(next_rows))

    def unset(self, point: Point) -> Matrix[T]:
        """Return a copy with *point* emptied. Row 0 keeps its width."""
        if not self.has(point):
            return self
        row = self._rows[point.row]
        if point.column >= len(row):
            return self
        rows = list(self._rows)
        rows[point.row] = row[: point.column] + (EMPTY,) + row[point.column + 1 :]
        return Matrix(tuple(rows))

    def pad(self, size: Size) -> Matrix[T]:
        """Grow to at least *size*. Never shrinks."""
        current = self.size()
        if current.rows >= size.rows and current.columns >= size.columns:
            return self

        columns = max(size.columns, current.columns)
        rows_total = max(size.rows, current.rows)
        padded = list(self._rows)
        if columns > current.columns:
            padded = [_widen(row, columns) for row in padded]
        empty_row: Row = (EMPTY,) * columns
        padded.extend([empty_row] * (rows_total - len(padded)))
        return Matrix(tuple(padded))

    def pad_rows(self, total_rows: int) -> Matrix[T]:
        """Append empty rows until the matrix has *total_rows* rows."""
        return self.pad(Size(rows=total_rows, columns=self.columns_count()))

    # ------------------------------------------------------------------
    # Derived matrices and iteration
    # ------------------------------------------------------------------

    def slice(self, start: Point, end: Point) -> Matrix[T]:
        """Sub-rectangle from *start* to *end*, both inclusive."""
        return Matrix(tuple(
            tuple(self.get(Point(row, column)) for column in range(start.column, end.column + 1))
            for row in range(start.row, end.row + 1)
        ))

    def map(self, func: Callable[[T | Any, Point], T2]) -> Matrix[T2]:
        """Apply ``func(value, point)`` over the full ``rows x columns`` area."""
        size = self.size()
        return Matrix(tuple(
            tuple(func(self.get(Point(row, column)), Point(row, column))
                  for column in range(size.columns))
            for row in range(size.rows)
        ))

    def entries(self) -> Iterator[tuple[Point, T | Any]]:
        """Lazily yield ``(point, value)`` for every stored slot."""
        for row_index, row in enumerate(self._rows):
            for column, value in enumerate(row):
                yield Point(row_index, column), value

    def to_list(self, transform: Callable[[T | Any, Point], T2] | None = None) -> list[Any]:
        """Flatten the stored slots row-major, optionally transforming each."""
        if transform is None:
            return [value for _, value in self.entries()]
        return [transform(value, point) for point, value in self.entries()]

    # ------------------------------------------------------------------
    # Text conversion
    # ------------------------------------------------------------------

    def join(self, horizontal_separator: str = "\t", vertical_separator: str = "\n") -> str:
        """Render as text: cells joined by *horizontal_separator*, rows by
        *vertical_separator*. Empty slots become ``""``.
        """
        size = self.size()
        if size.rows == 0 or size.columns == 0:
            return ""
        lines: list[str] = []
        for row in range(size.rows):
            cells: list[str] = []
            for column in range(size.columns):
                value = self.get(Point(row, column))
                cells.append("" if value is EMPTY else str(value))
            lines.append(horizontal_separator.join(cells))
        return vertical_separator.join(lines)

    @classmethod
    def split(
        cls,
        text: str,
        transform: Callable[[str], T],
        horizontal_separator: str = "\t",
        vertical_separator: str | re.Pattern[str] = _LINE_BREAK_RE,
    ) -> Matrix[T]:
        """Parse separated text into a matrix, applying *transform* per field.

        Rows end at *vertical_separator* (any line break by default; a
        pattern is split on its matches). Fields end at
        *horizontal_separator*, which may be longer than one character.
        Quoted fields are atomic: separators and line breaks inside quotes
        stay part of the field, and ``""`` inside quotes reads as ``"``.
        A blank line is a row with one ``transform("")`` field.

        Raises ``ValueError`` for an empty separator.
        """
        if not horizontal_separator or vertical_separator == "":
            raise ValueError("Separators must not be empty")

        quoted: list[str] = []

        def stash(match: re.Match[str]) -> str:
            quoted.append(match.group(1).replace('""', '"'))
            return f"\x00{len(quoted) - 1}\x00"

        def field(raw: str) -> T:
            return transform(_STASHED_RE.sub(lambda m: quoted[int(m.group(1))], raw))

        stashed = _QUOTED_RE.sub(stash, text)
        if isinstance(vertical_separator, str):
            lines = stashed.split(vertical_separator)
        else:
            lines = vertical_separator.split(stashed)
        return cls(tuple(
            tuple(field(raw) for raw in line.split(horizontal_separator)) for line in lines
        ))

    # ------------------------------------------------------------------
    # Dunder
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[Row]:
        return iter(self._rows)

    def __len__(self) -> int:
        return len(self._rows)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Matrix):
            return self._rows == other._rows
        return NotImplemented

    def __repr__(self) -> str:
        return f"Matrix({self._rows!r})"
