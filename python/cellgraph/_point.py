"""Grid coordinates and an immutable set of them."""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Any

from cellgraph._utils import a1_to_rowcol, rowcol_to_a1


@dataclass(frozen=True, slots=True, order=True)
class Point:
    """A 0-based ``(row, column)`` position in the grid."""

    row: int
    column: int

    @classmethod
    def from_a1(cls, ref: str) -> Point:
        row, column = a1_to_rowcol(ref)
        return cls(row, column)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Point:
        return cls(data["row"], data["column"])

    def to_dict(self) -> dict[str, int]:
        return {"row": self.row, "column": self.column}

    def to_a1(self) -> str:
        return rowcol_to_a1(self.row, self.column)

    def __repr__(self) -> str:
        return f"Point({self.row}, {self.column})"


class PointSet:
    """Immutable set of points.

    Mutators return a new instance, or ``self`` when nothing changes, so
    callers can use identity as a cheap "unchanged" check.
    """

    __slots__ = ("_points",)

    def __init__(self, points: frozenset[Point] = frozenset()) -> None:
        self._points = points

    @classmethod
    def from_iterable(cls, points: Iterable[Point]) -> PointSet:
        """Build a set from any iterable of points."""
        frozen = frozenset(points)
        if not frozen:
            return EMPTY_POINT_SET
        return cls(frozen)

    def has(self, point: Point) -> bool:
        return point in self._points

    @property
    def size(self) -> int:
        return len(self._points)

    def add(self, point: Point) -> PointSet:
        if point in self._points:
            return self
        return PointSet(self._points | {point})

    def delete(self, point: Point) -> PointSet:
        if point not in self._points:
            return self
        remaining = self._points - {point}
        if not remaining:
            return EMPTY_POINT_SET
        return PointSet(remaining)

    def union(self, other: PointSet) -> PointSet:
        if not other._points:
            return self
        if not self._points:
            return other
        merged = self._points | other._points
        if len(merged) == len(self._points):
            return self
        return PointSet(merged)

    def difference(self, other: PointSet) -> PointSet:
        if not other._points:
            return self
        remaining = self._points - other._points
        if len(remaining) == len(self._points):
            return self
        if not remaining:
            return EMPTY_POINT_SET
        return PointSet(remaining)

    def __contains__(self, point: object) -> bool:
        return point in self._points

    def __iter__(self) -> Iterator[Point]:
        return iter(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __bool__(self) -> bool:
        return bool(self._points)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PointSet):
            return self._points == other._points
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self._points)

    def __repr__(self) -> str:
        inner = ", ".join(repr(p) for p in sorted(self._points))
        return f"PointSet({{{inner}}})"


EMPTY_POINT_SET = PointSet()
