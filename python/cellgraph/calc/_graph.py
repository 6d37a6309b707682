"""Immutable dependency graph over grid points with topological traversal."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Iterator

from cellgraph._point import EMPTY_POINT_SET, Point, PointSet


class PointGraph:
    """Directed graph where each point maps to the points its formula reads.

    Instances are immutable: ``set`` returns a new graph.  The reverse index
    (who reads me) is derived from the forward edges on first use and then
    kept for the lifetime of the instance.
    """

    __slots__ = ("_forwards", "_backwards", "_backwards_lock")

    def __init__(self, forwards: dict[Point, PointSet] | None = None) -> None:
        # point -> set of points it reads from
        self._forwards: dict[Point, PointSet] = forwards if forwards is not None else {}
        # point -> set of points that read from it, built lazily
        self._backwards: dict[Point, PointSet] | None = None
        self._backwards_lock = threading.Lock()

    @classmethod
    def from_pairs(cls, pairs: Iterable[tuple[Point, PointSet]]) -> PointGraph:
        """Build a graph from ``(point, dependencies)`` pairs. Later pairs win."""
        forwards: dict[Point, PointSet] = {}
        for point, edges in pairs:
            if edges:
                forwards[point] = edges
            else:
                forwards.pop(point, None)
        return cls(forwards)

    def set(self, point: Point, edges: PointSet) -> PointGraph:
        """Return a graph with *point*'s dependencies replaced by *edges*."""
        forwards = dict(self._forwards)
        if not edges:
            forwards.pop(point, None)
        else:
            forwards[point] = edges
        return PointGraph(forwards)

    def get(self, point: Point) -> PointSet:
        return self._forwards.get(point, EMPTY_POINT_SET)

    # ------------------------------------------------------------------
    # Reverse edges
    # ------------------------------------------------------------------

    def _backwards_index(self) -> dict[Point, PointSet]:
        index = self._backwards
        if index is not None:
            return index
        with self._backwards_lock:
            if self._backwards is None:
                collected: dict[Point, list[Point]] = {}
                for point, edges in self._forwards.items():
                    for edge in edges:
                        collected.setdefault(edge, []).append(point)
                self._backwards = {
                    target: PointSet.from_iterable(sources)
                    for target, sources in collected.items()
                }
            return self._backwards

    def get_backwards(self, point: Point) -> PointSet:
        """Points whose formulas read *point* directly."""
        return self._backwards_index().get(point, EMPTY_POINT_SET)

    def get_backwards_recursive(
        self, point: Point, visited: PointSet = EMPTY_POINT_SET,
    ) -> PointSet:
        """Every point that depends on *point*, directly or transitively.

        Points already in *visited* are not expanded again, which keeps the
        walk finite on cycles and cheap on convergent paths.
        """
        seen: set[Point] = set(visited)
        found: list[Point] = []
        queue: list[Point] = [point]
        index = 0
        while index < len(queue):
            current = queue[index]
            index += 1
            for dependent in self.get_backwards(current):
                if dependent in seen:
                    continue
                seen.add(dependent)
                found.append(dependent)
                queue.append(dependent)
        return PointSet.from_iterable(found)

    # ------------------------------------------------------------------
    # Cycle detection
    # ------------------------------------------------------------------

    def has_circular_dependency(self, start: Point) -> bool:
        """Whether following dependencies from *start* can return to a point
        already on the current path.

        Tracks the path (not every point ever seen), so two independent
        routes to the same cell are not reported as a cycle.
        """
        on_path: set[Point] = {start}
        done: set[Point] = set()
        # Stack of (point, iterator over its dependencies)
        stack: list[tuple[Point, Iterator[Point]]] = [(start, iter(self.get(start)))]

        while stack:
            current, deps = stack[-1]
            advanced = False
            for dep in deps:
                if dep in on_path:
                    return True
                if dep in done:
                    continue
                on_path.add(dep)
                stack.append((dep, iter(self.get(dep))))
                advanced = True
                break
            if not advanced:
                stack.pop()
                on_path.discard(current)
                done.add(current)

        return False

    # ------------------------------------------------------------------
    # Iteration and ordering
    # ------------------------------------------------------------------

    def __iter__(self) -> Iterator[tuple[Point, PointSet]]:
        """Yield every node: explicit entries with their edges, and bare
        dependency targets with an empty set.
        """
        yielded: set[Point] = set()
        for point, edges in self._forwards.items():
            yielded.add(point)
            yield point, edges
            for edge in edges:
                if edge not in yielded and edge not in self._forwards:
                    yielded.add(edge)
                    yield edge, EMPTY_POINT_SET

    def traverse_bfs_backwards(self) -> Iterator[Point]:
        """Yield points leaves-first: each point after all of its dependencies.

        Kahn's algorithm seeded with nodes that have no dependencies.  Points
        on a cycle never have all their dependencies visited, so they are
        never yielded.
        """
        visited: set[Point] = set()
        queue: list[Point] = []

        for point, edges in self:
            if not edges:
                visited.add(point)
                queue.append(point)

        index = 0
        while index < len(queue):
            point = queue[index]
            index += 1
            yield point

            for dependent in self.get_backwards(point):
                if dependent in visited:
                    continue
                if all(dep in visited for dep in self.get(dependent)):
                    visited.add(dependent)
                    queue.append(dependent)

    # ------------------------------------------------------------------
    # Dunder
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        return len(self._forwards)

    def __contains__(self, point: object) -> bool:
        return point in self._forwards

    def __eq__(self, other: object) -> bool:
        if isinstance(other, PointGraph):
            return self._forwards == other._forwards
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"PointGraph({len(self._forwards)} nodes)"
