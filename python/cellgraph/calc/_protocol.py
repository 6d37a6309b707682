"""Formula collaborator protocol, cell record and recalculation result dataclasses."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any, Callable, Protocol, runtime_checkable

if TYPE_CHECKING:
    from cellgraph._matrix import Matrix
    from cellgraph._point import Point, PointSet
    from cellgraph.calc._engine import Model


@dataclass(frozen=True)
class Cell:
    """A raw grid cell: a literal or a formula source (``"=A1*2"``).

    ``metadata`` is carried along untouched (rendering hints and the like)
    and is stored as a read-only view. Cells hash by value, so metadata may
    hold unhashable values.
    """

    value: Any
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not isinstance(self.metadata, MappingProxyType):
            object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def __hash__(self) -> int:
        return hash(self.value)


@runtime_checkable
class FormulaEvaluator(Protocol):
    """Formula collaborator bound to one raw-data snapshot.

    Formulas are passed without the leading ``=``.
    """

    def references_of(self, formula: str, point: Point) -> PointSet:
        """Points the formula at *point* reads. Empty set if it cannot be parsed."""
        ...

    def value_of(self, formula: str, point: Point) -> Any:
        """Computed value of the formula at *point*. May raise."""
        ...


EvaluatorFactory = Callable[["Matrix[Cell]"], FormulaEvaluator]


@dataclass(frozen=True)
class CellDelta:
    """A single point's evaluated value change from one edit."""

    point: Point
    old_value: Any
    new_value: Any
    formula: str | None = None  # the formula that produced new_value


@dataclass(frozen=True)
class RecalcResult:
    """Result of applying one cell edit to a model."""

    model: Model
    deltas: tuple[CellDelta, ...]  # every point in the batched update
    circular: bool = False

    @property
    def updated_points(self) -> frozenset[Point]:
        return frozenset(d.point for d in self.deltas)

    @property
    def changed_cells(self) -> int:
        """Deltas whose value actually differs."""
        return sum(1 for d in self.deltas if d.old_value != d.new_value)
