"""Model: raw grid + evaluated grid + reference graph, updated incrementally.

Usage::

    from cellgraph import Matrix, Point
    from cellgraph.calc import Cell, Model, create_evaluator, update_cell_value

    data = Matrix.from_rows([[Cell("10"), Cell("=A1*2")]])
    model = Model(create_evaluator, data)
    model.evaluated_data.get(Point(0, 1)).value   # 20

    model = update_cell_value(model, Point(0, 0), Cell("5"))
    model.evaluated_data.get(Point(0, 1)).value   # 10
"""

from __future__ import annotations

import dataclasses
import logging
from typing import Any

from cellgraph._matrix import EMPTY, Matrix
from cellgraph._point import Point, PointSet
from cellgraph.calc._evaluator import FORMULA_PREFIX
from cellgraph.calc._functions import FormulaError
from cellgraph.calc._graph import PointGraph
from cellgraph.calc._protocol import (
    Cell,
    CellDelta,
    EvaluatorFactory,
    FormulaEvaluator,
    RecalcResult,
)

logger = logging.getLogger(__name__)


def is_formula_value(value: Any) -> bool:
    """A value is a formula iff it is text starting with ``=``."""
    return isinstance(value, str) and value.startswith(FORMULA_PREFIX)


def extract_formula(value: str) -> str:
    """Strip the leading ``=`` from a formula value."""
    return value[len(FORMULA_PREFIX):]


def _with_value(cell: Any, value: Any) -> Any:
    if dataclasses.is_dataclass(cell) and not isinstance(cell, type):
        return dataclasses.replace(cell, value=value)
    return Cell(value)


class Model:
    """Immutable snapshot of a grid and its evaluation.

    Every edit goes through :func:`update_cell_value` (or :func:`recalculate`)
    and produces a new Model that shares unaffected rows and graph entries
    with this one.
    """

    __slots__ = ("evaluator_factory", "data", "reference_graph", "evaluated_data")

    def __init__(
        self,
        evaluator_factory: EvaluatorFactory,
        data: Matrix[Cell],
        reference_graph: PointGraph | None = None,
        evaluated_data: Matrix[Cell] | None = None,
    ) -> None:
        self.evaluator_factory = evaluator_factory
        self.data = data
        self.reference_graph = (
            reference_graph if reference_graph is not None
            else create_reference_graph(data, evaluator_factory)
        )
        self.evaluated_data = (
            evaluated_data if evaluated_data is not None
            else create_evaluated_data(data, self.reference_graph, evaluator_factory)
        )

    def __eq__(self, other: object) -> bool:
        if isinstance(other, Model):
            return (
                self.data == other.data
                and self.reference_graph == other.reference_graph
                and self.evaluated_data == other.evaluated_data
            )
        return NotImplemented

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        size = self.data.size()
        return f"Model({size.rows}x{size.columns}, {len(self.reference_graph)} formulas)"


# ---------------------------------------------------------------------------
# Building from raw data
# ---------------------------------------------------------------------------


def create_reference_graph(data: Matrix[Cell], evaluator_factory: EvaluatorFactory) -> PointGraph:
    """Scan every cell and record what each formula reads."""
    evaluator = evaluator_factory(data)
    pairs: list[tuple[Point, PointSet]] = []
    for point, cell in data.entries():
        if cell is EMPTY or cell is None:
            continue
        if is_formula_value(cell.value):
            pairs.append((point, evaluator.references_of(extract_formula(cell.value), point)))
    return PointGraph.from_pairs(pairs)


def create_evaluated_data(
    data: Matrix[Cell],
    reference_graph: PointGraph,
    evaluator_factory: EvaluatorFactory,
) -> Matrix[Cell]:
    """Evaluate every formula leaves-first against a progressively updated grid.

    Formulas that read nothing are evaluated too.  Formulas the traversal
    never reaches sit on or behind a circular reference and get
    ``FormulaError.REF``.
    """
    formula_cells: list[tuple[Point, Cell]] = []
    ordered: set[Point] = set()
    for point in reference_graph.traverse_bfs_backwards():
        cell = data.get(point)
        if cell is not EMPTY and cell is not None and is_formula_value(cell.value):
            formula_cells.append((point, cell))
            ordered.add(point)

    unreachable: list[tuple[Point, Cell]] = []
    for point, cell in data.entries():
        if cell is EMPTY or cell is None or point in ordered or not is_formula_value(cell.value):
            continue
        if point in reference_graph:
            unreachable.append((point, _with_value(cell, FormulaError.REF)))
        else:
            formula_cells.append((point, cell))

    if not formula_cells and not unreachable:
        return data

    evaluated = data.set_multiple(unreachable)
    evaluator = evaluator_factory(evaluated)
    for point, cell in formula_cells:
        value = get_formula_computed_value(cell.value, point, evaluator)
        evaluated = evaluated.set(point, _with_value(cell, value))
        # Later formulas may read this cell: bind a fresh evaluator
        evaluator = evaluator_factory(evaluated)

    return evaluated


def get_formula_computed_value(value: str, point: Point, evaluator: FormulaEvaluator) -> Any:
    """Computed value of a formula cell, or ``FormulaError.REF`` if evaluation fails."""
    formula = extract_formula(value)
    try:
        return evaluator.value_of(formula, point)
    except Exception as e:
        logger.debug("Cannot evaluate %r at %r: %s", value, point, e)
        return FormulaError.REF


# ---------------------------------------------------------------------------
# Incremental updates
# ---------------------------------------------------------------------------


def _update_reference_graph(
    reference_graph: PointGraph,
    point: Point,
    cell: Cell,
    evaluator: FormulaEvaluator,
) -> PointGraph:
    references = evaluator.references_of(extract_formula(cell.value), point)
    return reference_graph.set(point, references)


def _evaluate_cell(
    data: Matrix[Cell],
    reference_graph: PointGraph,
    point: Point,
    cell: Cell,
    evaluator: FormulaEvaluator,
) -> tuple[list[tuple[Point, Cell]], bool]:
    """Collect the ``(point, evaluated cell)`` writes caused by editing *point*.

    Returns the writes and whether the edit closed a circular reference.
    """
    if reference_graph.has_circular_dependency(point):
        updates: list[tuple[Point, Cell]] = [(point, _with_value(cell, FormulaError.REF))]
        processed = {point}
        for referrer in reference_graph.get_backwards_recursive(point):
            if referrer in processed:
                continue
            processed.add(referrer)
            referrer_cell = data.get(referrer)
            if referrer_cell is EMPTY or referrer_cell is None:
                continue
            updates.append((referrer, _with_value(referrer_cell, FormulaError.REF)))
        return updates, True

    value = (
        get_formula_computed_value(cell.value, point, evaluator)
        if is_formula_value(cell.value) else cell.value
    )
    updates = [(point, _with_value(cell, value))]

    # Dependents are re-read from the raw grid and evaluated against the
    # same snapshot as the edited cell.
    for referrer in reference_graph.get_backwards_recursive(point):
        referrer_cell = data.get(referrer)
        if referrer_cell is EMPTY or referrer_cell is None:
            continue
        referrer_value = (
            get_formula_computed_value(referrer_cell.value, referrer, evaluator)
            if is_formula_value(referrer_cell.value) else referrer_cell.value
        )
        updates.append((referrer, _with_value(referrer_cell, referrer_value)))
    return updates, False


def recalculate(model: Model, point: Point, cell: Cell) -> RecalcResult:
    """Apply one cell edit and report every evaluated value it rewrote."""
    next_data = model.data.set(point, cell)
    evaluator = model.evaluator_factory(next_data)
    next_graph = (
        _update_reference_graph(model.reference_graph, point, cell, evaluator)
        if is_formula_value(cell.value) else model.reference_graph
    )

    updates, circular = _evaluate_cell(next_data, next_graph, point, cell, evaluator)
    next_evaluated = model.evaluated_data.set_multiple(updates)

    deltas: list[CellDelta] = []
    for target, new_cell in updates:
        old_cell = model.evaluated_data.get(target)
        raw = next_data.get(target)
        raw_value = getattr(raw, "value", None)
        deltas.append(CellDelta(
            point=target,
            old_value=getattr(old_cell, "value", EMPTY),
            new_value=new_cell.value,
            formula=raw_value if is_formula_value(raw_value) else None,
        ))

    if circular:
        logger.debug("Circular reference through %r marks %d cells", point, len(updates))

    next_model = Model(model.evaluator_factory, next_data, next_graph, next_evaluated)
    return RecalcResult(model=next_model, deltas=tuple(deltas), circular=circular)


def update_cell_value(model: Model, point: Point, cell: Cell) -> Model:
    """Return a new Model with *cell* written at *point* and dependents recomputed."""
    return recalculate(model, point, cell).model
