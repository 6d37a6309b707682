"""Tests for cellgraph.calc Model: initial evaluation and incremental recalculation."""

from __future__ import annotations

import logging
from typing import Any

import pytest

from cellgraph import EMPTY, EMPTY_POINT_SET, Matrix, Point, PointSet
from cellgraph.calc import (
    Cell,
    FormulaError,
    GridEvaluator,
    Model,
    create_evaluated_data,
    create_evaluator,
    create_reference_graph,
    extract_formula,
    get_formula_computed_value,
    is_formula_value,
    recalculate,
    update_cell_value,
)

A1, B1, C1, D1, E1 = (Point(0, column) for column in range(5))


def _data(*values: Any) -> Matrix[Cell]:
    """Single-row grid of cells."""
    return Matrix.from_rows([[Cell(v) for v in values]])


def _value(model: Model, point: Point) -> Any:
    return model.evaluated_data.get(point).value


class TestFormulaValues:
    def test_is_formula_value(self) -> None:
        assert is_formula_value("=A1")
        assert not is_formula_value("A1")
        assert not is_formula_value(1)
        assert not is_formula_value(None)

    def test_extract_formula(self) -> None:
        assert extract_formula("=A1*2") == "A1*2"


class TestCreateReferenceGraph:
    def test_records_formula_reads(self) -> None:
        graph = create_reference_graph(_data("10", "=A1*2", "=A1+B1"), create_evaluator)
        assert graph.get(B1) == PointSet.from_iterable([A1])
        assert graph.get(C1) == PointSet.from_iterable([A1, B1])
        assert graph.get(A1) is EMPTY_POINT_SET

    def test_skips_empty_slots(self) -> None:
        data = Matrix.create_empty(2, 2).set(Point(1, 1), Cell("=A1"))
        graph = create_reference_graph(data, create_evaluator)
        assert len(graph) == 1


class TestInitialEvaluation:
    def test_formula_evaluated(self) -> None:
        model = Model(create_evaluator, _data("10", "=A1*2"))
        assert _value(model, B1) == 20
        assert _value(model, A1) == "10"

    def test_raw_data_untouched(self) -> None:
        data = _data("10", "=A1*2")
        model = Model(create_evaluator, data)
        assert model.data is data
        assert model.data.get(B1).value == "=A1*2"

    def test_chain(self) -> None:
        model = Model(create_evaluator, _data("=B1+1", "=C1*2", "3"))
        assert _value(model, B1) == 6
        assert _value(model, A1) == 7

    def test_formula_without_references(self) -> None:
        model = Model(create_evaluator, _data("=1+2"))
        assert _value(model, A1) == 3

    def test_no_formulas_returns_raw_grid(self) -> None:
        data = _data("1", "2")
        model = Model(create_evaluator, data)
        assert model.evaluated_data is data

    def test_cycle_members_and_dependents_are_ref(self) -> None:
        model = Model(create_evaluator, _data("=B1", "=A1", "=A1+1", "4"))
        assert _value(model, A1) == FormulaError.REF
        assert _value(model, B1) == FormulaError.REF
        assert _value(model, C1) == FormulaError.REF
        assert _value(model, D1) == "4"

    def test_failure_becomes_ref(self) -> None:
        model = Model(create_evaluator, _data("=hello world"))
        assert _value(model, A1) is FormulaError.REF

    def test_error_values_stored(self) -> None:
        model = Model(create_evaluator, _data("=1/0", "=A1+1"))
        assert _value(model, A1) == FormulaError.DIV0
        assert _value(model, B1) == FormulaError.DIV0

    def test_metadata_preserved(self) -> None:
        data = Matrix.from_rows([[Cell("2"), Cell("=A1*2", {"bold": True})]])
        model = Model(create_evaluator, data)
        assert model.evaluated_data.get(B1) == Cell(4, {"bold": True})

    def test_explicit_parts_are_used(self) -> None:
        data = _data("1", "=A1")
        graph = create_reference_graph(data, create_evaluator)
        evaluated = create_evaluated_data(data, graph, create_evaluator)
        model = Model(create_evaluator, data, graph, evaluated)
        assert model.reference_graph is graph
        assert model.evaluated_data is evaluated


class TestUpdateCellValue:
    def test_dependent_recomputed(self) -> None:
        model = Model(create_evaluator, _data("10", "=A1*2"))
        updated = update_cell_value(model, A1, Cell("5"))
        assert _value(updated, B1) == 10
        assert _value(updated, A1) == "5"

    def test_previous_model_unchanged(self) -> None:
        model = Model(create_evaluator, _data("10", "=A1*2"))
        update_cell_value(model, A1, Cell("5"))
        assert _value(model, B1) == 20
        assert model.data.get(A1).value == "10"

    def test_new_formula(self) -> None:
        model = Model(create_evaluator, _data("10", "3"))
        updated = update_cell_value(model, C1, Cell("=A1+B1"))
        assert _value(updated, C1) == 13
        assert updated.reference_graph.get(C1) == PointSet.from_iterable([A1, B1])
        assert model.reference_graph.get(C1).size == 0

    def test_diamond(self) -> None:
        model = Model(create_evaluator, _data("1", "=A1+1", "=A1*10", "=B1+C1"))
        assert _value(model, D1) == 12
        updated = update_cell_value(model, A1, Cell("2"))
        assert _value(updated, B1) == 3
        assert _value(updated, C1) == 20
        assert _value(updated, D1) == 23

    def test_transitive_dependents(self) -> None:
        model = Model(create_evaluator, _data("1", "=A1+1", "=B1+1", "=C1+1"))
        updated = update_cell_value(model, A1, Cell("10"))
        assert [_value(updated, p) for p in (B1, C1, D1)] == [11, 12, 13]

    def test_replacing_formula_with_literal(self) -> None:
        model = Model(create_evaluator, _data("10", "=A1*2"))
        model = update_cell_value(model, B1, Cell("7"))
        assert _value(model, B1) == "7"
        model = update_cell_value(model, A1, Cell("1"))
        assert _value(model, B1) == "7"

    def test_unrelated_rows_shared(self) -> None:
        data = Matrix.from_rows([[Cell("1"), Cell("=A1")], [Cell("x")]])
        model = Model(create_evaluator, data)
        updated = update_cell_value(model, A1, Cell("2"))
        assert updated.evaluated_data.rows[1] is model.evaluated_data.rows[1]

    def test_idempotent_edit(self) -> None:
        model = Model(create_evaluator, _data("10", "=A1*2"))
        updated = update_cell_value(model, A1, Cell("10"))
        assert updated == model

    def test_failure_becomes_ref_without_raising(self) -> None:
        model = Model(create_evaluator, _data("10"))
        updated = update_cell_value(model, B1, Cell("=hello world"))
        assert _value(updated, B1) is FormulaError.REF

    def test_metadata_preserved(self) -> None:
        model = Model(create_evaluator, _data("1"))
        updated = update_cell_value(model, B1, Cell("=A1+1", {"note": "x"}))
        assert updated.evaluated_data.get(B1) == Cell(2, {"note": "x"})

    def test_writes_outside_grid(self) -> None:
        model = Model(create_evaluator, _data("4"))
        updated = update_cell_value(model, Point(2, 3), Cell("=A1*A1"))
        assert updated.evaluated_data.get(Point(2, 3)).value == 16
        assert updated.data.columns_count() == 4


class TestCircularReferences:
    def test_closing_a_cycle_marks_both(self) -> None:
        model = Model(create_evaluator, _data("=B1"))
        updated = update_cell_value(model, B1, Cell("=A1"))
        assert _value(updated, A1) == FormulaError.REF
        assert _value(updated, B1) == FormulaError.REF

    def test_self_reference(self) -> None:
        model = Model(create_evaluator, _data("1"))
        updated = update_cell_value(model, B1, Cell("=B1+1"))
        assert _value(updated, B1) == FormulaError.REF

    def test_dependents_of_cycle_marked(self) -> None:
        model = Model(create_evaluator, _data("=B1", "1", "=A1", "=C1", "5"))
        updated = update_cell_value(model, B1, Cell("=A1"))
        for point in (A1, B1, C1, D1):
            assert _value(updated, point) == FormulaError.REF
        assert _value(updated, E1) == "5"

    def test_each_point_marked_once(self) -> None:
        model = Model(create_evaluator, _data("=B1", "1", "=A1+B1"))
        result = recalculate(model, B1, Cell("=A1"))
        points = [d.point for d in result.deltas]
        assert len(points) == len(set(points))
        assert set(points) == {A1, B1, C1}
        assert result.circular

    def test_diamond_edit_is_not_circular(self) -> None:
        model = Model(create_evaluator, _data("1", "=A1", "=A1"))
        result = recalculate(model, D1, Cell("=B1+C1"))
        assert not result.circular
        assert _value(result.model, D1) == 2

    def test_breaking_the_cycle(self) -> None:
        model = Model(create_evaluator, _data("=B1"))
        model = update_cell_value(model, B1, Cell("=A1"))
        model = update_cell_value(model, B1, Cell("=3"))
        assert _value(model, B1) == 3
        assert _value(model, A1) == 3


class TestRecalculate:
    def test_updated_points(self) -> None:
        model = Model(create_evaluator, _data("10", "=A1*2"))
        result = recalculate(model, A1, Cell("5"))
        assert result.updated_points == frozenset({A1, B1})
        assert not result.circular

    def test_deltas(self) -> None:
        model = Model(create_evaluator, _data("10", "=A1*2"))
        result = recalculate(model, A1, Cell("5"))
        by_point = {d.point: d for d in result.deltas}
        assert by_point[B1].old_value == 20
        assert by_point[B1].new_value == 10
        assert by_point[B1].formula == "=A1*2"
        assert by_point[A1].formula is None
        assert result.changed_cells == 2

    def test_new_point_old_value_is_empty(self) -> None:
        model = Model(create_evaluator, _data("1"))
        result = recalculate(model, C1, Cell("x"))
        assert result.deltas[0].old_value is EMPTY

    def test_unchanged_cells_counted(self) -> None:
        model = Model(create_evaluator, _data("10", "=A1*0"))
        result = recalculate(model, A1, Cell("11"))
        assert len(result.deltas) == 2
        assert result.changed_cells == 1

    def test_circular_logged(self, caplog: pytest.LogCaptureFixture) -> None:
        model = Model(create_evaluator, _data("=B1"))
        with caplog.at_level(logging.DEBUG, logger="cellgraph.calc._engine"):
            recalculate(model, B1, Cell("=A1"))
        assert "Circular reference" in caplog.text


class _UpperEvaluator:
    """Treats every formula as text to upper-case; reads nothing."""

    def __init__(self, data: Matrix[Cell]) -> None:
        self.data = data

    def references_of(self, formula: str, point: Point) -> PointSet:
        return EMPTY_POINT_SET

    def value_of(self, formula: str, point: Point) -> Any:
        return formula.upper()


class _RaisingEvaluator(_UpperEvaluator):
    def value_of(self, formula: str, point: Point) -> Any:
        raise RuntimeError("boom")


class TestCustomEvaluator:
    def test_factory_used(self) -> None:
        model = Model(_UpperEvaluator, _data("=abc"))
        assert _value(model, A1) == "ABC"

    def test_factory_bound_to_new_snapshot(self) -> None:
        snapshots: list[Matrix[Cell]] = []

        def factory(data: Matrix[Cell]) -> GridEvaluator:
            snapshots.append(data)
            return GridEvaluator(data)

        model = Model(factory, _data("1", "=A1"))
        updated = update_cell_value(model, A1, Cell("2"))
        assert snapshots[-1] is updated.data
        assert _value(updated, B1) == 2

    def test_exceptions_become_ref(self, caplog: pytest.LogCaptureFixture) -> None:
        with caplog.at_level(logging.DEBUG, logger="cellgraph.calc._engine"):
            value = get_formula_computed_value("=x", A1, _RaisingEvaluator(Matrix()))
        assert value is FormulaError.REF
        assert "boom" in caplog.text


class TestModel:
    def test_equality(self) -> None:
        a = Model(create_evaluator, _data("1", "=A1"))
        b = Model(create_evaluator, _data("1", "=A1"))
        assert a == b
        assert a != Model(create_evaluator, _data("2", "=A1"))

    def test_repr(self) -> None:
        model = Model(create_evaluator, _data("1", "=A1"))
        assert repr(model) == "Model(1x2, 1 formulas)"


class TestCell:
    def test_hashable(self) -> None:
        assert hash(Cell("1")) == hash(Cell("1"))
        assert len({Cell("1"), Cell("1"), Cell("2")}) == 2

    def test_hashable_with_unhashable_metadata(self) -> None:
        cell = Cell("1", {"tags": ["a", "b"]})
        assert cell in {cell}

    def test_metadata_is_read_only(self) -> None:
        cell = Cell("1", {"bold": True})
        with pytest.raises(TypeError):
            cell.metadata["bold"] = False  # type: ignore[index]

    def test_metadata_copied_from_caller(self) -> None:
        source = {"bold": True}
        cell = Cell("1", source)
        source["bold"] = False
        assert cell.metadata["bold"] is True

    def test_equality_ignores_mapping_type(self) -> None:
        assert Cell("1", {"bold": True}) == Cell("1", {"bold": True})
        assert Cell("1") != Cell("1", {"bold": True})
