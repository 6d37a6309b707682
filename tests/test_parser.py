"""Tests for cellgraph.calc formula parser and reference extraction."""

from __future__ import annotations

import pytest

from cellgraph import Point, PointSet
from cellgraph.calc._parser import (
    all_references,
    expand_range,
    parse_range_references,
    parse_references,
    range_shape,
)


class TestSingleReferences:
    def test_simple_ref(self) -> None:
        assert parse_references("A1+B2") == [Point(0, 0), Point(1, 1)]

    def test_dollar_signs_stripped(self) -> None:
        assert parse_references("$A$1+B$2+$C3") == [Point(0, 0), Point(1, 1), Point(2, 2)]

    def test_no_duplicates(self) -> None:
        assert parse_references("A1+A1+A1") == [Point(0, 0)]

    def test_string_literal_ignored(self) -> None:
        assert parse_references('A1&"Hello A2"') == [Point(0, 0)]

    def test_case_normalized(self) -> None:
        assert parse_references("a1+b2") == [Point(0, 0), Point(1, 1)]

    def test_function_name_with_digits_not_a_ref(self) -> None:
        assert parse_references("LOG10(A1)") == [Point(0, 0)]

    def test_scientific_notation_not_a_ref(self) -> None:
        assert parse_references("1E3+A1") == [Point(0, 0)]

    def test_range_endpoints_excluded(self) -> None:
        assert parse_references("SUM(A1:A3)+B1") == [Point(0, 1)]


class TestRangeReferences:
    def test_simple_range(self) -> None:
        assert parse_range_references("SUM(A1:A5)") == [(Point(0, 0), Point(4, 0))]

    def test_dollar_in_range(self) -> None:
        assert parse_range_references("SUM($A$1:$B$2)") == [(Point(0, 0), Point(1, 1))]


class TestExpandRange:
    def test_column(self) -> None:
        assert expand_range("A1:A3") == [Point(0, 0), Point(1, 0), Point(2, 0)]

    def test_block_row_major(self) -> None:
        assert expand_range("A1:B2") == [Point(0, 0), Point(0, 1), Point(1, 0), Point(1, 1)]

    def test_reversed_bounds(self) -> None:
        assert expand_range("B2:A1") == expand_range("A1:B2")

    def test_invalid(self) -> None:
        with pytest.raises(ValueError):
            expand_range("A1")

    def test_shape(self) -> None:
        assert range_shape("A1:C4") == (4, 3)


class TestAllReferences:
    def test_combined(self) -> None:
        refs = all_references("SUM(A1:A2)+C3")
        assert refs == PointSet.from_iterable([Point(0, 0), Point(1, 0), Point(2, 2)])

    def test_none(self) -> None:
        assert all_references("1+2").size == 0
