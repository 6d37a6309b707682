"""GridEvaluator: the default formula collaborator, bound to one grid snapshot.

A formula is split into tokens by one regular expression and evaluated by a
recursive-descent parser, lowest precedence first::

    comparison      =  <>  <  >  <=  >=
    concatenation   &
    additive        +  -
    multiplicative  *  /
    unary           -  +
    primary         number  "text"  TRUE/FALSE  A1  A1:B2  NAME(args)  (expr)

Referenced cells are read from the snapshot the evaluator was created with.
Formula cells among them are evaluated on demand and memoized, so a result
never depends on the order in which cells are visited.

When the ``formulas`` library is installed (``cellgraph[calc]``), functions
missing from the registry fall back to the library's implementations.
"""

from __future__ import annotations

import logging
import operator
import re
from typing import TYPE_CHECKING, Any

from cellgraph._matrix import EMPTY
from cellgraph._point import EMPTY_POINT_SET, Point, PointSet
from cellgraph._utils import a1_to_rowcol
from cellgraph.calc._functions import (
    FormulaError,
    FunctionRegistry,
    RangeValue,
    as_text,
    coerce_literal,
    first_error,
    to_number,
)
from cellgraph.calc._parser import all_references, expand_range, range_shape

if TYPE_CHECKING:
    from cellgraph._matrix import Matrix
    from cellgraph.calc._protocol import Cell

logger = logging.getLogger(__name__)

FORMULA_PREFIX = "="

_REF = r"\$?[A-Z]{1,3}\$?\d+"
_TOKEN_RE = re.compile(
    rf"""\s*(?:
        (?P<text>"(?:[^"]|"")*")
      | (?P<range>{_REF}\s*:\s*{_REF})(?![A-Z0-9_.(])
      | (?P<number>(?:\d+\.?\d*|\.\d+)(?:E[+-]?\d+)?)
      | (?P<call>[A-Z][A-Z0-9_.]*)\s*\(
      | (?P<bool>TRUE|FALSE)(?![A-Z0-9_.(])
      | (?P<ref>{_REF})(?![A-Z0-9_.(])
      | (?P<op><>|<=|>=|[-+*/&=<>(),])
    )""",
    re.IGNORECASE | re.VERBOSE,
)

_ARITHMETIC = {"+": operator.add, "-": operator.sub, "*": operator.mul}
_COMPARISONS = {
    "=": operator.eq,
    "<>": operator.ne,
    "<": operator.lt,
    ">": operator.gt,
    "<=": operator.le,
    ">=": operator.ge,
}


class FormulaEvaluationError(Exception):
    """A formula could not be evaluated."""


class UnknownFunctionError(FormulaEvaluationError):
    """A formula calls a function that is not registered."""


class CircularReferenceError(FormulaEvaluationError):
    """Resolving a formula led back to a cell that is still being resolved."""


# ---------------------------------------------------------------------------
# formulas library availability
# ---------------------------------------------------------------------------

_formulas_available: bool | None = None


def _check_formulas() -> bool:
    global _formulas_available
    if _formulas_available is None:
        try:
            import formulas  # noqa: F401

            _formulas_available = True
        except ImportError:
            _formulas_available = False
    return _formulas_available


# ---------------------------------------------------------------------------
# Tokens and operators
# ---------------------------------------------------------------------------


def _tokenize(formula: str) -> list[tuple[str, str]]:
    """``(kind, text)`` pairs; kind is the name of the matching token group."""
    tokens: list[tuple[str, str]] = []
    text = formula.rstrip()
    pos = 0
    while pos < len(text):
        m = _TOKEN_RE.match(text, pos)
        if m is None or m.lastgroup is None:
            raise FormulaEvaluationError(f"Unexpected {text[pos:].strip()!r} in {formula!r}")
        tokens.append((m.lastgroup, m.group(m.lastgroup)))
        pos = m.end()
    return tokens


def _point_of(ref: str) -> Point:
    try:
        row, column = a1_to_rowcol(ref)
    except ValueError as e:
        raise FormulaEvaluationError(str(e)) from e
    return Point(row, column)


def _arithmetic(left: Any, op: str, right: Any) -> Any:
    error = first_error(left, right)
    if error is not None:
        return error
    if op == "&":
        return as_text(left) + as_text(right)
    a, b = to_number(left), to_number(right)
    if a is None or b is None:
        return FormulaError.VALUE
    if op == "/":
        return FormulaError.DIV0 if b == 0 else a / b
    return _ARITHMETIC[op](a, b)


def _compare(left: Any, op: str, right: Any) -> Any:
    """Numbers compare numerically; anything else compares as text, ignoring case."""
    error = first_error(left, right)
    if error is not None:
        return error
    a: Any = to_number(left)
    b: Any = to_number(right)
    if a is None or b is None:
        a, b = as_text(left).lower(), as_text(right).lower()
    return _COMPARISONS[op](a, b)


class _Parser:
    """Evaluates one formula's tokens against a :class:`GridEvaluator`."""

    def __init__(self, evaluator: GridEvaluator, tokens: list[tuple[str, str]]) -> None:
        self._evaluator = evaluator
        self._tokens = tokens
        self._pos = 0

    def evaluate(self) -> Any:
        if not self._tokens:
            raise FormulaEvaluationError("Empty formula")
        value = self._comparison()
        if self._pos < len(self._tokens):
            raise FormulaEvaluationError(f"Unexpected {self._tokens[self._pos][1]!r}")
        return value

    def _peek_op(self) -> str | None:
        if self._pos < len(self._tokens):
            kind, text = self._tokens[self._pos]
            if kind == "op":
                return text
        return None

    def _next(self) -> tuple[str, str]:
        if self._pos >= len(self._tokens):
            raise FormulaEvaluationError("Unexpected end of formula")
        token = self._tokens[self._pos]
        self._pos += 1
        return token

    def _binary(self, operand: Any, ops: Any, combine: Any) -> Any:
        left = operand()
        op = self._peek_op()
        while op in ops:
            self._pos += 1
            left = combine(left, op, operand())
            op = self._peek_op()
        return left

    def _comparison(self) -> Any:
        return self._binary(self._concatenation, _COMPARISONS, _compare)

    def _concatenation(self) -> Any:
        return self._binary(self._additive, ("&",), _arithmetic)

    def _additive(self) -> Any:
        return self._binary(self._multiplicative, ("+", "-"), _arithmetic)

    def _multiplicative(self) -> Any:
        return self._binary(self._unary, ("*", "/"), _arithmetic)

    def _unary(self) -> Any:
        op = self._peek_op()
        if op not in ("-", "+"):
            return self._primary()
        self._pos += 1
        value = self._unary()
        if op == "+" or isinstance(value, FormulaError):
            return value
        number = to_number(value)
        return FormulaError.VALUE if number is None else -number

    def _primary(self) -> Any:
        kind, text = self._next()
        if kind == "number":
            return int(text) if text.isdigit() else float(text)
        if kind == "text":
            return text[1:-1].replace('""', '"')
        if kind == "bool":
            return text.upper() == "TRUE"
        if kind == "ref":
            return self._evaluator.resolve(_point_of(text))
        if kind == "range":
            return self._evaluator.resolve_range("".join(text.split()))
        if kind == "call":
            return self._call(text.upper())
        if text == "(":
            value = self._comparison()
            if self._next() != ("op", ")"):
                raise FormulaEvaluationError("Unbalanced parentheses")
            return value
        raise FormulaEvaluationError(f"Unexpected {text!r}")

    def _call(self, name: str) -> Any:
        func = self._evaluator.functions.get(name)
        if func is None:
            raise UnknownFunctionError(f"Unsupported function: {name}")

        args: list[Any] = []
        if self._peek_op() == ")":
            self._pos += 1
        else:
            while True:
                # An omitted argument (IF(A1,,1)) reads as empty
                args.append(None if self._peek_op() in (",", ")") else self._comparison())
                separator = self._next()
                if separator == ("op", ")"):
                    break
                if separator != ("op", ","):
                    raise FormulaEvaluationError(f"Expected ',' or ')' in {name}()")

        try:
            return func(args)
        except (ValueError, TypeError, ArithmeticError) as e:
            raise FormulaEvaluationError(f"Error evaluating {name}: {e}") from e


# ---------------------------------------------------------------------------
# Evaluator
# ---------------------------------------------------------------------------


class GridEvaluator:
    """Evaluates formulas against one immutable grid snapshot.

    Usage::

        evaluator = GridEvaluator(data)
        evaluator.references_of("A1*2", Point(0, 1))  # PointSet({Point(0, 0)})
        evaluator.value_of("A1*2", Point(0, 1))       # 20

    Formulas are passed without the leading ``=``.  Resolved cell values are
    memoized, so an instance belongs to the snapshot it was created with.
    """

    def __init__(self, data: Matrix[Cell], functions: FunctionRegistry | None = None) -> None:
        self._data = data
        self.functions = functions if functions is not None else FunctionRegistry()
        self._values: dict[Point, Any] = {}
        self._in_progress: set[Point] = set()
        self._use_formulas = _check_formulas()
        self._compiled: dict[str, Any] = {}

    def references_of(self, formula: str, point: Point) -> PointSet:
        try:
            return all_references(formula)
        except ValueError:
            logger.debug("Cannot parse references of %r at %r", formula, point)
            return EMPTY_POINT_SET

    def value_of(self, formula: str, point: Point) -> Any:
        """Evaluate *formula* as if it sat at *point*. Raises on failure."""
        self._in_progress.add(point)
        try:
            return _Parser(self, _tokenize(formula)).evaluate()
        except UnknownFunctionError:
            if not self._use_formulas:
                raise
            value = self._formulas_fallback(formula)
            if value is None:
                raise
            return value
        finally:
            self._in_progress.discard(point)

    def resolve(self, point: Point) -> Any:
        """Value of the cell at *point* as formulas see it.

        Empty slots read as ``None``, numeric text as a number and formula
        cells as their computed value.
        """
        if point in self._values:
            return self._values[point]
        cell = self._data.get(point)
        raw = None if cell is EMPTY or cell is None else getattr(cell, "value", cell)
        if isinstance(raw, str) and raw.startswith(FORMULA_PREFIX):
            if point in self._in_progress:
                raise CircularReferenceError(f"{point!r} depends on itself")
            value = self.value_of(raw[len(FORMULA_PREFIX):], point)
        elif isinstance(raw, str):
            value = coerce_literal(raw)
        else:
            value = raw
        self._values[point] = value
        return value

    def resolve_range(self, ref: str) -> RangeValue:
        """Values of ``A1:B3`` in row-major order, keeping the block's shape."""
        try:
            points = expand_range(ref)
            rows, columns = range_shape(ref)
        except ValueError as e:
            raise FormulaEvaluationError(str(e)) from e
        return RangeValue(tuple(self.resolve(p) for p in points), rows, columns)

    # ------------------------------------------------------------------
    # formulas library fallback
    # ------------------------------------------------------------------

    def _formulas_fallback(self, formula: str) -> Any:
        """Evaluate *formula* with the ``formulas`` library, feeding it cell
        values from this snapshot. ``None`` when the library cannot.
        """
        import formulas
        import numpy as np

        func = self._compiled.get(formula)
        if func is None:
            try:
                func = formulas.Parser().ast(FORMULA_PREFIX + formula)[1].compile()
            except Exception as e:
                logger.debug("formulas cannot compile %r: %s", formula, e)
                return None
            self._compiled[formula] = func

        inputs: list[Any] = []
        for name in func.inputs:
            if ":" in name:
                block = self.resolve_range(name)
                cells = np.array([0 if value is None else value for value in block])
                # A single column stays one-dimensional
                if block.columns > 1:
                    cells = cells.reshape(block.rows, block.columns)
                inputs.append(cells)
            else:
                value = self.resolve(_point_of(name))
                if value is None:
                    value = 0.0
                elif isinstance(value, (int, float)) and not isinstance(value, bool):
                    value = float(value)
                inputs.append(value)

        try:
            result = func(*inputs)
        except Exception as e:
            logger.debug("formulas cannot evaluate %r: %s", formula, e)
            return None
        return self._from_formulas(result)

    @staticmethod
    def _from_formulas(result: Any) -> Any:
        """Plain value of a ``formulas`` result; errors map to FormulaError."""
        import numpy as np

        array = np.asarray(result, dtype=object)
        if array.size != 1:
            return None
        value = array.reshape(-1)[0]
        if hasattr(value, "item"):
            value = value.item()
        if isinstance(value, float) and value.is_integer():
            return int(value)
        if isinstance(value, (bool, int, float)):
            return value
        if isinstance(value, str):
            # formulas reports errors as str subclasses carrying the code
            try:
                return FormulaError(str(value))
            except ValueError:
                return str(value)
        return None


def create_evaluator(data: Matrix[Cell]) -> GridEvaluator:
    """Default evaluator factory: a fresh :class:`GridEvaluator` per snapshot."""
    return GridEvaluator(data)
