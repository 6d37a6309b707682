"""Formula values: error markers, numeric coercion, range blocks and builtins.

Values seen by formulas follow the grid's own model: an empty slot reads as
``None``, numeric text reads as a number, and a range reference reads as a
:class:`RangeValue` of resolved cell values in row-major order.
"""

from __future__ import annotations

import enum
import math
import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from typing import Any

_INT_RE = re.compile(r"[+-]?\d+")
_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")


class FormulaError(enum.Enum):
    """Error value stored in the evaluated grid in place of a result.

    Members compare equal to their code regardless of case
    (``FormulaError.REF == "#ref!"``), and ``FormulaError("#ref!")`` looks a
    member up the same way.
    """

    NA = "#N/A"
    VALUE = "#VALUE!"
    REF = "#REF!"
    DIV0 = "#DIV/0!"
    NUM = "#NUM!"
    NAME = "#NAME?"

    @classmethod
    def _missing_(cls, value: object) -> FormulaError | None:
        if isinstance(value, str):
            code = value.upper()
            for member in cls:
                if member.value == code:
                    return member
        return None

    def __eq__(self, other: object) -> bool:
        if isinstance(other, FormulaError):
            return self is other
        if isinstance(other, str):
            return self.value == other.upper()
        return NotImplemented

    def __hash__(self) -> int:
        return hash(self.value)

    def __str__(self) -> str:
        return self.value


def is_error(value: Any) -> bool:
    return isinstance(value, FormulaError)


def first_error(*values: Any) -> FormulaError | None:
    """The first error among *values*, or ``None``."""
    return next((v for v in values if isinstance(v, FormulaError)), None)


def coerce_literal(text: str) -> Any:
    """``"10"`` -> 10, ``"2.5"`` -> 2.5; any other text is returned unchanged."""
    stripped = text.strip()
    if _INT_RE.fullmatch(stripped):
        return int(stripped)
    if _NUMBER_RE.fullmatch(stripped):
        return float(stripped)
    return text


def to_number(value: Any) -> int | float | None:
    """Numeric reading of a scalar, or ``None`` when it has none.

    Empty reads as 0 and booleans as 0/1.
    """
    if value is None:
        return 0
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return value
    if isinstance(value, str):
        number = coerce_literal(value)
        return None if isinstance(number, str) else number
    return None


def as_text(value: Any) -> str:
    """Text form used by ``&`` and the text functions."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


@dataclass(frozen=True)
class RangeValue:
    """Resolved values of a rectangular block of cells, row-major."""

    values: tuple[Any, ...]
    rows: int
    columns: int

    def __iter__(self) -> Iterator[Any]:
        return iter(self.values)

    def __len__(self) -> int:
        return len(self.values)


# ---------------------------------------------------------------------------
# Argument readers
# ---------------------------------------------------------------------------


def _numbers(args: list[Any]) -> list[int | float] | FormulaError:
    """Numbers for an aggregate.

    Inside a range only numeric cells count; a direct argument must have a
    numeric reading (empty arguments are skipped). The first error wins.
    """
    numbers: list[int | float] = []
    for arg in args:
        if isinstance(arg, RangeValue):
            for value in arg:
                if isinstance(value, FormulaError):
                    return value
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    numbers.append(value)
        elif isinstance(arg, FormulaError):
            return arg
        elif arg is not None:
            number = to_number(arg)
            if number is None:
                return FormulaError.VALUE
            numbers.append(number)
    return numbers


def _scalar(arg: Any) -> int | float | FormulaError:
    """One numeric argument, or the error to return in its place."""
    if isinstance(arg, FormulaError):
        return arg
    number = to_number(arg)
    return FormulaError.VALUE if number is None else number


def _truth(arg: Any) -> bool | FormulaError:
    if isinstance(arg, (bool, FormulaError)):
        return arg
    if arg is None:
        return False
    if isinstance(arg, (int, float)):
        return arg != 0
    if isinstance(arg, str) and arg.upper() in ("TRUE", "FALSE"):
        return arg.upper() == "TRUE"
    return FormulaError.VALUE


def _truths(args: list[Any]) -> list[bool] | FormulaError:
    """Logical values of *args*; text and empty cells inside ranges are skipped."""
    truths: list[bool] = []
    for arg in args:
        if isinstance(arg, RangeValue):
            values = [v for v in arg if v is not None and not isinstance(v, str)]
        else:
            values = [arg]
        for value in values:
            truth = _truth(value)
            if isinstance(truth, FormulaError):
                return truth
            truths.append(truth)
    return truths


# ---------------------------------------------------------------------------
# Builtins
# ---------------------------------------------------------------------------

Builtin = Callable[[list[Any]], Any]

_BUILTINS: dict[str, Builtin] = {}


def _builtin(name: str, min_args: int, max_args: int | None = None) -> Callable[[Builtin], Builtin]:
    """Register the decorated function under *name* with an arity check."""

    def register(func: Builtin) -> Builtin:
        def checked(args: list[Any]) -> Any:
            if len(args) < min_args or (max_args is not None and len(args) > max_args):
                expected = f"{min_args}" if max_args == min_args else (
                    f"at least {min_args}" if max_args is None else f"{min_args} to {max_args}"
                )
                raise ValueError(f"{name} takes {expected} arguments, got {len(args)}")
            return func(args)

        _BUILTINS[name] = checked
        return func

    return register


def _aggregate(name: str, reduce: Callable[[list[int | float]], Any]) -> None:
    def run(args: list[Any]) -> Any:
        numbers = _numbers(args)
        return numbers if isinstance(numbers, FormulaError) else reduce(numbers)

    _builtin(name, 1)(run)


_aggregate("SUM", sum)
_aggregate("MIN", lambda numbers: min(numbers, default=0))
_aggregate("MAX", lambda numbers: max(numbers, default=0))
_aggregate(
    "AVERAGE",
    lambda numbers: sum(numbers) / len(numbers) if numbers else FormulaError.DIV0,
)


@_builtin("COUNT", 1)
def _count(args: list[Any]) -> int:
    """Numeric values only; text, empty slots and errors are not counted."""
    count = 0
    for arg in args:
        for value in (arg if isinstance(arg, RangeValue) else [arg]):
            if isinstance(value, bool) or value is None or isinstance(value, FormulaError):
                continue
            if isinstance(value, (int, float)) or (
                not isinstance(arg, RangeValue) and to_number(value) is not None
            ):
                count += 1
    return count


@_builtin("ABS", 1, 1)
def _abs(args: list[Any]) -> Any:
    x = _scalar(args[0])
    return x if isinstance(x, FormulaError) else abs(x)


@_builtin("ROUND", 1, 2)
def _round(args: list[Any]) -> Any:
    # Halves round away from zero
    x = _scalar(args[0])
    digits = _scalar(args[1]) if len(args) > 1 else 0
    error = first_error(x, digits)
    if error is not None:
        return error
    factor = 10 ** int(digits)
    rounded = math.copysign(math.floor(abs(x) * factor + 0.5) / factor, x)
    return int(rounded) if digits <= 0 else rounded


@_builtin("MOD", 2, 2)
def _mod(args: list[Any]) -> Any:
    x, divisor = _scalar(args[0]), _scalar(args[1])
    error = first_error(x, divisor)
    if error is not None:
        return error
    if divisor == 0:
        return FormulaError.DIV0
    # Sign follows the divisor
    return x - divisor * math.floor(x / divisor)


@_builtin("SQRT", 1, 1)
def _sqrt(args: list[Any]) -> Any:
    x = _scalar(args[0])
    if isinstance(x, FormulaError):
        return x
    return FormulaError.NUM if x < 0 else math.sqrt(x)


@_builtin("IF", 2, 3)
def _if(args: list[Any]) -> Any:
    condition = _truth(args[0])
    if isinstance(condition, FormulaError):
        return condition
    if condition:
        return args[1]
    return args[2] if len(args) == 3 else False


@_builtin("IFERROR", 2, 2)
def _iferror(args: list[Any]) -> Any:
    return args[1] if isinstance(args[0], FormulaError) else args[0]


@_builtin("AND", 1)
def _and(args: list[Any]) -> Any:
    truths = _truths(args)
    return truths if isinstance(truths, FormulaError) else all(truths)


@_builtin("OR", 1)
def _or(args: list[Any]) -> Any:
    truths = _truths(args)
    return truths if isinstance(truths, FormulaError) else any(truths)


@_builtin("NOT", 1, 1)
def _not(args: list[Any]) -> Any:
    truth = _truth(args[0])
    return truth if isinstance(truth, FormulaError) else not truth


@_builtin("CONCATENATE", 1)
def _concatenate(args: list[Any]) -> Any:
    values = [v for arg in args for v in (arg if isinstance(arg, RangeValue) else [arg])]
    error = first_error(*values)
    return error if error is not None else "".join(as_text(v) for v in values)


@_builtin("LEN", 1, 1)
def _len(args: list[Any]) -> Any:
    if isinstance(args[0], FormulaError):
        return args[0]
    return len(as_text(args[0]))


class FunctionRegistry:
    """Case-insensitive name -> implementation table for formula functions.

    Starts from the builtins. Each registry owns its table, so custom
    functions registered on one never leak into another.
    """

    def __init__(self, functions: Mapping[str, Builtin] | None = None) -> None:
        self._table: dict[str, Builtin] = dict(_BUILTINS)
        for name, func in (functions or {}).items():
            self.register(name, func)

    def register(self, name: str, func: Builtin) -> None:
        """Add or replace *name*. *func* receives the list of evaluated arguments."""
        self._table[name.upper()] = func

    def get(self, name: str) -> Builtin | None:
        return self._table.get(name.upper())

    def __contains__(self, name: object) -> bool:
        return isinstance(name, str) and name.upper() in self._table

    @property
    def names(self) -> frozenset[str]:
        return frozenset(self._table)
