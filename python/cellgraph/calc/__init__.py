"""cellgraph.calc - dependency tracking and incremental formula evaluation."""

from cellgraph.calc._engine import (
    Model,
    create_evaluated_data,
    create_reference_graph,
    extract_formula,
    get_formula_computed_value,
    is_formula_value,
    recalculate,
    update_cell_value,
)
from cellgraph.calc._evaluator import (
    CircularReferenceError,
    FormulaEvaluationError,
    GridEvaluator,
    UnknownFunctionError,
    create_evaluator,
)
from cellgraph.calc._functions import FormulaError, FunctionRegistry, RangeValue, is_error
from cellgraph.calc._graph import PointGraph
from cellgraph.calc._parser import all_references, expand_range
from cellgraph.calc._protocol import (
    Cell,
    CellDelta,
    EvaluatorFactory,
    FormulaEvaluator,
    RecalcResult,
)

__all__ = [
    "Cell",
    "CellDelta",
    "CircularReferenceError",
    "EvaluatorFactory",
    "FormulaError",
    "FormulaEvaluationError",
    "FormulaEvaluator",
    "FunctionRegistry",
    "GridEvaluator",
    "Model",
    "PointGraph",
    "RangeValue",
    "RecalcResult",
    "UnknownFunctionError",
    "all_references",
    "create_evaluated_data",
    "create_evaluator",
    "create_reference_graph",
    "expand_range",
    "extract_formula",
    "get_formula_computed_value",
    "is_error",
    "is_formula_value",
    "recalculate",
    "update_cell_value",
]
