"""cellgraph - immutable grid model with incremental formula recalculation.

Usage::

    from cellgraph import Matrix, Point
    from cellgraph.calc import Cell, Model, create_evaluator, update_cell_value

    data = Matrix.from_rows([[Cell("10"), Cell("=A1*2")]])
    model = Model(create_evaluator, data)
    model.evaluated_data.get(Point(0, 1)).value  # 20

    model = update_cell_value(model, Point(0, 0), Cell("5"))
    model.evaluated_data.get(Point(0, 1)).value  # 10
"""

from importlib.metadata import PackageNotFoundError, version

from cellgraph._matrix import EMPTY, Matrix, Size
from cellgraph._point import EMPTY_POINT_SET, Point, PointSet

try:
    __version__ = version("cellgraph")
except PackageNotFoundError:
    __version__ = "0.0.0"

__all__ = [
    "__version__",
    "EMPTY",
    "EMPTY_POINT_SET",
    "Matrix",
    "Point",
    "PointSet",
    "Size",
]
