"""
matrix.py
~~~~~~~~~

Dense 2D matrix of double-precision floats.

Values live in a flat, row-major ``numpy`` buffer of length ``rows * cols``.
Every operation other than ``set`` returns a new Matrix with its own
storage; operands are never modified or shared.
"""

import numbers
from typing import Any, Callable, Dict, Iterable, List, Sequence, Tuple

import numpy as np

from nnengine.exceptions import (
    ShapeMismatch,
    AddSubShapeMismatch,
    MulShapeMismatch,
    HadamardShapeMismatch,
    BroadcastShapeMismatch,
    DeserializationError,
)


class Matrix:
    """
    A ``rows x cols`` matrix backed by a flat float64 buffer.

    Args:
        rows: Number of rows
        cols: Number of columns
        data: Optional flat row-major values; zero-filled when omitted

    Raises:
        ShapeMismatch: If ``data`` does not hold exactly ``rows * cols`` values
    """

    __hash__ = None  # mutable through set()

    def __init__(self, rows: int, cols: int, data: Iterable[float] = None):
        self.rows = int(rows)
        self.cols = int(cols)
        if self.rows < 0 or self.cols < 0:
            raise ShapeMismatch(f"Negative dimensions {rows}x{cols}")

        size = self.rows * self.cols
        if data is None:
            self.data = np.zeros(size, dtype=np.float64)
        else:
            # Always copy so the caller's buffer is never shared
            buffer = np.array(data, dtype=np.float64).reshape(-1)
            if buffer.size != size:
                raise ShapeMismatch(
                    f"Expected {size} values for a {self.rows}x{self.cols} "
                    f"matrix, got {buffer.size}"
                )
            self.data = buffer

    # ------------------------------------------------------------------
    # Constructors
    # ------------------------------------------------------------------

    @classmethod
    def zeros(cls, rows: int, cols: int) -> 'Matrix':
        return cls(rows, cols)

    @classmethod
    def from_column(cls, values: Sequence[float]) -> 'Matrix':
        """Build a ``len(values) x 1`` column vector."""
        values = list(values)
        return cls(len(values), 1, values)

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> 'Matrix':
        """
        Build a matrix from a list of equal-length rows.

        Raises:
            ShapeMismatch: If the rows differ in length
        """
        rows = [list(row) for row in rows]
        n_cols = len(rows[0]) if rows else 0
        for index, row in enumerate(rows):
            if len(row) != n_cols:
                raise ShapeMismatch(
                    f"Row {index} has {len(row)} values, expected {n_cols}"
                )
        flat = [value for row in rows for value in row]
        return cls(len(rows), n_cols, flat)

    @classmethod
    def from_dict(cls, record: Dict[str, Any]) -> 'Matrix':
        """
        Rebuild a matrix from a ``{rows, cols, data}`` record.

        Raises:
            DeserializationError: If a field is missing, a dimension is not a
                non-negative integer, or ``data`` is not a list of the right
                length
        """
        if not isinstance(record, dict):
            raise DeserializationError(
                f"Matrix record must be a mapping, got {type(record).__name__}"
            )
        missing = [key for key in ('rows', 'cols', 'data') if key not in record]
        if missing:
            raise DeserializationError(
                f"Matrix record is missing field(s): {', '.join(missing)}"
            )
        for key in ('rows', 'cols'):
            value = record[key]
            if isinstance(value, bool) or not isinstance(value, numbers.Integral) or value < 0:
                raise DeserializationError(
                    f"Matrix record field {key!r} must be a non-negative integer, "
                    f"got {value!r}"
                )
        if not isinstance(record['data'], (list, tuple)):
            raise DeserializationError(
                f"Matrix record field 'data' must be a list, "
                f"got {type(record['data']).__name__}"
            )

        try:
            return cls(record['rows'], record['cols'], record['data'])
        except (ShapeMismatch, TypeError, ValueError) as e:
            raise DeserializationError(f"Invalid matrix record: {e}") from e

    # ------------------------------------------------------------------
    # Element access
    # ------------------------------------------------------------------

    @property
    def shape(self) -> Tuple[int, int]:
        return self.rows, self.cols

    def get(self, i: int, j: int) -> float:
        return float(self.data[i * self.cols + j])

    def set(self, i: int, j: int, value: float) -> None:
        self.data[i * self.cols + j] = value

    def _grid(self) -> np.ndarray:
        """2D read-only view over the buffer, for internal arithmetic."""
        view = self.data.reshape(self.rows, self.cols)
        view.flags.writeable = False
        return view

    # ------------------------------------------------------------------
    # Arithmetic
    # ------------------------------------------------------------------

    def add(self, other: 'Matrix') -> 'Matrix':
        self._check_same_shape(other, AddSubShapeMismatch, 'add')
        return Matrix(self.rows, self.cols, self.data + other.data)

    def sub(self, other: 'Matrix') -> 'Matrix':
        self._check_same_shape(other, AddSubShapeMismatch, 'sub')
        return Matrix(self.rows, self.cols, self.data - other.data)

    def mul(self, other: 'Matrix') -> 'Matrix':
        """
        Matrix product: ``self (m x n) . other (n x p) -> (m x p)``.

        Raises:
            MulShapeMismatch: If ``self.cols != other.rows``
        """
        if self.cols != other.rows:
            raise MulShapeMismatch(
                f"Cannot multiply {self.rows}x{self.cols} by "
                f"{other.rows}x{other.cols}"
            )
        product = np.matmul(self._grid(), other._grid())
        return Matrix(self.rows, other.cols, product)

    def hadamard(self, other: 'Matrix') -> 'Matrix':
        self._check_same_shape(other, HadamardShapeMismatch, 'hadamard')
        return Matrix(self.rows, self.cols, self.data * other.data)

    def scale(self, s: float) -> 'Matrix':
        return Matrix(self.rows, self.cols, self.data * s)

    def transpose(self) -> 'Matrix':
        return Matrix(self.cols, self.rows, self._grid().T)

    def map(self, fn: Callable[[float], float]) -> 'Matrix':
        """Apply a unary scalar function to every entry, in buffer order."""
        values = [fn(float(value)) for value in self.data]
        return Matrix(self.rows, self.cols, values)

    def add_column(self, vec: 'Matrix') -> 'Matrix':
        """
        Add a ``rows x 1`` column vector to every column.

        Raises:
            BroadcastShapeMismatch: If ``vec`` is not ``(self.rows, 1)``
        """
        if vec.rows != self.rows or vec.cols != 1:
            raise BroadcastShapeMismatch(
                f"Cannot broadcast {vec.rows}x{vec.cols} over "
                f"{self.rows}x{self.cols}; expected {self.rows}x1"
            )
        summed = self._grid() + vec._grid()
        return Matrix(self.rows, self.cols, summed)

    def clone(self) -> 'Matrix':
        return Matrix(self.rows, self.cols, self.data)

    def argmax(self) -> int:
        """Flat index of the largest entry; the first one wins on ties."""
        return int(np.argmax(self.data))

    def _check_same_shape(self, other: 'Matrix', error, op: str) -> None:
        if self.rows != other.rows or self.cols != other.cols:
            raise error(
                f"{op}: shape {self.rows}x{self.cols} does not match "
                f"{other.rows}x{other.cols}"
            )

    # ------------------------------------------------------------------
    # Conversion
    # ------------------------------------------------------------------

    def to_list(self) -> List[float]:
        return [float(value) for value in self.data]

    def to_dict(self) -> Dict[str, Any]:
        return {'rows': self.rows, 'cols': self.cols, 'data': self.to_list()}

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Matrix):
            return NotImplemented
        return (
            self.shape == other.shape
            and bool(np.array_equal(self.data, other.data))
        )

    def __repr__(self) -> str:
        return f"Matrix({self.rows}, {self.cols}, {self.to_list()!r})"
