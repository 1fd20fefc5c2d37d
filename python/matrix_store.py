"""
Square float32 matrix storage.

One contiguous row-major buffer per matrix; row i lives at [i*N, (i+1)*N).
The flat buffer is what gets copied to and from the device, the 2-D view
is for host-side indexing and printing.
"""

from typing import Optional, Sequence, Tuple

import numpy as np


class MatrixStore:
    """Owned N x N float32 buffer with stride-based 2-D indexing."""

    dtype = np.float32

    def __init__(self, n: int, data: Optional[np.ndarray] = None):
        if n <= 0:
            raise ValueError(f"Matrix dimension must be positive, got {n}")
        self.n = n
        if data is None:
            self.data = np.zeros(n * n, dtype=self.dtype)
        else:
            data = np.ascontiguousarray(data, dtype=self.dtype).reshape(-1)
            if data.size != n * n:
                raise ValueError(
                    f"Expected {n * n} elements for a {n}x{n} matrix, got {data.size}"
                )
            self.data = data

    @classmethod
    def zeros(cls, n: int) -> "MatrixStore":
        return cls(n)

    @classmethod
    def random(cls, n: int, seed: Optional[int] = None, high: int = 10) -> "MatrixStore":
        """Small non-negative integers in [0, high), like rand() % 10."""
        rng = np.random.default_rng(seed)
        return cls(n, rng.integers(0, high, size=n * n).astype(cls.dtype))

    @classmethod
    def identity(cls, n: int) -> "MatrixStore":
        return cls(n, np.eye(n, dtype=cls.dtype))

    @classmethod
    def from_rows(cls, rows: Sequence[Sequence[float]]) -> "MatrixStore":
        n = len(rows)
        if any(len(row) != n for row in rows):
            raise ValueError("Rows must form a square matrix")
        return cls(n, np.asarray(rows, dtype=cls.dtype))

    @classmethod
    def from_array(cls, array) -> "MatrixStore":
        """Wrap a square 2-D array-like (numpy array or CPU torch tensor)."""
        array = np.asarray(array, dtype=cls.dtype)
        if array.ndim != 2 or array.shape[0] != array.shape[1]:
            raise ValueError(f"Expected a square 2-D array, got shape {array.shape}")
        return cls(array.shape[0], array)

    @property
    def nbytes(self) -> int:
        return self.data.nbytes

    @property
    def shape(self) -> Tuple[int, int]:
        return (self.n, self.n)

    def view(self) -> np.ndarray:
        """2-D view sharing memory with the flat buffer."""
        return self.data.reshape(self.n, self.n)

    def row(self, i: int) -> np.ndarray:
        if not 0 <= i < self.n:
            raise IndexError(f"Row {i} out of range for {self.n}x{self.n} matrix")
        return self.data[i * self.n:(i + 1) * self.n]

    def _offset(self, index: Tuple[int, int]) -> int:
        i, j = index
        if not (0 <= i < self.n and 0 <= j < self.n):
            raise IndexError(f"Index ({i}, {j}) out of range for {self.n}x{self.n} matrix")
        return i * self.n + j

    def __getitem__(self, index: Tuple[int, int]) -> np.float32:
        return self.data[self._offset(index)]

    def __setitem__(self, index: Tuple[int, int], value: float) -> None:
        self.data[self._offset(index)] = value

    def copy(self) -> "MatrixStore":
        return MatrixStore(self.n, self.data.copy())

    def format(self, tag: str) -> str:
        lines = [f"Matrix {tag}:"]
        for i in range(self.n):
            lines.append("".join(f"{value:6.1f}   " for value in self.row(i)))
        return "\n".join(lines)

    def __repr__(self) -> str:
        return f"MatrixStore(n={self.n})"
