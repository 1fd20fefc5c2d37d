"""
Result validation.

The device accumulates each dot product privately in its own order, so
its low-order bits may legitimately differ from the serial loop. compare()
therefore uses a relative tolerance scaled by max(1, |reference|);
compare_exact() keeps the naive bit-for-bit policy for cases where the
result is known to be exactly representable.
"""

from typing import List, Optional, Tuple, Union

import numpy as np

from matrix_store import MatrixStore

DEFAULT_RTOL = 1e-5

MatrixLike = Union[MatrixStore, np.ndarray]


def _as_square(matrix: MatrixLike, n: Optional[int]) -> Optional[np.ndarray]:
    if isinstance(matrix, MatrixStore):
        array = matrix.view()
    else:
        array = np.asarray(matrix, dtype=np.float32)
        if array.ndim == 1:
            side = int(round(np.sqrt(array.size)))
            if side * side != array.size:
                return None
            array = array.reshape(side, side)
    if array.ndim != 2 or array.shape[0] != array.shape[1]:
        return None
    if n is not None and array.shape[0] != n:
        return None
    return array


def _mismatch_mask(parallel: np.ndarray, reference: np.ndarray, rtol: float) -> np.ndarray:
    parallel = parallel.astype(np.float64)
    reference = reference.astype(np.float64)
    bound = rtol * np.maximum(1.0, np.abs(reference))
    # NaN fails the comparison, so it lands in the mask
    return ~(np.abs(parallel - reference) <= bound)


def compare(c_parallel: MatrixLike, c_reference: MatrixLike, n: Optional[int] = None,
            rtol: float = DEFAULT_RTOL) -> bool:
    """True when every |p - s| <= rtol * max(1, |s|)."""
    parallel = _as_square(c_parallel, n)
    reference = _as_square(c_reference, n)
    if parallel is None or reference is None or parallel.shape != reference.shape:
        return False
    return not _mismatch_mask(parallel, reference, rtol).any()


def compare_exact(c_parallel: MatrixLike, c_reference: MatrixLike, n: Optional[int] = None) -> bool:
    """Elementwise exact equality."""
    parallel = _as_square(c_parallel, n)
    reference = _as_square(c_reference, n)
    if parallel is None or reference is None or parallel.shape != reference.shape:
        return False
    return bool(np.array_equal(parallel, reference))


def find_mismatches(c_parallel: MatrixLike, c_reference: MatrixLike,
                    rtol: float = DEFAULT_RTOL,
                    limit: int = 10) -> List[Tuple[int, int, float, float]]:
    """First `limit` out-of-tolerance elements as (i, j, parallel, reference)."""
    parallel = _as_square(c_parallel, None)
    reference = _as_square(c_reference, None)
    if parallel is None or reference is None or parallel.shape != reference.shape:
        raise ValueError("Matrices must be square and of the same size")
    rows, cols = np.nonzero(_mismatch_mask(parallel, reference, rtol))
    return [
        (int(i), int(j), float(parallel[i, j]), float(reference[i, j]))
        for i, j in zip(rows[:limit], cols[:limit])
    ]


def verdict(equal: bool) -> str:
    return "equal" if equal else "not equal"
