"""
Serial reference multiply.

Naive i/j/k triple loop in float32. Used as the correctness oracle for the
device result and as the timing baseline; keep N small (the loop runs in
the interpreter).
"""

import logging
import time
from typing import Tuple

import numpy as np

from matrix_store import MatrixStore

logger = logging.getLogger(__name__)


def serial_multiply(a: MatrixStore, b: MatrixStore) -> MatrixStore:
    """Return C = A * B computed with the textbook triple loop."""
    if a.n != b.n:
        raise ValueError(f"Dimension mismatch: A is {a.n}x{a.n}, B is {b.n}x{b.n}")
    n = a.n
    c = MatrixStore.zeros(n)
    a_data, b_data, c_data = a.data, b.data, c.data

    for i in range(n):
        for j in range(n):
            acc = np.float32(0.0)
            for k in range(n):
                acc += a_data[i * n + k] * b_data[k * n + j]
            c_data[i * n + j] = acc
    return c


def timed_serial_multiply(a: MatrixStore, b: MatrixStore) -> Tuple[MatrixStore, float]:
    """Run serial_multiply and return (C, elapsed milliseconds)."""
    start = time.perf_counter()
    c = serial_multiply(a, b)
    elapsed_ms = (time.perf_counter() - start) * 1000.0
    logger.info(f"[Serial] {a.n}x{a.n} multiply took {elapsed_ms:.1f} ms")
    return c, elapsed_ms
