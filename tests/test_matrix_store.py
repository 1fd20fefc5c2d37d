"""Tests for MatrixStore."""

import sys
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "python"))

from matrix_store import MatrixStore


class TestLayout:
    """One contiguous row-major float32 buffer."""

    def test_row_occupies_contiguous_slice(self):
        m = MatrixStore.from_rows([[1, 2, 3], [4, 5, 6], [7, 8, 9]])
        assert m.data.dtype == np.float32
        assert m.data.flags.c_contiguous
        np.testing.assert_array_equal(m.data[3:6], [4, 5, 6])
        np.testing.assert_array_equal(m.row(1), [4, 5, 6])

    def test_view_and_index_share_memory(self):
        m = MatrixStore.zeros(3)
        m[1, 2] = 7.5
        assert m.data[1 * 3 + 2] == np.float32(7.5)
        assert m.view()[1, 2] == np.float32(7.5)
        m.view()[2, 0] = 1.0
        assert m[2, 0] == np.float32(1.0)

    def test_nbytes_is_n_squared_floats(self):
        assert MatrixStore.zeros(10).nbytes == 10 * 10 * 4

    def test_out_of_range_index_raises(self):
        m = MatrixStore.zeros(2)
        with pytest.raises(IndexError):
            m[2, 0]
        with pytest.raises(IndexError):
            m.row(-1)


class TestConstructors:
    def test_random_values_are_small_integers(self):
        m = MatrixStore.random(16, seed=1)
        assert np.all(m.data >= 0) and np.all(m.data < 10)
        np.testing.assert_array_equal(m.data, np.floor(m.data))

    def test_random_is_seeded(self):
        np.testing.assert_array_equal(MatrixStore.random(8, seed=3).data, MatrixStore.random(8, seed=3).data)

    def test_identity(self):
        np.testing.assert_array_equal(MatrixStore.identity(4).view(), np.eye(4, dtype=np.float32))

    def test_from_rows_rejects_non_square(self):
        with pytest.raises(ValueError, match="square"):
            MatrixStore.from_rows([[1, 2], [3]])

    def test_from_array_rejects_non_square(self):
        with pytest.raises(ValueError, match="square"):
            MatrixStore.from_array(np.zeros((2, 3)))

    def test_wrong_element_count_rejected(self):
        with pytest.raises(ValueError, match="Expected 9 elements"):
            MatrixStore(3, np.zeros(8))

    def test_copy_is_independent(self):
        m = MatrixStore.identity(2)
        c = m.copy()
        c[0, 0] = 5
        assert m[0, 0] == 1


def test_format_matches_console_layout():
    text = MatrixStore.from_rows([[1, 2], [3, 4]]).format("A")
    assert text.splitlines() == ["Matrix A:", "   1.0      2.0   ", "   3.0      4.0   "]
