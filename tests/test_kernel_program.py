"""Tests for the kernel program asset."""

import sys
from pathlib import Path
from unittest.mock import MagicMock

import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "python"))

from kernel_program import KernelProgram
from matmul_kernels.kernel_config import KERNELS


class TestKernelConfig:
    """Each configured variant points at a declared entry point."""

    @pytest.mark.parametrize("variant", sorted(KERNELS))
    def test_variant_loads(self, variant):
        program = KernelProgram(variant)
        assert program.entry_point == KERNELS[variant]["function_name"]
        assert program.entry_point in program.entry_points()
        assert program.source_path.suffix == ".cl"

    def test_source_takes_size_as_argument(self):
        """The problem size is bound at dispatch time, not baked into the source."""
        source = KernelProgram("row").source
        assert "#define DIM" not in source
        assert "const int n" in source

    def test_both_kernels_declared(self):
        assert set(KernelProgram("row").entry_points()) == {"matmult", "matmult_staged"}

    def test_unknown_variant_raises(self):
        with pytest.raises(ValueError, match="Unknown kernel variant"):
            KernelProgram("column")

    def test_missing_entry_point_raises(self, tmp_path):
        source = tmp_path / "empty.cl"
        source.write_text("__kernel void other(__global float* x) {}\n")
        config = {"bad": {"source": str(source), "function_name": "matmult",
                          "local_buffers": lambda n, g: [n]}}
        with pytest.raises(ValueError, match="not declared"):
            KernelProgram("bad", config=config)

    def test_missing_source_raises(self, tmp_path):
        config = {"gone": {"source": str(tmp_path / "gone.cl"), "function_name": "matmult",
                           "local_buffers": lambda n, g: [n]}}
        with pytest.raises(FileNotFoundError):
            KernelProgram("gone", config=config)


class TestLocalBuffers:
    """Scratch sizes in bytes, in binding order."""

    def test_row_variant_stages_one_row(self):
        assert KernelProgram("row").local_buffer_bytes(1000, 40) == [4000]

    def test_row_col_variant_adds_column_block(self):
        program = KernelProgram("row_col")
        assert program.local_buffer_bytes(6, 2) == [24, 48]
        assert program.local_mem_required(6, 2) == 72


def test_build_passes_source_and_entry_point():
    """build() hands the full source text and the entry point to the backend."""
    backend = MagicMock()
    backend.name = "mock"
    backend.build_kernel.return_value = "kernel-handle"
    program = KernelProgram("row_col")

    assert program.build(backend) == "kernel-handle"
    backend.build_kernel.assert_called_once_with(program.source, "matmult_staged")
