"""
Kernel Configuration (tiled matmul)

Maps each kernel variant to its program source and entry point, plus the
group-local scratch it needs. Scratch sizes are in floats for an n x n
problem launched with group size g.
"""

from pathlib import Path

_KERNELS_ROOT = Path(__file__).parent

KERNELS = {
    # Row of A staged in local memory, B read from global memory
    "row": {
        "source": str(_KERNELS_ROOT / "matmul.cl"),
        "function_name": "matmult",
        "local_buffers": lambda n, g: [n],
    },
    # Row of A and the group's block of B columns staged in local memory
    "row_col": {
        "source": str(_KERNELS_ROOT / "matmul.cl"),
        "function_name": "matmult_staged",
        "local_buffers": lambda n, g: [n, g * n],
    },
}

DEFAULT_VARIANT = "row_col"
