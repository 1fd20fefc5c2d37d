"""
Golden script for the tiled matmul.

Computation:
    C = A @ B
    where A, B are n x n float32 with integer entries in [0, 10)

Integer operands keep every partial sum exactly representable in float32
up to n = 1024 at least (max sum 81 * n), so any correct summation order
reproduces the golden bit for bit at those sizes.

Params: {"n": int, "seed": int (optional)}
"""

import torch

__outputs__ = ["c"]

RTOL = 1e-5
ATOL = 1e-5

DEFAULT_SEED = 0


def generate_inputs(params: dict) -> list:
    n = params["n"]
    generator = torch.Generator().manual_seed(params.get("seed", DEFAULT_SEED))

    a = torch.randint(0, 10, (n, n), generator=generator).to(torch.float32)
    b = torch.randint(0, 10, (n, n), generator=generator).to(torch.float32)
    c = torch.zeros((n, n), dtype=torch.float32)

    return [
        ("a", a),
        ("b", b),
        ("c", c),
    ]


def compute_golden(tensors: dict, params: dict) -> None:
    a = torch.as_tensor(tensors["a"]).to(torch.float32)
    b = torch.as_tensor(tensors["b"]).to(torch.float32)
    tensors["c"][:] = torch.matmul(a, b)


def matches_golden(result, golden) -> bool:
    """torch.allclose of a device result against the golden output."""
    return torch.allclose(
        torch.as_tensor(result, dtype=torch.float32),
        torch.as_tensor(golden, dtype=torch.float32),
        rtol=RTOL,
        atol=ATOL,
    )
