"""
Python renditions of the kernels in matmul.cl, executed per work item by
the simulated backend.

Arguments mirror the OpenCL signatures: A, B, C are flat float32 device
arrays, n is an int32 scalar, Al/Bl are the group's local arrays. The work
item object provides get_global_id/get_local_id/get_local_size/barrier.
"""

import numpy as np


def matmult(item, A, B, C, n, Al):
    n = int(n)
    j = item.get_global_id(0)
    il = item.get_local_id(0)
    nl = item.get_local_size(0)

    for i in range(n):
        for k in range(il, n, nl):
            Al[k] = A[i * n + k]
        item.barrier()

        acc = np.float32(0.0)
        for k in range(n):
            acc += Al[k] * B[k * n + j]
        C[i * n + j] = acc

        item.barrier()


def matmult_staged(item, A, B, C, n, Al, Bl):
    n = int(n)
    j = item.get_global_id(0)
    il = item.get_local_id(0)
    nl = item.get_local_size(0)
    j0 = j - il

    for idx in range(il, n * nl, nl):
        k, c = divmod(idx, nl)
        Bl[c * n + k] = B[k * n + j0 + c]
    item.barrier()

    for i in range(n):
        for k in range(il, n, nl):
            Al[k] = A[i * n + k]
        item.barrier()

        acc = np.float32(0.0)
        for k in range(n):
            acc += Al[k] * Bl[il * n + k]
        C[i * n + j] = acc

        item.barrier()


# Entry point name -> implementation
PYTHON_KERNELS = {
    "matmult": matmult,
    "matmult_staged": matmult_staged,
}
