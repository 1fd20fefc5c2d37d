import logging
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from compute_backend import BufferAccess, ComputeBackend, DeviceInfo, LocalMemory, TimingSample
from device_selector import DEFAULT_PREFERRED_VENDORS, select_device
from kernel_program import KernelProgram
from matmul_errors import ResourceAcquisitionFailure
from matrix_store import MatrixStore
from work_divisor import LaunchGeometry, launch_geometry

logger = logging.getLogger(__name__)

# Variants tried by "auto", most local memory first
AUTO_VARIANTS = ("row_col", "row")


@dataclass
class MultiplyResult:
    c: MatrixStore
    timing: TimingSample
    geometry: LaunchGeometry
    device: DeviceInfo
    variant: str


class Orchestrator:
    """
    Host side of one device multiplication.

    Selects the device, derives the launch geometry, builds the kernel,
    moves A and B to the device, dispatches, waits, and reads C back.
    Each call is single-shot: every device object it acquires is released
    before it returns, on success and on any failure.

    Public entry points:
    - multiply(): C = A * B on the selected device, with dispatch timing
    - plan(): device, geometry and kernel program a multiply would use
    """

    def __init__(
        self,
        backend: ComputeBackend,
        preferred_vendors: Sequence[str] = DEFAULT_PREFERRED_VENDORS,
        variant: str = "auto",
    ):
        """
        Args:
            backend: Compute backend to drive
            preferred_vendors: Ordered vendor preference for device selection
            variant: "row", "row_col" or "auto" (row_col when its scratch fits)
        """
        self.backend = backend
        self.preferred_vendors = tuple(preferred_vendors)
        self.variant = variant

    def _choose_program(self, device: DeviceInfo, n: int, group_size: int) -> KernelProgram:
        limit = device.local_mem_size
        candidates = AUTO_VARIANTS if self.variant == "auto" else (self.variant,)

        for variant in candidates:
            program = KernelProgram(variant)
            required = program.local_mem_required(n, group_size)
            if limit <= 0 or required <= limit:
                return program
            logger.info(
                f"[Plan] Variant '{variant}' needs {required} bytes of local memory, "
                f"device has {limit}"
            )

        raise ResourceAcquisitionFailure(
            "Plan local memory",
            f"no kernel variant of {', '.join(candidates)} fits {limit} bytes of local memory "
            f"for n={n}, group size {group_size}",
        )

    def plan(self, n: int):
        """Return (device, geometry, program) for an n x n multiply."""
        device = select_device(self.backend.list_devices(), self.preferred_vendors)
        geometry = launch_geometry(n, device.max_compute_units, device.max_work_group_size)
        program = self._choose_program(device, n, geometry.group_size)
        logger.info(
            f"[Plan] n={n} global={geometry.global_size} local={geometry.group_size} "
            f"variant={program.variant}"
        )
        return device, geometry, program

    def multiply(self, a: MatrixStore, b: MatrixStore) -> MultiplyResult:
        """
        Compute C = A * B on the device.

        Args:
            a: Left operand, n x n
            b: Right operand, n x n

        Returns:
            MultiplyResult with C, the dispatch TimingSample, geometry, device and variant

        Raises:
            ValueError: If A and B are not the same size
            MatmulError: Any subclass, from the failing device stage
        """
        if a.n != b.n:
            raise ValueError(f"Dimension mismatch: A is {a.n}x{a.n}, B is {b.n}x{b.n}")
        n = a.n
        device, geometry, program = self.plan(n)
        backend = self.backend
        c = MatrixStore.zeros(n)

        with ExitStack() as stack:
            backend.open(device)
            stack.callback(backend.close)

            kernel = program.build(backend)
            stack.callback(backend.release_kernel, kernel)

            a_buf = backend.create_buffer(a.nbytes, BufferAccess.READ_ONLY)
            stack.callback(backend.release_buffer, a_buf)
            b_buf = backend.create_buffer(b.nbytes, BufferAccess.READ_ONLY)
            stack.callback(backend.release_buffer, b_buf)
            c_buf = backend.create_buffer(c.nbytes, BufferAccess.READ_WRITE)
            stack.callback(backend.release_buffer, c_buf)

            backend.write_buffer(a_buf, a.data)
            backend.write_buffer(b_buf, b.data)

            args = [a_buf, b_buf, c_buf, np.int32(n)]
            args += [LocalMemory(nbytes) for nbytes in program.local_buffer_bytes(n, geometry.group_size)]
            for index, value in enumerate(args):
                backend.set_kernel_arg(kernel, index, value)

            logger.info(f"[Launch] Dispatching '{program.entry_point}'")
            event = backend.enqueue_kernel(kernel, geometry.global_size, geometry.group_size)
            stack.callback(backend.release_event, event)
            backend.finish()

            backend.read_buffer(c_buf, c.data)
            timing = backend.event_timing(event)

        logger.info(f"[Launch] Kernel time {timing.elapsed_ms:.3f} ms")
        return MultiplyResult(c=c, timing=timing, geometry=geometry, device=device,
                              variant=program.variant)
