"""
In-process simulated compute backend.

Executes the Python renditions of the kernels (matmul_kernels.tiled_matmul)
with OpenCL work-group semantics:

- every work group gets freshly allocated local arrays, never shared
- the workers of one group run as threads and meet at a threading.Barrier
- groups run one after another; kernels must not depend on their order

Dispatch runs eagerly at enqueue time on an in-order queue, so finish()
has nothing left to wait for. Event timestamps come from the host
monotonic clock around the dispatch.

Usage:
    backend = SimulatedBackend()
    device = backend.list_devices()[0]
    backend.open(device)
    ...
    backend.close()
"""

import inspect
import itertools
import logging
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Dict, List, Optional, Sequence

import numpy as np

from compute_backend import (
    BufferAccess,
    ComputeBackend,
    DeviceInfo,
    LocalMemory,
    TimingSample,
)
from matmul_errors import (
    BuildFailure,
    DispatchFailure,
    ResourceAcquisitionFailure,
)
from matmul_kernels.tiled_matmul import PYTHON_KERNELS

logger = logging.getLogger(__name__)

# Status codes reported on failure (same numbering as cl.h)
SIM_OUT_OF_RESOURCES = -5
SIM_BUILD_PROGRAM_FAILURE = -11
SIM_INVALID_VALUE = -30
SIM_INVALID_DEVICE = -33
SIM_INVALID_CONTEXT = -34
SIM_INVALID_MEM_OBJECT = -38
SIM_INVALID_KERNEL_NAME = -46
SIM_INVALID_ARG_INDEX = -49
SIM_INVALID_ARG_VALUE = -50
SIM_INVALID_KERNEL_ARGS = -52
SIM_INVALID_WORK_GROUP_SIZE = -54

_ENTRY_POINT_RE = re.compile(r"__kernel\s+void\s+(\w+)\s*\(")

DEFAULT_DEVICES = (
    DeviceInfo(
        name="Simulated GPU",
        vendor="Simulated",
        platform="Simulated Platform",
        device_class="gpu",
        max_compute_units=8,
        max_work_group_size=64,
        local_mem_size=48 * 1024,
    ),
)

# (group_id, barrier_index, local_arrays) -> None, run once per completed barrier
BarrierHook = Callable[[int, int, Sequence[np.ndarray]], None]


class WorkItem:
    """Per-worker view of the launch, passed as the kernel's first argument."""

    def __init__(self, global_id: int, local_id: int, local_size: int,
                 group_id: int, barrier: threading.Barrier):
        self._global_id = global_id
        self._local_id = local_id
        self._local_size = local_size
        self._group_id = group_id
        self._barrier = barrier

    def get_global_id(self, dim: int = 0) -> int:
        return self._global_id if dim == 0 else 0

    def get_local_id(self, dim: int = 0) -> int:
        return self._local_id if dim == 0 else 0

    def get_local_size(self, dim: int = 0) -> int:
        return self._local_size if dim == 0 else 1

    def get_group_id(self, dim: int = 0) -> int:
        return self._group_id if dim == 0 else 0

    def barrier(self) -> None:
        """Block until every worker of this group has reached the barrier."""
        self._barrier.wait()


class _SimBuffer:
    def __init__(self, buffer_id: int, nbytes: int, access: BufferAccess):
        self.buffer_id = buffer_id
        self.access = access
        self.array = np.zeros(nbytes // 4, dtype=np.float32)

    @property
    def nbytes(self) -> int:
        return self.array.nbytes


class _SimKernel:
    def __init__(self, entry_point: str, func: Callable):
        self.entry_point = entry_point
        self.func = func
        # Parameters after the work item
        self.num_args = len(inspect.signature(func).parameters) - 1
        self.args: Dict[int, Any] = {}


class _SimEvent:
    def __init__(self, start_ns: int, end_ns: int):
        self.start_ns = start_ns
        self.end_ns = end_ns


class SimulatedBackend(ComputeBackend):
    """Simulated accelerator backed by numpy arrays and host threads."""

    name = "simulated"

    def __init__(
        self,
        devices: Optional[Sequence[DeviceInfo]] = None,
        barrier_hook: Optional[BarrierHook] = None,
        barrier_timeout: Optional[float] = 60.0,
        kernels: Optional[Dict[str, Callable]] = None,
    ):
        """
        Args:
            devices: Devices to enumerate; defaults to one simulated GPU
            barrier_hook: Called by the last worker to arrive at each barrier,
                          before any worker is released. Sees the group's local
                          arrays exactly as they are at that synchronization point.
            barrier_timeout: Seconds a worker may wait at a barrier before the
                             dispatch fails (guards against divergent barriers)
            kernels: Entry point -> Python implementation; defaults to
                     matmul_kernels.tiled_matmul.PYTHON_KERNELS
        """
        self._devices = list(DEFAULT_DEVICES if devices is None else devices)
        self._barrier_hook = barrier_hook
        self._barrier_timeout = barrier_timeout
        self._kernels = dict(PYTHON_KERNELS if kernels is None else kernels)
        self._device: Optional[DeviceInfo] = None
        self._buffer_ids = itertools.count()
        self._live_buffers: Dict[int, _SimBuffer] = {}

    # ------------------------------------------------------------------
    # Device and queue
    # ------------------------------------------------------------------

    def list_devices(self) -> List[DeviceInfo]:
        return list(self._devices)

    def open(self, device: DeviceInfo) -> None:
        if device not in self._devices:
            raise ResourceAcquisitionFailure(
                "Create context", f"unknown device '{device.name}'", SIM_INVALID_DEVICE
            )
        self._device = device
        logger.debug(f"[Device] Opened simulated device '{device.name}'")

    def close(self) -> None:
        if self._live_buffers:
            logger.warning(f"[Device] Closing with {len(self._live_buffers)} unreleased buffer(s)")
        self._device = None

    def _require_open(self, stage: str, error_cls=ResourceAcquisitionFailure) -> DeviceInfo:
        if self._device is None:
            raise error_cls(stage, "no device open", SIM_INVALID_CONTEXT)
        return self._device

    @property
    def live_buffer_count(self) -> int:
        return len(self._live_buffers)

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    def create_buffer(self, nbytes: int, access: BufferAccess) -> _SimBuffer:
        self._require_open("Create buffer")
        if nbytes <= 0 or nbytes % 4 != 0:
            raise ResourceAcquisitionFailure(
                "Create buffer", f"invalid size {nbytes}", SIM_INVALID_VALUE
            )
        buffer = _SimBuffer(next(self._buffer_ids), nbytes, BufferAccess(access))
        self._live_buffers[buffer.buffer_id] = buffer
        return buffer

    def release_buffer(self, buffer: _SimBuffer) -> None:
        if self._live_buffers.pop(buffer.buffer_id, None) is None:
            raise ResourceAcquisitionFailure(
                "Release buffer", f"buffer {buffer.buffer_id} is not live", SIM_INVALID_MEM_OBJECT
            )

    def _check_transfer(self, stage: str, buffer: _SimBuffer, host: np.ndarray) -> None:
        self._require_open(stage, DispatchFailure)
        if buffer.buffer_id not in self._live_buffers:
            raise DispatchFailure(stage, "buffer is not live", SIM_INVALID_MEM_OBJECT)
        if host.nbytes != buffer.nbytes:
            raise DispatchFailure(
                stage, f"host array is {host.nbytes} bytes, buffer is {buffer.nbytes}",
                SIM_INVALID_VALUE,
            )

    def write_buffer(self, buffer: _SimBuffer, host: np.ndarray) -> None:
        self._check_transfer("Write buffer", buffer, host)
        buffer.array[:] = host.reshape(-1)

    def read_buffer(self, buffer: _SimBuffer, host: np.ndarray) -> None:
        self._check_transfer("Read buffer", buffer, host)
        host.reshape(-1)[:] = buffer.array

    # ------------------------------------------------------------------
    # Kernels
    # ------------------------------------------------------------------

    def build_kernel(self, source: str, entry_point: str) -> _SimKernel:
        self._require_open("Create program")
        declared = _ENTRY_POINT_RE.findall(source)
        if entry_point not in declared:
            raise ResourceAcquisitionFailure(
                "Create kernel", f"'{entry_point}' not declared in program source",
                SIM_INVALID_KERNEL_NAME,
            )
        func = self._kernels.get(entry_point)
        if func is None:
            raise BuildFailure(
                "Build program", f"no simulated implementation of '{entry_point}'",
                SIM_BUILD_PROGRAM_FAILURE,
                build_log=f"error: kernel '{entry_point}' is not available on this device",
            )
        return _SimKernel(entry_point, func)

    def release_kernel(self, kernel: _SimKernel) -> None:
        kernel.args.clear()

    def set_kernel_arg(self, kernel: _SimKernel, index: int, value: Any) -> None:
        if not 0 <= index < kernel.num_args:
            raise DispatchFailure(
                "Set kernel arg", f"index {index} out of range for '{kernel.entry_point}'",
                SIM_INVALID_ARG_INDEX,
            )
        if isinstance(value, _SimBuffer):
            if value.buffer_id not in self._live_buffers:
                raise DispatchFailure("Set kernel arg", "buffer is not live", SIM_INVALID_MEM_OBJECT)
        elif isinstance(value, LocalMemory):
            if value.nbytes <= 0 or value.nbytes % 4 != 0:
                raise DispatchFailure(
                    "Set kernel arg", f"invalid local size {value.nbytes}", SIM_INVALID_ARG_VALUE
                )
        elif not isinstance(value, (int, np.integer)):
            raise DispatchFailure(
                "Set kernel arg", f"unsupported value type {type(value).__name__}",
                SIM_INVALID_ARG_VALUE,
            )
        kernel.args[index] = value

    def enqueue_kernel(self, kernel: _SimKernel, global_size: int, local_size: int) -> _SimEvent:
        device = self._require_open("Enqueue kernel", DispatchFailure)

        missing = [i for i in range(kernel.num_args) if i not in kernel.args]
        if missing:
            raise DispatchFailure(
                "Enqueue kernel", f"arguments {missing} not set", SIM_INVALID_KERNEL_ARGS
            )
        if local_size < 1 or global_size % local_size != 0 \
                or local_size > device.max_work_group_size:
            raise DispatchFailure(
                "Enqueue kernel",
                f"local size {local_size} invalid for global size {global_size}",
                SIM_INVALID_WORK_GROUP_SIZE,
            )
        args = [kernel.args[i] for i in range(kernel.num_args)]
        local_bytes = sum(a.nbytes for a in args if isinstance(a, LocalMemory))
        if local_bytes > device.local_mem_size:
            raise DispatchFailure(
                "Enqueue kernel",
                f"{local_bytes} bytes of local memory requested, device has {device.local_mem_size}",
                SIM_OUT_OF_RESOURCES,
            )

        logger.debug(
            f"[Launch] {kernel.entry_point}: global={global_size} local={local_size} "
            f"groups={global_size // local_size}"
        )
        start_ns = time.perf_counter_ns()
        for group_id in range(global_size // local_size):
            self._run_group(kernel, args, group_id, local_size)
        end_ns = time.perf_counter_ns()
        return _SimEvent(start_ns, end_ns)

    def _run_group(self, kernel: _SimKernel, args: List[Any], group_id: int, local_size: int) -> None:
        local_arrays = []
        resolved = []
        for arg in args:
            if isinstance(arg, _SimBuffer):
                resolved.append(arg.array)
            elif isinstance(arg, LocalMemory):
                scratch = np.zeros(arg.nbytes // 4, dtype=np.float32)
                local_arrays.append(scratch)
                resolved.append(scratch)
            else:
                resolved.append(np.int32(arg))

        barrier_count = itertools.count()
        action = None
        if self._barrier_hook is not None:
            hook = self._barrier_hook

            def action():
                hook(group_id, next(barrier_count), local_arrays)

        barrier = threading.Barrier(local_size, action=action, timeout=self._barrier_timeout)

        def run(local_id: int) -> None:
            item = WorkItem(
                global_id=group_id * local_size + local_id,
                local_id=local_id,
                local_size=local_size,
                group_id=group_id,
                barrier=barrier,
            )
            try:
                kernel.func(item, *resolved)
            except BaseException:
                # Release peers blocked at the barrier
                barrier.abort()
                raise

        with ThreadPoolExecutor(max_workers=local_size, thread_name_prefix=f"group{group_id}") as pool:
            futures = [pool.submit(run, local_id) for local_id in range(local_size)]
            errors = [f.exception() for f in futures if f.exception() is not None]

        if errors:
            root = next(
                (e for e in errors if not isinstance(e, threading.BrokenBarrierError)),
                errors[0],
            )
            raise DispatchFailure(
                "Execute kernel", f"group {group_id}: {type(root).__name__}: {root}"
            ) from root

    # ------------------------------------------------------------------
    # Completion and profiling
    # ------------------------------------------------------------------

    def finish(self) -> None:
        self._require_open("Finish", DispatchFailure)

    def event_timing(self, event: _SimEvent) -> TimingSample:
        return TimingSample(event.start_ns, event.end_ns)

    def release_event(self, event: _SimEvent) -> None:
        pass
