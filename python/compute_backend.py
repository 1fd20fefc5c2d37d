from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, List

import numpy as np


class BufferAccess(IntEnum):
    """Device buffer access flags (values match CL_MEM_* in cl.h)."""
    READ_WRITE = 1
    WRITE_ONLY = 2
    READ_ONLY = 4


# Device classes that count as accelerators for device selection
ACCELERATOR_CLASSES = ("gpu", "accelerator")


@dataclass(frozen=True)
class DeviceInfo:
    """What a backend reports about one enumerated device."""
    name: str
    vendor: str = ""
    platform: str = ""
    device_class: str = "gpu"
    max_compute_units: int = 1
    max_work_group_size: int = 1
    local_mem_size: int = 0
    handle: Any = field(default=None, compare=False, repr=False)

    @property
    def is_accelerator(self) -> bool:
        return self.device_class in ACCELERATOR_CLASSES


@dataclass(frozen=True)
class TimingSample:
    """Device clock (start, end) pair of one dispatch, in nanoseconds."""
    start_ns: int
    end_ns: int

    @property
    def elapsed_ms(self) -> float:
        return (self.end_ns - self.start_ns) / 1_000_000.0


@dataclass(frozen=True)
class LocalMemory:
    """Kernel argument requesting a group-local scratch buffer of nbytes."""
    nbytes: int


class ComputeBackend:
    """Base class for heterogeneous compute backends.

    A backend enumerates devices and, once open() has bound it to one of
    them, owns the context and the in-order profiling queue every other call
    goes through. Handles returned by create_buffer/build_kernel/enqueue_kernel
    are opaque to callers and must be handed back to the matching release
    call.

    Every method raises one of the matmul_errors classes on failure.

    Used by:
    - device_selector.select_device(): list_devices()
    - Orchestrator.multiply(): everything else
    """

    name = "abstract"

    def list_devices(self) -> List[DeviceInfo]:
        """Return every device of every platform, in enumeration order."""
        raise NotImplementedError

    def open(self, device: DeviceInfo) -> None:
        """Create the context and profiling-enabled command queue for device."""
        raise NotImplementedError

    def close(self) -> None:
        """Release the queue and context created by open()."""
        raise NotImplementedError

    def create_buffer(self, nbytes: int, access: BufferAccess) -> Any:
        raise NotImplementedError

    def release_buffer(self, buffer: Any) -> None:
        raise NotImplementedError

    def write_buffer(self, buffer: Any, host: np.ndarray) -> None:
        """Blocking host-to-device copy of the whole host array."""
        raise NotImplementedError

    def read_buffer(self, buffer: Any, host: np.ndarray) -> None:
        """Blocking device-to-host copy into the whole host array."""
        raise NotImplementedError

    def build_kernel(self, source: str, entry_point: str) -> Any:
        """Compile source for the open device and return the named kernel."""
        raise NotImplementedError

    def release_kernel(self, kernel: Any) -> None:
        raise NotImplementedError

    def set_kernel_arg(self, kernel: Any, index: int, value: Any) -> None:
        """Bind a device buffer, LocalMemory or numpy.int32 at position index."""
        raise NotImplementedError

    def enqueue_kernel(self, kernel: Any, global_size: int, local_size: int) -> Any:
        """Submit a 1-D dispatch and return its event."""
        raise NotImplementedError

    def finish(self) -> None:
        """Block until every queued command has completed."""
        raise NotImplementedError

    def event_timing(self, event: Any) -> TimingSample:
        raise NotImplementedError

    def release_event(self, event: Any) -> None:
        raise NotImplementedError
