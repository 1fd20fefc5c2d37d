"""
OpenCL compute backend.

Drives a real OpenCL device through the ctypes bindings in
opencl_bindings.py. Every cl* status is checked at the call site and
turned into the matching matmul_errors class with the raw cl_int code
attached.
"""

import ctypes
import logging
from ctypes import byref, sizeof
from typing import Any, List, Optional

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
    DeviceQueryFailure,
    DispatchFailure,
    ResourceAcquisitionFailure,
    RuntimeUnavailable,
)
from opencl_bindings import (
    CL_DEVICE_LOCAL_MEM_SIZE,
    CL_DEVICE_MAX_COMPUTE_UNITS,
    CL_DEVICE_MAX_WORK_GROUP_SIZE,
    CL_DEVICE_NAME,
    CL_DEVICE_NOT_FOUND,
    CL_DEVICE_TYPE,
    CL_DEVICE_TYPE_ACCELERATOR,
    CL_DEVICE_TYPE_ALL,
    CL_DEVICE_TYPE_CPU,
    CL_DEVICE_TYPE_GPU,
    CL_DEVICE_VENDOR,
    CL_PLATFORM_NAME,
    CL_PROFILING_COMMAND_END,
    CL_PROFILING_COMMAND_START,
    CL_PROGRAM_BUILD_LOG,
    CL_QUEUE_PROFILING_ENABLE,
    CL_SUCCESS,
    CL_TRUE,
    bind_opencl_library,
    cl_device_id,
    cl_event,
    cl_int,
    cl_mem,
    cl_platform_id,
    cl_uint,
    cl_ulong,
)

logger = logging.getLogger(__name__)


def _device_class(device_type: int) -> str:
    if device_type & CL_DEVICE_TYPE_GPU:
        return "gpu"
    if device_type & CL_DEVICE_TYPE_ACCELERATOR:
        return "accelerator"
    if device_type & CL_DEVICE_TYPE_CPU:
        return "cpu"
    return "other"


class _CLBuffer:
    def __init__(self, handle: int, nbytes: int):
        self.handle = handle
        self.nbytes = nbytes


class _CLKernel:
    def __init__(self, program: int, kernel: int, entry_point: str):
        self.program = program
        self.kernel = kernel
        self.entry_point = entry_point


class OpenCLBackend(ComputeBackend):
    """ComputeBackend over the OpenCL C API."""

    name = "opencl"

    def __init__(self, lib: Optional[Any] = None):
        """
        Args:
            lib: Loaded OpenCL library; defaults to bind_opencl_library().
                 Loading is deferred to first use.
        """
        self._lib = lib
        self._device: Optional[DeviceInfo] = None
        self._context = None
        self._queue = None

    @property
    def lib(self):
        if self._lib is None:
            try:
                self._lib = bind_opencl_library()
            except OSError as e:
                raise RuntimeUnavailable("Load OpenCL", str(e))
        return self._lib

    @staticmethod
    def _check(rc: int, error_cls, stage: str, message: str = "") -> None:
        if rc != CL_SUCCESS:
            raise error_cls(stage, message, rc)

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def _info_string(self, fn, handle, param: int, stage: str) -> str:
        size = ctypes.c_size_t()
        self._check(fn(handle, param, 0, None, byref(size)), DeviceQueryFailure, stage)
        buf = ctypes.create_string_buffer(max(size.value, 1))
        self._check(fn(handle, param, size.value, buf, None), DeviceQueryFailure, stage)
        return buf.value.decode("utf-8", errors="replace").strip()

    def _info_scalar(self, handle, param: int, ctype, stage: str) -> int:
        value = ctype()
        rc = self.lib.clGetDeviceInfo(handle, param, sizeof(value), byref(value), None)
        self._check(rc, DeviceQueryFailure, stage)
        return int(value.value)

    def list_devices(self) -> List[DeviceInfo]:
        lib = self.lib
        num_platforms = cl_uint()
        rc = lib.clGetPlatformIDs(0, None, byref(num_platforms))
        if rc != CL_SUCCESS or num_platforms.value == 0:
            raise RuntimeUnavailable("Get platforms", "no OpenCL platforms found",
                                     rc if rc != CL_SUCCESS else None)

        platforms = (cl_platform_id * num_platforms.value)()
        self._check(lib.clGetPlatformIDs(num_platforms.value, platforms, None),
                    RuntimeUnavailable, "Get platforms")

        devices = []
        for platform in platforms:
            platform_name = self._info_string(
                lib.clGetPlatformInfo, platform, CL_PLATFORM_NAME, "Get platform info"
            )
            num_devices = cl_uint()
            rc = lib.clGetDeviceIDs(platform, CL_DEVICE_TYPE_ALL, 0, None, byref(num_devices))
            if rc == CL_DEVICE_NOT_FOUND or (rc == CL_SUCCESS and num_devices.value == 0):
                logger.debug(f"[Device] Platform '{platform_name}' has no devices")
                continue
            self._check(rc, DeviceQueryFailure, "Get device IDs")

            ids = (cl_device_id * num_devices.value)()
            self._check(
                lib.clGetDeviceIDs(platform, CL_DEVICE_TYPE_ALL, num_devices.value, ids, None),
                DeviceQueryFailure, "Get device IDs",
            )
            for handle in ids:
                devices.append(DeviceInfo(
                    name=self._info_string(lib.clGetDeviceInfo, handle, CL_DEVICE_NAME, "Get device name"),
                    vendor=self._info_string(lib.clGetDeviceInfo, handle, CL_DEVICE_VENDOR, "Get device vendor"),
                    platform=platform_name,
                    device_class=_device_class(
                        self._info_scalar(handle, CL_DEVICE_TYPE, cl_ulong, "Get device type")
                    ),
                    max_compute_units=self._info_scalar(
                        handle, CL_DEVICE_MAX_COMPUTE_UNITS, cl_uint, "Get max compute units"
                    ),
                    max_work_group_size=self._info_scalar(
                        handle, CL_DEVICE_MAX_WORK_GROUP_SIZE, ctypes.c_size_t, "Get max work-group size"
                    ),
                    local_mem_size=self._info_scalar(
                        handle, CL_DEVICE_LOCAL_MEM_SIZE, cl_ulong, "Get local memory size"
                    ),
                    handle=handle,
                ))
        return devices

    # ------------------------------------------------------------------
    # Context and queue
    # ------------------------------------------------------------------

    def open(self, device: DeviceInfo) -> None:
        lib = self.lib
        device_id = cl_device_id(device.handle)
        err = cl_int()

        context = lib.clCreateContext(None, 1, byref(device_id), None, None, byref(err))
        if err.value != CL_SUCCESS or not context:
            raise ResourceAcquisitionFailure("Create context", code=err.value)

        queue = lib.clCreateCommandQueue(context, device_id, CL_QUEUE_PROFILING_ENABLE, byref(err))
        if err.value != CL_SUCCESS or not queue:
            lib.clReleaseContext(context)
            raise ResourceAcquisitionFailure("Create command queue", code=err.value)

        self._device = device
        self._context = context
        self._queue = queue
        logger.debug(f"[Device] Context and profiling queue created on '{device.name}'")

    def close(self) -> None:
        queue, context = self._queue, self._context
        self._queue = self._context = self._device = None
        if queue:
            self._check(self.lib.clReleaseCommandQueue(queue), ResourceAcquisitionFailure,
                        "Release command queue")
        if context:
            self._check(self.lib.clReleaseContext(context), ResourceAcquisitionFailure,
                        "Release context")

    # ------------------------------------------------------------------
    # Buffers
    # ------------------------------------------------------------------

    def create_buffer(self, nbytes: int, access: BufferAccess) -> _CLBuffer:
        err = cl_int()
        handle = self.lib.clCreateBuffer(self._context, int(access), nbytes, None, byref(err))
        if err.value != CL_SUCCESS or not handle:
            raise ResourceAcquisitionFailure("Create buffer", f"{nbytes} bytes", err.value)
        return _CLBuffer(handle, nbytes)

    def release_buffer(self, buffer: _CLBuffer) -> None:
        self._check(self.lib.clReleaseMemObject(buffer.handle), ResourceAcquisitionFailure,
                    "Release buffer")

    @staticmethod
    def _host_pointer(stage: str, buffer: _CLBuffer, host: np.ndarray) -> ctypes.c_void_p:
        if not host.flags.c_contiguous:
            raise DispatchFailure(stage, "host array is not contiguous")
        if host.nbytes != buffer.nbytes:
            raise DispatchFailure(stage, f"host array is {host.nbytes} bytes, buffer is {buffer.nbytes}")
        return host.ctypes.data_as(ctypes.c_void_p)

    def write_buffer(self, buffer: _CLBuffer, host: np.ndarray) -> None:
        ptr = self._host_pointer("Write buffer", buffer, host)
        rc = self.lib.clEnqueueWriteBuffer(
            self._queue, buffer.handle, CL_TRUE, 0, buffer.nbytes, ptr, 0, None, None
        )
        self._check(rc, DispatchFailure, "Write buffer")

    def read_buffer(self, buffer: _CLBuffer, host: np.ndarray) -> None:
        ptr = self._host_pointer("Read buffer", buffer, host)
        rc = self.lib.clEnqueueReadBuffer(
            self._queue, buffer.handle, CL_TRUE, 0, buffer.nbytes, ptr, 0, None, None
        )
        self._check(rc, DispatchFailure, "Read buffer")

    # ------------------------------------------------------------------
    # Program and kernel
    # ------------------------------------------------------------------

    def _build_log(self, program, device_id) -> str:
        size = ctypes.c_size_t()
        rc = self.lib.clGetProgramBuildInfo(program, device_id, CL_PROGRAM_BUILD_LOG, 0, None, byref(size))
        if rc != CL_SUCCESS or size.value == 0:
            return ""
        buf = ctypes.create_string_buffer(size.value)
        rc = self.lib.clGetProgramBuildInfo(program, device_id, CL_PROGRAM_BUILD_LOG, size.value, buf, None)
        if rc != CL_SUCCESS:
            return ""
        return buf.value.decode("utf-8", errors="replace")

    def build_kernel(self, source: str, entry_point: str) -> _CLKernel:
        lib = self.lib
        device_id = cl_device_id(self._device.handle if self._device else None)
        err = cl_int()

        encoded = source.encode("utf-8")
        strings = (ctypes.c_char_p * 1)(encoded)
        lengths = (ctypes.c_size_t * 1)(len(encoded))
        program = lib.clCreateProgramWithSource(self._context, 1, strings, lengths, byref(err))
        if err.value != CL_SUCCESS or not program:
            raise ResourceAcquisitionFailure("Create program", code=err.value)

        rc = lib.clBuildProgram(program, 1, byref(device_id), None, None, None)
        if rc != CL_SUCCESS:
            build_log = self._build_log(program, device_id)
            logger.error(f"[Build] Compilation failed:\n{build_log}")
            lib.clReleaseProgram(program)
            raise BuildFailure("Build program", code=rc, build_log=build_log)
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(f"[Build] Build log:\n{self._build_log(program, device_id)}")

        kernel = lib.clCreateKernel(program, entry_point.encode("utf-8"), byref(err))
        if err.value != CL_SUCCESS or not kernel:
            lib.clReleaseProgram(program)
            raise ResourceAcquisitionFailure("Create kernel", entry_point, err.value)
        return _CLKernel(program, kernel, entry_point)

    def release_kernel(self, kernel: _CLKernel) -> None:
        self._check(self.lib.clReleaseKernel(kernel.kernel), ResourceAcquisitionFailure, "Release kernel")
        self._check(self.lib.clReleaseProgram(kernel.program), ResourceAcquisitionFailure, "Release program")

    def set_kernel_arg(self, kernel: _CLKernel, index: int, value: Any) -> None:
        if isinstance(value, _CLBuffer):
            handle = cl_mem(value.handle)
            rc = self.lib.clSetKernelArg(kernel.kernel, index, sizeof(cl_mem), byref(handle))
        elif isinstance(value, LocalMemory):
            rc = self.lib.clSetKernelArg(kernel.kernel, index, value.nbytes, None)
        elif isinstance(value, (int, np.integer)):
            scalar = cl_int(int(value))
            rc = self.lib.clSetKernelArg(kernel.kernel, index, sizeof(cl_int), byref(scalar))
        else:
            raise DispatchFailure("Set kernel arg", f"unsupported value type {type(value).__name__}")
        self._check(rc, DispatchFailure, "Set kernel arg", f"index {index}")

    # ------------------------------------------------------------------
    # Dispatch and profiling
    # ------------------------------------------------------------------

    def enqueue_kernel(self, kernel: _CLKernel, global_size: int, local_size: int) -> cl_event:
        global_work = (ctypes.c_size_t * 1)(global_size)
        local_work = (ctypes.c_size_t * 1)(local_size)
        event = cl_event()
        rc = self.lib.clEnqueueNDRangeKernel(
            self._queue, kernel.kernel, 1, None, global_work, local_work, 0, None, byref(event)
        )
        self._check(rc, DispatchFailure, "Enqueue kernel")
        return event

    def finish(self) -> None:
        self._check(self.lib.clFinish(self._queue), DispatchFailure, "Finish")

    def event_timing(self, event: cl_event) -> TimingSample:
        start = cl_ulong()
        end = cl_ulong()
        self._check(
            self.lib.clGetEventProfilingInfo(event, CL_PROFILING_COMMAND_START, sizeof(start), byref(start), None),
            DeviceQueryFailure, "Get profiling start",
        )
        self._check(
            self.lib.clGetEventProfilingInfo(event, CL_PROFILING_COMMAND_END, sizeof(end), byref(end), None),
            DeviceQueryFailure, "Get profiling end",
        )
        return TimingSample(start.value, end.value)

    def release_event(self, event: cl_event) -> None:
        self._check(self.lib.clReleaseEvent(event), ResourceAcquisitionFailure, "Release event")
