"""

OpenCL ctypes Bindings

Provides the subset of the OpenCL 1.2 C API the tiled matmul host needs,
loaded from the system ICD loader (libOpenCL.so / OpenCL.dll / OpenCL
framework) via ctypes.

Usage:
    from opencl_bindings import bind_opencl_library

    lib = bind_opencl_library()           # or bind_opencl_library("/path/to/libOpenCL.so")
    num = ctypes.c_uint()
    rc = lib.clGetPlatformIDs(0, None, ctypes.byref(num))

Every cl* call returns (or reports through its errcode out-parameter) a
cl_int status; CL_SUCCESS is 0 and failures are negative. Translating those
codes into exceptions is the backend's job (opencl_backend.py).
"""


from ctypes import (
    CDLL,
    POINTER,
    c_char_p,
    c_int32,
    c_size_t,
    c_uint32,
    c_uint64,
    c_void_p,
)
from pathlib import Path
from typing import Optional, Union
import ctypes
import ctypes.util
import logging

import env_manager

logger = logging.getLogger(__name__)


# Module-level library reference
_lib = None


# ============================================================================
# Types and constants (must match CL/cl.h)
# ============================================================================
cl_int = c_int32
cl_uint = c_uint32
cl_ulong = c_uint64
cl_bool = c_uint32
cl_bitfield = c_uint64

# Opaque handles
cl_platform_id = c_void_p
cl_device_id = c_void_p
cl_context = c_void_p
cl_command_queue = c_void_p
cl_mem = c_void_p
cl_program = c_void_p
cl_kernel = c_void_p
cl_event = c_void_p

CL_SUCCESS = 0
CL_DEVICE_NOT_FOUND = -1
CL_OUT_OF_RESOURCES = -5
CL_OUT_OF_HOST_MEMORY = -6
CL_BUILD_PROGRAM_FAILURE = -11
CL_INVALID_VALUE = -30
CL_INVALID_KERNEL_NAME = -46
CL_INVALID_ARG_INDEX = -49
CL_INVALID_ARG_VALUE = -50
CL_INVALID_WORK_GROUP_SIZE = -54
CL_PLATFORM_NOT_FOUND_KHR = -1001

CL_TRUE = 1
CL_FALSE = 0

# cl_platform_info
CL_PLATFORM_NAME = 0x0902
CL_PLATFORM_VENDOR = 0x0903

# cl_device_type
CL_DEVICE_TYPE_CPU = 1 << 1
CL_DEVICE_TYPE_GPU = 1 << 2
CL_DEVICE_TYPE_ACCELERATOR = 1 << 3
CL_DEVICE_TYPE_ALL = 0xFFFFFFFF

# cl_device_info
CL_DEVICE_TYPE = 0x1000
CL_DEVICE_MAX_COMPUTE_UNITS = 0x1002
CL_DEVICE_MAX_WORK_GROUP_SIZE = 0x1004
CL_DEVICE_LOCAL_MEM_SIZE = 0x1023
CL_DEVICE_NAME = 0x102B
CL_DEVICE_VENDOR = 0x102C

# cl_command_queue_properties
CL_QUEUE_PROFILING_ENABLE = 1 << 1

# cl_mem_flags
CL_MEM_READ_WRITE = 1 << 0
CL_MEM_WRITE_ONLY = 1 << 1
CL_MEM_READ_ONLY = 1 << 2

# cl_program_build_info
CL_PROGRAM_BUILD_LOG = 0x1183

# cl_profiling_info
CL_PROFILING_COMMAND_START = 0x1282
CL_PROFILING_COMMAND_END = 0x1283


# ============================================================================
# OpenCL Library Loader
# ============================================================================

class OpenCLLibraryLoader:
    """Loads the OpenCL ICD loader and declares the cl* signatures we call."""


    def __init__(self, lib_path: Union[str, Path]):
        """

        Load the OpenCL library.

        Args:
            lib_path: Path or soname of the OpenCL library

        Raises:
            OSError: If library cannot be loaded
        """

        self.lib_path = str(lib_path)
        self.lib = CDLL(self.lib_path)
        self._setup_functions()

    def _setup_functions(self):
        """Set up ctypes function signatures."""

        lib = self.lib

        # Platform / device enumeration
        lib.clGetPlatformIDs.argtypes = [cl_uint, POINTER(cl_platform_id), POINTER(cl_uint)]
        lib.clGetPlatformIDs.restype = cl_int

        lib.clGetPlatformInfo.argtypes = [
            cl_platform_id,     # platform
            cl_uint,            # param_name
            c_size_t,           # param_value_size
            c_void_p,           # param_value
            POINTER(c_size_t),  # param_value_size_ret
        ]
        lib.clGetPlatformInfo.restype = cl_int

        lib.clGetDeviceIDs.argtypes = [
            cl_platform_id,         # platform
            cl_bitfield,            # device_type
            cl_uint,                # num_entries
            POINTER(cl_device_id),  # devices
            POINTER(cl_uint),       # num_devices
        ]
        lib.clGetDeviceIDs.restype = cl_int

        lib.clGetDeviceInfo.argtypes = [cl_device_id, cl_uint, c_size_t, c_void_p, POINTER(c_size_t)]
        lib.clGetDeviceInfo.restype = cl_int

        # Context and queue
        lib.clCreateContext.argtypes = [
            c_void_p,               # properties
            cl_uint,                # num_devices
            POINTER(cl_device_id),  # devices
            c_void_p,               # pfn_notify
            c_void_p,               # user_data
            POINTER(cl_int),        # errcode_ret
        ]
        lib.clCreateContext.restype = cl_context

        lib.clCreateCommandQueue.argtypes = [cl_context, cl_device_id, cl_bitfield, POINTER(cl_int)]
        lib.clCreateCommandQueue.restype = cl_command_queue

        # Buffers and transfers
        lib.clCreateBuffer.argtypes = [cl_context, cl_bitfield, c_size_t, c_void_p, POINTER(cl_int)]
        lib.clCreateBuffer.restype = cl_mem

        for name in ("clEnqueueWriteBuffer", "clEnqueueReadBuffer"):
            fn = getattr(lib, name)
            fn.argtypes = [
                cl_command_queue,   # queue
                cl_mem,             # buffer
                cl_bool,            # blocking
                c_size_t,           # offset
                c_size_t,           # size
                c_void_p,           # host ptr
                cl_uint,            # num_events_in_wait_list
                POINTER(cl_event),  # event_wait_list
                POINTER(cl_event),  # event
            ]
            fn.restype = cl_int

        # Program and kernel
        lib.clCreateProgramWithSource.argtypes = [
            cl_context, cl_uint, POINTER(c_char_p), POINTER(c_size_t), POINTER(cl_int)
        ]
        lib.clCreateProgramWithSource.restype = cl_program

        lib.clBuildProgram.argtypes = [
            cl_program, cl_uint, POINTER(cl_device_id), c_char_p, c_void_p, c_void_p
        ]
        lib.clBuildProgram.restype = cl_int

        lib.clGetProgramBuildInfo.argtypes = [
            cl_program, cl_device_id, cl_uint, c_size_t, c_void_p, POINTER(c_size_t)
        ]
        lib.clGetProgramBuildInfo.restype = cl_int

        lib.clCreateKernel.argtypes = [cl_program, c_char_p, POINTER(cl_int)]
        lib.clCreateKernel.restype = cl_kernel

        lib.clSetKernelArg.argtypes = [cl_kernel, cl_uint, c_size_t, c_void_p]
        lib.clSetKernelArg.restype = cl_int

        # Dispatch, completion, profiling
        lib.clEnqueueNDRangeKernel.argtypes = [
            cl_command_queue,   # queue
            cl_kernel,          # kernel
            cl_uint,            # work_dim
            POINTER(c_size_t),  # global_work_offset
            POINTER(c_size_t),  # global_work_size
            POINTER(c_size_t),  # local_work_size
            cl_uint,            # num_events_in_wait_list
            POINTER(cl_event),  # event_wait_list
            POINTER(cl_event),  # event
        ]
        lib.clEnqueueNDRangeKernel.restype = cl_int

        lib.clFinish.argtypes = [cl_command_queue]
        lib.clFinish.restype = cl_int

        lib.clGetEventProfilingInfo.argtypes = [cl_event, cl_uint, c_size_t, c_void_p, POINTER(c_size_t)]
        lib.clGetEventProfilingInfo.restype = cl_int

        # Releases
        for name, handle_type in (
            ("clReleaseMemObject", cl_mem),
            ("clReleaseKernel", cl_kernel),
            ("clReleaseProgram", cl_program),
            ("clReleaseCommandQueue", cl_command_queue),
            ("clReleaseContext", cl_context),
            ("clReleaseEvent", cl_event),
        ):
            fn = getattr(lib, name)
            fn.argtypes = [handle_type]
            fn.restype = cl_int


# ============================================================================
# Public API
# ============================================================================

def find_opencl_library() -> Optional[str]:
    """Return the OpenCL library to load: MATMUL_OPENCL_LIBRARY, else the system one."""
    explicit = env_manager.get("MATMUL_OPENCL_LIBRARY")
    if explicit:
        return explicit
    return ctypes.util.find_library("OpenCL")


def bind_opencl_library(lib_path: Optional[Union[str, Path]] = None) -> CDLL:
    """

    Load the OpenCL library (once) and return it with signatures declared.

    Args:
        lib_path: Explicit library path; defaults to find_opencl_library()

    Returns:
        The loaded ctypes library

    Raises:
        OSError: If no OpenCL library can be found or loaded
    """

    global _lib
    if _lib is not None and lib_path is None:
        return _lib

    lib_path = lib_path or find_opencl_library()
    if not lib_path:
        raise OSError(
            "OpenCL library not found. Install an OpenCL ICD loader or set MATMUL_OPENCL_LIBRARY."
        )

    loader = OpenCLLibraryLoader(lib_path)
    logger.debug(f"Loaded OpenCL library: {loader.lib_path}")
    _lib = loader.lib
    return _lib
