"""
Error taxonomy for the tiled matmul host runtime.

Every failure of a backend call is raised immediately at the call site as
one of the classes below. Each carries the stage that failed and the
backend's numeric status code (None when the backend has no code to give).
The CLI maps each class to its own process exit code.
"""

from typing import Optional


class MatmulError(RuntimeError):
    """Base class for device/runtime failures."""

    exit_code = 1

    def __init__(self, stage: str, message: str = "", code: Optional[int] = None):
        self.stage = stage
        self.code = code
        detail = f"{stage} failed"
        if message:
            detail += f": {message}"
        if code is not None:
            detail += f" (error {code})"
        super().__init__(detail)


class RuntimeUnavailable(MatmulError):
    """No compute platform or no accelerator-class device could be enumerated."""

    exit_code = 2


class DeviceQueryFailure(MatmulError):
    """A device capability or profiling query failed."""

    exit_code = 3


class ResourceAcquisitionFailure(MatmulError):
    """Context, queue, buffer, program or kernel object creation failed."""

    exit_code = 4


class BuildFailure(MatmulError):
    """Kernel source failed to compile for the selected device."""

    exit_code = 5

    def __init__(self, stage: str, message: str = "", code: Optional[int] = None,
                 build_log: str = ""):
        super().__init__(stage, message, code)
        self.build_log = build_log


class DispatchFailure(MatmulError):
    """Argument binding, transfer, launch submission or completion wait failed."""

    exit_code = 6


# Exit code for bad flags or environment values (not a MatmulError).
CONFIG_ERROR_EXIT_CODE = 7
