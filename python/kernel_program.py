import logging
import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from compute_backend import ComputeBackend
from matmul_kernels.kernel_config import KERNELS, DEFAULT_VARIANT

logger = logging.getLogger(__name__)

_ENTRY_POINT_RE = re.compile(r"__kernel\s+void\s+(\w+)\s*\(")

FLOAT_BYTES = 4


class KernelProgram:
    """
    Kernel program asset for one matmul variant.

    Owns the program source text (read from the .cl file named in
    kernel_config.KERNELS), the entry point, and the local scratch layout.
    The same source is handed to every backend: the OpenCL backend compiles
    it, the simulated backend resolves the entry point to its Python
    rendition.

    Public entry points:
    - build(): compile on an open backend and return the kernel handle
    - local_buffer_bytes(): scratch sizes to bind after the fixed arguments
    """

    def __init__(self, variant: str = DEFAULT_VARIANT,
                 config: Optional[Dict[str, Dict[str, Any]]] = None):
        """
        Load the program source for a variant.

        Args:
            variant: Key into the kernel config ("row" or "row_col")
            config: Kernel config mapping; defaults to kernel_config.KERNELS

        Raises:
            ValueError: If the variant is unknown or its source lacks the entry point
            FileNotFoundError: If the source file is missing
        """
        config = KERNELS if config is None else config
        if variant not in config:
            raise ValueError(
                f"Unknown kernel variant: {variant}. Supported: {', '.join(config)}"
            )

        entry = config[variant]
        self.variant = variant
        self.source_path = Path(entry["source"])
        self.entry_point = entry["function_name"]
        self._local_buffers = entry["local_buffers"]

        if not self.source_path.is_file():
            raise FileNotFoundError(f"Kernel source not found: {self.source_path}")
        self.source = self.source_path.read_text()

        if self.entry_point not in self.entry_points():
            raise ValueError(
                f"Entry point '{self.entry_point}' not declared in {self.source_path}"
            )

    def entry_points(self) -> List[str]:
        """Names of every __kernel function declared in the source."""
        return _ENTRY_POINT_RE.findall(self.source)

    def local_buffer_bytes(self, n: int, group_size: int) -> List[int]:
        """Byte size of each __local argument, in binding order."""
        return [count * FLOAT_BYTES for count in self._local_buffers(n, group_size)]

    def local_mem_required(self, n: int, group_size: int) -> int:
        return sum(self.local_buffer_bytes(n, group_size))

    def build(self, backend: ComputeBackend) -> Any:
        """Compile for the device the backend has open.

        Raises:
            BuildFailure: If compilation fails
            ResourceAcquisitionFailure: If program/kernel objects cannot be created
        """
        logger.info(f"[Build] Compiling {self.source_path.name}:{self.entry_point} ({backend.name})")
        kernel = backend.build_kernel(self.source, self.entry_point)
        logger.info(f"[Build] Kernel '{self.entry_point}' ready")
        return kernel
