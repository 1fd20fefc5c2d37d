"""Tests for Orchestrator.multiply on the simulated backend."""

import sys
from collections import Counter
from pathlib import Path

import numpy as np
import pytest

PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT / "python"))

from compute_backend import BufferAccess, DeviceInfo
from matmul_errors import (
    BuildFailure,
    DeviceQueryFailure,
    DispatchFailure,
    ResourceAcquisitionFailure,
    RuntimeUnavailable,
)
from matrix_store import MatrixStore
from orchestrator import Orchestrator
from serial_reference import serial_multiply
from simulated_backend import SimulatedBackend
from validator import compare, compare_exact


def make_device(cu=4, max_wg=64, local_mem=64 * 1024, name="Sim GPU", platform="Sim"):
    return DeviceInfo(name=name, vendor="Sim", platform=platform, device_class="gpu",
                      max_compute_units=cu, max_work_group_size=max_wg, local_mem_size=local_mem)


class RecordingBackend(SimulatedBackend):
    """Simulated backend that counts acquire/release pairs and can fail a chosen call."""

    FAILURES = {
        "open": lambda: ResourceAcquisitionFailure("Create context", code=-6),
        "build_kernel": lambda: BuildFailure("Build program", code=-11, build_log="error"),
        "create_buffer": lambda: ResourceAcquisitionFailure("Create buffer", code=-4),
        "write_buffer": lambda: DispatchFailure("Write buffer", code=-5),
        "set_kernel_arg": lambda: DispatchFailure("Set kernel arg", code=-50),
        "enqueue_kernel": lambda: DispatchFailure("Enqueue kernel", code=-54),
        "finish": lambda: DispatchFailure("Finish", code=-36),
        "read_buffer": lambda: DispatchFailure("Read buffer", code=-5),
        "event_timing": lambda: DeviceQueryFailure("Get profiling start", code=-7),
    }

    def __init__(self, fail_at=None, **kwargs):
        super().__init__(**kwargs)
        self.fail_at = fail_at
        self.calls = Counter()
        self.acquired = Counter()
        self.released = Counter()

    def _call(self, name):
        self.calls[name] += 1
        if self.fail_at == (name, self.calls[name]):
            raise self.FAILURES[name]()

    def open(self, device):
        self._call("open")
        super().open(device)
        self.acquired["context"] += 1

    def close(self):
        self.released["context"] += 1
        super().close()

    def build_kernel(self, source, entry_point):
        self._call("build_kernel")
        kernel = super().build_kernel(source, entry_point)
        self.acquired["kernel"] += 1
        return kernel

    def release_kernel(self, kernel):
        self.released["kernel"] += 1
        super().release_kernel(kernel)

    def create_buffer(self, nbytes, access):
        self._call("create_buffer")
        buffer = super().create_buffer(nbytes, access)
        self.acquired["buffer"] += 1
        self.acquired[BufferAccess(access).name] += 1
        return buffer

    def release_buffer(self, buffer):
        self.released["buffer"] += 1
        self.released[buffer.access.name] += 1
        super().release_buffer(buffer)

    def write_buffer(self, buffer, host):
        self._call("write_buffer")
        super().write_buffer(buffer, host)

    def read_buffer(self, buffer, host):
        self._call("read_buffer")
        super().read_buffer(buffer, host)

    def set_kernel_arg(self, kernel, index, value):
        self._call("set_kernel_arg")
        super().set_kernel_arg(kernel, index, value)

    def enqueue_kernel(self, kernel, global_size, local_size):
        self._call("enqueue_kernel")
        event = super().enqueue_kernel(kernel, global_size, local_size)
        self.acquired["event"] += 1
        return event

    def release_event(self, event):
        self.released["event"] += 1
        super().release_event(event)

    def finish(self):
        self._call("finish")
        super().finish()

    def event_timing(self, event):
        self._call("event_timing")
        return super().event_timing(event)


def multiply(a, b, device=None, variant="auto", backend_cls=SimulatedBackend, **kwargs):
    device = device or make_device()
    backend = backend_cls(devices=[device], **kwargs)
    return Orchestrator(backend, variant=variant).multiply(a, b), backend


class TestScenarios:
    def test_single_element(self):
        """N=1: [[3]] * [[4]] = [[12]] on device and serially."""
        a = MatrixStore.from_rows([[3]])
        b = MatrixStore.from_rows([[4]])
        result, _ = multiply(a, b)
        serial = serial_multiply(a, b)
        assert result.c.view().tolist() == [[12.0]]
        assert serial.view().tolist() == [[12.0]]
        assert compare(result.c, serial, 1)
        assert result.geometry.group_size == 1

    @pytest.mark.parametrize("variant", ["row", "row_col"])
    def test_identity_times_b_is_b(self, variant):
        """N=4: I * B reproduces B exactly."""
        b = MatrixStore.from_rows([[1, 2, 3, 4], [5, 6, 7, 8], [9, 1, 2, 3], [4, 5, 6, 7]])
        result, _ = multiply(MatrixStore.identity(4), b, variant=variant)
        assert compare_exact(result.c, b, 4)
        assert result.variant == variant

    def test_prime_size_serializes_groups(self):
        """N=5 on an 8 compute unit device: group size 1, product still correct."""
        a = MatrixStore.random(5, seed=40)
        b = MatrixStore.random(5, seed=41)
        result, _ = multiply(a, b, device=make_device(cu=8))
        assert result.geometry.group_size == 1
        assert result.geometry.num_groups == 5
        assert compare_exact(result.c, serial_multiply(a, b), 5)

    def test_group_size_from_compute_units(self):
        """N=6 on a 4 compute unit device launches groups of gcd(6, 4) = 2."""
        a = MatrixStore.random(6, seed=1)
        result, _ = multiply(a, a, device=make_device(cu=4))
        assert result.geometry.group_size == 2
        assert result.geometry.global_size == 6


class TestCorrectness:
    @pytest.mark.parametrize("n,cu", [(2, 2), (6, 3), (8, 8), (12, 4), (9, 6)])
    @pytest.mark.parametrize("variant", ["row", "row_col"])
    def test_random_float_matches_serial_within_tolerance(self, n, cu, variant):
        rng = np.random.default_rng(n * 100 + cu)
        a = MatrixStore(n, rng.standard_normal(n * n))
        b = MatrixStore(n, rng.standard_normal(n * n))
        result, _ = multiply(a, b, device=make_device(cu=cu), variant=variant)
        assert compare(result.c, serial_multiply(a, b), n)

    def test_inputs_are_not_modified(self):
        a = MatrixStore.random(4, seed=7)
        b = MatrixStore.random(4, seed=8)
        a_before, b_before = a.copy(), b.copy()
        multiply(a, b)
        assert compare_exact(a, a_before) and compare_exact(b, b_before)

    def test_timing_covers_dispatch(self):
        a = MatrixStore.random(4, seed=9)
        result, _ = multiply(a, a)
        assert result.timing.end_ns >= result.timing.start_ns

    def test_dimension_mismatch(self):
        with pytest.raises(ValueError, match="Dimension mismatch"):
            multiply(MatrixStore.zeros(2), MatrixStore.zeros(3))


class TestVariantSelection:
    def test_auto_prefers_row_col_when_it_fits(self):
        a = MatrixStore.random(4, seed=3)
        result, _ = multiply(a, a, device=make_device(cu=2))
        assert result.variant == "row_col"

    def test_auto_falls_back_to_row(self):
        """n=4, g=2: row_col needs 4*4*(1+2)=48 bytes, row needs 16."""
        a = MatrixStore.random(4, seed=3)
        result, _ = multiply(a, a, device=make_device(cu=2, local_mem=47))
        assert result.variant == "row"
        assert compare_exact(result.c, serial_multiply(a, a))

    def test_explicit_variant_that_does_not_fit(self):
        a = MatrixStore.random(4, seed=3)
        with pytest.raises(ResourceAcquisitionFailure, match="local memory"):
            multiply(a, a, device=make_device(cu=2, local_mem=47), variant="row_col")

    def test_nothing_fits(self):
        a = MatrixStore.random(4, seed=3)
        with pytest.raises(ResourceAcquisitionFailure) as exc_info:
            multiply(a, a, device=make_device(cu=2, local_mem=8))
        assert exc_info.value.exit_code == 4


class TestDeviceSelection:
    def test_no_accelerator_aborts(self):
        cpu = DeviceInfo(name="CPU", device_class="cpu", max_compute_units=4,
                         max_work_group_size=64, local_mem_size=32 * 1024)
        with pytest.raises(RuntimeUnavailable):
            Orchestrator(SimulatedBackend(devices=[cpu])).multiply(MatrixStore.zeros(2), MatrixStore.zeros(2))

    def test_preferred_vendor_is_used(self):
        devices = [make_device(name="Other GPU", platform="Other"),
                   make_device(cu=2, name="Preferred GPU", platform="Acme")]
        orchestrator = Orchestrator(SimulatedBackend(devices=devices), preferred_vendors=["Acme"])
        result = orchestrator.multiply(MatrixStore.identity(2), MatrixStore.identity(2))
        assert result.device.name == "Preferred GPU"


class TestResourceSymmetry:
    """Every acquired device object is released exactly once, on every path."""

    def test_success_path(self):
        a = MatrixStore.random(4, seed=5)
        _, backend = multiply(a, a, backend_cls=RecordingBackend)
        assert backend.acquired == backend.released
        assert backend.acquired["buffer"] == 3
        assert backend.acquired["READ_ONLY"] == 2
        assert backend.acquired["READ_WRITE"] == 1
        assert backend.live_buffer_count == 0

    @pytest.mark.parametrize("fail_at,error", [
        (("open", 1), ResourceAcquisitionFailure),
        (("build_kernel", 1), BuildFailure),
        (("create_buffer", 1), ResourceAcquisitionFailure),
        (("create_buffer", 2), ResourceAcquisitionFailure),
        (("create_buffer", 3), ResourceAcquisitionFailure),
        (("write_buffer", 2), DispatchFailure),
        (("set_kernel_arg", 4), DispatchFailure),
        (("enqueue_kernel", 1), DispatchFailure),
        (("finish", 1), DispatchFailure),
        (("read_buffer", 1), DispatchFailure),
        (("event_timing", 1), DeviceQueryFailure),
    ])
    def test_failure_paths(self, fail_at, error):
        a = MatrixStore.random(4, seed=5)
        backend = RecordingBackend(fail_at=fail_at, devices=[make_device()])
        with pytest.raises(error):
            Orchestrator(backend).multiply(a, a)
        assert backend.acquired == backend.released
        assert backend.live_buffer_count == 0

    def test_failure_carries_stage_and_code(self):
        a = MatrixStore.random(4, seed=5)
        backend = RecordingBackend(fail_at=("create_buffer", 2), devices=[make_device()])
        with pytest.raises(ResourceAcquisitionFailure) as exc_info:
            Orchestrator(backend).multiply(a, a)
        assert exc_info.value.stage == "Create buffer"
        assert exc_info.value.code == -4
        assert "error -4" in str(exc_info.value)
