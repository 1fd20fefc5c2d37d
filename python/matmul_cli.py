#!/usr/bin/env python3
"""Tiled matrix multiply: device result vs. serial reference.

Generates two random n x n float32 matrices, multiplies them with the
serial triple loop and on the selected compute device, prints both
timings, and reports whether the results agree.

Usage:
    python matmul_cli.py                          # n and backend from the environment
    python matmul_cli.py -n 64 --backend simulated
    python matmul_cli.py -n 512 --vendor AMD --vendor NVIDIA --exact

Exit codes:
    0 equal, 1 not equal, 2 no runtime/device, 3 device query failed,
    4 resource acquisition failed, 5 kernel build failed, 6 dispatch failed,
    7 bad configuration
"""
import argparse
import logging
import sys

import env_manager
import golden
from compute_backend import ComputeBackend
from device_selector import DEFAULT_PREFERRED_VENDORS
from matmul_errors import BuildFailure, CONFIG_ERROR_EXIT_CODE, MatmulError
from matrix_store import MatrixStore
from orchestrator import Orchestrator
from serial_reference import timed_serial_multiply
from validator import DEFAULT_RTOL, compare, compare_exact, find_mismatches, verdict

logger = logging.getLogger(__name__)

BACKENDS = ("opencl", "simulated")


def make_backend(name: str) -> ComputeBackend:
    """Instantiate a backend by name; imports are deferred so the simulated
    backend never needs an OpenCL library."""
    if name == "opencl":
        from opencl_backend import OpenCLBackend
        return OpenCLBackend()
    if name == "simulated":
        from simulated_backend import SimulatedBackend
        return SimulatedBackend()
    raise ValueError(f"Unknown backend: {name}. Supported: {', '.join(BACKENDS)}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='Tiled matrix multiply on a compute device, checked against a serial reference',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  MATMUL_SIZE               default for -n (256)
  MATMUL_BACKEND            default for --backend (opencl)
  MATMUL_PREFERRED_VENDORS  comma list, default for --vendor (NVIDIA,AMD,Intel)
  MATMUL_OPENCL_LIBRARY     path to libOpenCL, else the system library

Examples:
  %(prog)s -n 64 --backend simulated
  %(prog)s -n 1000 --vendor NVIDIA --check-golden
        """
    )
    parser.add_argument('-n', '--size', type=int, help='Matrix dimension N')
    parser.add_argument('--backend', choices=BACKENDS, help='Compute backend')
    parser.add_argument('--variant', choices=('auto', 'row', 'row_col'), default='auto',
                        help='Kernel variant: stage a row of A, or a row of A and a block of B')
    parser.add_argument('--vendor', action='append', dest='vendors',
                        help='Preferred vendor substring; repeat in order of preference')
    parser.add_argument('--seed', type=int, default=golden.DEFAULT_SEED, help='Input generator seed')
    parser.add_argument('--exact', action='store_true', help='Require bit-identical results')
    parser.add_argument('--rtol', type=float, default=DEFAULT_RTOL,
                        help='Relative tolerance, scaled by max(1, |reference|)')
    parser.add_argument('--check-golden', action='store_true',
                        help='Also compare the device result with torch.matmul')
    parser.add_argument('--print', action='store_true', dest='print_matrices',
                        help='Print A, B and both results')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')
    return parser


def resolve_config(args):
    """Merge flags over environment defaults. Raises ValueError on bad values."""
    size = args.size if args.size is not None else env_manager.get_int("MATMUL_SIZE")
    if size is None or size <= 0:
        raise ValueError(f"Matrix dimension must be positive, got {size}")
    backend = args.backend or env_manager.get("MATMUL_BACKEND")
    if backend not in BACKENDS:
        raise ValueError(f"Unknown backend: {backend}. Supported: {', '.join(BACKENDS)}")
    vendors = args.vendors or env_manager.get_list("MATMUL_PREFERRED_VENDORS") \
        or list(DEFAULT_PREFERRED_VENDORS)
    return size, backend, vendors


def main(argv=None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    try:
        n, backend_name, vendors = resolve_config(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return CONFIG_ERROR_EXIT_CODE

    params = {"n": n, "seed": args.seed}
    tensors = dict(golden.generate_inputs(params))
    a = MatrixStore.from_array(tensors["a"].numpy())
    b = MatrixStore.from_array(tensors["b"].numpy())
    if args.print_matrices:
        print(a.format("A"))
        print(b.format("B"))

    serial_c, serial_ms = timed_serial_multiply(a, b)
    print(f"\nSerial Time Taken in Milliseconds: {serial_ms:.0f}\n")

    try:
        orchestrator = Orchestrator(make_backend(backend_name), vendors, variant=args.variant)
        result = orchestrator.multiply(a, b)
    except MatmulError as e:
        print(f"Error: {e}", file=sys.stderr)
        if isinstance(e, BuildFailure) and e.build_log:
            print(e.build_log, file=sys.stderr)
        return e.exit_code

    print(f"Device time = {result.timing.elapsed_ms:.1f} ms "
          f"({result.device.name}, group size {result.geometry.group_size}, {result.variant})")
    if args.print_matrices:
        print(result.c.format("C (device)"))
        print(serial_c.format("C (serial)"))

    if args.exact:
        equal = compare_exact(result.c, serial_c, n)
    else:
        equal = compare(result.c, serial_c, n, rtol=args.rtol)
    print(f"Matrices are {verdict(equal)}")
    if not equal:
        for i, j, got, expected in find_mismatches(result.c, serial_c, rtol=0.0 if args.exact else args.rtol):
            logger.warning(f"C[{i}][{j}] = {got}, serial reference {expected}")

    if args.check_golden:
        compute = {"a": tensors["a"], "b": tensors["b"], "c": tensors["c"]}
        golden.compute_golden(compute, params)
        golden_ok = golden.matches_golden(result.c.view(), compute["c"])
        print(f"Golden (torch.matmul) check: {'passed' if golden_ok else 'failed'}")
        equal = equal and golden_ok

    return 0 if equal else 1


if __name__ == '__main__':
    sys.exit(main())
