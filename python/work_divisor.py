"""
Launch geometry for the tiled matmul kernel.

The kernel's staging loop strides by the group size and has no remainder
branch, so the group size must divide N exactly. The device only gives a
hint (its compute unit count); gcd(N, hint) is the largest size not above
the hint that divides N.
"""

import math
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class LaunchGeometry:
    """One worker per output column (global_size == N), grouped by group_size."""

    global_size: int
    group_size: int

    def __post_init__(self):
        if self.global_size <= 0:
            raise ValueError(f"global_size must be positive, got {self.global_size}")
        if self.group_size < 1:
            raise ValueError(f"group_size must be >= 1, got {self.group_size}")
        if self.global_size % self.group_size != 0:
            raise ValueError(
                f"group_size {self.group_size} does not divide global_size {self.global_size}"
            )

    @property
    def num_groups(self) -> int:
        return self.global_size // self.group_size


def choose_group_size(n: int, hint: int) -> int:
    """Return gcd(n, max(hint, 1)).

    Degrades to 1 for a zero hint or a prime n above the hint; slow but correct.
    """
    if n <= 0:
        raise ValueError(f"Problem size must be positive, got {n}")
    return math.gcd(n, max(hint, 1))


def launch_geometry(n: int, hint: int, max_group_size: Optional[int] = None) -> LaunchGeometry:
    """Geometry for an n x n multiply on a device reporting `hint` compute units.

    When the device also limits the work-group size, the gcd is stepped down
    to its largest divisor within that limit. Any divisor of the gcd still
    divides n.
    """
    group_size = choose_group_size(n, hint)
    if max_group_size is not None and max_group_size >= 1 and group_size > max_group_size:
        group_size = max(
            d for d in range(1, max_group_size + 1) if group_size % d == 0
        )
    return LaunchGeometry(global_size=n, group_size=group_size)
