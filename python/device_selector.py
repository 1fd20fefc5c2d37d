"""Pick the compute device for a run."""

import logging
from typing import List, Optional, Sequence

from compute_backend import DeviceInfo
from matmul_errors import RuntimeUnavailable

logger = logging.getLogger(__name__)

DEFAULT_PREFERRED_VENDORS = ("NVIDIA", "AMD", "Intel")


def vendor_rank(device: DeviceInfo, preferred_vendors: Sequence[str]) -> Optional[int]:
    """Index of the first preferred vendor found (case-insensitive) in the
    device's name, vendor or platform name; None if none matches."""
    haystack = " ".join((device.name, device.vendor, device.platform)).lower()
    for rank, vendor in enumerate(preferred_vendors):
        if vendor and vendor.lower() in haystack:
            return rank
    return None


def accelerator_devices(devices: Sequence[DeviceInfo]) -> List[DeviceInfo]:
    return [d for d in devices if d.is_accelerator]


def select_device(
    devices: Sequence[DeviceInfo],
    preferred_vendors: Sequence[str] = DEFAULT_PREFERRED_VENDORS,
) -> DeviceInfo:
    """
    Choose an accelerator-class device.

    Ordering: devices matching an earlier entry of preferred_vendors win;
    among devices matching the same entry, more compute units win. Devices
    matching no entry keep their enumeration order after all matches, so
    without any match the first enumerated accelerator is chosen.

    Raises:
        RuntimeUnavailable: If no gpu/accelerator device was enumerated
    """
    candidates = accelerator_devices(devices)
    if not candidates:
        classes = sorted({d.device_class for d in devices}) or ["none"]
        raise RuntimeUnavailable(
            "Select device",
            f"no GPU or accelerator device available (found: {', '.join(classes)})",
        )

    unmatched = len(preferred_vendors)

    def key(indexed):
        position, device = indexed
        rank = vendor_rank(device, preferred_vendors)
        if rank is None:
            return (unmatched, 0, position)
        return (rank, -device.max_compute_units, position)

    _, chosen = min(enumerate(candidates), key=key)
    logger.info(
        f"[Device] Selected '{chosen.name}' ({chosen.platform or chosen.vendor}), "
        f"{chosen.max_compute_units} compute units"
    )
    return chosen
