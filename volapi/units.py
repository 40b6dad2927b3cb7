import re
from typing import Optional, Union

MIBS_IN_GB = 1024

# Multipliers to MiB
SIZE_UNITS = {
    "g": MIBS_IN_GB,
    "G": MIBS_IN_GB,
    "GB": MIBS_IN_GB,
    "m": 1,
    "M": 1,
    "MB": 1,
}

_SIZE_RE = re.compile(r"^([0-9]+)([A-Za-z]+)$")


def parse_volume_size(size: Union[int, str, None]) -> Optional[int]:
    """
    Parse a requested volume size into MiB.

    Integers are taken as MiB. Strings must carry a unit, e.g. "10g" or
    "500m". None means no size was requested.

    Raises:
        ValueError: if size is not a positive size in a known unit
    """
    if size is None:
        return None

    if isinstance(size, bool):
        raise ValueError(f"Volume size: \"{size}\" is not a valid volume size")

    if isinstance(size, int):
        if size <= 0:
            raise ValueError(f"Volume size: \"{size}\" is not a valid volume size, must be > 0")
        return size

    if not isinstance(size, str):
        raise ValueError(f"Volume size: \"{size}\" is not a valid volume size")

    match = _SIZE_RE.match(size.strip())
    if not match:
        raise ValueError(
            f"Volume size: \"{size}\" is not a valid volume size, must be a number followed by a unit "
            f"({', '.join(sorted(SIZE_UNITS))})"
        )

    magnitude, unit = match.groups()
    if unit not in SIZE_UNITS:
        raise ValueError(f"Volume size: \"{size}\" has unknown unit \"{unit}\"")

    value = int(magnitude) * SIZE_UNITS[unit]
    if value <= 0:
        raise ValueError(f"Volume size: \"{size}\" is not a valid volume size, must be > 0")
    return value
