"""Duration parsing and formatting."""

import re
from typing import Union

_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_DURATION = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([smhd]?)\s*$")


def parse_duration(value: Union[str, int, float]) -> float:
    """Parse a timeout such as ``90``, ``45m`` or ``23h`` into seconds."""
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        match = _DURATION.match(value)
        if not match:
            raise ValueError(f"invalid duration: {value!r}")
        number, unit = match.groups()
        seconds = float(number) * _UNITS[unit or "s"]
    if seconds <= 0:
        raise ValueError(f"duration must be positive: {value!r}")
    return seconds


def format_duration(seconds: Union[int, float]) -> str:
    """Render elapsed seconds the way the run log reports them.

    Up to 120 seconds is shown in seconds, up to 7200 seconds in minutes and
    seconds, anything longer in hours, minutes and seconds.
    """
    dur = int(seconds)
    if dur > 7200:
        return f"{dur // 3600} hours {dur // 60 % 60} minutes {dur % 60} seconds"
    if dur > 120:
        return f"{dur // 60} minutes {dur % 60} seconds"
    return f"{dur} seconds"
