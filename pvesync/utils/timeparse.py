import re
from typing import Union

_DURATION_RE = re.compile(r"^\s*(\d+)\s*([smh]?)\s*$")
_UNIT_SECONDS = {"": 1, "s": 1, "m": 60, "h": 3600}


def parse_time(value: Union[str, int]) -> int:
    """
    Parse a duration like '15s', '10m', '1h' (or a bare number of seconds)
    into seconds.
    """
    if isinstance(value, bool):
        raise ValueError("Invalid time string format")
    if isinstance(value, int):
        if value < 0:
            raise ValueError("Duration must not be negative")
        return value
    if not isinstance(value, str):
        raise ValueError("Invalid time string format")

    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid time string format: {value!r}")

    amount, unit = match.groups()
    return int(amount) * _UNIT_SECONDS[unit]
