from __future__ import annotations

import math
import re
from typing import Any


_LEADING_INT_RE = re.compile(r"^\s*([+-]?\d+)")


def parse_int_or_zero(value: Any) -> int:
    """Parse a non-negative integer, returning 0 for anything else.

    - ints pass through; bools are rejected (True is not a count of hours)
    - integral floats are truncated, NaN/inf are rejected
    - strings are read like a browser `parseInt`: optional whitespace and sign,
      then the leading run of digits ("160h" -> 160, "abc" -> 0)
    - negative results become 0
    """
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        out = value
    elif isinstance(value, float):
        if not math.isfinite(value):
            return 0
        out = int(value)
    elif isinstance(value, str):
        m = _LEADING_INT_RE.match(value)
        if not m:
            return 0
        out = int(m.group(1))
    else:
        return 0
    return out if out >= 0 else 0


__all__ = ["parse_int_or_zero"]
