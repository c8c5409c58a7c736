from __future__ import annotations

import math
import re

# Leading decimal number; "." is the only accepted separator regardless of locale.
_NUMBER_RE = re.compile(r"[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d*)?")


def resolve_value(raw: str | None, unit: str) -> float | None:
    """Parse a sensor reading like ``"72.3 °C"`` or ``"65.7 W"``.

    Only the configured unit is removed, and only the first occurrence that is
    preceded by a single space. Returns None when no number can be read.
    """

    cleaned = (raw or "").strip()
    cleaned = cleaned.replace(f" {unit}", "", 1)

    m = _NUMBER_RE.match(cleaned.lstrip())
    if m is None:
        return None
    try:
        value = float(m.group(0))
    except ValueError:
        # Dangling exponent such as "1e" or "2.5e-".
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_value(raw: str | None, unit: str) -> float:
    """Like resolve_value, but unparseable readings become 0.0."""

    value = resolve_value(raw, unit)
    if value is None:
        return 0.0
    return value
