import math


def round_half_up(value: float) -> int:
    """Round to the nearest integer, halves toward positive infinity (-4.5 -> -4)."""
    return math.floor(value + 0.5)


def clamp(value, low, high):
    return max(low, min(high, value))


def finite_or_none(value) -> float | None:
    """Return value as a float if it is a finite number, else None."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    if not math.isfinite(value):
        return None
    return float(value)
