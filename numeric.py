import math
import statistics
from decimal import ROUND_HALF_UP, Decimal
from typing import Iterable, Sequence


def round_money(value: float, places: int = 2) -> float:
    """Round half away from zero at the given decimal place.

    The float's shortest repr is quantized, so 1234.565 rounds to 1234.57
    instead of being pulled down by its binary representation.
    """
    quantum = Decimal(1).scaleb(-places)
    return float(Decimal(repr(value)).quantize(quantum, rounding=ROUND_HALF_UP))


def total(values: Iterable[float]) -> float:
    return math.fsum(values)


def mean(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    return statistics.fmean(values)


def pstdev(values: Sequence[float]) -> float:
    if len(values) <= 1:
        return 0.0
    return statistics.pstdev(values)


def clamp(value: float, low: float = 0.0, high: float = 1.0) -> float:
    return max(low, min(high, value))
