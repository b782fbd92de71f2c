"""Numeric utilities shared by the insight engines.

All functions are pure. Degenerate inputs, including series whose sums
overflow a float, return 0 rather than NaN or an exception so that
downstream threshold comparisons stay well-defined.
"""

from __future__ import annotations

import math
import statistics
from collections.abc import Sequence


def pearson_correlation(xs: Sequence[float], ys: Sequence[float]) -> float:
    """Pearson's r for two equal-length series.

    r = (nΣxy − ΣxΣy) / sqrt((nΣx² − (Σx)²)(nΣy² − (Σy)²))

    Returns 0.0 when fewer than two pairs are given, when either series is
    constant, or when the sums overflow. The result is clamped to [-1, 1] to
    absorb rounding error.

    Raises:
        ValueError: If the series differ in length.
    """
    if len(xs) != len(ys):
        raise ValueError(f"Series length mismatch: {len(xs)} != {len(ys)}")
    n = len(xs)
    if n < 2:
        return 0.0
    # Constant series: the variance terms below may be a rounding residue, not 0.
    if min(xs) == max(xs) or min(ys) == max(ys):
        return 0.0

    try:
        sum_x = math.fsum(xs)
        sum_y = math.fsum(ys)
        sum_xy = math.fsum(x * y for x, y in zip(xs, ys))
        sum_x2 = math.fsum(x * x for x in xs)
        sum_y2 = math.fsum(y * y for y in ys)
    except (OverflowError, ValueError):
        # fsum raises on intermediate overflow and on inf - inf.
        return 0.0

    var_x = n * sum_x2 - sum_x * sum_x
    var_y = n * sum_y2 - sum_y * sum_y
    if not (math.isfinite(var_x) and math.isfinite(var_y)):
        return 0.0
    if var_x <= 0 or var_y <= 0:
        return 0.0

    r = (n * sum_xy - sum_x * sum_y) / (math.sqrt(var_x) * math.sqrt(var_y))
    if not math.isfinite(r):
        return 0.0
    return max(-1.0, min(1.0, r))


def variance(xs: Sequence[float]) -> float:
    """Population variance; 0.0 for empty or single-element input."""
    if len(xs) < 2:
        return 0.0
    try:
        return float(statistics.pvariance(xs))
    except OverflowError:
        return 0.0


def linear_trend_slope(ys: Sequence[float]) -> float:
    """OLS slope of ``ys`` against index 0..n-1; 0.0 when n < 3."""
    n = len(ys)
    if n < 3:
        return 0.0

    sum_x = sum_x2 = 0.0
    sum_y = sum_xy = 0.0
    for i, y in enumerate(ys):
        sum_x += i
        sum_x2 += i * i
        sum_y += y
        sum_xy += i * y

    denominator = n * sum_x2 - sum_x * sum_x
    if denominator == 0:
        return 0.0
    slope = (n * sum_xy - sum_x * sum_y) / denominator
    return slope if math.isfinite(slope) else 0.0


def mean(xs: Sequence[float]) -> float:
    """Arithmetic mean; 0.0 for empty input."""
    if not xs:
        return 0.0
    try:
        return float(statistics.mean(xs))
    except OverflowError:
        return 0.0


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def round_half_up(value: float) -> int:
    """Round to the nearest integer with halves rounded up (not to even)."""
    return math.floor(value + 0.5)
