"""
Statistical primitives over integer samples.

Pure functions used by the ceiling estimator and the accuracy report.
None of them mutate the caller's sequence; sorting happens on a copy.
"""

import math
from collections import Counter
from typing import Sequence


def percentile(values: Sequence[int], p: float) -> int:
    """Nearest-rank percentile.
    
    The rank is ``ceil(n * p / 100) - 1`` clamped to ``[0, n - 1]``, so no
    interpolation happens and the result is always one of the inputs. At
    p=0 the clamp selects the minimum; at p=100 the maximum.
    
    Args:
        values: Integer samples (order irrelevant)
        p: Percentile to select (0-100)
        
    Returns:
        Selected sample, or 0 for empty input
    """
    if not values:
        return 0
    
    ordered = sorted(values)
    n = len(ordered)
    index = math.ceil(n * p / 100.0) - 1
    index = max(0, min(index, n - 1))
    return ordered[index]


def mean(values: Sequence[int]) -> float:
    """Arithmetic mean, 0.0 for empty input."""
    if not values:
        return 0.0
    return sum(values) / len(values)


def std_dev(values: Sequence[int]) -> float:
    """Population standard deviation (divides by n), 0.0 when n < 2."""
    if len(values) < 2:
        return 0.0
    
    avg = mean(values)
    variance = sum((v - avg) ** 2 for v in values) / len(values)
    return math.sqrt(variance)


def trimmed_mean(values: Sequence[int], trim_percent: float) -> int:
    """Mean after dropping ``trim_percent`` of samples from each end.
    
    At least one sample is trimmed from each end once there are more than
    two samples. When trimming would consume everything the middle element
    of the sorted samples is returned instead.
    
    Args:
        values: Integer samples
        trim_percent: Share to drop from each tail (0-50)
        
    Returns:
        Integer (floored) mean of the kept samples, 0 for empty input
    """
    if not values:
        return 0
    
    ordered = sorted(values)
    n = len(ordered)
    trim_count = int(n * trim_percent / 100.0)
    if trim_count == 0 and n > 2:
        trim_count = 1
    
    if trim_count * 2 >= n:
        return ordered[n // 2]
    
    kept = ordered[trim_count:n - trim_count]
    return sum(kept) // len(kept)


def mode(values: Sequence[int]) -> int:
    """Most frequent sample; ties go to the value encountered first."""
    if not values:
        return 0
    # most_common keeps insertion order among equal counts
    return Counter(values).most_common(1)[0][0]
