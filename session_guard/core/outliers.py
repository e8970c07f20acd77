"""
IQR-based outlier trimming.
"""

from typing import List, Sequence

from .statistics import percentile

IQR_MULTIPLIER = 1.5
MIN_SAMPLES_FOR_QUARTILES = 4


def remove_outliers(values: Sequence[int]) -> List[int]:
    """Drop samples outside ``[Q1 - 1.5*IQR, Q3 + 1.5*IQR]``.
    
    Quartiles use the nearest-rank percentile. Bounds are inclusive and the
    surviving samples keep their original order. With fewer than four
    samples the input is returned unchanged.
    
    Args:
        values: Integer samples
        
    Returns:
        New list with the samples inside the fence
    """
    if len(values) < MIN_SAMPLES_FOR_QUARTILES:
        return list(values)
    
    q1 = percentile(values, 25)
    q3 = percentile(values, 75)
    iqr = q3 - q1
    
    lower_bound = q1 - IQR_MULTIPLIER * iqr
    upper_bound = q3 + IQR_MULTIPLIER * iqr
    
    return [v for v in values if lower_bound <= v <= upper_bound]
