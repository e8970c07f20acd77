"""
Per-item consumption estimation methods.

Method names: "median", "mode", "avg", "pNN" (NN-th percentile) and
"trimNN" (NN percent trimmed mean). Anything unrecognised uses the
40th percentile.
"""

import re
from typing import Sequence, Tuple

from .statistics import mode, percentile, trimmed_mean

DEFAULT_PERCENTILE = 40

_PERCENTILE_METHOD = re.compile(r"^p(\d+(?:\.\d+)?)$")
_TRIM_METHOD = re.compile(r"^trim(\d+(?:\.\d+)?)$")


def _ordinal(value: float) -> str:
    return f"{value:.0f}th percentile"


def estimate_per_item(samples: Sequence[int], method: str) -> Tuple[int, str]:
    """Estimate consumption per item from per-item samples.
    
    Args:
        samples: Consumption of individual items
        method: Estimation method name
        
    Returns:
        Tuple of (estimate, human readable method description)
    """
    if method == "median":
        return percentile(samples, 50), "median"
    if method == "mode":
        return mode(samples), "mode"
    if method == "avg":
        value = sum(samples) // len(samples) if samples else 0
        return value, "average"
    
    match = _PERCENTILE_METHOD.match(method)
    if match:
        p = float(match.group(1))
        if 0 <= p <= 100:
            description = "median" if p == 50 else _ordinal(p)
            return percentile(samples, p), description
    
    match = _TRIM_METHOD.match(method)
    if match:
        trim = float(match.group(1))
        if 0 <= trim < 50:
            return trimmed_mean(samples, trim), f"{trim:.0f}% trimmed mean"
    
    return percentile(samples, DEFAULT_PERCENTILE), _ordinal(DEFAULT_PERCENTILE)
