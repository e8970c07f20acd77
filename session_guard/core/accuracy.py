"""
Offline accuracy analysis of the ceiling estimator.

Compares the estimate for each tier against what completed sessions
actually reached, and summarises how much per-item consumption varies.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .estimator import CeilingEstimator, completed_session_totals
from .per_item import estimate_per_item
from .statistics import percentile, std_dev
from session_guard.storage.models import UsageInterval

ACTUAL_PERCENTILE = 95
HIGH_VARIANCE_SPREAD = 3.0


@dataclass(frozen=True)
class AccuracyAnalysis:
    """Estimator accuracy for one tier."""
    category: str
    actual_max: int
    estimated_ceiling: int
    accuracy_percent: float
    sample_size: int
    average_per_item: int
    std_deviation: float


@dataclass(frozen=True)
class PerItemVariance:
    """Spread of per-item consumption across completed sessions."""
    minimum: float
    maximum: float
    average: float
    spread: float
    
    @property
    def high_variance(self) -> bool:
        return self.spread > HIGH_VARIANCE_SPREAD


def analyze_category(
    category: str,
    intervals: Sequence[UsageInterval],
    estimator: CeilingEstimator,
) -> AccuracyAnalysis:
    """Compare the ceiling estimate for ``category`` with observed usage.
    
    The observed maximum is the 95th percentile of completed session
    totals. Accuracy is 100 minus the relative error in percent, or 100
    when there is no history to compare with.
    """
    estimated = estimator.estimate(category, intervals)
    samples = completed_session_totals(intervals)
    
    total_consumed = 0
    total_items = 0
    for interval in intervals:
        if interval.is_completed and interval.total_consumed > 0:
            total_consumed += interval.total_consumed
            total_items += interval.item_count
    
    actual_max = percentile(samples, ACTUAL_PERCENTILE)
    accuracy = 100.0
    if actual_max > 0:
        accuracy = 100.0 - abs(estimated - actual_max) / actual_max * 100
    
    return AccuracyAnalysis(
        category=category,
        actual_max=actual_max,
        estimated_ceiling=estimated,
        accuracy_percent=accuracy,
        sample_size=len(samples),
        average_per_item=total_consumed // total_items if total_items else 0,
        std_deviation=std_dev(samples),
    )


def analyze_per_item_variance(intervals: Sequence[UsageInterval]) -> Optional[PerItemVariance]:
    """Summarise per-item consumption, or None without qualifying sessions."""
    ratios = [
        i.total_consumed / i.item_count
        for i in intervals
        if i.is_completed and i.item_count > 0 and i.total_consumed > 0
    ]
    if not ratios:
        return None

    low, high = min(ratios), max(ratios)
    return PerItemVariance(
        minimum=low,
        maximum=high,
        average=sum(ratios) / len(ratios),
        spread=high / low,
    )


def build_accuracy_report(
    intervals: Sequence[UsageInterval],
    estimator: CeilingEstimator,
) -> List[AccuracyAnalysis]:
    """Accuracy analysis for every known tier."""
    intervals = list(intervals)
    return [
        analyze_category(name, intervals, estimator)
        for name in estimator.tiers.names()
    ]


def per_item_estimate(
    intervals: Sequence[UsageInterval],
    method: str,
) -> Tuple[int, str]:
    """Apply a per-item estimation method to per-session averages.
    
    Each sample is one completed session's ``total_consumed // item_count``,
    not an individual item. The methods therefore describe how the
    per-session average varies, which is smoother than per-item counts.
    """
    samples = [
        i.total_consumed // i.item_count
        for i in intervals
        if i.is_completed and i.item_count > 0
    ]
    return estimate_per_item(samples, method)
