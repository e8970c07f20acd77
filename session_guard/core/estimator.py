"""
Ceiling estimation from historical sessions.

Blends a data-driven estimate (a high percentile of past session totals)
with a reference estimate derived from the tier's item allowance. The blend
weight reflects how much the history can be trusted.
"""

import logging
import math
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from .outliers import remove_outliers
from .statistics import mean, percentile, std_dev
from .tiers import AUTO_CATEGORY, DEFAULT_TIERS, TierTable, resolve_category
from session_guard.storage.models import UsageInterval

logger = logging.getLogger(__name__)

MIN_HISTORICAL_SESSIONS = 5
MIN_CLEANED_SESSIONS = 3
HISTORICAL_PERCENTILE = 90
FALLBACK_PERCENTILE = 85
RECENT_SESSIONS_COUNT = 10
ACCURACY_WARNING_PERCENT = 10.0

# Confidence in history, checked top to bottom.
# Sample size rules: (exclusive upper bound on sample count, weight)
SAMPLE_SIZE_WEIGHTS: Tuple[Tuple[int, float], ...] = (
    (10, 0.3),
    (20, 0.5),
)
# Variance rules: (exclusive lower bound on coefficient of variation, weight)
VARIANCE_WEIGHTS: Tuple[Tuple[float, float], ...] = (
    (0.5, 0.4),
    (0.3, 0.6),
)
STABLE_HISTORY_WEIGHT = 0.8


@dataclass(frozen=True)
class CeilingEstimate:
    """Result of one estimation pass."""
    value: int
    basis_session_count: int
    per_item_rate: int
    source_category: str
    
    def __post_init__(self):
        """Validate estimate is non-negative."""
        if self.value < 0:
            raise ValueError("value cannot be negative")


def completed_session_totals(intervals: Sequence[UsageInterval]) -> List[int]:
    """Totals of finished, non-gap sessions with any consumption."""
    return [
        i.total_consumed for i in intervals
        if i.is_completed and i.total_consumed > 0
    ]


def coefficient_of_variation(samples: Sequence[int]) -> float:
    """Population std-dev divided by mean; 0.0 when the mean is 0."""
    avg = mean(samples)
    if avg == 0:
        return 0.0
    return std_dev(samples) / avg


def confidence_weight(samples: Sequence[int]) -> float:
    """Weight given to the historical estimate in the blend.
    
    Small samples get a fixed low weight. Larger samples are weighted by
    their coefficient of variation: the noisier the history, the lower
    the weight.
    
    Args:
        samples: Uncleaned completed-session totals
        
    Returns:
        Weight in (0, 1]
    """
    n = len(samples)
    for size_limit, weight in SAMPLE_SIZE_WEIGHTS:
        if n < size_limit:
            return weight
    
    cv = coefficient_of_variation(samples)
    for cv_threshold, weight in VARIANCE_WEIGHTS:
        if cv > cv_threshold:
            return weight
    return STABLE_HISTORY_WEIGHT


def recent_average_per_item(
    intervals: Sequence[UsageInterval],
    limit: int = RECENT_SESSIONS_COUNT,
) -> int:
    """Average consumption per item over the most recent completed sessions.
    
    Walks backwards from the newest interval, taking up to ``limit``
    completed sessions with at least one item. The active interval is never
    included. The average is aggregate (total consumed over total items),
    floored to an integer.
    
    Args:
        intervals: Usage intervals, oldest first
        limit: Number of sessions to consider
        
    Returns:
        Per-item consumption, or 0 when no session qualifies
    """
    total_consumed = 0
    total_items = 0
    counted = 0
    
    for interval in reversed(intervals):
        if counted >= limit:
            break
        if interval.is_completed and interval.item_count > 0:
            total_consumed += interval.total_consumed
            total_items += interval.item_count
            counted += 1
    
    if total_items == 0:
        return 0
    return total_consumed // total_items


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class CeilingEstimator:
    """Estimates the consumption ceiling for the current session.
    
    One instance is built per process and passed to whatever needs it; it
    holds no state between calls beyond its tier table.
    """
    
    def __init__(self, tiers: TierTable = DEFAULT_TIERS):
        """Initialize the estimator.
        
        Args:
            tiers: Known plan tiers
        """
        self.tiers = tiers
    
    def estimate(self, category: str, intervals: Sequence[UsageInterval]) -> int:
        """Estimate the ceiling for ``category`` from ``intervals``."""
        return self.estimate_detailed(category, intervals).value
    
    def estimate_detailed(
        self,
        category: str,
        intervals: Sequence[UsageInterval],
    ) -> CeilingEstimate:
        """Estimate the ceiling and report what it was based on.
        
        With at least five completed sessions the historical estimate is
        blended with the reference estimate; otherwise only the reference
        estimate is used.
        
        Args:
            category: Tier name or "auto"
            intervals: Historical usage intervals, oldest first
            
        Returns:
            CeilingEstimate with value and basis
        """
        intervals = list(intervals)
        resolved = resolve_category(category, intervals, self.tiers)
        samples = completed_session_totals(intervals)
        
        reference, per_item = self._reference_estimate(resolved, intervals)
        historical = self._historical_estimate(samples)
        
        if historical is None:
            value = reference
        else:
            weight = confidence_weight(samples)
            value = _round_half_up(historical * weight + reference * (1 - weight))
            logger.debug(
                "Blended ceiling %d from historical %d and reference %d (weight %.1f)",
                value, historical, reference, weight,
            )
        
        return CeilingEstimate(
            value=value,
            basis_session_count=len(samples),
            per_item_rate=per_item,
            source_category=resolved,
        )
    
    def _historical_estimate(self, samples: List[int]) -> Optional[int]:
        """High percentile of past session totals, or None if too few."""
        if len(samples) < MIN_HISTORICAL_SESSIONS:
            logger.debug(
                "Only %d completed sessions, skipping historical estimate",
                len(samples),
            )
            return None
        
        cleaned = remove_outliers(samples)
        if len(cleaned) < MIN_CLEANED_SESSIONS:
            # Too much of the history was fenced off; use the raw samples
            return percentile(samples, FALLBACK_PERCENTILE)
        return percentile(cleaned, HISTORICAL_PERCENTILE)
    
    def _reference_estimate(
        self,
        category: str,
        intervals: Sequence[UsageInterval],
    ) -> Tuple[int, int]:
        """Tier allowance times per-item consumption.
        
        Returns:
            Tuple of (reference ceiling, per-item rate used)
        """
        profile = self.tiers.get_profile(category)
        per_item = recent_average_per_item(intervals)
        if per_item <= 0:
            per_item = profile.default_per_item
        return profile.item_allowance * per_item, per_item
    
    def escalate_ceiling(
        self,
        plan: str,
        consumed: int,
        ceiling: int,
        intervals: Sequence[UsageInterval],
    ) -> int:
        """Switch a pro plan to auto detection once its ceiling is exceeded.
        
        Args:
            plan: Plan requested by the user
            consumed: Consumption in the current session
            ceiling: Current ceiling
            intervals: Historical usage intervals
            
        Returns:
            The larger of the current ceiling and the auto-detected one, or
            the current ceiling when no switch applies
        """
        if plan != "pro" or consumed <= ceiling:
            return ceiling
        
        auto_ceiling = self.estimate(AUTO_CATEGORY, intervals)
        if auto_ceiling > ceiling:
            logger.info("Auto-switched ceiling from %d to %d", ceiling, auto_ceiling)
            return auto_ceiling
        return ceiling


def accuracy_warning(
    actual_consumed: int,
    estimated_ceiling: int,
    threshold_percent: float = ACCURACY_WARNING_PERCENT,
) -> Optional[str]:
    """Warn when actual consumption strays too far from the estimate.
    
    Args:
        actual_consumed: Consumption observed
        estimated_ceiling: Ceiling that was estimated
        threshold_percent: Allowed deviation in percent
        
    Returns:
        Warning message, or None when within tolerance or no estimate
    """
    if estimated_ceiling == 0:
        return None
    
    deviation = (actual_consumed - estimated_ceiling) / estimated_ceiling * 100
    if abs(deviation) > threshold_percent:
        return (
            f"Warning: Token limit estimation may be inaccurate "
            f"(deviation: {deviation:+.1f}%)"
        )
    return None
