"""
Unit tests for ceiling estimation.

Tests the reference formula, historical blending, tier resolution and
accuracy warnings.
"""

from datetime import datetime, timedelta, timezone
from typing import List, Optional
from unittest.mock import patch

import pytest

from session_guard.core.estimator import (
    CeilingEstimator,
    accuracy_warning,
    coefficient_of_variation,
    completed_session_totals,
    confidence_weight,
    recent_average_per_item,
)
from session_guard.core.tiers import DEFAULT_TIERS, CategoryProfile, resolve_category
from session_guard.storage.models import UsageInterval

BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_sessions(
    totals: List[int],
    entries: Optional[List[int]] = None,
) -> List[UsageInterval]:
    """Create consecutive completed five-hour sessions."""
    entries = entries or [0] * len(totals)
    sessions = []
    for i, (total, count) in enumerate(zip(totals, entries)):
        start = BASE_TIME + timedelta(hours=6 * i)
        sessions.append(UsageInterval(
            start_time=start,
            end_time=start + timedelta(hours=5),
            total_consumed=total,
            item_count=count,
        ))
    return sessions


def make_active(total: int, entries: int = 0) -> UsageInterval:
    return UsageInterval(
        start_time=BASE_TIME + timedelta(days=30),
        total_consumed=total,
        item_count=entries,
        is_active=True,
    )


def make_gap(total: int = 0) -> UsageInterval:
    return UsageInterval(
        start_time=BASE_TIME - timedelta(days=1),
        end_time=BASE_TIME - timedelta(hours=20),
        total_consumed=total,
        is_gap=True,
    )


class TestReferenceEstimate:
    """Test estimation without enough history."""
    
    def test_pro_plan_no_history(self):
        """Test pro tier with no history uses 45 * 150."""
        assert CeilingEstimator().estimate("pro", []) == 6750
    
    def test_max5_plan_no_history(self):
        assert CeilingEstimator().estimate("max5", []) == 33750
    
    def test_max20_plan_no_history(self):
        assert CeilingEstimator().estimate("max20", []) == 135000
    
    def test_unknown_plan_falls_back_to_pro(self):
        assert CeilingEstimator().estimate("invalid", []) == 6750
    
    def test_few_sessions_use_recent_per_item_rate(self):
        """Test fewer than five sessions skip the historical estimate."""
        sessions = make_sessions([5000, 6500, 7200, 6800], [40, 45, 50, 48])
        # 25500 tokens / 183 messages = 139 per message
        assert CeilingEstimator().estimate("pro", sessions) == 45 * 139
    
    def test_few_sessions_ignore_outlier_logic(self):
        """Test outlier removal is never consulted below five sessions."""
        sessions = make_sessions([5000, 6500, 7200, 6800], [40, 45, 50, 48])
        with patch("session_guard.core.estimator.remove_outliers") as mock_remove:
            CeilingEstimator().estimate("pro", sessions)
        mock_remove.assert_not_called()
    
    def test_detailed_result_for_empty_history(self):
        result = CeilingEstimator().estimate_detailed("auto", [])
        
        assert result.value == 6750
        assert result.basis_session_count == 0
        assert result.per_item_rate == 150
        assert result.source_category == "pro"
    
    def test_custom_tier_table(self):
        tiers = DEFAULT_TIERS.with_overrides({
            "team": CategoryProfile(item_allowance=100, default_per_item=200),
        })
        assert CeilingEstimator(tiers).estimate("team", []) == 20000


class TestHistoricalBlend:
    """Test blending of historical and reference estimates."""
    
    def test_small_history_blend(self):
        """Test five sessions blend p90 with the reference at weight 0.3."""
        sessions = make_sessions(
            [100000, 120000, 135000, 140000, 145000],
            [800, 850, 900, 920, 950],
        )
        # historical p90 = 145000, per message 640000 // 4420 = 144,
        # reference = 900 * 144 = 129600
        expected = round(145000 * 0.3 + 129600 * 0.7)
        
        result = CeilingEstimator().estimate_detailed("max20", sessions)
        
        assert result.value == expected == 134220
        assert result.basis_session_count == 5
        assert result.per_item_rate == 144
    
    def test_stable_large_history_blend(self):
        """Test twenty identical sessions get weight 0.8."""
        sessions = make_sessions([10000] * 20, [100] * 20)
        # historical 10000, reference 45 * 100 = 4500
        assert CeilingEstimator().estimate("pro", sessions) == 8900
    
    def test_fallback_percentile_when_too_many_outliers_removed(self):
        """Test 85th percentile of raw samples when cleaning leaves < 3."""
        totals = [1000, 2000, 3000, 4000, 5000, 6000, 7000, 8000, 9000, 10000]
        sessions = make_sessions(totals, [10] * 10)
        estimator = CeilingEstimator()
        
        with patch("session_guard.core.estimator.remove_outliers", return_value=[1000, 2000]):
            fallback = estimator.estimate("pro", sessions)
        with patch("session_guard.core.estimator.remove_outliers", return_value=[1000, 2000, 3000]):
            cleaned = estimator.estimate("pro", sessions)
        
        # per message = 55000 // 100 = 550, reference = 45 * 550 = 24750
        # two survivors: p85 of raw = 9000; three survivors: p90 of cleaned = 3000
        assert fallback == 16875  # 9000 * 0.5 + 24750 * 0.5
        assert cleaned == 13875  # 3000 * 0.5 + 24750 * 0.5
    
    def test_fallback_branch_uses_raw_samples(self):
        """Test fallback ignores the cleaned list entirely."""
        totals = [1000, 2000, 3000, 4000, 5000, 6000, 7000, 8000, 9000, 10000,
                  11000, 12000, 13000, 14000, 15000, 16000, 17000, 18000, 19000, 20000]
        sessions = make_sessions(totals)
        estimator = CeilingEstimator()
        
        with patch("session_guard.core.estimator.remove_outliers", return_value=[1, 2]):
            historical = estimator._historical_estimate(completed_session_totals(sessions))
        
        assert historical == 17000  # ceil(20 * 0.85) - 1 = index 16
    
    def test_active_and_gap_sessions_excluded_from_samples(self):
        sessions = make_sessions([5000] * 4, [50] * 4)
        sessions.append(make_gap(90000))
        sessions.append(make_active(90000, 10))
        
        result = CeilingEstimator().estimate_detailed("pro", sessions)
        
        assert result.basis_session_count == 4
        assert result.value == 45 * 100


class TestConfidenceWeight:
    """Test the confidence weight decision table."""
    
    @pytest.mark.parametrize("count,expected", [
        (5, 0.3),
        (9, 0.3),
        (10, 0.5),
        (19, 0.5),
    ])
    def test_sample_size_rules(self, count, expected):
        assert confidence_weight([1000] * count) == expected
    
    def test_stable_history(self):
        assert confidence_weight([1000] * 20) == 0.8
    
    def test_high_variance(self):
        samples = [100, 1000] * 10  # CV ~0.82
        assert confidence_weight(samples) == 0.4
    
    def test_medium_variance(self):
        samples = [100, 200] * 10  # CV ~0.33
        assert confidence_weight(samples) == 0.6
    
    def test_coefficient_of_variation_zero_mean(self):
        assert coefficient_of_variation([]) == 0.0
        assert coefficient_of_variation([0, 0]) == 0.0


class TestRecentAveragePerItem:
    """Test per-item averaging over recent sessions."""
    
    def test_aggregate_average(self):
        sessions = make_sessions([5000, 7200, 6000], [40, 50, 48])
        assert recent_average_per_item(sessions) == 18200 // 138
    
    def test_single_session(self):
        assert recent_average_per_item(make_sessions([8000], [50])) == 160
    
    def test_active_interval_excluded(self):
        """Test the active interval never feeds the per-item rate."""
        intervals = [make_gap(5000), make_active(6000, 50)]
        assert recent_average_per_item(intervals) == 0
    
    def test_active_interval_excluded_among_history(self):
        intervals = make_sessions([1000], [10]) + [make_active(90000, 10)]
        assert recent_average_per_item(intervals) == 100
    
    def test_empty(self):
        assert recent_average_per_item([]) == 0
    
    def test_zero_entries_excluded(self):
        assert recent_average_per_item(make_sessions([5000], [0])) == 0
    
    def test_only_most_recent_ten(self):
        """Test older sessions beyond the most recent ten are ignored."""
        sessions = make_sessions([100000] * 2 + [100] * 10, [1] * 12)
        assert recent_average_per_item(sessions) == 100


class TestResolveCategory:
    """Test plan tier resolution."""
    
    def test_known_plan_unchanged(self):
        assert resolve_category("max5", []) == "max5"
    
    def test_unknown_plan_is_pro(self):
        assert resolve_category("custom_max", []) == "pro"
    
    @pytest.mark.parametrize("peak,expected", [
        (0, "pro"),
        (25000, "pro"),
        (25001, "max5"),
        (100000, "max5"),
        (100001, "max20"),
    ])
    def test_auto_detection_thresholds(self, peak, expected):
        assert resolve_category("auto", make_sessions([1000, peak])) == expected
    
    def test_auto_detection_ignores_gaps(self):
        assert resolve_category("auto", [make_gap(500000)]) == "pro"


class TestEscalateCeiling:
    """Test pro plan auto switching."""
    
    def test_switches_when_pro_ceiling_exceeded(self):
        intervals = make_sessions([30000], [200]) + [make_active(8000, 40)]
        estimator = CeilingEstimator()
        
        # auto resolves to max5: 225 * (30000 // 200)
        assert estimator.escalate_ceiling("pro", 8000, 6750, intervals) == 33750
    
    def test_no_switch_within_ceiling(self):
        intervals = make_sessions([30000], [200])
        assert CeilingEstimator().escalate_ceiling("pro", 5000, 6750, intervals) == 6750
    
    def test_no_switch_for_other_plans(self):
        intervals = make_sessions([30000], [200])
        assert CeilingEstimator().escalate_ceiling("max5", 90000, 33750, intervals) == 33750
    
    def test_keeps_larger_ceiling(self):
        assert CeilingEstimator().escalate_ceiling("pro", 60000, 50000, []) == 50000


class TestAccuracyWarning:
    """Test accuracy warning message."""
    
    def test_accurate_estimation(self):
        assert accuracy_warning(6800, 7000) is None
    
    def test_over_estimate_warning(self):
        warning = accuracy_warning(8000, 7000)
        assert warning is not None
        assert "+14.3%" in warning
    
    def test_under_estimate_warning(self):
        warning = accuracy_warning(30000, 35000)
        assert warning is not None
        assert "-14.3%" in warning
    
    def test_zero_estimate(self):
        assert accuracy_warning(5000, 0) is None
    
    def test_custom_threshold(self):
        assert accuracy_warning(7500, 7000, threshold_percent=5) is not None
        assert accuracy_warning(7500, 7000) is None
