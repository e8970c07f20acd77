"""
Session metrics and status classification.

Combines the estimated ceiling and the burn rate with the active interval
to give progress, depletion projection and a status for display.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence

from .burn_rate import BurnRateCalculator
from .estimator import CeilingEstimator
from session_guard.storage.models import UsageInterval

logger = logging.getLogger(__name__)

SESSION_DURATION = timedelta(hours=5)
SESSION_DURATION_MINUTES = SESSION_DURATION.total_seconds() / 60.0

# Projections further out than this carry no depletion risk
MAX_PROJECTION = timedelta(days=365)

SYNTHETIC_MODEL = "<synthetic>"
UNKNOWN_MODEL = "unknown"
# Checked in order when a session used several models
PREFERRED_MODEL_FAMILIES = ("sonnet", "opus")


class SessionStatus(Enum):
    """Status of the current session, re-evaluated every cycle."""
    OK = "OK"
    WARNING = "WARNING"
    LIMIT_EXCEEDED = "LIMIT EXCEEDED"


@dataclass(frozen=True)
class SessionSnapshot:
    """Displayable metrics for the active session at one instant."""
    consumed_so_far: int
    ceiling: int
    percent_used: float
    remaining: int
    elapsed_minutes: float
    remaining_minutes: float
    progress_percent: float
    session_end_time: datetime
    projected_depletion_time: datetime
    status: SessionStatus
    burn_rate: float
    daily_cost: Optional[float] = None
    primary_model: str = UNKNOWN_MODEL


def find_active_interval(intervals: Sequence[UsageInterval]) -> Optional[UsageInterval]:
    """First interval flagged active, or None."""
    for interval in intervals:
        if interval.is_active:
            return interval
    return None


def primary_model(models: Sequence[str]) -> str:
    """Pick the model to show for a session from its model list.
    
    Synthetic entries are ignored. A single real model is used as is;
    with several, Sonnet wins over Opus, then the first real model.
    
    Args:
        models: Model names reported for the session
        
    Returns:
        Model name, or "unknown" when there is none
    """
    real_models = [m for m in models if m != SYNTHETIC_MODEL]
    if len(real_models) == 1:
        return real_models[0]
    
    for family in PREFERRED_MODEL_FAMILIES:
        for model in real_models:
            if family in model.lower():
                return model
    
    if real_models:
        return real_models[0]
    return UNKNOWN_MODEL


def project_depletion(
    remaining: int,
    rate: float,
    now: datetime,
    session_end: datetime,
) -> datetime:
    """Time at which the remaining allowance runs out at ``rate``.
    
    Falls back to the session end when nothing is being consumed or the
    allowance is already gone.
    """
    if rate <= 0 or remaining <= 0:
        return session_end
    
    minutes_left = remaining / rate
    if minutes_left >= MAX_PROJECTION.total_seconds() / 60.0:
        return session_end
    return now + timedelta(minutes=minutes_left)


def classify_status(
    consumed: int,
    ceiling: int,
    projected_depletion: datetime,
    session_end: datetime,
) -> SessionStatus:
    """Exceeding the ceiling dominates; otherwise warn on early depletion."""
    if consumed > ceiling:
        return SessionStatus.LIMIT_EXCEEDED
    if projected_depletion < session_end:
        return SessionStatus.WARNING
    return SessionStatus.OK


class SessionAnalyzer:
    """Derives a SessionSnapshot from the active interval.
    
    The estimator and calculator are injected so callers can share one
    instance of each across refresh cycles.
    """
    
    def __init__(
        self,
        estimator: Optional[CeilingEstimator] = None,
        burn_rate: Optional[BurnRateCalculator] = None,
    ):
        self.estimator = estimator or CeilingEstimator()
        self.burn_rate = burn_rate or BurnRateCalculator()
    
    def analyze(
        self,
        current: UsageInterval,
        all_intervals: Sequence[UsageInterval],
        ceiling: int,
        rate: float,
        now: datetime,
        daily_cost: Optional[float] = None,
    ) -> SessionSnapshot:
        """Compute metrics for ``current`` at ``now``.
        
        The session window is always five hours from the interval start,
        whatever the interval's own end time says.
        
        Args:
            current: Active usage interval
            all_intervals: Full history the ceiling and rate came from
            ceiling: Estimated ceiling for this session
            rate: Burn rate in units per minute
            now: Current time
            daily_cost: Optional spend for today, passed through
            
        Returns:
            SessionSnapshot for display
        """
        consumed = current.total_consumed
        remaining = ceiling - consumed
        percent_used = consumed / ceiling * 100 if ceiling > 0 else 0.0
        
        session_end = current.start_time + SESSION_DURATION
        elapsed_minutes = (now - current.start_time).total_seconds() / 60.0
        remaining_minutes = max(0.0, (session_end - now).total_seconds() / 60.0)
        progress = elapsed_minutes / SESSION_DURATION_MINUTES * 100
        progress = min(100.0, max(0.0, progress))
        
        projected = project_depletion(remaining, rate, now, session_end)
        status = classify_status(consumed, ceiling, projected, session_end)
        
        return SessionSnapshot(
            consumed_so_far=consumed,
            ceiling=ceiling,
            percent_used=percent_used,
            remaining=remaining,
            elapsed_minutes=elapsed_minutes,
            remaining_minutes=remaining_minutes,
            progress_percent=progress,
            session_end_time=session_end,
            projected_depletion_time=projected,
            status=status,
            burn_rate=rate,
            daily_cost=daily_cost,
            primary_model=primary_model(current.models),
        )
    
    def snapshot(
        self,
        plan: str,
        intervals: Sequence[UsageInterval],
        now: datetime,
        daily_cost: Optional[float] = None,
    ) -> Optional[SessionSnapshot]:
        """Run the full pass: ceiling, rate and metrics for the active session.
        
        Args:
            plan: Tier name or "auto"
            intervals: All usage intervals from the data source
            now: Current time
            daily_cost: Optional spend for today, passed through
            
        Returns:
            SessionSnapshot, or None when no interval is active
        """
        current = find_active_interval(intervals)
        if current is None:
            logger.debug("No active interval among %d intervals", len(intervals))
            return None
        
        ceiling = self.estimator.estimate(plan, intervals)
        ceiling = self.estimator.escalate_ceiling(
            plan, current.total_consumed, ceiling, intervals
        )
        rate = self.burn_rate.calculate(intervals, now)
        return self.analyze(current, intervals, ceiling, rate, now, daily_cost)
