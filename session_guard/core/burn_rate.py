"""
Burn rate over a trailing time window.

Each interval contributes the share of its consumption that falls inside
the window, assuming consumption is spread evenly over the interval.
"""

from datetime import datetime, timedelta
from typing import Sequence

from session_guard.storage.models import UsageInterval

DEFAULT_WINDOW = timedelta(hours=1)


class BurnRateCalculator:
    """Computes consumption per minute over a trailing window."""
    
    def __init__(self, window: timedelta = DEFAULT_WINDOW):
        if window <= timedelta(0):
            raise ValueError("window must be positive")
        self.window = window
    
    @property
    def window_minutes(self) -> float:
        return self.window.total_seconds() / 60.0
    
    def calculate(self, intervals: Sequence[UsageInterval], now: datetime) -> float:
        """Consumption per minute during ``[now - window, now]``.
        
        Args:
            intervals: Usage intervals, gaps included
            now: Current time, comparable with the interval timestamps
            
        Returns:
            Rate in units per minute, 0.0 when nothing falls in the window
        """
        window_start = now - self.window
        in_window = sum(
            self._consumed_in_window(interval, window_start, now)
            for interval in intervals
            if not interval.is_gap
        )
        return in_window / self.window_minutes
    
    def _consumed_in_window(
        self,
        interval: UsageInterval,
        window_start: datetime,
        window_end: datetime,
    ) -> float:
        """Portion of an interval's consumption inside the window."""
        interval_end = self._effective_end(interval, window_end)
        
        overlap_start = max(interval.start_time, window_start)
        overlap_end = min(interval_end, window_end)
        if overlap_end <= overlap_start:
            return 0.0
        
        total_minutes = (interval_end - interval.start_time).total_seconds() / 60.0
        if total_minutes <= 0:
            return 0.0
        
        overlap_minutes = (overlap_end - overlap_start).total_seconds() / 60.0
        return interval.total_consumed * (overlap_minutes / total_minutes)
    
    @staticmethod
    def _effective_end(interval: UsageInterval, now: datetime) -> datetime:
        if interval.is_active or interval.end_time is None:
            return now
        return interval.end_time
