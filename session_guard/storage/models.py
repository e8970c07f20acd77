"""
Data models for usage records.

Defines the interval and daily cost records supplied by the data source.
"""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional, Tuple


@dataclass(frozen=True)
class UsageInterval:
    """Immutable record of one usage session.
    
    Produced by the data source once per polling cycle and never mutated.
    Gap intervals are placeholders with no real consumption; the active
    interval has no fixed end and is treated as ending "now".
    """
    start_time: datetime
    end_time: Optional[datetime] = None
    total_consumed: int = 0
    item_count: int = 0
    is_active: bool = False
    is_gap: bool = False
    models: Tuple[str, ...] = ()
    
    def __post_init__(self):
        """Validate interval values are consistent."""
        if self.total_consumed < 0:
            raise ValueError("total_consumed cannot be negative")
        if self.item_count < 0:
            raise ValueError("item_count cannot be negative")
        if self.end_time is not None and self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
    
    @property
    def is_completed(self) -> bool:
        """True for real, closed intervals usable as history."""
        return not self.is_gap and not self.is_active


@dataclass(frozen=True)
class DailyCost:
    """Total spend for one calendar day, passed through to display."""
    day: date
    total_cost: float
