"""
Plan tiers and category resolution.

Each tier is a fixed allowance of items (messages) multiplied by a per-item
consumption figure to give a reference ceiling.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Mapping

from session_guard.storage.models import UsageInterval

logger = logging.getLogger(__name__)

AUTO_CATEGORY = "auto"
FALLBACK_CATEGORY = "pro"

# Peak session consumption that indicates a larger plan
MAX20_DETECTION_THRESHOLD = 100_000
MAX5_DETECTION_THRESHOLD = 25_000


@dataclass(frozen=True)
class CategoryProfile:
    """Static consumption policy for one plan tier."""
    item_allowance: int
    default_per_item: int
    
    def __post_init__(self):
        """Validate profile values are positive."""
        if self.item_allowance <= 0:
            raise ValueError("item_allowance must be > 0")
        if self.default_per_item <= 0:
            raise ValueError("default_per_item must be > 0")
    
    @property
    def default_ceiling(self) -> int:
        """Reference ceiling when no per-item history is available."""
        return self.item_allowance * self.default_per_item


@dataclass(frozen=True)
class TierTable:
    """Lookup of known tiers by name."""
    profiles: Mapping[str, CategoryProfile]
    
    def get_profile(self, category: str) -> CategoryProfile:
        """Get the profile for a tier, falling back to the lowest tier.
        
        Args:
            category: Tier name
            
        Returns:
            CategoryProfile for the tier, or the pro profile if unknown
        """
        if category in self.profiles:
            return self.profiles[category]
        return self.profiles[FALLBACK_CATEGORY]
    
    def names(self) -> list:
        return list(self.profiles)
    
    def with_overrides(self, overrides: Mapping[str, CategoryProfile]) -> "TierTable":
        """Return a new table with the given profiles added or replaced."""
        merged: Dict[str, CategoryProfile] = dict(self.profiles)
        merged.update(overrides)
        return TierTable(merged)


DEFAULT_TIERS = TierTable({
    "pro": CategoryProfile(item_allowance=45, default_per_item=150),
    "max5": CategoryProfile(item_allowance=225, default_per_item=150),
    "max20": CategoryProfile(item_allowance=900, default_per_item=150),
})


def resolve_category(
    category: str,
    intervals: Iterable[UsageInterval],
    tiers: TierTable = DEFAULT_TIERS,
) -> str:
    """Map a requested category to a concrete tier name.
    
    "auto" is detected from the largest session in the history. Unknown
    names fall back to the lowest tier.
    
    Args:
        category: Requested tier name or "auto"
        intervals: Historical usage intervals
        tiers: Known tiers
        
    Returns:
        Concrete tier name
    """
    if category == AUTO_CATEGORY:
        peak = max(
            (i.total_consumed for i in intervals if not i.is_gap),
            default=0,
        )
        if peak > MAX20_DETECTION_THRESHOLD:
            resolved = "max20"
        elif peak > MAX5_DETECTION_THRESHOLD:
            resolved = "max5"
        else:
            resolved = FALLBACK_CATEGORY
        logger.debug("Auto-detected tier %s from peak session of %d", resolved, peak)
        return resolved
    
    if category in tiers.profiles:
        return category
    
    logger.debug("Unknown tier %r, falling back to %s", category, FALLBACK_CATEGORY)
    return FALLBACK_CATEGORY
