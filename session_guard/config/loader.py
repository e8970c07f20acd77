"""
Configuration management and loading.

Handles monitor settings: plan, display timezone, refresh interval,
tier overrides and warning thresholds.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

import yaml

from session_guard.core.estimator import ACCURACY_WARNING_PERCENT
from session_guard.core.tiers import AUTO_CATEGORY, DEFAULT_TIERS, CategoryProfile, TierTable

DEFAULT_TIMEZONE = "Asia/Tokyo"
DEFAULT_REFRESH_SECONDS = 3.0
DEFAULT_AUTO_SWITCH_TOKENS = 7000


@dataclass(frozen=True)
class ThresholdConfig:
    """Warning thresholds."""
    accuracy_warning_percent: float = ACCURACY_WARNING_PERCENT
    auto_switch_tokens: int = DEFAULT_AUTO_SWITCH_TOKENS
    
    def __post_init__(self):
        """Validate thresholds are positive."""
        if self.accuracy_warning_percent <= 0:
            raise ValueError("accuracy_warning_percent must be > 0")
        if self.auto_switch_tokens <= 0:
            raise ValueError("auto_switch_tokens must be > 0")


@dataclass(frozen=True)
class MonitorConfig:
    """Complete monitor configuration."""
    plan: str = AUTO_CATEGORY
    timezone: str = DEFAULT_TIMEZONE
    refresh_seconds: float = DEFAULT_REFRESH_SECONDS
    tiers: TierTable = DEFAULT_TIERS
    thresholds: ThresholdConfig = field(default_factory=ThresholdConfig)
    
    def __post_init__(self):
        """Validate refresh interval."""
        if self.refresh_seconds <= 0:
            raise ValueError("refresh_seconds must be > 0")
    
    def validated_plan(self) -> str:
        """The configured plan, or "auto" when it names no known tier."""
        if self.plan == AUTO_CATEGORY or self.plan in self.tiers.profiles:
            return self.plan
        return AUTO_CATEGORY


def default_monitor_config() -> MonitorConfig:
    """Configuration used when no file is given."""
    return MonitorConfig()


def load_monitor_config(path: str) -> MonitorConfig:
    """Load and validate monitor configuration from YAML file.
    
    Every section is optional; missing values take their defaults. Unknown
    keys are rejected so typos do not silently fall back to defaults.
    
    Args:
        path: Path to YAML configuration file
        
    Returns:
        Validated MonitorConfig object
        
    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Monitor config file not found: {path}")
    
    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")
    
    if not raw_config:
        return default_monitor_config()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration must be a dictionary")
    
    allowed_top_keys = {'plan', 'timezone', 'refresh_seconds', 'tiers', 'thresholds'}
    unknown_keys = set(raw_config.keys()) - allowed_top_keys
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")
    
    plan = raw_config.get('plan', AUTO_CATEGORY)
    if not isinstance(plan, str):
        raise ValueError("'plan' must be a string")
    
    timezone = raw_config.get('timezone', DEFAULT_TIMEZONE)
    if not isinstance(timezone, str):
        raise ValueError("'timezone' must be a string")
    
    refresh = raw_config.get('refresh_seconds', DEFAULT_REFRESH_SECONDS)
    if isinstance(refresh, bool) or not isinstance(refresh, (int, float)):
        raise ValueError("'refresh_seconds' must be a number")
    
    tiers_data = raw_config.get('tiers', {})
    if not isinstance(tiers_data, dict):
        raise ValueError("'tiers' must be a dictionary")
    
    overrides = {}
    for tier_name, tier_data in tiers_data.items():
        if not isinstance(tier_data, dict):
            raise ValueError(f"Tier '{tier_name}' must be a dictionary")
        overrides[str(tier_name)] = _parse_tier(tier_data, f"tiers.{tier_name}")
    
    thresholds_data = raw_config.get('thresholds', {})
    if not isinstance(thresholds_data, dict):
        raise ValueError("'thresholds' must be a dictionary")
    
    return MonitorConfig(
        plan=plan.lower(),
        timezone=timezone,
        refresh_seconds=float(refresh),
        tiers=DEFAULT_TIERS.with_overrides(overrides),
        thresholds=_parse_thresholds(thresholds_data),
    )


def load_or_default(path: Optional[str]) -> MonitorConfig:
    """Load the config at ``path``, or the defaults when no path is given."""
    if path is None:
        return default_monitor_config()
    return load_monitor_config(path)


def _require_positive_int(data: Dict, key: str, path: str) -> int:
    value = data[key]
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise ValueError(f"'{key}' in {path} must be a positive integer")
    return value


def _parse_tier(data: Dict, path: str) -> CategoryProfile:
    """Parse and validate one tier profile.
    
    Args:
        data: Tier configuration data
        path: Path for error messages
        
    Returns:
        Validated CategoryProfile
        
    Raises:
        ValueError: If configuration is invalid
    """
    allowed_keys = {'item_allowance', 'default_per_item'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown keys in {path}: {unknown_keys}")
    
    for key in sorted(allowed_keys):
        if key not in data:
            raise ValueError(f"Missing required '{key}' in {path}")
    
    return CategoryProfile(
        item_allowance=_require_positive_int(data, 'item_allowance', path),
        default_per_item=_require_positive_int(data, 'default_per_item', path),
    )


def _parse_thresholds(data: Dict) -> ThresholdConfig:
    """Parse and validate the thresholds section."""
    allowed_keys = {'accuracy_warning_percent', 'auto_switch_tokens'}
    unknown_keys = set(data.keys()) - allowed_keys
    if unknown_keys:
        raise ValueError(f"Unknown threshold keys: {unknown_keys}")
    
    percent = data.get('accuracy_warning_percent', ACCURACY_WARNING_PERCENT)
    if isinstance(percent, bool) or not isinstance(percent, (int, float)) or percent <= 0:
        raise ValueError("'accuracy_warning_percent' must be > 0")
    
    auto_switch = DEFAULT_AUTO_SWITCH_TOKENS
    if 'auto_switch_tokens' in data:
        auto_switch = _require_positive_int(data, 'auto_switch_tokens', 'thresholds')
    
    return ThresholdConfig(
        accuracy_warning_percent=float(percent),
        auto_switch_tokens=auto_switch,
    )
