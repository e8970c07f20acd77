"""
Repository pattern for usage data access.

Decodes ccusage JSON output into usage records, either by running the
ccusage command or by reading a previously saved JSON file.
"""

import json
import logging
import subprocess
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from .models import DailyCost, UsageInterval

logger = logging.getLogger(__name__)

CCUSAGE_COMMAND = "ccusage"
COMMAND_TIMEOUT_SECONDS = 30


class DataSourceUnavailable(Exception):
    """Raised when usage data cannot be fetched or decoded."""


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp, returning None when absent or invalid.
    
    Timestamps without an offset are taken as UTC.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _decode_models(value: Any) -> Tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(m for m in value if isinstance(m, str))


def decode_blocks(payload: Dict[str, Any]) -> List[UsageInterval]:
    """Decode a ``ccusage blocks --json`` document.
    
    Blocks without a parseable start time are skipped. An unparseable end
    time is treated as absent.
    
    Args:
        payload: Decoded JSON document
        
    Returns:
        Usage intervals in document order (oldest first)
        
    Raises:
        DataSourceUnavailable: If the document has no blocks list
    """
    blocks = payload.get("blocks") if isinstance(payload, dict) else None
    if not isinstance(blocks, list):
        raise DataSourceUnavailable("Usage data has no 'blocks' list")
    
    intervals = []
    for i, block in enumerate(blocks):
        if not isinstance(block, dict):
            logger.warning("Skipping block %d: not an object", i)
            continue

        start_time = parse_timestamp(block.get("startTime"))
        if start_time is None:
            logger.warning("Skipping block %d with invalid startTime %r", i, block.get("startTime"))
            continue

        end_time = parse_timestamp(block.get("actualEndTime"))
        if end_time is not None and end_time < start_time:
            end_time = None

        try:
            total_consumed = max(0, int(block.get("totalTokens") or 0))
            item_count = max(0, int(block.get("entries") or 0))
        except (TypeError, ValueError):
            logger.warning("Skipping block %d with non-numeric counts", i)
            continue

        intervals.append(UsageInterval(
            start_time=start_time,
            end_time=end_time,
            total_consumed=total_consumed,
            item_count=item_count,
            is_active=bool(block.get("isActive", False)),
            is_gap=bool(block.get("isGap", False)),
            models=_decode_models(block.get("models")),
        ))
    return intervals


def decode_daily(payload: Dict[str, Any]) -> List[DailyCost]:
    """Decode a ``ccusage daily --json`` document, skipping bad rows."""
    rows = payload.get("daily") if isinstance(payload, dict) else None
    if not isinstance(rows, list):
        raise DataSourceUnavailable("Usage data has no 'daily' list")
    
    costs = []
    for row in rows:
        try:
            day = date.fromisoformat(row["date"])
            total_cost = float(row.get("totalCost") or 0.0)
        except (AttributeError, KeyError, TypeError, ValueError):
            continue
        costs.append(DailyCost(day=day, total_cost=total_cost))
    return costs


class IntervalRepository:
    """Source of usage intervals for the analysis pass.
    
    Reads from a JSON file when one is given, otherwise runs ccusage.
    """
    
    def __init__(self, blocks_file: Optional[str] = None, command: str = CCUSAGE_COMMAND):
        """Initialize the repository.
        
        Args:
            blocks_file: Optional path to saved ``ccusage blocks --json`` output
            command: ccusage executable to run
        """
        self.blocks_file = blocks_file
        self.command = command
    
    def get_intervals(self) -> List[UsageInterval]:
        """Fetch all usage intervals.
        
        Raises:
            DataSourceUnavailable: If the data cannot be fetched or decoded
        """
        if self.blocks_file:
            payload = self._read_file(self.blocks_file)
        else:
            payload = self._run("blocks")
        return decode_blocks(payload)
    
    def get_daily_cost(self, day: date) -> Optional[float]:
        """Total cost for ``day``, or None when unavailable.
        
        The daily figure is informational only, so failures here are
        logged rather than raised.
        """
        if self.blocks_file:
            return None
        try:
            costs = decode_daily(self._run("daily"))
        except DataSourceUnavailable as e:
            logger.info("Daily cost unavailable: %s", e)
            return None
        
        for cost in costs:
            if cost.day == day:
                return cost.total_cost
        return None
    
    def _run(self, report: str) -> Dict[str, Any]:
        """Run ``ccusage <report> --json`` and decode its output."""
        try:
            completed = subprocess.run(
                [self.command, report, "--json"],
                capture_output=True,
                check=True,
                timeout=COMMAND_TIMEOUT_SECONDS,
            )
        except (OSError, subprocess.SubprocessError) as e:
            raise DataSourceUnavailable(f"Failed to run {self.command} {report}: {e}") from e
        
        try:
            return json.loads(completed.stdout.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DataSourceUnavailable(f"Invalid JSON from {self.command} {report}: {e}") from e
    
    @staticmethod
    def _read_file(path: str) -> Dict[str, Any]:
        blocks_path = Path(path)
        if not blocks_path.exists():
            raise DataSourceUnavailable(f"Usage data file not found: {path}")
        
        with open(blocks_path, "r", encoding="utf-8") as f:
            try:
                return json.load(f)
            except (UnicodeDecodeError, json.JSONDecodeError) as e:
                raise DataSourceUnavailable(f"Invalid JSON in usage data file {path}: {e}") from e


def get_repository(blocks_file: Optional[str] = None) -> IntervalRepository:
    """Get a repository instance.
    
    Args:
        blocks_file: Optional path to saved ccusage blocks JSON
        
    Returns:
        IntervalRepository instance
    """
    return IntervalRepository(blocks_file)
