"""
Analysis Window

Resolves the period over which period-scoped aggregates are computed.
A trailing window is derived from a day count; an explicit window is
validated before any raw data is read.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
import math
from typing import Optional, Union

from .exceptions import InvalidWindowError

DAY = timedelta(days=1)
DEFAULT_ANALYSIS_DAYS = 30


def utcnow() -> datetime:
    """Naive UTC timestamp; all stored timestamps are naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


@dataclass(frozen=True)
class AnalysisWindow:
    """Resolved analysis window"""
    start: datetime
    end: datetime
    days: int
    explicit: bool = False

    def contains(self, moment: datetime, end_inclusive: bool = True) -> bool:
        if moment < self.start:
            return False
        return moment <= self.end if end_inclusive else moment < self.end


def _normalize_days(analysis_window_days: Optional[Union[int, float]], default_days: int) -> int:
    if analysis_window_days is None:
        return max(1, default_days)
    if isinstance(analysis_window_days, float) and not math.isfinite(analysis_window_days):
        raise InvalidWindowError(f"Invalid analysis window length: {analysis_window_days}")
    return max(1, math.floor(analysis_window_days))


def resolve_window(
    analysis_window_days: Optional[Union[int, float]] = None,
    window_start: Optional[datetime] = None,
    window_end: Optional[datetime] = None,
    now: Optional[datetime] = None,
    default_days: int = DEFAULT_ANALYSIS_DAYS,
) -> AnalysisWindow:
    """
    Resolve the analysis window for a rebuild.

    Args:
        analysis_window_days: Trailing window length; floored, minimum 1
        window_start: Explicit window start (requires window_end)
        window_end: Explicit window end
        now: Reference time for trailing windows
        default_days: Length used when nothing is given

    Raises:
        InvalidWindowError: Explicit window is incomplete or end <= start
    """
    if window_start is not None or window_end is not None:
        if window_start is None or window_end is None:
            raise InvalidWindowError("Explicit window requires both window_start and window_end")
        if window_end <= window_start:
            raise InvalidWindowError(
                f"Invalid snapshot window: end {window_end.isoformat()} "
                f"must be after start {window_start.isoformat()}"
            )
        days = max(1, math.floor((window_end - window_start) / DAY + 0.5))
        return AnalysisWindow(start=window_start, end=window_end, days=days, explicit=True)

    days = _normalize_days(analysis_window_days, default_days)
    end = now or utcnow()
    return AnalysisWindow(start=end - days * DAY, end=end, days=days)
