from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from typing import Callable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .errors import KpiInputError

logger = logging.getLogger(__name__)

PRESETS = ("last-week", "last-month", "last-year", "all-time")
DEFAULT_PRESET = "last-week"
EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
WEEK = timedelta(days=7)
DAY = timedelta(days=1)


def coerce_timezone(name: str) -> ZoneInfo:
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        logger.warning("Unknown timezone %r, falling back to UTC", name)
        return ZoneInfo("UTC")


def _normalize_datetime(dt: datetime, tz: ZoneInfo) -> datetime:
    # Naive timestamps come from MongoDB/SQL drivers and are stored in UTC.
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(tz)


def _instant(dt: datetime) -> datetime:
    return dt.astimezone(timezone.utc)


def _shift_months(moment: datetime, months: int) -> datetime:
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


@dataclass(frozen=True)
class TimeWindow:
    """
    Half-open ``[start, end)`` interval expressed in the canonical timezone.

    Every calendar bucketing operation (day keys, week indices anchored at
    ``start``, month keys) goes through this object so KPI code never performs
    its own timezone conversion.
    """

    start: datetime
    end: datetime
    tz: ZoneInfo

    def localize(self, moment: datetime) -> datetime:
        return _normalize_datetime(moment, self.tz)

    def contains(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        return _instant(self.start) <= _instant(self.localize(moment)) < _instant(self.end)

    def before_end(self, moment: Optional[datetime]) -> bool:
        if moment is None:
            return False
        return _instant(self.localize(moment)) < _instant(self.end)

    def local_date(self, moment: datetime) -> date:
        return self.localize(moment).date()

    def day_key(self, moment: datetime) -> str:
        return self.local_date(moment).isoformat()

    def week_index(self, moment: datetime) -> int:
        return int((_instant(self.localize(moment)) - _instant(self.start)) // WEEK)

    def week_start(self, index: int) -> str:
        return (self.start + index * WEEK).date().isoformat()

    def month_key(self, moment: datetime) -> Tuple[int, int]:
        local = self.localize(moment)
        return local.year, local.month

    def days_between(self, earlier: datetime, later: datetime) -> float:
        return (_instant(self.localize(later)) - _instant(self.localize(earlier))) / DAY

    @property
    def length_days(self) -> float:
        """Calendar length of the window; a DST change does not shorten a day."""
        return (self.end - self.start) / DAY


class TimeWindowResolver:
    """
    Turn caller-supplied ranges into concrete windows.

    Explicit ``(start_date, end_date)`` pairs are inclusive calendar dates on
    the caller side and become ``[start 00:00, end + 1 day 00:00)``. Presets
    are measured back from ``now``.
    """

    def __init__(self, timezone_name: str, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.tz = coerce_timezone(timezone_name)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def now(self) -> datetime:
        return _normalize_datetime(self._clock(), self.tz)

    def resolve(
        self,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
        preset: Optional[str] = None,
    ) -> TimeWindow:
        if start_date or end_date:
            if not (start_date and end_date):
                raise KpiInputError("Both startDate and endDate are required for an explicit range")
            return self.from_dates(_parse_date(start_date, "startDate"), _parse_date(end_date, "endDate"))
        if preset:
            return self.from_preset(preset)
        raise KpiInputError("A date range (startDate and endDate) or a preset range is required")

    def from_dates(self, start_date: date, end_date: date) -> TimeWindow:
        if end_date < start_date:
            raise KpiInputError("endDate must not be earlier than startDate")
        start = datetime.combine(start_date, time.min, tzinfo=self.tz)
        end = datetime.combine(end_date + DAY, time.min, tzinfo=self.tz)
        return TimeWindow(start=start, end=end, tz=self.tz)

    def from_preset(self, preset: str) -> TimeWindow:
        name = preset.strip().lower().replace("_", "-")
        if name not in PRESETS:
            logger.warning("Unknown date range preset %r, using %s", preset, DEFAULT_PRESET)
            name = DEFAULT_PRESET

        end = self.now()
        if name == "last-week":
            start = end - WEEK
        elif name == "last-month":
            start = _shift_months(end, -1)
        elif name == "last-year":
            start = _shift_months(end, -12)
        else:
            start = EPOCH.astimezone(self.tz)
        return TimeWindow(start=start, end=end, tz=self.tz)


def _parse_date(raw: str, field_name: str) -> date:
    value = raw.strip()
    try:
        if "T" in value:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        return date.fromisoformat(value)
    except ValueError as exc:
        raise KpiInputError(f"{field_name} is not a valid ISO date: {raw!r}") from exc
