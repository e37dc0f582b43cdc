"""Ordering-window evaluation.

Pure functions deciding whether "now", in a window's timezone, falls inside
a recurring window.  Day numbers are 0 (Sunday) .. 6 (Saturday); 7 is
accepted as Sunday.  An empty day set means every day.  Both time bounds
are inclusive; ``start > end`` describes a window that wraps midnight.
"""

import logging
from datetime import datetime
from typing import Any, Iterable, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session

from rivercafe.core.config import settings
from rivercafe.core.timeutils import get_zone, utcnow
from rivercafe.models import OrderingWindow

logger = logging.getLogger(__name__)


def normalize_days(days: Optional[Iterable[Any]]) -> set[int]:
    """Coerce stored day values to a set of 0..6, dropping junk."""
    result: set[int] = set()
    for value in days or []:
        try:
            day = int(value)
        except (TypeError, ValueError):
            continue
        if day == 7:
            day = 0
        if 0 <= day <= 6:
            result.add(day)
    return result


def parse_hhmm(value: Optional[str]) -> Optional[int]:
    """``"HH:MM"`` to minutes after midnight; None when empty or malformed."""
    if not value:
        return None
    try:
        hours, minutes = str(value).strip().split(":", 1)
        hours_i, minutes_i = int(hours), int(minutes)
    except ValueError:
        logger.warning(f"Ignoring malformed window time {value!r}")
        return None
    if not (0 <= hours_i <= 23 and 0 <= minutes_i <= 59):
        logger.warning(f"Ignoring out-of-range window time {value!r}")
        return None
    return hours_i * 60 + minutes_i


def local_time_parts(tz_name: Optional[str], now: Optional[datetime] = None) -> Tuple[int, int]:
    """Return ``(minute_of_day, day_of_week)`` for *now* in *tz_name*.

    Day of week uses 0 = Sunday.
    """
    now = now or utcnow()
    local = now.astimezone(get_zone(tz_name))
    return local.hour * 60 + local.minute, local.isoweekday() % 7


def time_in_range(minute: int, start: Optional[int], end: Optional[int]) -> bool:
    if start is not None and end is not None:
        if start <= end:
            return start <= minute <= end
        # wraps midnight, e.g. 22:00-02:00
        return minute >= start or minute <= end
    if start is not None:
        return minute >= start
    if end is not None:
        return minute <= end
    return True


def window_includes(window: Any, now: Optional[datetime] = None) -> bool:
    """Whether *window* (an OrderingWindow or anything shaped like one) is open at *now*."""
    tz_name = getattr(window, "timezone", None) or settings.timezone
    minute, day = local_time_parts(tz_name, now)
    days = normalize_days(getattr(window, "days_of_week", None))
    if days and day not in days:
        return False
    return time_in_range(minute, parse_hhmm(window.start_time), parse_hhmm(window.end_time))


def is_ordering_open(windows: Iterable[Any], now: Optional[datetime] = None) -> bool:
    """True when at least one active window currently matches."""
    return first_open_window(windows, now) is not None


def first_open_window(windows: Iterable[Any], now: Optional[datetime] = None) -> Optional[Any]:
    for window in windows:
        if getattr(window, "active", True) and window_includes(window, now):
            return window
    return None


def windows_for(db: Session, special: bool, categories: Sequence[Optional[str]] = ()) -> list[OrderingWindow]:
    """Active windows of one kind that apply to any of *categories*.

    A window without a category applies to every category.
    """
    stmt = select(OrderingWindow).where(
        OrderingWindow.active.is_(True),
        OrderingWindow.is_special.is_(special),
    ).order_by(OrderingWindow.priority.desc(), OrderingWindow.id.asc())
    wanted = {(c or "").strip().lower() for c in categories if c}
    return [
        w for w in db.scalars(stmt)
        if not w.category or not wanted or w.category.strip().lower() in wanted
    ]
