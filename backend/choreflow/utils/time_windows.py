"""Time-of-day window arithmetic shared by the dispatch queue and reminders"""
from datetime import datetime, timedelta
from typing import Iterable, Optional, Tuple

MINUTES_PER_DAY = 24 * 60


def parse_time_of_day(value: str) -> int:
    """Parse ``"HH:MM"`` into minutes since midnight.

    Raises:
        ValueError: if the string is not a valid 24-hour time
    """
    try:
        hours_str, minutes_str = value.strip().split(":")
        hours, minutes = int(hours_str), int(minutes_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f"Invalid time of day: {value!r} (expected HH:MM)")
    return hours * 60 + minutes


def split_time_of_day(value: str) -> Tuple[int, int]:
    minutes = parse_time_of_day(value)
    return minutes // 60, minutes % 60


def minutes_of_day(moment: datetime) -> int:
    return moment.hour * 60 + moment.minute


def is_within_window(moment: datetime, start: str, end: str) -> bool:
    """Whether ``moment`` falls in ``[start, end)``; a window with start > end wraps midnight"""
    start_minutes = parse_time_of_day(start)
    end_minutes = parse_time_of_day(end)
    current = minutes_of_day(moment)

    if start_minutes > end_minutes:
        return current >= start_minutes or current < end_minutes
    return start_minutes <= current < end_minutes


def at_time_of_day(moment: datetime, value: str) -> datetime:
    """Same calendar day as ``moment`` at the given ``HH:MM``"""
    hours, minutes = split_time_of_day(value)
    return moment.replace(hour=hours, minute=minutes, second=0, microsecond=0)


def adjust_for_quiet_hours(candidate: datetime, window, now: Optional[datetime] = None) -> datetime:
    """Move ``candidate`` out of a quiet window to the window's end.

    ``window`` is anything with ``start``/``end`` time-of-day strings and an
    optional ``enabled`` flag. A time outside the window (or a disabled
    window) is returned unchanged. Inside the window the result is the end
    time on the candidate's day, pushed to the next day when that would be
    earlier than the candidate itself or already in the past relative to
    ``now``.
    """
    if window is None or not getattr(window, "enabled", True):
        return candidate

    if not is_within_window(candidate, window.start, window.end):
        return candidate

    adjusted = at_time_of_day(candidate, window.end)
    if adjusted < candidate or (now is not None and adjusted < now):
        adjusted += timedelta(days=1)
    return adjusted


def snap_to_optimal_time(
    candidate: datetime,
    optimal_times: Iterable[str],
    tolerance_minutes: int = 60,
) -> datetime:
    """Replace ``candidate`` with the nearest occurrence of a learned optimal time-of-day.

    Distances wrap midnight, so 23:50 can snap to 00:10 on the next day.
    Only entries strictly closer than ``tolerance_minutes`` are considered;
    otherwise the candidate is returned as is.
    """
    current = minutes_of_day(candidate)
    best = candidate
    best_difference = None

    for optimal in optimal_times:
        offset = parse_time_of_day(optimal) - current
        if offset > MINUTES_PER_DAY // 2:
            offset -= MINUTES_PER_DAY
        elif offset < -(MINUTES_PER_DAY // 2):
            offset += MINUTES_PER_DAY
        difference = abs(offset)
        if difference >= tolerance_minutes:
            continue
        if best_difference is None or difference < best_difference:
            best_difference = difference
            best = candidate.replace(second=0, microsecond=0) + timedelta(minutes=offset)

    return best
