"""Next-run calculation for recurring task templates"""
from datetime import datetime, timedelta

from choreflow.models.task import RecurrenceRule, RecurrenceType, Weekday
from choreflow.utils.time_windows import at_time_of_day


def calculate_next_run_date(rule: RecurrenceRule, now: datetime) -> datetime:
    """
    Next time a recurrence rule fires after ``now``.

    - daily: tomorrow at the rule's time
    - weekly: today if it is a listed day and the time is still ahead,
      otherwise the next listed day within a week
    - anything else (custom, weekly without days): tomorrow at the rule's time

    Pure: depends only on ``rule`` and ``now``. The result is always strictly
    after ``now``.
    """
    if rule.type == RecurrenceType.WEEKLY and rule.days_of_week:
        days = set(rule.days_of_week)
        today = Weekday.of(now)
        target_today = at_time_of_day(now, rule.time)

        if today in days and target_today > now:
            return target_today

        for offset in range(1, 8):
            candidate_day = Weekday((today + offset) % 7)
            if candidate_day in days:
                return at_time_of_day(now + timedelta(days=offset), rule.time)

    return at_time_of_day(now + timedelta(days=1), rule.time)
