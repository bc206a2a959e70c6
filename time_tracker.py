"""
Time Tracker Module - Weekly distribution of estimated task hours
"""

import logging
import math
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Iterable, List, Tuple, Union

from database import Database, utc_now
from errors import InternalError
from task_validator import parse_datetime

logger = logging.getLogger(__name__)

WEEKDAY_LABELS = ['Mon', 'Tue', 'Wed', 'Thu', 'Fri', 'Sat', 'Sun']
MAX_HOURS_PER_DAY = 24


def week_bounds(anchor: Union[date, datetime]) -> Tuple[datetime, datetime]:
    """
    Monday 00:00 and Sunday 23:59:59.999999 of the week containing ``anchor``.
    """
    day = anchor.date() if isinstance(anchor, datetime) else anchor
    week_start = datetime(day.year, day.month, day.day) - timedelta(days=day.weekday())
    week_end = week_start + timedelta(days=7) - timedelta(microseconds=1)
    return week_start, week_end


def task_day_span(start_date: datetime, due_date: datetime) -> int:
    """Number of calendar days a task touches, counting both ends."""
    return (due_date.date() - start_date.date()).days + 1


def compute_weekly_histogram(tasks: Iterable[Dict[str, Any]],
                             week_anchor: Union[date, datetime]) -> List[float]:
    """
    Spread each task's estimated hours over the days it spans and sum them
    per weekday, Monday first.

    Only tasks lying entirely inside the week are counted. Every day but the
    last gets ``ceil(estimate / days)`` hours; the last day gets what is
    left. No day receives more than 24 hours from a single task.
    """
    week_start, week_end = week_bounds(week_anchor)
    hours: List[float] = [0] * 7

    for task in tasks:
        start_date, due_date = task['start_date'], task['due_date']
        if start_date < week_start or due_date > week_end:
            continue

        estimated = task.get('estimated_time') or 0
        days_in_task = task_day_span(start_date, due_date)
        if days_in_task < 1:
            raise InternalError(
                f"Task {task.get('id', task.get('name'))} spans {days_in_task} days; "
                "dueDate must be after startDate"
            )

        hours_per_day = math.ceil(estimated / days_in_task)
        first_day = start_date.date()
        for offset in range(days_in_task - 1):
            weekday = (first_day + timedelta(days=offset)).weekday()
            hours[weekday] += min(hours_per_day, MAX_HOURS_PER_DAY)

        # ceil() can overshoot on the earlier days, so the remainder may be negative
        remainder = estimated - hours_per_day * (days_in_task - 1)
        hours[due_date.weekday()] += min(remainder, MAX_HOURS_PER_DAY)

    return hours


class TimeTracker:
    """
    Builds the per-weekday workload chart for a user from the task store.
    """

    def __init__(self, db: Database, clock: Callable[[], datetime] = utc_now):
        """Initialize time tracker with database instance."""
        self.db = db
        self.clock = clock

    def get_daily_time_spent(self, user_id: int, anchor: Union[str, date, datetime, None] = None) -> Dict[str, Any]:
        """Hours per weekday for the week containing ``anchor`` (default: this week)."""
        if anchor is None or anchor == '':
            anchor = self.clock()
        elif isinstance(anchor, str):
            anchor = parse_datetime(anchor, 'startDate')

        week_start, week_end = week_bounds(anchor)
        tasks = self.db.find_tasks_for_user(user_id, week_start, week_end)
        data = compute_weekly_histogram(tasks, anchor)
        logger.debug("Weekly hours for user %s from %s: %s", user_id, week_start.date(), data)

        return {
            'labels': list(WEEKDAY_LABELS),
            'data': data,
            'week_start': week_start.date().isoformat(),
            'week_end': week_end.date().isoformat(),
        }
