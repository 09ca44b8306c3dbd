import calendar as _calendar
from datetime import date, timedelta, tzinfo
from enum import Enum

from timeflow.core.aggregation import group_by_day, total_duration


class ViewMode(str, Enum):
    DAY = "day"
    WEEK = "week"
    MONTH = "month"


def add_days(day: date, days: int) -> date:
    return day + timedelta(days=days)

# Same day-of-month `months` away, clamped to the length of the target month (Jan 31 + 1 -> Feb 28/29).
def add_months(day: date, months: int) -> date:
    index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(index, 12)
    month += 1
    return date(year, month, min(day.day, _calendar.monthrange(year, month)[1]))

# Weeks start on Monday.
def start_of_week(day: date) -> date:
    return day - timedelta(days=day.weekday())

def week_days(day: date) -> list:
    monday = start_of_week(day)
    return [monday + timedelta(days=i) for i in range(7)]

# All days of the anchor's month, padded with the tail of the previous month and the head of the next
# one so the grid is made of whole Monday-to-Sunday weeks.
def month_grid(day: date) -> list:
    first = day.replace(day=1)
    last = first.replace(day=_calendar.monthrange(first.year, first.month)[1])
    grid_start = start_of_week(first)
    grid_end = start_of_week(last) + timedelta(days=6)
    return [grid_start + timedelta(days=i) for i in range((grid_end - grid_start).days + 1)]

def view_days(mode, anchor: date) -> list:
    mode = ViewMode(mode)
    if mode is ViewMode.DAY:
        return [anchor]
    if mode is ViewMode.WEEK:
        return week_days(anchor)
    return month_grid(anchor)

# Moves the anchor `steps` views forward (negative for back): a day, a week or a month at a time.
def shift(mode, anchor: date, steps: int = 1) -> date:
    mode = ViewMode(mode)
    if mode is ViewMode.DAY:
        return add_days(anchor, steps)
    if mode is ViewMode.WEEK:
        return add_days(anchor, 7 * steps)
    return add_months(anchor, steps)

def entries_by_view(entries, mode, anchor: date, tz: tzinfo | None = None):
    days = view_days(mode, anchor)
    return group_by_day(entries, (days[0], days[-1]), tz)

# Total closed milliseconds per day for the given days.
def day_totals(entries, days, tz: tzinfo | None = None) -> dict:
    if not days:
        return {}
    grouped = group_by_day(entries, (min(days), max(days)), tz)
    return {day: total_duration(grouped.get(day, [])) for day in days}
