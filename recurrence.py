from datetime import date, datetime, timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from config import get_settings
from models import RecurringExpense, RecurringFrequency
from periods import Period, shift_month


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    next_year, next_month = shift_month(year, month, 1)
    return (date(next_year, next_month, 1) - date(year, month, 1)).days


def clamp_date(year: int, month: int, day: int) -> date:
    return date(year, month, min(day, days_in_month(year, month)))


def add_months(base: date, months: int, *, desired_day: Optional[int] = None) -> date:
    """Move ``base`` by whole months, snapping to month end when the day overflows."""
    year, month = shift_month(base.year, base.month, months)
    return clamp_date(year, month, desired_day or base.day)


def next_due_date(
    start_date: date,
    due_day: Optional[int],
    frequency: RecurringFrequency,
    end_date: Optional[date] = None,
    *,
    today: date,
) -> Optional[date]:
    """First due date strictly after ``today`` and not before ``start_date``.

    Returns ``None`` once the schedule is past ``end_date``.
    """
    base = start_date if start_date > today else today

    if frequency == RecurringFrequency.weekly:
        if start_date > today:
            candidate = start_date
        else:
            weeks = (today - start_date).days // 7 + 1
            candidate = start_date + timedelta(weeks=weeks)
    elif frequency == RecurringFrequency.yearly:
        day = due_day or start_date.day
        candidate = clamp_date(base.year, start_date.month, day)
        if candidate <= today or candidate < start_date:
            candidate = clamp_date(base.year + 1, start_date.month, day)
    else:
        day = due_day or start_date.day
        candidate = clamp_date(base.year, base.month, day)
        if candidate <= today or candidate < start_date:
            candidate = add_months(candidate, 1, desired_day=day)

    if end_date and candidate > end_date:
        return None
    return candidate


def due_date_in_period(expense: RecurringExpense, period: Period) -> Optional[date]:
    """Due date of the single bill ``expense`` produces in a calendar month.

    Weekly schedules do not produce monthly bills. Like ``next_due_date``,
    a due date before ``start_date`` or after ``end_date`` is not a bill.
    """
    if expense.start_date > period.end:
        return None
    if expense.end_date and expense.end_date < period.start:
        return None
    day = expense.due_day or expense.start_date.day
    if expense.frequency == RecurringFrequency.monthly:
        due = clamp_date(period.start.year, period.start.month, day)
    elif expense.frequency == RecurringFrequency.yearly:
        if period.start.month != expense.start_date.month:
            return None
        due = clamp_date(period.start.year, period.start.month, day)
    else:
        return None
    if due < expense.start_date or (expense.end_date and due > expense.end_date):
        return None
    return due


def refresh_next_due_date(expense: RecurringExpense, today: Optional[date] = None) -> None:
    today = today or local_today()
    expense.next_due_date = next_due_date(
        expense.start_date,
        expense.due_day,
        expense.frequency,
        expense.end_date,
        today=today,
    )
