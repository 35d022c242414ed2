from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    def contains(self, value: date) -> bool:
        return self.start <= value <= self.end


def shift_month(year: int, month: int, delta: int) -> tuple[int, int]:
    total = year * 12 + (month - 1) + delta
    return total // 12, total % 12 + 1


def month_period(year: int, month: int) -> Period:
    first = date(year, month, 1)
    next_year, next_month = shift_month(year, month, 1)
    last = date(next_year, next_month, 1) - date.resolution
    return Period(f"{year:04d}-{month:02d}", first, last)


def parse_month(value: Optional[str], *, today: Optional[date] = None) -> Period:
    """Resolve a ``YYYY-MM`` string; empty means the current month."""
    if not value:
        today = today or date.today()
        return month_period(today.year, today.month)
    try:
        year_str, month_str = value.split("-", 1)
        year = int(year_str)
        month = int(month_str)
    except ValueError as exc:
        raise ValueError("Month must use the YYYY-MM format") from exc
    if not 1 <= month <= 12 or not 1970 <= year <= 3000:
        raise ValueError("Month must use the YYYY-MM format")
    return month_period(year, month)


def trailing_months(today: date, count: int = 12) -> list[Period]:
    periods = []
    for offset in range(count - 1, -1, -1):
        year, month = shift_month(today.year, today.month, -offset)
        periods.append(month_period(year, month))
    return periods
