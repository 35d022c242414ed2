from datetime import date

import pytest

from periods import month_period, parse_month, shift_month, trailing_months


def test_month_period_bounds():
    feb = month_period(2024, 2)
    assert feb.slug == "2024-02"
    assert feb.start == date(2024, 2, 1)
    assert feb.end == date(2024, 2, 29)
    assert feb.contains(date(2024, 2, 29))
    assert not feb.contains(date(2024, 3, 1))


def test_shift_month_wraps_years():
    assert shift_month(2025, 1, -1) == (2024, 12)
    assert shift_month(2024, 12, 1) == (2025, 1)
    assert shift_month(2025, 3, -15) == (2023, 12)


def test_parse_month():
    assert parse_month("2025-03").slug == "2025-03"
    assert parse_month(None, today=date(2025, 7, 4)).slug == "2025-07"
    for bad in ("2025-13", "2025", "march", "2025-00"):
        with pytest.raises(ValueError, match="YYYY-MM"):
            parse_month(bad)


def test_trailing_months_oldest_first():
    months = trailing_months(date(2025, 3, 15), 12)
    assert len(months) == 12
    assert months[0].slug == "2024-04"
    assert months[-1].slug == "2025-03"
