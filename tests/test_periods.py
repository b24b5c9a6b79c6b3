from datetime import date

import pytest

from periods import last_salary_date, pay_period_window, resolve_period


def test_pay_period_before_pay_day_starts_in_previous_month() -> None:
    # 27 Jan 2025 is a Monday
    window = pay_period_window(27, today=date(2025, 2, 26))

    assert window.start == date(2025, 1, 27)
    assert window.end == date(2025, 2, 26)


def test_pay_day_on_weekend_moves_to_friday() -> None:
    # 27 Sep 2025 is a Saturday, 27 Jul 2025 is a Sunday
    assert last_salary_date(27, today=date(2025, 9, 30)) == date(2025, 9, 26)
    assert last_salary_date(27, today=date(2025, 7, 28)) == date(2025, 7, 25)


def test_today_between_shifted_friday_and_nominal_day_uses_this_month() -> None:
    assert last_salary_date(27, today=date(2025, 9, 26)) == date(2025, 9, 26)


def test_pay_day_past_month_end_clamps() -> None:
    # 28 Feb 2025 is a Friday
    assert last_salary_date(31, today=date(2025, 3, 1)) == date(2025, 2, 28)


def test_invalid_pay_day_rejected() -> None:
    with pytest.raises(ValueError):
        last_salary_date(0, today=date(2025, 1, 1))


def test_resolve_named_periods() -> None:
    today = date(2025, 3, 15)

    assert resolve_period("all", today=today).start is None
    assert resolve_period("this_month", today=today).end == date(2025, 3, 31)
    last_month = resolve_period("last_month", today=today)
    assert (last_month.start, last_month.end) == (date(2025, 2, 1), date(2025, 2, 28))
    assert resolve_period("last_30_days", today=today).start == date(2025, 2, 13)
    assert resolve_period("pay_period", pay_day=27, today=today).start == date(2025, 2, 27)


def test_resolve_custom_period_validation() -> None:
    custom = resolve_period("custom", "2025-01-01", "2025-01-31")
    assert custom.start == date(2025, 1, 1)

    with pytest.raises(ValueError):
        resolve_period("custom", "2025-02-01", "2025-01-01")
    with pytest.raises(ValueError):
        resolve_period("custom", "2025-02-01", None)
    with pytest.raises(ValueError):
        resolve_period("fortnight")
