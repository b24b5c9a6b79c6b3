import calendar
from dataclasses import dataclass
from datetime import date, timedelta
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: Optional[date]
    end: date


def _payday_in_month(year: int, month: int, pay_day: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    salary = date(year, month, min(pay_day, last_day))
    # Saturday -> Friday, Sunday -> Friday
    if salary.weekday() == 5:
        salary -= timedelta(days=1)
    elif salary.weekday() == 6:
        salary -= timedelta(days=2)
    return salary


def last_salary_date(pay_day: int, *, today: Optional[date] = None) -> date:
    if not 1 <= pay_day <= 31:
        raise ValueError("Pay day must be between 1 and 31")
    today = today or date.today()
    salary = _payday_in_month(today.year, today.month, pay_day)
    if today < salary:
        first_this = today.replace(day=1)
        last_month = first_this - date.resolution
        salary = _payday_in_month(last_month.year, last_month.month, pay_day)
    return salary


def pay_period_window(pay_day: int, *, today: Optional[date] = None) -> Period:
    today = today or date.today()
    return Period("pay_period", last_salary_date(pay_day, today=today), today)


def resolve_period(
    period: Optional[str],
    start: Optional[str] = None,
    end: Optional[str] = None,
    *,
    pay_day: Optional[int] = None,
    today: Optional[date] = None,
) -> Period:
    today = today or date.today()
    if not period or period == "all":
        return Period("all", None, today)
    if period == "pay_period":
        if pay_day is None:
            raise ValueError("Pay period requires a pay day")
        return pay_period_window(pay_day, today=today)
    if period == "last_30_days":
        return Period("last_30_days", today - timedelta(days=30), today)
    if period == "last_month":
        first_this = today.replace(day=1)
        last_month_end = first_this - date.resolution
        last_month_start = last_month_end.replace(day=1)
        return Period("last_month", last_month_start, last_month_end)
    if period == "custom":
        if not start or not end:
            raise ValueError("Custom period requires start and end dates")
        start_date = date.fromisoformat(start)
        end_date = date.fromisoformat(end)
        if start_date > end_date:
            raise ValueError("Start date must be before end date")
        return Period("custom", start_date, end_date)
    if period != "this_month":
        raise ValueError(f"Unknown period: {period}")

    first = today.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    end_this = next_month - date.resolution
    return Period("this_month", first, end_this)
