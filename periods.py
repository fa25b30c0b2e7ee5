from dataclasses import dataclass
from datetime import date
from typing import Optional


@dataclass(frozen=True)
class Period:
    slug: str
    start: date
    end: date

    @property
    def month(self) -> int:
        return self.start.month

    @property
    def year(self) -> int:
        return self.start.year


def month_end(d: date) -> date:
    first = d.replace(day=1)
    if first.month == 12:
        next_month = first.replace(year=first.year + 1, month=1)
    else:
        next_month = first.replace(month=first.month + 1)
    return next_month - date.resolution


def month_period(
    month: Optional[int],
    year: Optional[int],
    *,
    today: date,
) -> Period:
    """Calendar month for ``month``/``year``; missing parts come from ``today``."""
    target_month = month if month is not None else today.month
    target_year = year if year is not None else today.year
    if not 1 <= target_month <= 12:
        raise ValueError("Month must be between 1 and 12")
    if not 1 <= target_year <= 9999:
        raise ValueError("Invalid year")
    first = date(target_year, target_month, 1)
    return Period("month", first, month_end(first))


def custom_period(start: Optional[date], end: Optional[date]) -> Period:
    if not start or not end:
        raise ValueError("startDate and endDate are required")
    if start > end:
        raise ValueError("Start date must be before end date")
    return Period("custom", start, end)
