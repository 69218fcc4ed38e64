"""
Fiscal period arithmetic.

The fiscal year runs July 1 of `fiscal_year` through June 30 of
`fiscal_year + 1`. Quarters are anchored to the fiscal-year start:
Q1 = Jul-Sep, Q2 = Oct-Dec, Q3 = Jan-Mar, Q4 = Apr-Jun.

All fiscal-calendar math for the engine flows through this module.
"""

import calendar
from dataclasses import dataclass
from datetime import date, datetime

from .constants import FISCAL_YEAR_START_MONTH
from .errors import InvalidPeriodError

# First calendar month of each fiscal quarter
_QUARTER_START_MONTHS = (7, 10, 1, 4)


def _calendar_year(fiscal_year: int, month: int) -> int:
    """Calendar year a month falls in for the given fiscal year."""
    return fiscal_year if month >= FISCAL_YEAR_START_MONTH else fiscal_year + 1


def _month_end(year: int, month: int) -> datetime:
    last_day = calendar.monthrange(year, month)[1]
    return datetime(year, month, last_day, 23, 59, 59)


def resolve_period(
    fiscal_year: int, quarter: int | None = None, month: int | None = None
) -> tuple[datetime, datetime]:
    """
    Resolve a fiscal period into concrete (start, end) instants.

    `month` wins over `quarter` when both are given; callers must not pass
    both (use Period.from_parts to have that rejected).
    """
    if month:
        year = _calendar_year(fiscal_year, month)
        return datetime(year, month, 1), _month_end(year, month)

    if quarter:
        start_month = _QUARTER_START_MONTHS[quarter - 1]
        end_month = start_month + 2
        year = _calendar_year(fiscal_year, start_month)
        return datetime(year, start_month, 1), _month_end(year, end_month)

    return (
        datetime(fiscal_year, FISCAL_YEAR_START_MONTH, 1),
        _month_end(fiscal_year + 1, FISCAL_YEAR_START_MONTH - 1),
    )


def fiscal_year_of(d: date) -> int:
    """Fiscal year a calendar date belongs to."""
    return d.year if d.month >= FISCAL_YEAR_START_MONTH else d.year - 1


def fiscal_quarter_of(month: int) -> int:
    """Fiscal quarter (1-4) of a calendar month."""
    if 7 <= month <= 9:
        return 1
    if 10 <= month <= 12:
        return 2
    if 1 <= month <= 3:
        return 3
    return 4


@dataclass(frozen=True)
class Period:
    """
    A fiscal period: a full year, one quarter, or one month.

    Build with the named constructors so at most one of quarter/month is set.
    """

    fiscal_year: int
    quarter: int | None = None
    month: int | None = None

    @classmethod
    def full_year(cls, fiscal_year: int) -> "Period":
        return cls(fiscal_year)

    @classmethod
    def of_quarter(cls, fiscal_year: int, quarter: int) -> "Period":
        if not 1 <= quarter <= 4:
            raise InvalidPeriodError(f"quarter must be 1-4, got {quarter}")
        return cls(fiscal_year, quarter=quarter)

    @classmethod
    def of_month(cls, fiscal_year: int, month: int) -> "Period":
        if not 1 <= month <= 12:
            raise InvalidPeriodError(f"month must be 1-12, got {month}")
        return cls(fiscal_year, month=month)

    @classmethod
    def from_parts(
        cls, fiscal_year: int, quarter: int | None = None, month: int | None = None
    ) -> "Period":
        """Validate loose (fiscal_year, quarter, month) parts into a Period."""
        if quarter and month:
            raise InvalidPeriodError("quarter and month are mutually exclusive")
        if month:
            return cls.of_month(fiscal_year, month)
        if quarter:
            return cls.of_quarter(fiscal_year, quarter)
        return cls.full_year(fiscal_year)

    @property
    def start(self) -> datetime:
        return resolve_period(self.fiscal_year, self.quarter, self.month)[0]

    @property
    def end(self) -> datetime:
        return resolve_period(self.fiscal_year, self.quarter, self.month)[1]

    @property
    def key_suffix(self) -> str:
        """Quarter number or "full"; months share the full-year key."""
        return str(self.quarter) if self.quarter else "full"

    def previous(self) -> "Period":
        """The period immediately before this one, rolling over fiscal years."""
        if self.month:
            if self.month == FISCAL_YEAR_START_MONTH:
                return Period(self.fiscal_year - 1, month=FISCAL_YEAR_START_MONTH - 1)
            return Period(self.fiscal_year, month=12 if self.month == 1 else self.month - 1)
        if self.quarter:
            if self.quarter == 1:
                return Period(self.fiscal_year - 1, quarter=4)
            return Period(self.fiscal_year, quarter=self.quarter - 1)
        return Period(self.fiscal_year - 1)

    def label(self) -> str:
        if self.month:
            return f"FY{self.fiscal_year} M{self.month:02d}"
        if self.quarter:
            return f"FY{self.fiscal_year} Q{self.quarter}"
        return f"FY{self.fiscal_year}"


def aggregation_key(entity_id: str, fiscal_year: int, quarter: int | None = None) -> str:
    """Deterministic record key: {entity_id}_{fiscal_year}_{quarter-or-"full"}."""
    return f"{entity_id}_{fiscal_year}_{quarter or 'full'}"
