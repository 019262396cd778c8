"""Month-granular dates used by all price developments."""

from __future__ import annotations

from dataclasses import dataclass
from functools import total_ordering


@total_ordering
class MonthDate:
    """A calendar month, ordered and hashable, rendered as `YYYY/MM`."""

    __slots__ = ("_value",)

    def __init__(self, year: int, month: int) -> None:
        year = int(year)
        month = int(month)
        if month < 1 or month > 12:
            msg = f"we only have months from 1-12 but not {month}"
            raise ValueError(msg)
        if year < 1:
            msg = "there was no year 0"
            raise ValueError(msg)
        self._value = year * 100 + month

    @classmethod
    def from_str(cls, text: str) -> MonthDate:
        """Parse `YYYY/MM`."""
        raw_text = str(text).strip()
        if len(raw_text) != 7:
            msg = f"date needs 7 digits, YYYY/MM, got {raw_text}"
            raise ValueError(msg)
        year_text, month_text = raw_text[:4], raw_text[5:]
        if raw_text[4] != "/" or not (year_text.isdigit() and month_text.isdigit()):
            msg = f"date needs 7 digits, YYYY/MM, got {raw_text}"
            raise ValueError(msg)
        return cls(int(year_text), int(month_text))

    @property
    def year(self) -> int:
        return self._value // 100

    @property
    def month(self) -> int:
        return self._value % 100

    def next_month(self) -> MonthDate:
        if self.month == 12:
            return MonthDate(self.year + 1, 1)
        return MonthDate(self.year, self.month + 1)

    def n_months_until(self, later: MonthDate) -> int:
        return n_months_between_dates(self, later)

    def __add__(self, n_months: int) -> MonthDate:
        if not isinstance(n_months, int):
            return NotImplemented
        if n_months < 0:
            msg = f"cannot add a negative number of months, got {n_months}"
            raise ValueError(msg)
        return date_after_n_months(self, n_months)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, MonthDate):
            return NotImplemented
        return self._value == other._value

    def __lt__(self, other: MonthDate) -> bool:
        if not isinstance(other, MonthDate):
            return NotImplemented
        return self._value < other._value

    def __hash__(self) -> int:
        return hash(self._value)

    def __repr__(self) -> str:
        return f"MonthDate({self.year}, {self.month})"

    def __str__(self) -> str:
        return f"{self.year:04d}/{self.month:02d}"


def n_months_between_dates(earlier: MonthDate, later: MonthDate) -> int:
    """Number of month steps from `earlier` to `later`."""
    if earlier > later:
        msg = f"{earlier} is after {later}"
        raise ValueError(msg)
    return (later.year - earlier.year) * 12 + later.month - earlier.month


def date_after_n_months(start: MonthDate, n_months: int) -> MonthDate:
    total_months = start.year * 12 + (start.month - 1) + int(n_months)
    return MonthDate(total_months // 12, total_months % 12 + 1)


def fill_between(start: MonthDate, end: MonthDate) -> list[MonthDate]:
    """All months from `start` to `end`, both inclusive."""
    if end < start:
        return []
    return [date_after_n_months(start, offset) for offset in range(start.n_months_until(end) + 1)]


@dataclass(frozen=True, slots=True)
class Interval:
    """Inclusive range of months."""

    start: MonthDate
    end: MonthDate

    def __post_init__(self) -> None:
        if self.end < self.start:
            msg = f"interval start {self.start} needs to be before end {self.end}"
            raise ValueError(msg)

    @classmethod
    def from_strs(cls, start: str, end: str) -> Interval:
        return cls(MonthDate.from_str(start), MonthDate.from_str(end))

    def contains(self, date: MonthDate) -> bool:
        return self.start <= date <= self.end

    def __str__(self) -> str:
        return f"{self.start}-{self.end}"
