"""Calendar-month arithmetic shared by the recurring-expense engine.

Months are 1-indexed, as in :class:`datetime.date`. Everything that needs a
linear month count goes through :func:`month_index`, and every conversion to
or from an external key (``YYYY-MM`` tags, ``YYYY-MM-01`` override dates)
goes through :class:`Month`.
"""

import re
from dataclasses import dataclass
from datetime import date
from typing import Optional

_MONTH_KEY_RE = re.compile(r"^(\d{4})-(\d{2})(?:-\d{2})?$")


def month_index(year: int, month: int) -> int:
    return year * 12 + (month - 1)


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


@dataclass(frozen=True, order=True)
class Month:
    year: int
    month: int

    def __post_init__(self) -> None:
        if not 1 <= self.month <= 12:
            raise ValueError(f"Month must be between 1 and 12, got {self.month}")

    @classmethod
    def from_key(cls, key: str) -> "Month":
        """Parse a ``YYYY-MM`` key (a trailing ``-DD`` is tolerated)."""
        match = _MONTH_KEY_RE.match((key or "").strip())
        if not match:
            raise ValueError(f"Invalid month format {key!r}. Use YYYY-MM")
        return cls(int(match.group(1)), int(match.group(2)))

    @classmethod
    def from_date(cls, value: date) -> "Month":
        return cls(value.year, value.month)

    @property
    def index(self) -> int:
        return month_index(self.year, self.month)

    @property
    def tag(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    @property
    def start(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end(self) -> date:
        return date(self.year, self.month, self.length)

    @property
    def length(self) -> int:
        return days_in_month(self.year, self.month)

    def day(self, day_of_month: Optional[int]) -> date:
        """Date for ``day_of_month`` in this month, clamped to the last day."""
        wanted = day_of_month or 1
        return date(self.year, self.month, max(1, min(wanted, self.length)))

    def contains(self, value: date) -> bool:
        return value.year == self.year and value.month == self.month

    def shift(self, months: int) -> "Month":
        total = self.index + months
        return Month(total // 12, total % 12 + 1)

    def __str__(self) -> str:
        return self.tag
