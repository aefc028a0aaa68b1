from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Iterator, Optional

from acai.domain.money import HUNDRED, ZERO

REFERENCE_CEILING = Decimal("81000")


class MeiStatus(str, Enum):
    REGULAR = "Regular"
    ATTENTION = "Attention"
    ALERT = "Alert"


@dataclass(frozen=True)
class MeiThresholds:
    attention: Decimal = Decimal("60000")
    alert: Decimal = Decimal("70000")

    @classmethod
    def scaled_to(cls, ceiling: Decimal) -> "MeiThresholds":
        """Same cutoffs expressed as a share of the reference 81,000 ceiling."""
        base = cls()
        ratio = Decimal(ceiling) / REFERENCE_CEILING
        return cls(attention=base.attention * ratio, alert=base.alert * ratio)


def mei_status(annual_revenue: Decimal, thresholds: MeiThresholds | None = None) -> MeiStatus:
    t = thresholds or MeiThresholds()
    if annual_revenue >= t.alert:
        return MeiStatus.ALERT
    if annual_revenue >= t.attention:
        return MeiStatus.ATTENTION
    return MeiStatus.REGULAR


def percent_of_ceiling(annual_revenue: Decimal, ceiling: Decimal) -> Decimal:
    if ceiling <= 0:
        return ZERO
    return annual_revenue / ceiling * HUNDRED


def next_month(year: int, month: int) -> tuple[int, int]:
    if month == 12:
        return year + 1, 1
    return year, month + 1


def month_window(year: int, month: int) -> tuple[str, str]:
    """Half-open [start, end) window of a calendar month as ISO timestamps."""
    ny, nm = next_month(year, month)
    start = datetime(year, month, 1).isoformat(sep=" ")
    end = datetime(ny, nm, 1).isoformat(sep=" ")
    return start, end


def months_to_close(last_closed: Optional[tuple[int, int]], today: date) -> Iterator[tuple[int, int]]:
    """Elapsed months that still need a closing record, oldest first.

    Starts right after ``last_closed`` (January of the current year when nothing
    was closed yet) and stops before the month ``today`` falls in.
    """
    if last_closed is None:
        y, m = today.year, 1
    else:
        y, m = next_month(*last_closed)

    while (y, m) < (today.year, today.month):
        yield y, m
        y, m = next_month(y, m)
