from __future__ import annotations

import logging
import sqlite3
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional

from acai.domain.closing import MeiStatus, MeiThresholds, mei_status, month_window, months_to_close, percent_of_ceiling
from acai.domain.errors import NotFoundError, ValidationError
from acai.domain.models import MonthlyClosing
from acai.domain.money import money_sum, round_money, to_decimal

log = logging.getLogger("acai.closing")


@dataclass
class ReconcileResult:
    closed: list[tuple[int, int]] = field(default_factory=list)
    refreshed: list[tuple[int, int]] = field(default_factory=list)
    failed: Optional[tuple[int, int]] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.failed is None


@dataclass(frozen=True)
class AnnualStatus:
    year: int
    revenue: Decimal
    ceiling: Decimal
    percent: Decimal
    status: MeiStatus


class ClosingService:
    """Monthly revenue closings and the MEI annual-ceiling status."""

    def __init__(self, repo, thresholds: MeiThresholds | None = None):
        self.repo = repo
        self.thresholds = thresholds or MeiThresholds()

    def _revenue_for(self, user_id: int, year: int, month: int) -> Decimal:
        start, end = month_window(year, month)
        return round_money(money_sum(self.repo.gross_revenue_between(user_id, start, end)))

    def reconcile(self, session, today: date | None = None) -> ReconcileResult:
        """Close every elapsed month that has no record and refresh this year's closed months.

        Months are written one at a time, oldest first. The first failure stops
        the run; records already written stay, so a later run resumes from there.
        """
        today = today or date.today()
        user_id = session.user_id

        pending = list(months_to_close(self.repo.get_last_closed_month(user_id), today))
        pending_set = set(pending)
        refresh = [
            (c.year, c.month)
            for c in self.repo.list_closings(user_id, year=today.year)
            if (c.year, c.month) not in pending_set and (c.year, c.month) < (today.year, today.month)
        ]

        result = ReconcileResult()
        for year, month in sorted(pending + refresh):
            try:
                revenue = self._revenue_for(user_id, year, month)
                self.repo.upsert_monthly_closing(user_id, year, month, revenue)
            except sqlite3.Error as exc:
                log.error("closing_failed user_id=%s month=%04d-%02d", user_id, year, month, exc_info=True)
                result.failed = (year, month)
                result.error = str(exc)
                break

            if (year, month) in pending_set:
                result.closed.append((year, month))
                log.info("month_closed user_id=%s month=%04d-%02d revenue=%s", user_id, year, month, revenue)
            else:
                result.refreshed.append((year, month))

        if result.refreshed:
            log.info("closings_refreshed user_id=%s count=%s", user_id, len(result.refreshed))
        return result

    def current_month_revenue(self, session, today: date | None = None) -> Decimal:
        today = today or date.today()
        return self._revenue_for(session.user_id, today.year, today.month)

    def list_closings(self, session, today: date | None = None) -> list[MonthlyClosing]:
        """Persisted closings newest first, preceded by the live, unsaved open month."""
        today = today or date.today()
        open_month = MonthlyClosing(
            id=None,
            year=today.year,
            month=today.month,
            revenue=self.current_month_revenue(session, today),
            persisted=False,
        )
        return [open_month] + self.repo.list_closings(session.user_id)

    def register_transfer(self, session, closing_id: Optional[int], amount) -> None:
        if closing_id is None:
            raise ValidationError("The open month cannot be edited.")
        value = to_decimal(amount, "Transfer")
        if value < 0:
            raise ValidationError("Transfer must be >= 0.")
        if not self.repo.set_closing_transfer(session.user_id, int(closing_id), round_money(value)):
            raise NotFoundError("Closing not found.")
        log.info("transfer_registered user_id=%s closing_id=%s amount=%s", session.user_id, closing_id, value)

    def annual_status(self, session, today: date | None = None) -> AnnualStatus:
        today = today or date.today()
        config = session.config or session.refresh_config(self.repo)

        closed = [
            c.revenue
            for c in self.repo.list_closings(session.user_id, year=today.year)
            if (c.year, c.month) != (today.year, today.month)
        ]
        revenue = money_sum(closed) + self.current_month_revenue(session, today)
        return AnnualStatus(
            year=today.year,
            revenue=revenue,
            ceiling=config.mei_ceiling,
            percent=percent_of_ceiling(revenue, config.mei_ceiling),
            status=mei_status(revenue, self.thresholds),
        )
