from __future__ import annotations

from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal

from openpyxl import Workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.table import Table, TableStyleInfo

from acai.domain.closing import month_window
from acai.domain.money import ZERO, money_sum, round_money


@dataclass(frozen=True)
class DashboardStats:
    sales_today: Decimal
    sales_month: Decimal
    profit_today: Decimal
    profit_month: Decimal
    expenses_today: Decimal
    expenses_month: Decimal


def _day_window(d: date) -> tuple[str, str]:
    start = datetime(d.year, d.month, d.day)
    return start.isoformat(sep=" "), (start + timedelta(days=1)).isoformat(sep=" ")


def _months_back(today: date, months: int) -> list[tuple[int, int]]:
    y, m = today.year, today.month
    out = []
    for _ in range(months):
        out.append((y, m))
        y, m = (y - 1, 12) if m == 1 else (y, m - 1)
    return list(reversed(out))


class ReportingService:
    def __init__(self, repo, closing=None):
        self.repo = repo
        self.closing = closing

    def _expense_total(self, user_id: int, start_iso: str, end_iso: str) -> Decimal:
        return money_sum(e.amount for e in self.repo.list_expenses(user_id, start_date=start_iso[:10], end_date=end_iso[:10]))

    def dashboard(self, session, today: date | None = None) -> DashboardStats:
        today = today or date.today()
        uid = session.user_id

        day = self.repo.list_sales_between(uid, *_day_window(today))
        month_start, month_end = month_window(today.year, today.month)
        month = self.repo.list_sales_between(uid, month_start, month_end)

        return DashboardStats(
            sales_today=money_sum(s.gross_revenue for s in day),
            sales_month=money_sum(s.gross_revenue for s in month),
            profit_today=money_sum(s.net_profit for s in day),
            profit_month=money_sum(s.net_profit for s in month),
            expenses_today=self._expense_total(uid, *_day_window(today)),
            expenses_month=self._expense_total(uid, month_start, month_end),
        )

    def top_products(self, session, start_iso: str, end_iso: str, limit: int = 5) -> list[tuple[str, int]]:
        units: Counter[str] = Counter()
        for line in self.repo.sale_lines_between(session.user_id, start_iso, end_iso):
            units[line.product_name] += int(line.quantity)
        return units.most_common(limit)

    def revenue_by_channel(self, session, start_iso: str, end_iso: str) -> list[tuple[str, Decimal]]:
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for s in self.repo.list_sales_between(session.user_id, start_iso, end_iso):
            totals[s.channel_name or "No channel"] += s.gross_revenue
        return sorted(totals.items(), key=lambda kv: kv[1], reverse=True)

    def top_expense_types(self, session, start_iso: str, end_iso: str, limit: int = 5) -> list[tuple[str, Decimal]]:
        totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
        for e in self.repo.list_expenses(session.user_id, start_date=start_iso[:10], end_date=end_iso[:10]):
            label = f"{e.expense_type_emoji} {e.expense_type_name}" if e.expense_type_name else "Uncategorized"
            totals[label] += e.amount
        return sorted(totals.items(), key=lambda kv: kv[1], reverse=True)[:limit]

    def monthly_revenue_series(self, session, months: int = 6, today: date | None = None) -> list[tuple[str, Decimal]]:
        today = today or date.today()
        series = []
        for y, m in _months_back(today, months):
            revenue = money_sum(self.repo.gross_revenue_between(session.user_id, *month_window(y, m)))
            series.append((f"{m:02d}/{y}", round_money(revenue)))
        return series

    def export_closings_excel(self, session, path: str, year: int | None = None, today: date | None = None) -> None:
        today = today or date.today()
        year = year or today.year
        config = session.config or session.refresh_config(self.repo)
        wb = Workbook()

        def money(cell):
            cell.number_format = "#,##0.00"

        def bold_row(ws, r):
            for c in ws[r]:
                c.font = Font(bold=True)

        def set_widths(ws, widths: dict[str, int]):
            for col, w in widths.items():
                ws.column_dimensions[col].width = w

        def add_table(ws, name: str, start_row: int, start_col: int, end_row: int, end_col: int):
            ref = f"{get_column_letter(start_col)}{start_row}:{get_column_letter(end_col)}{end_row}"
            tab = Table(displayName=name, ref=ref)
            tab.tableStyleInfo = TableStyleInfo(
                name="TableStyleMedium9",
                showRowStripes=True,
                showColumnStripes=False,
            )
            ws.add_table(tab)

        closings = sorted(self.repo.list_closings(session.user_id, year=year), key=lambda c: c.month)
        if self.closing is not None and year == today.year:
            status = self.closing.annual_status(session, today)
            annual, status_label = status.revenue, status.status.value
        else:
            annual, status_label = money_sum(c.revenue for c in closings), ""

        # -------- 1) Summary --------
        ws = wb.active
        ws.title = "Summary"
        ws["A1"] = config.store_name
        ws["A1"].font = Font(bold=True, size=14)

        rows = [
            ("Year", year, "int"),
            ("Annual revenue", float(annual), "money"),
            ("MEI ceiling", float(config.mei_ceiling), "money"),
            ("Status", status_label, "text"),
        ]
        start_row = 3
        for i, (label, val, kind) in enumerate(rows):
            r = start_row + i
            ws[f"A{r}"] = label
            ws[f"B{r}"] = val
            if kind == "money":
                money(ws[f"B{r}"])
        set_widths(ws, {"A": 22, "B": 24})

        # -------- 2) Monthly closings --------
        ws2 = wb.create_sheet("Closings")
        ws2.append(["Month", "Gross Revenue", "Transfer"])
        bold_row(ws2, 1)

        for out_row, c in enumerate(closings, start=2):
            ws2.append([f"{c.month:02d}/{c.year}", float(c.revenue), float(c.transfer)])
            money(ws2[f"B{out_row}"])
            money(ws2[f"C{out_row}"])

        ws2.freeze_panes = "A2"
        set_widths(ws2, {"A": 12, "B": 18, "C": 18})
        if ws2.max_row >= 2:
            add_table(ws2, "MonthlyClosings", 1, 1, ws2.max_row, 3)

        wb.save(path)
