"""Revenue summaries and workbook export.

The monthly and yearly summaries are read models rebuilt from the sale
store's database-side aggregates on every call; nothing here is persisted.
The export writes the current inventory, the low-stock list and a yearly
revenue breakdown to an ``.xlsx`` workbook.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import openpyxl
from openpyxl.styles import Font

from . import log
from .constants import ReportSheet, month_name
from .core_logic import RuntimeContext, ValidationError
from .data_manager import MonthlyTotals


REPORT_COLUMNS: Mapping[str, Sequence[str]] = {
    ReportSheet.INVENTORY.value: [
        "ProductID",
        "Name",
        "Category",
        "Price",
        "Quantity",
        "LowStockThreshold",
        "Status",
    ],
    ReportSheet.LOW_STOCK.value: [
        "ProductID",
        "Name",
        "Quantity",
        "LowStockThreshold",
    ],
    ReportSheet.REVENUE.value: [
        "Year",
        "Month",
        "MonthName",
        "Transactions",
        "ItemsSold",
        "Revenue",
    ],
}


@dataclass(frozen=True)
class RevenueSummary:
    """Sales figures for one calendar month."""

    year: int
    month: int
    month_name: str
    total_transactions: int
    total_revenue: Decimal
    total_items_sold: int


@dataclass(frozen=True)
class YearTotals:
    """Sum of a year's monthly summaries."""

    year: int
    total_transactions: int
    total_revenue: Decimal
    total_items_sold: int


def _require_month(month: int) -> None:
    if isinstance(month, bool) or not isinstance(month, int) or not 1 <= month <= 12:
        log.error("Month validation failed: %r", month)
        raise ValidationError("Month must be an integer between 1 and 12")


def _require_year(year: int) -> None:
    if isinstance(year, bool) or not isinstance(year, int) or year < 1:
        log.error("Year validation failed: %r", year)
        raise ValidationError("Year must be a positive integer")


def build_summary(year: int, totals: MonthlyTotals) -> RevenueSummary:
    """Attach the year and month name to one month's aggregate row."""

    return RevenueSummary(
        year=year,
        month=totals.month,
        month_name=month_name(totals.month),
        total_transactions=totals.transactions,
        total_revenue=totals.revenue,
        total_items_sold=totals.items_sold,
    )


def monthly_revenue(context: RuntimeContext, year: int, month: int) -> Optional[RevenueSummary]:
    """Summarize one month of sales.

    Returns:
        RevenueSummary | None: The month's figures, or ``None`` when no sale
            was recorded in that month.

    Raises:
        ValidationError: If ``year`` or ``month`` is out of range.
    """

    _require_year(year)
    _require_month(month)
    totals = context.sales.monthly_totals(year, month)
    if totals.transactions == 0:
        log.info("No revenue data for %s %d", month_name(month), year)
        return None
    summary = build_summary(year, totals)
    log.info(
        "Monthly revenue for %s %d: transactions=%d items=%d revenue=%s",
        summary.month_name,
        year,
        summary.total_transactions,
        summary.total_items_sold,
        summary.total_revenue,
    )
    return summary


def yearly_revenue(context: RuntimeContext, year: int) -> List[RevenueSummary]:
    """One summary per month of ``year`` that has sales, January first."""

    _require_year(year)
    summaries = [build_summary(year, totals) for totals in context.sales.monthly_breakdown(year)]
    log.info("Yearly revenue for %d covers %d month(s)", year, len(summaries))
    return summaries


def summarize_year(year: int, summaries: Sequence[RevenueSummary]) -> YearTotals:
    """Add up a yearly breakdown into a single totals row."""

    return YearTotals(
        year=year,
        total_transactions=sum(summary.total_transactions for summary in summaries),
        total_revenue=sum((summary.total_revenue for summary in summaries), Decimal("0.00")),
        total_items_sold=sum(summary.total_items_sold for summary in summaries),
    )


def export_report(
    context: RuntimeContext,
    destination: Path,
    *,
    year: int,
    overwrite: bool = False,
) -> Path:
    """Write inventory, low-stock and revenue sheets to an Excel workbook.

    Args:
        context (RuntimeContext): Runtime context providing the stores.
        destination (Path): Target ``.xlsx`` path; parent folders are created.
        year (int): Year whose monthly revenue goes on the ``Revenue`` sheet.
        overwrite (bool): Replace an existing file instead of refusing.

    Returns:
        Path: The resolved path of the written workbook.

    Raises:
        FileExistsError: If ``destination`` exists and ``overwrite`` is false.
    """

    destination = Path(destination).expanduser().resolve()
    if destination.exists() and not overwrite:
        raise FileExistsError(f"Refusing to overwrite existing report: {destination}")

    workbook = openpyxl.Workbook()
    # Drop the default sheet so only ours remain.
    if workbook.active and workbook.active.title == "Sheet":
        workbook.remove(workbook.active)

    bold_font = Font(bold=True)
    for sheet_name, columns in REPORT_COLUMNS.items():
        worksheet = workbook.create_sheet(title=sheet_name)
        for column_index, column_name in enumerate(columns, start=1):
            cell = worksheet.cell(row=1, column=column_index)
            cell.value = column_name
            cell.font = bold_font

    inventory_sheet = workbook[ReportSheet.INVENTORY.value]
    for product in context.products.get_all():
        inventory_sheet.append(
            [
                product.product_id,
                product.name,
                product.category,
                product.price,
                product.quantity,
                product.low_stock_threshold,
                product.stock_status.value,
            ]
        )

    low_stock_sheet = workbook[ReportSheet.LOW_STOCK.value]
    for product in context.products.get_low_stock():
        low_stock_sheet.append(
            [product.product_id, product.name, product.quantity, product.low_stock_threshold]
        )

    revenue_sheet = workbook[ReportSheet.REVENUE.value]
    summaries = yearly_revenue(context, year)
    for summary in summaries:
        revenue_sheet.append(
            [
                summary.year,
                summary.month,
                summary.month_name,
                summary.total_transactions,
                summary.total_items_sold,
                summary.total_revenue,
            ]
        )
    totals = summarize_year(year, summaries)
    total_row = ["TOTAL", None, None, totals.total_transactions, totals.total_items_sold, totals.total_revenue]
    revenue_sheet.append(total_row)
    for cell in revenue_sheet[revenue_sheet.max_row]:
        cell.font = bold_font

    destination.parent.mkdir(parents=True, exist_ok=True)
    workbook.save(destination)
    log.info("Exported report for %d to '%s'", year, destination)
    return destination
