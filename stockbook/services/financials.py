"""Reporting aggregates over an owner's invoices and stocks.

``load_history`` snapshots the rows into frozen records; everything else is
a pure function over those records so dashboards, analytics and the tax
certificate can share the arithmetic without touching the session.

Profit and VAT look up the purchase side of each sale line in a stock map.
A line whose stock has since been deleted contributes a purchase rate of 0;
such lines are counted by :func:`unmatched_lines` and logged.
"""

from __future__ import annotations

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from sqlalchemy.orm import selectinload

from stockbook.errors import ValidationError
from stockbook.models import Invoice, InvoiceStatus, Stock

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")

RANGE_KEYS = ("1week", "1month", "1year")
METRICS = ("sales", "profit", "purchases")

# country -> (rate applied to profit, reporting currency)
TAX_RATES = {
    "US": (Decimal("0.21"), "USD"),
    "UK": (Decimal("0.19"), "GBP"),
}


@dataclass(frozen=True)
class SaleLine:
    id: int
    stock_id: int | None
    quantity: int
    rate: Decimal


@dataclass(frozen=True)
class InvoiceRecord:
    id: int
    invoice_number: int
    client_name: str | None
    total: Decimal
    created_at: datetime
    status: str
    currency: str
    lines: tuple[SaleLine, ...] = ()

    @property
    def day(self) -> date:
        return self.created_at.date()


@dataclass(frozen=True)
class StockRecord:
    id: int
    barcode: str | None
    name: str | None
    quantity: int
    stock_rate: Decimal
    vat_percent: Decimal = ZERO
    supplier: str | None = None
    purchase_date: date | None = None
    created_at: datetime | None = None

    @property
    def day(self) -> date | None:
        if self.purchase_date is not None:
            return self.purchase_date
        if self.created_at is not None:
            return self.created_at.date()
        return None

    @property
    def purchase_amount(self) -> Decimal:
        return self.stock_rate * (1 + self.vat_percent / HUNDRED) * self.quantity


def _decimal(value) -> Decimal:
    if value is None:
        return ZERO
    return value if isinstance(value, Decimal) else Decimal(str(value))


def _float(value: Decimal) -> float:
    return float(value)


def load_history(owner_id: int) -> tuple[list[InvoiceRecord], list[StockRecord]]:
    """Snapshot the owner's invoices (newest first) and stocks."""

    invoices = (
        Invoice.query.options(selectinload(Invoice.items))
        .filter(Invoice.owner_id == owner_id)
        .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        .all()
    )
    stocks = (
        Stock.query.filter(Stock.owner_id == owner_id)
        .order_by(Stock.purchase_date.desc(), Stock.id.desc())
        .all()
    )

    invoice_records = [
        InvoiceRecord(
            id=invoice.id,
            invoice_number=invoice.invoice_number,
            client_name=invoice.client_name,
            total=_decimal(invoice.total),
            created_at=invoice.created_at,
            status=invoice.status,
            currency=invoice.currency,
            lines=tuple(
                SaleLine(
                    id=item.id,
                    stock_id=item.stock_id,
                    quantity=int(item.quantity or 0),
                    rate=_decimal(item.rate),
                )
                for item in invoice.items
            ),
        )
        for invoice in invoices
    ]
    stock_records = [
        StockRecord(
            id=stock.id,
            barcode=stock.barcode,
            name=stock.name,
            quantity=int(stock.quantity or 0),
            stock_rate=_decimal(stock.stock_rate),
            vat_percent=_decimal(stock.vat_percent),
            supplier=stock.supplier,
            purchase_date=stock.purchase_date,
            created_at=stock.created_at,
        )
        for stock in stocks
    ]
    return invoice_records, stock_records


def _shift_month(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    year = day.year + month_index // 12
    month = month_index % 12 + 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def cutoff_for_range(range_key: str, now: datetime | date | None = None) -> date:
    """First day (inclusive) of the trailing ``1week``/``1month``/``1year`` window."""

    now = now or datetime.utcnow()
    today = now.date() if isinstance(now, datetime) else now
    if range_key == "1week":
        return today - timedelta(days=7)
    if range_key == "1month":
        return _shift_month(today, -1)
    if range_key == "1year":
        return _shift_month(today, -12)
    raise ValidationError(f"Range must be one of {', '.join(RANGE_KEYS)}")


def filter_by_date_range(records: Iterable, cutoff: date) -> list:
    """Keep records whose day is on or after ``cutoff``; undated records drop out."""

    return [record for record in records if record.day is not None and record.day >= cutoff]


def stock_map(stocks: Iterable[StockRecord]) -> dict[int, StockRecord]:
    return {stock.id: stock for stock in stocks}


def _purchase_rate(line: SaleLine, stocks: Mapping[int, StockRecord]) -> Decimal:
    stock = stocks.get(line.stock_id) if line.stock_id is not None else None
    return stock.stock_rate if stock is not None else ZERO


def line_profit(line: SaleLine, stocks: Mapping[int, StockRecord]) -> Decimal:
    return (line.rate - _purchase_rate(line, stocks)) * line.quantity


def line_vat(line: SaleLine, stocks: Mapping[int, StockRecord]) -> Decimal:
    # VAT is taken on the purchase rate, not the sale rate
    stock = stocks.get(line.stock_id) if line.stock_id is not None else None
    if stock is None or stock.vat_percent <= 0:
        return ZERO
    return stock.vat_percent / HUNDRED * stock.stock_rate * line.quantity


def unmatched_lines(
    invoices: Iterable[InvoiceRecord], stocks: Mapping[int, StockRecord]
) -> int:
    return sum(
        1
        for invoice in invoices
        for line in invoice.lines
        if line.stock_id is None or line.stock_id not in stocks
    )


def _warn_unmatched(invoices: Sequence[InvoiceRecord], stocks: Mapping[int, StockRecord]) -> int:
    count = unmatched_lines(invoices, stocks)
    if count:
        logger.warning(
            "%s sale line(s) reference missing stock; purchase rate counted as 0", count
        )
    return count


def total_sales(invoices: Iterable[InvoiceRecord]) -> Decimal:
    return sum((invoice.total for invoice in invoices), ZERO)


def total_purchases(stocks: Iterable[StockRecord]) -> Decimal:
    return sum((stock.purchase_amount for stock in stocks), ZERO)


def invoice_profit(invoice: InvoiceRecord, stocks: Mapping[int, StockRecord]) -> Decimal:
    return sum((line_profit(line, stocks) for line in invoice.lines), ZERO)


def total_profit(
    invoices: Sequence[InvoiceRecord], stocks: Mapping[int, StockRecord]
) -> Decimal:
    _warn_unmatched(invoices, stocks)
    return sum((invoice_profit(invoice, stocks) for invoice in invoices), ZERO)


def total_vat(invoices: Iterable[InvoiceRecord], stocks: Mapping[int, StockRecord]) -> Decimal:
    return sum(
        (line_vat(line, stocks) for invoice in invoices for line in invoice.lines), ZERO
    )


def _daily_totals(
    invoices: Sequence[InvoiceRecord],
    stocks: Sequence[StockRecord],
    metric: str,
    lookup: Mapping[int, StockRecord] | None = None,
) -> dict[str, Decimal]:
    buckets: dict[str, Decimal] = defaultdict(lambda: ZERO)
    if metric == "sales":
        for invoice in invoices:
            buckets[invoice.day.isoformat()] += invoice.total
    elif metric == "profit":
        lookup = stock_map(stocks) if lookup is None else lookup
        for invoice in invoices:
            buckets[invoice.day.isoformat()] += invoice_profit(invoice, lookup)
    elif metric == "purchases":
        for stock in stocks:
            if stock.day is not None:
                buckets[stock.day.isoformat()] += stock.purchase_amount
    else:
        raise ValidationError(f"Metric must be one of {', '.join(METRICS)}")
    return dict(buckets)


def daily_series(
    invoices: Sequence[InvoiceRecord],
    stocks: Sequence[StockRecord],
    metric: str,
    *,
    lookup: Mapping[int, StockRecord] | None = None,
) -> list[tuple[str, Decimal]]:
    """Bucket ``metric`` by ISO calendar day, sorted by day.

    ``lookup`` overrides the stock map used for profit; it defaults to one
    built from ``stocks``.
    """

    return sorted(_daily_totals(invoices, stocks, metric, lookup).items())


def cumulative(series: Sequence[tuple[str, Decimal]]) -> list[tuple[str, Decimal]]:
    running = ZERO
    result = []
    for day, value in series:
        running += value
        result.append((day, running))
    return result


def aligned_daily_series(
    invoices: Sequence[InvoiceRecord],
    stocks: Sequence[StockRecord],
    *,
    lookup: Mapping[int, StockRecord] | None = None,
) -> dict[str, list]:
    """Every metric over the union of days, zero filled, plus running totals."""

    per_metric = {
        metric: _daily_totals(invoices, stocks, metric, lookup) for metric in METRICS
    }
    days = sorted({day for totals in per_metric.values() for day in totals})
    series: dict[str, list] = {"days": days}
    for metric, totals in per_metric.items():
        values = [totals.get(day, ZERO) for day in days]
        series[metric] = [_float(value) for value in values]
        series[f"cumulative_{metric}"] = [
            _float(value) for _, value in cumulative(list(zip(days, values)))
        ]
    return series


def quick_stats(invoices: Sequence[InvoiceRecord], stocks: Sequence[StockRecord]) -> dict:
    sale_lines = sum(len(invoice.lines) for invoice in invoices)
    purchases = sum(1 for stock in stocks if stock.purchase_date is not None)
    return {
        "total_stock": len(stocks),
        "pending_invoices": sum(
            1 for invoice in invoices if invoice.status != InvoiceStatus.PAID
        ),
        "total_transactions": sale_lines + purchases,
    }


def profit_by_currency(
    invoices: Iterable[InvoiceRecord], stocks: Mapping[int, StockRecord]
) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for invoice in invoices:
        totals[invoice.currency] += invoice_profit(invoice, stocks)
    return dict(totals)


def sales_by_currency(invoices: Iterable[InvoiceRecord]) -> dict[str, Decimal]:
    totals: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for invoice in invoices:
        totals[invoice.currency] += invoice.total
    return dict(totals)


def build_transactions(
    invoices: Sequence[InvoiceRecord],
    stocks: Sequence[StockRecord],
    *,
    lookup: Mapping[int, StockRecord] | None = None,
    purchase_currency: str = "USD",
) -> dict[str, list[dict]]:
    """Sale rows per invoice line and purchase rows per dated stock, newest first."""

    lookup = stock_map(stocks) if lookup is None else lookup
    sales = []
    for invoice in invoices:
        for line in invoice.lines:
            sales.append(
                {
                    "id": line.id,
                    "type": "Sale",
                    "reference": invoice.invoice_number,
                    "name": invoice.client_name,
                    "amount": _float(line.rate * line.quantity),
                    "date": invoice.created_at.isoformat(),
                    "status": invoice.status,
                    "currency": invoice.currency,
                    "quantity": line.quantity,
                    "profit": _float(line_profit(line, lookup)),
                    "vat": _float(line_vat(line, lookup)),
                }
            )

    purchases = [
        {
            "id": stock.id,
            "type": "Purchase",
            "reference": stock.barcode,
            "name": stock.name,
            "supplier": stock.supplier,
            "amount": _float(stock.purchase_amount),
            "date": stock.purchase_date.isoformat(),
            "status": "Completed",
            "currency": purchase_currency,
            "quantity": stock.quantity,
        }
        for stock in stocks
        if stock.purchase_date is not None
    ]

    sales.sort(key=lambda row: row["date"], reverse=True)
    purchases.sort(key=lambda row: row["date"], reverse=True)
    return {"sales": sales, "purchases": purchases}


def tax_certificate(
    profit: Decimal, sales: Decimal, vat: Decimal, country: str = "US"
) -> dict:
    country = (country or "US").strip().upper()
    if country not in TAX_RATES:
        raise ValidationError(f"Country must be one of {', '.join(TAX_RATES)}")
    rate, currency = TAX_RATES[country]
    return {
        "country": country,
        "currency": currency,
        "total_sales": _float(sales),
        "total_profit": _float(profit),
        "total_vat": _float(vat),
        "tax_rate": _float(rate),
        "estimated_tax_due": _float(profit * rate),
    }


def analytics_summary(
    invoices: Sequence[InvoiceRecord],
    stocks: Sequence[StockRecord],
    range_key: str = "1week",
    *,
    now: datetime | None = None,
    default_currency: str = "USD",
) -> dict:
    """Totals and chart series for the trailing window ``range_key``.

    Invoices and stocks are filtered by the window, while profit and VAT keep
    resolving purchase rates against every stock the owner has.
    """

    cutoff = cutoff_for_range(range_key, now)
    lookup = stock_map(stocks)
    window_invoices = filter_by_date_range(invoices, cutoff)
    window_stocks = filter_by_date_range(stocks, cutoff)
    currency = invoices[0].currency if invoices else default_currency

    return {
        "range": range_key,
        "cutoff": cutoff.isoformat(),
        "currency": currency,
        "total_sales": _float(total_sales(window_invoices)),
        "total_purchases": _float(total_purchases(window_stocks)),
        "total_profit": _float(total_profit(window_invoices, lookup)),
        "total_vat": _float(total_vat(window_invoices, lookup)),
        "unmatched_lines": unmatched_lines(window_invoices, lookup),
        "profit_by_currency": {
            code: _float(value)
            for code, value in profit_by_currency(window_invoices, lookup).items()
        },
        "sales_by_currency": {
            code: _float(value) for code, value in sales_by_currency(window_invoices).items()
        },
        "series": aligned_daily_series(window_invoices, window_stocks, lookup=lookup),
    }


def dashboard_data(
    invoices: Sequence[InvoiceRecord],
    stocks: Sequence[StockRecord],
    *,
    default_currency: str = "USD",
) -> dict:
    lookup = stock_map(stocks)
    transactions = build_transactions(
        invoices, stocks, lookup=lookup, purchase_currency=default_currency
    )
    return {
        "quick_stats": quick_stats(invoices, stocks),
        "total_sales": _float(total_sales(invoices)),
        "total_profit": _float(total_profit(invoices, lookup)),
        "total_vat": _float(total_vat(invoices, lookup)),
        "unmatched_lines": unmatched_lines(invoices, lookup),
        "sale_transactions": transactions["sales"],
        "purchase_transactions": transactions["purchases"],
    }
