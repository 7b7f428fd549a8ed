from datetime import datetime

from flask import Blueprint, current_app, jsonify, request

from stockbook.auth import owner_required
from stockbook.services import financials
from stockbook.utils.csv_export import export_rows_to_csv

bp = Blueprint("reports", __name__, url_prefix="/api")

TRANSACTION_COLUMNS = (
    ("date", "Date"),
    ("type", "Type"),
    ("reference", "Reference"),
    ("name", "Name"),
    ("quantity", "Quantity"),
    ("amount", "Amount"),
    ("currency", "Currency"),
    ("status", "Status"),
    ("profit", "Profit"),
    ("vat", "VAT"),
)


def _default_currency() -> str:
    return current_app.config.get("DEFAULT_CURRENCY", "USD")


@bp.get("/dashboard")
@owner_required
def dashboard(owner_id: int):
    invoices, stocks = financials.load_history(owner_id)
    data = financials.dashboard_data(
        invoices, stocks, default_currency=_default_currency()
    )
    return jsonify(data)


@bp.get("/analytics")
@owner_required
def analytics(owner_id: int):
    range_key = (request.args.get("range") or "1week").strip()
    invoices, stocks = financials.load_history(owner_id)
    summary = financials.analytics_summary(
        invoices,
        stocks,
        range_key,
        now=datetime.utcnow(),
        default_currency=_default_currency(),
    )
    return jsonify(summary)


@bp.get("/tax-certificate")
@owner_required
def tax_certificate(owner_id: int):
    invoices, stocks = financials.load_history(owner_id)
    lookup = financials.stock_map(stocks)
    certificate = financials.tax_certificate(
        financials.total_profit(invoices, lookup),
        financials.total_sales(invoices),
        financials.total_vat(invoices, lookup),
        request.args.get("country") or "US",
    )
    return jsonify(certificate)


@bp.get("/transactions/export")
@owner_required
def export_transactions(owner_id: int):
    invoices, stocks = financials.load_history(owner_id)
    transactions = financials.build_transactions(
        invoices, stocks, purchase_currency=_default_currency()
    )
    rows = sorted(
        transactions["sales"] + transactions["purchases"],
        key=lambda row: row["date"],
        reverse=True,
    )
    current_app.logger.info("Exporting %s transactions for owner %s", len(rows), owner_id)
    return export_rows_to_csv(rows, TRANSACTION_COLUMNS, "transactions.csv")
