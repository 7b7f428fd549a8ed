"""Validation and arithmetic for invoice payloads.

Nothing here touches the database: stock references are carried through as
given (``stock_id`` or ``barcode``) and resolved by the lifecycle layer.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Iterable, Mapping, Sequence

from flask import current_app, has_app_context

from stockbook.errors import ValidationError
from stockbook.models import Currency, InvoiceStatus
from stockbook.utils.parsing import (
    parse_date,
    parse_decimal,
    parse_email,
    parse_int,
    parse_text,
)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
DEFAULT_MIN_TOTAL = Decimal("1")


@dataclass(frozen=True)
class LineItemInput:
    stock_id: int | None
    quantity: int
    rate: Decimal
    discount: Decimal = ZERO
    vat_percent: Decimal = ZERO
    barcode: str | None = None

    @property
    def base(self) -> Decimal:
        return Decimal(self.quantity) * self.rate


@dataclass(frozen=True)
class InvoicePayload:
    invoice_number: int
    client_name: str
    client_email: str
    client_address: str
    currency: str
    date: date
    items: tuple[LineItemInput, ...]
    status: str = InvoiceStatus.PENDING
    invoice_name: str | None = None
    from_name: str | None = None
    from_email: str | None = None
    from_address: str | None = None
    note: str | None = None

    @property
    def total(self) -> Decimal:
        return compute_invoice_total(self.items)

    def quantities_by_stock(self) -> dict[int, int]:
        """Sum line quantities per stock so repeated lines are checked together."""

        demands: dict[int, int] = {}
        for item in self.items:
            demands[item.stock_id] = demands.get(item.stock_id, 0) + item.quantity
        return demands

    def with_items(self, items: Sequence[LineItemInput]) -> "InvoicePayload":
        return replace(self, items=tuple(items))

    def with_issuer(self, name: str | None, email: str | None, address: str | None):
        return replace(
            self,
            from_name=self.from_name or name,
            from_email=self.from_email or email,
            from_address=self.from_address or address,
        )


def compute_line_total(item) -> Decimal:
    """``quantity × rate``, plus VAT on that base, minus the flat discount."""

    base = Decimal(item.quantity) * Decimal(item.rate)
    vat_percent = Decimal(item.vat_percent or 0)
    discount = Decimal(item.discount or 0)
    vat_amount = base * (vat_percent / HUNDRED)
    return base + vat_amount - discount


def compute_invoice_total(items: Iterable, *, minimum: Decimal | None = None) -> Decimal:
    total = sum((compute_line_total(item) for item in items), ZERO)
    if minimum is not None and total < minimum:
        raise ValidationError(f"Invoice total must be at least {minimum}")
    return total


def _parse_line(index: int, raw, errors: list[str]) -> LineItemInput | None:
    label = f"Item {index}"
    if not isinstance(raw, Mapping):
        errors.append(f"{label}: line item must be an object")
        return None

    line_errors: list[str] = []

    stock_id, error = parse_int(raw.get("stock_id"), label="Stock ID", minimum=1)
    if error:
        line_errors.append(error)
    barcode, error = parse_text(raw.get("barcode"), label="Barcode", limit=128)
    if error:
        line_errors.append(error)
    if stock_id is None and barcode is None and not line_errors:
        line_errors.append("Stock ID is required")

    quantity, error = parse_int(raw.get("quantity"), label="Quantity", minimum=1)
    if error is None and quantity is None:
        error = "Quantity must be at least 1"
    if error:
        line_errors.append(error)

    rate, error = parse_decimal(raw.get("rate"), label="Rate", minimum=ZERO, strict=True)
    if error is None and rate is None:
        error = "Rate is required"
    if error:
        line_errors.append(error)

    discount, error = parse_decimal(raw.get("discount"), label="Discount", minimum=ZERO)
    if error:
        line_errors.append(error)
    vat_percent, error = parse_decimal(raw.get("vat_percent"), label="VAT", minimum=ZERO)
    if error:
        line_errors.append(error)

    if line_errors:
        errors.extend(f"{label}: {message}" for message in line_errors)
        return None

    return LineItemInput(
        stock_id=stock_id,
        barcode=barcode,
        quantity=quantity,
        rate=rate,
        discount=discount or ZERO,
        vat_percent=vat_percent or ZERO,
    )


def validate(
    raw: Mapping,
    *,
    minimum_total: Decimal | None = DEFAULT_MIN_TOTAL,
    allowed_statuses: Sequence[str] = InvoiceStatus.CREATABLE,
) -> InvoicePayload:
    """Build an :class:`InvoicePayload` from client JSON.

    Every failing field is collected. The raised :class:`ValidationError`
    surfaces the first message and carries the full list in ``errors``.
    A client-supplied ``total`` is ignored; the total is always computed.
    """

    if not isinstance(raw, Mapping):
        raise ValidationError("Invoice data must be an object")

    errors: list[str] = []

    def collect(result):
        value, error = result
        if error:
            errors.append(error)
        return value

    invoice_name = collect(parse_text(raw.get("invoice_name"), label="Invoice Name"))

    status = (raw.get("status") or InvoiceStatus.PENDING)
    status = str(status).strip().upper()
    if status not in allowed_statuses:
        errors.append(f"Status must be one of {', '.join(allowed_statuses)}")

    invoice_date, error = parse_date(raw.get("date"), label="Date")
    if error is None and invoice_date is None:
        error = "Date is required"
    if error:
        errors.append(error)

    from_name = collect(parse_text(raw.get("from_name"), label="Your name"))
    from_email = collect(parse_email(raw.get("from_email"), label="Your email"))
    from_address = collect(
        parse_text(raw.get("from_address"), label="Your address", limit=500)
    )
    client_name = collect(
        parse_text(raw.get("client_name"), label="Client name", required=True)
    )
    client_email = collect(
        parse_email(raw.get("client_email"), label="Client email", required=True)
    )
    client_address = collect(
        parse_text(raw.get("client_address"), label="Client address", required=True, limit=500)
    )

    currency = str(raw.get("currency") or "").strip().upper()
    if not currency:
        errors.append("Currency is required")
    elif currency not in Currency.ALL_CURRENCIES:
        errors.append(f"Currency must be one of {', '.join(Currency.ALL_CURRENCIES)}")

    invoice_number, error = parse_int(
        raw.get("invoice_number"), label="Invoice number", minimum=1
    )
    if error is None and invoice_number is None:
        error = "Invoice number is required"
    if error:
        errors.append(error)

    note = collect(parse_text(raw.get("note"), label="Note", limit=5000))

    raw_items = raw.get("items")
    items: list[LineItemInput] = []
    if not isinstance(raw_items, (list, tuple)) or not raw_items:
        errors.append("At least one item is required")
    else:
        for index, raw_item in enumerate(raw_items, start=1):
            item = _parse_line(index, raw_item, errors)
            if item is not None:
                items.append(item)

    if not errors and minimum_total is not None:
        try:
            compute_invoice_total(items, minimum=minimum_total)
        except ValidationError as exc:
            errors.extend(exc.errors)

    if errors:
        raise ValidationError(errors)

    return InvoicePayload(
        invoice_number=invoice_number,
        invoice_name=invoice_name or f"Invoice {invoice_number}",
        client_name=client_name,
        client_email=client_email,
        client_address=client_address,
        from_name=from_name,
        from_email=from_email,
        from_address=from_address,
        currency=currency,
        date=invoice_date,
        status=status,
        note=note,
        items=tuple(items),
    )


def configured_min_total() -> Decimal:
    if not has_app_context():
        return DEFAULT_MIN_TOTAL
    return Decimal(str(current_app.config.get("INVOICE_MIN_TOTAL", DEFAULT_MIN_TOTAL)))


def parse_invoice_payload(
    raw: Mapping, *, allowed_statuses: Sequence[str] = InvoiceStatus.CREATABLE
) -> InvoicePayload:
    """Validate ``raw`` against the application's minimum invoice total."""

    return validate(
        raw, minimum_total=configured_min_total(), allowed_statuses=allowed_statuses
    )
