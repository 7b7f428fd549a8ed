"""Invoice creation, status transitions, returns and edits.

Operations that move stock work inside a ``begin_nested`` block so a failure part way
through (a lost stock race, a duplicate number on flush) leaves neither the
invoice rows nor the stock quantities touched. Committing is left to the
caller; the HTTP layer commits on success and rolls back on error.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Mapping

from sqlalchemy.exc import IntegrityError

from stockbook.errors import (
    AlreadyReturnedError,
    DuplicateInvoiceNumberError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from stockbook.extensions import db
from stockbook.models import Invoice, InvoiceItem, InvoiceStatus, MovementType
from stockbook.services.business import issuer_defaults
from stockbook.services.invoice_builder import (
    InvoicePayload,
    compute_invoice_total,
    compute_line_total,
    parse_invoice_payload,
)
from stockbook.services.stock_ledger import (
    decrement,
    ensure_available,
    increment,
    lookup_by_barcode,
    lookup_by_ids,
)
from stockbook.services.uniqueness import is_invoice_number_unique
from stockbook.utils.parsing import parse_int

logger = logging.getLogger(__name__)

_EDITABLE_STATUSES = (
    InvoiceStatus.PENDING,
    InvoiceStatus.PAID,
    InvoiceStatus.UPDATED,
)


@dataclass(frozen=True)
class ReturnResult:
    invoice: Invoice
    restored: dict[int, int] = field(default_factory=dict)
    skipped_stock_ids: tuple[int, ...] = ()

    def to_dict(self) -> dict:
        return {
            "invoice": self.invoice.to_dict(),
            "restored": [
                {"stock_id": stock_id, "quantity": quantity}
                for stock_id, quantity in self.restored.items()
            ],
            "skipped_stock_ids": list(self.skipped_stock_ids),
        }


def get_invoice(owner_id: int, invoice_id: int) -> Invoice:
    invoice = Invoice.query.filter_by(id=invoice_id, owner_id=owner_id).first()
    if invoice is None:
        raise NotFoundError("Invoice not found", invoice_id=invoice_id)
    return invoice


def list_invoices(owner_id: int, *, status: str | None = None) -> list[Invoice]:
    query = Invoice.query.filter_by(owner_id=owner_id)
    if status:
        query = query.filter(Invoice.status == status.strip().upper())
    return query.order_by(Invoice.created_at.desc(), Invoice.id.desc()).all()


def _resolve_stock_references(owner_id: int, payload: InvoicePayload) -> InvoicePayload:
    resolved = []
    for index, item in enumerate(payload.items, start=1):
        if item.barcode is None:
            resolved.append(item)
            continue
        stock = lookup_by_barcode(owner_id, item.barcode)
        if stock is None:
            raise NotFoundError(
                f"No stock found for barcode {item.barcode}", barcode=item.barcode
            )
        if item.stock_id is not None and item.stock_id != stock.id:
            raise ValidationError(
                f"Item {index}: Stock ID {item.stock_id} does not match barcode {item.barcode}"
            )
        resolved.append(replace(item, stock_id=stock.id))
    return payload.with_items(resolved)


def _prepare_payload(owner_id: int, raw: Mapping, **options) -> InvoicePayload:
    payload = parse_invoice_payload(raw, **options)
    payload = payload.with_issuer(*issuer_defaults(owner_id))
    return _resolve_stock_references(owner_id, payload)


def _build_items(payload: InvoicePayload) -> list[InvoiceItem]:
    return [
        InvoiceItem(
            stock_id=line.stock_id,
            quantity=line.quantity,
            rate=line.rate,
            discount=line.discount,
            vat_percent=line.vat_percent,
            line_total=compute_line_total(line),
        )
        for line in payload.items
    ]


def _apply_header(invoice: Invoice, payload: InvoicePayload) -> None:
    invoice.invoice_number = payload.invoice_number
    invoice.invoice_name = payload.invoice_name
    invoice.client_name = payload.client_name
    invoice.client_email = payload.client_email
    invoice.client_address = payload.client_address
    invoice.from_name = payload.from_name
    invoice.from_email = payload.from_email
    invoice.from_address = payload.from_address
    invoice.currency = payload.currency
    invoice.date = payload.date
    invoice.note = payload.note
    invoice.total = compute_invoice_total(payload.items)


def _duplicate_number(number: int) -> DuplicateInvoiceNumberError:
    return DuplicateInvoiceNumberError(
        f"Invoice number {number} is already in use", invoice_number=number
    )


def create_invoice(owner_id: int, raw: Mapping) -> Invoice:
    """Validate, reserve stock and persist an invoice as a single unit."""

    payload = _prepare_payload(owner_id, raw)
    if not is_invoice_number_unique(owner_id, payload.invoice_number):
        raise _duplicate_number(payload.invoice_number)

    demands = payload.quantities_by_stock()
    ensure_available(owner_id, demands)

    invoice = Invoice(owner_id=owner_id, status=payload.status)
    _apply_header(invoice, payload)
    try:
        with db.session.begin_nested():
            invoice.items = _build_items(payload)
            db.session.add(invoice)
            db.session.flush()
            for stock_id, quantity in demands.items():
                decrement(owner_id, stock_id, quantity, reference=invoice.reference)
    except IntegrityError as exc:
        logger.warning(
            "Invoice number %s collided on insert for owner %s",
            payload.invoice_number,
            owner_id,
        )
        raise _duplicate_number(payload.invoice_number) from exc

    logger.info(
        "Created invoice %s (%s lines, total %s) for owner %s",
        invoice.reference,
        len(payload.items),
        invoice.total,
        owner_id,
    )
    return invoice


def mark_paid(owner_id: int, invoice_id: int) -> Invoice:
    invoice = get_invoice(owner_id, invoice_id)
    invoice.status = InvoiceStatus.PAID
    db.session.flush()
    logger.info("Marked invoice %s as paid", invoice.reference)
    return invoice


def _invoiced_quantities(invoice: Invoice) -> dict[int, int]:
    quantities: dict[int, int] = {}
    for item in invoice.items:
        if item.stock_id is None:
            continue
        quantities[item.stock_id] = quantities.get(item.stock_id, 0) + int(item.quantity)
    return quantities


def _parse_return_lines(raw, invoiced: Mapping[int, int]) -> dict[int, int]:
    """Aggregate caller-supplied return lines and bound them by what was sold."""

    lines = raw.get("items") if isinstance(raw, Mapping) else raw
    if not isinstance(lines, (list, tuple)) or not lines:
        raise ValidationError("At least one item is required")

    errors: list[str] = []
    requested: dict[int, int] = {}
    for index, line in enumerate(lines, start=1):
        if not isinstance(line, Mapping):
            errors.append(f"Item {index}: line item must be an object")
            continue
        stock_id, error = parse_int(line.get("stock_id"), label="Stock ID", minimum=1)
        if error is None and stock_id is None:
            error = "Stock ID is required"
        if error:
            errors.append(f"Item {index}: {error}")
            continue
        quantity, error = parse_int(line.get("quantity"), label="Quantity", minimum=1)
        if error is None and quantity is None:
            error = "Quantity must be at least 1"
        if error:
            errors.append(f"Item {index}: {error}")
            continue
        requested[stock_id] = requested.get(stock_id, 0) + quantity
    if errors:
        raise ValidationError(errors)

    for stock_id, quantity in requested.items():
        sold = invoiced.get(stock_id, 0)
        if quantity > sold:
            raise InsufficientStockError(
                f"Cannot return {quantity} of stock {stock_id}; "
                f"only {sold} were invoiced.",
                stock_id=stock_id,
                available=sold,
                requested=quantity,
            )
    return requested


def return_invoice(owner_id: int, invoice_id: int, raw_return=None) -> ReturnResult:
    """Put the sold quantities back on the shelf and mark the invoice RETURNED.

    Without ``raw_return`` the stored invoice lines are returned in full.
    Stocks deleted since the sale cannot be restored and are reported in
    ``skipped_stock_ids``.
    """

    invoice = get_invoice(owner_id, invoice_id)
    if invoice.status == InvoiceStatus.RETURNED:
        raise AlreadyReturnedError(
            "Invoice has already been returned", invoice_id=invoice_id
        )

    invoiced = _invoiced_quantities(invoice)
    if raw_return is None:
        quantities = invoiced
    else:
        quantities = _parse_return_lines(raw_return, invoiced)

    orphaned = sum(1 for item in invoice.items if item.stock_id is None)
    if orphaned:
        logger.warning(
            "Invoice %s has %s line(s) whose stock no longer exists",
            invoice.reference,
            orphaned,
        )

    stocks = lookup_by_ids(owner_id, quantities.keys())
    restored: dict[int, int] = {}
    skipped: list[int] = []
    with db.session.begin_nested():
        for stock_id, quantity in quantities.items():
            if stock_id not in stocks:
                logger.warning(
                    "Skipping return of %s to missing stock %s on %s",
                    quantity,
                    stock_id,
                    invoice.reference,
                )
                skipped.append(stock_id)
                continue
            increment(owner_id, stock_id, quantity, reference=invoice.reference)
            restored[stock_id] = quantity
        invoice.status = InvoiceStatus.RETURNED
        invoice.returned_at = datetime.utcnow()
        db.session.flush()

    logger.info(
        "Returned invoice %s (%s stock lines restored)", invoice.reference, len(restored)
    )
    return ReturnResult(invoice=invoice, restored=restored, skipped_stock_ids=tuple(skipped))


def update_invoice(owner_id: int, invoice_id: int, raw: Mapping) -> Invoice:
    """Edit an invoice in place, moving stock by the per-stock difference."""

    invoice = get_invoice(owner_id, invoice_id)
    if invoice.status == InvoiceStatus.RETURNED:
        raise AlreadyReturnedError(
            "Returned invoices cannot be edited", invoice_id=invoice_id
        )

    payload = _prepare_payload(owner_id, raw, allowed_statuses=_EDITABLE_STATUSES)
    if payload.invoice_number != invoice.invoice_number and not is_invoice_number_unique(
        owner_id, payload.invoice_number, exclude_invoice_id=invoice.id
    ):
        raise _duplicate_number(payload.invoice_number)

    previous = _invoiced_quantities(invoice)
    requested = payload.quantities_by_stock()
    deltas = {
        stock_id: requested.get(stock_id, 0) - previous.get(stock_id, 0)
        for stock_id in set(previous) | set(requested)
    }
    ensure_available(
        owner_id, {stock_id: delta for stock_id, delta in deltas.items() if delta > 0}
    )
    released = lookup_by_ids(
        owner_id, [stock_id for stock_id, delta in deltas.items() if delta < 0]
    )

    try:
        with db.session.begin_nested():
            _apply_header(invoice, payload)
            invoice.status = InvoiceStatus.UPDATED
            invoice.items = _build_items(payload)
            db.session.flush()
            for stock_id, delta in sorted(deltas.items()):
                if delta > 0:
                    decrement(
                        owner_id,
                        stock_id,
                        delta,
                        reference=invoice.reference,
                        movement_type=MovementType.EDIT,
                    )
                elif delta < 0:
                    if stock_id not in released:
                        logger.warning(
                            "Stock %s no longer exists; %s unit(s) not restored",
                            stock_id,
                            -delta,
                        )
                        continue
                    increment(
                        owner_id,
                        stock_id,
                        -delta,
                        reference=invoice.reference,
                        movement_type=MovementType.EDIT,
                    )
    except IntegrityError as exc:
        raise _duplicate_number(payload.invoice_number) from exc

    logger.info("Updated invoice %s for owner %s", invoice.reference, owner_id)
    return invoice


def delete_invoice(owner_id: int, invoice_id: int) -> None:
    """Remove the invoice and its lines. Sold stock is not put back."""

    invoice = get_invoice(owner_id, invoice_id)
    reference = invoice.reference
    db.session.delete(invoice)
    db.session.flush()
    logger.info("Deleted invoice %s for owner %s", reference, owner_id)
