from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable, Mapping

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from stockbook.errors import InsufficientStockError, NotFoundError, ValidationError
from stockbook.extensions import db
from stockbook.models import MovementType, Stock, StockMovement, stock_status
from stockbook.utils.parsing import (
    parse_bool,
    parse_date,
    parse_decimal,
    parse_int,
    parse_text,
)

logger = logging.getLogger(__name__)

__all__ = [
    "create_stock",
    "decrement",
    "delete_stock",
    "ensure_available",
    "get_stock",
    "increment",
    "list_stocks",
    "lookup_by_barcode",
    "lookup_by_ids",
    "stock_status",
    "update_stock",
]

# (payload key, parser, keyword arguments, required on create)
_STOCK_FIELDS = (
    ("barcode", parse_text, {"label": "Barcode", "limit": 128}, True),
    ("name", parse_text, {"label": "Stock Name"}, True),
    ("sku", parse_text, {"label": "SKU", "limit": 128}, True),
    ("category", parse_text, {"label": "Category", "limit": 120}, False),
    ("sub_category", parse_text, {"label": "Sub Category", "limit": 120}, False),
    ("quantity", parse_int, {"label": "Quantity", "minimum": 0}, False),
    ("stock_rate", parse_decimal, {"label": "Stock Rate", "minimum": 0}, False),
    ("selling_rate", parse_decimal, {"label": "Selling Rate", "minimum": 0}, False),
    ("vat_percent", parse_decimal, {"label": "VAT", "minimum": 0}, False),
    ("supplier", parse_text, {"label": "Supplier"}, False),
    ("stock_location", parse_text, {"label": "Stock Location"}, False),
    ("reorder_level", parse_int, {"label": "Reorder Level", "minimum": 0}, False),
    ("purchase_date", parse_date, {"label": "Purchase Date"}, False),
    ("expiry_date", parse_date, {"label": "Expiry Date"}, False),
)

_NOT_NULL_DEFAULTS = {
    "quantity": 0,
    "stock_rate": 0,
    "selling_rate": 0,
    "vat_percent": 0,
    "reorder_level": 0,
}


def parse_stock_payload(raw: Mapping, *, partial: bool = False) -> dict:
    """Validate a stock payload, raising :class:`ValidationError` on failure.

    With ``partial`` only the keys present in ``raw`` are validated, which is
    what stock edits send.
    """

    if not isinstance(raw, Mapping):
        raise ValidationError("Stock data must be an object")

    values: dict = {}
    errors: list[str] = []
    for key, parser, options, required in _STOCK_FIELDS:
        if partial and key not in raw:
            continue
        parsed, error = parser(raw.get(key), **options)
        if error is None and parsed is None and required:
            error = f"{options['label']} is required"
        if error:
            errors.append(error)
            continue
        if parsed is None and key in _NOT_NULL_DEFAULTS:
            parsed = _NOT_NULL_DEFAULTS[key]
        values[key] = parsed

    if not partial or "discount_allowed" in raw:
        values["discount_allowed"] = parse_bool(raw.get("discount_allowed"))

    if errors:
        raise ValidationError(errors)
    return values


def _owned_stock(owner_id: int, stock_id: int) -> Stock | None:
    return (
        Stock.query.filter_by(id=stock_id, owner_id=owner_id)
        .execution_options(populate_existing=True)
        .first()
    )


def get_stock(owner_id: int, stock_id: int) -> Stock:
    stock = _owned_stock(owner_id, stock_id)
    if stock is None:
        raise NotFoundError("Stock not found", stock_id=stock_id)
    return stock


def list_stocks(owner_id: int, *, barcode: str | None = None) -> list[Stock]:
    query = Stock.query.filter_by(owner_id=owner_id)
    if barcode:
        query = query.filter(Stock.barcode == barcode.strip())
    return query.order_by(Stock.name, Stock.id).all()


def lookup_by_barcode(owner_id: int, barcode: str | None) -> Stock | None:
    if not barcode or not str(barcode).strip():
        return None
    return Stock.query.filter_by(owner_id=owner_id, barcode=str(barcode).strip()).first()


def lookup_by_ids(owner_id: int, ids: Iterable[int]) -> dict[int, Stock]:
    stock_ids = {stock_id for stock_id in ids if stock_id is not None}
    if not stock_ids:
        return {}
    stocks = (
        Stock.query.filter(Stock.owner_id == owner_id, Stock.id.in_(stock_ids))
        .execution_options(populate_existing=True)
        .all()
    )
    return {stock.id: stock for stock in stocks}


def _ensure_unique_codes(owner_id: int, values: dict, *, exclude_id: int | None = None) -> None:
    for key, label in (("barcode", "Barcode"), ("sku", "SKU")):
        if key not in values:
            continue
        query = Stock.query.filter(
            Stock.owner_id == owner_id, getattr(Stock, key) == values[key]
        )
        if exclude_id is not None:
            query = query.filter(Stock.id != exclude_id)
        if query.first() is not None:
            raise ValidationError(f"{label} already exists")


def _record_movement(
    owner_id: int,
    stock_id: int,
    delta: int,
    movement_type: str,
    reference: str | None,
) -> None:
    db.session.add(
        StockMovement(
            owner_id=owner_id,
            stock_id=stock_id,
            quantity=delta,
            movement_type=movement_type,
            reference=reference,
        )
    )


def _flush_stock_changes() -> None:
    try:
        db.session.flush()
    except IntegrityError as exc:
        raise ValidationError("Barcode and SKU must be unique") from exc


def create_stock(owner_id: int, raw: Mapping) -> Stock:
    values = parse_stock_payload(raw)
    _ensure_unique_codes(owner_id, values)

    stock = Stock(owner_id=owner_id, **values)
    db.session.add(stock)
    _flush_stock_changes()
    if stock.quantity:
        _record_movement(owner_id, stock.id, stock.quantity, MovementType.ADJUST, "create")
    logger.info("Created stock %s (%s) for owner %s", stock.id, stock.barcode, owner_id)
    return stock


def update_stock(owner_id: int, stock_id: int, raw: Mapping) -> Stock:
    stock = get_stock(owner_id, stock_id)
    values = parse_stock_payload(raw, partial=True)
    _ensure_unique_codes(owner_id, values, exclude_id=stock.id)

    previous_quantity = int(stock.quantity or 0)
    for key, value in values.items():
        setattr(stock, key, value)
    _flush_stock_changes()

    delta = int(stock.quantity or 0) - previous_quantity
    if delta:
        _record_movement(owner_id, stock.id, delta, MovementType.ADJUST, "edit")
    return stock


def delete_stock(owner_id: int, stock_id: int) -> None:
    stock = get_stock(owner_id, stock_id)
    db.session.delete(stock)
    db.session.flush()
    logger.info("Deleted stock %s for owner %s", stock_id, owner_id)


def ensure_available(owner_id: int, demands: Mapping[int, int]) -> dict[int, Stock]:
    """Check every ``{stock_id: quantity}`` demand before anything is mutated."""

    stocks = lookup_by_ids(owner_id, demands.keys())
    for stock_id, quantity in demands.items():
        stock = stocks.get(stock_id)
        if stock is None:
            raise NotFoundError("Stock not found", stock_id=stock_id)
        available = int(stock.quantity or 0)
        if quantity > available:
            raise InsufficientStockError(
                f"Not enough stock for {stock.name}. "
                f"Available {available}, requested {quantity}.",
                stock_id=stock_id,
                available=available,
                requested=quantity,
            )
    return stocks


def _current_quantity(stock_id: int) -> int:
    stock = db.session.get(Stock, stock_id)
    db.session.refresh(stock, attribute_names=["quantity", "updated_at"])
    return int(stock.quantity)


def decrement(
    owner_id: int,
    stock_id: int,
    quantity: int,
    *,
    reference: str | None = None,
    movement_type: str = MovementType.SALE,
) -> int:
    """Atomically subtract ``quantity``; the update only applies while enough remains."""

    if quantity <= 0:
        raise ValidationError("Quantity must be at least 1")

    result = db.session.execute(
        update(Stock)
        .where(
            Stock.id == stock_id,
            Stock.owner_id == owner_id,
            Stock.quantity >= quantity,
        )
        .values(quantity=Stock.quantity - quantity, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        stock = _owned_stock(owner_id, stock_id)
        if stock is None:
            raise NotFoundError("Stock not found", stock_id=stock_id)
        available = int(stock.quantity or 0)
        logger.warning(
            "Rejected decrement of %s from stock %s (available %s)",
            quantity,
            stock_id,
            available,
        )
        raise InsufficientStockError(
            f"Not enough stock for {stock.name}. "
            f"Available {available}, requested {quantity}.",
            stock_id=stock_id,
            available=available,
            requested=quantity,
        )

    _record_movement(owner_id, stock_id, -quantity, movement_type, reference)
    return _current_quantity(stock_id)


def increment(
    owner_id: int,
    stock_id: int,
    quantity: int,
    *,
    reference: str | None = None,
    movement_type: str = MovementType.RETURN,
) -> int:
    if quantity <= 0:
        raise ValidationError("Quantity must be at least 1")

    result = db.session.execute(
        update(Stock)
        .where(Stock.id == stock_id, Stock.owner_id == owner_id)
        .values(quantity=Stock.quantity + quantity, updated_at=datetime.utcnow())
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFoundError("Stock not found", stock_id=stock_id)

    _record_movement(owner_id, stock_id, quantity, movement_type, reference)
    return _current_quantity(stock_id)
