from __future__ import annotations

import os
import sys
from decimal import Decimal

import pytest

sys.path.append(os.path.join(os.path.dirname(__file__), ".."))

from stockbook import create_app
from stockbook.errors import (
    AlreadyReturnedError,
    DuplicateInvoiceNumberError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from stockbook.extensions import db
from stockbook.models import Invoice, InvoiceStatus, MovementType, Stock, StockMovement, User
from stockbook.services import business as business_service
from stockbook.services import financials, invoice_lifecycle, stock_ledger


@pytest.fixture
def app(tmp_path):
    app = create_app(
        {
            "TESTING": True,
            "SQLALCHEMY_DATABASE_URI": "sqlite:///:memory:",
            "LOG_DIR": str(tmp_path),
        }
    )
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def owner_id(app):
    user = User(username="alice")
    user.set_password("correct-horse")
    db.session.add(user)
    db.session.commit()
    return user.id


def _stock(owner_id: int, barcode: str, quantity: int, **overrides) -> int:
    data = {
        "barcode": barcode,
        "name": f"Stock {barcode}",
        "sku": f"SKU-{barcode}",
        "quantity": quantity,
        "stock_rate": 5,
        "selling_rate": 8,
    }
    data.update(overrides)
    stock = stock_ledger.create_stock(owner_id, data)
    db.session.commit()
    return stock.id


def _quantity(stock_id: int) -> int:
    db.session.expire_all()
    return db.session.get(Stock, stock_id).quantity


def _invoice_payload(items, **overrides):
    payload = {
        "invoice_number": 1042,
        "client_name": "Acme Ltd",
        "client_email": "billing@acme.test",
        "client_address": "1 Market Street",
        "currency": "USD",
        "date": "2025-01-06",
        "items": items,
    }
    payload.update(overrides)
    return payload


def _create(owner_id: int, items, **overrides) -> Invoice:
    invoice = invoice_lifecycle.create_invoice(owner_id, _invoice_payload(items, **overrides))
    db.session.commit()
    return invoice


def test_sale_and_return_round_trip(owner_id):
    stock_id = _stock(owner_id, "B1", 10, vat_percent=0)

    invoice = _create(owner_id, [{"stock_id": stock_id, "quantity": 4, "rate": 8}])

    assert float(invoice.total) == 32.0
    assert invoice.status == InvoiceStatus.PENDING
    assert _quantity(stock_id) == 6

    result = invoice_lifecycle.return_invoice(owner_id, invoice.id)
    db.session.commit()

    assert result.restored == {stock_id: 4}
    assert result.skipped_stock_ids == ()
    assert _quantity(stock_id) == 10
    returned = invoice_lifecycle.get_invoice(owner_id, invoice.id)
    assert returned.status == InvoiceStatus.RETURNED
    assert returned.returned_at is not None


def test_creation_decrements_every_line(owner_id):
    first = _stock(owner_id, "A", 10)
    second = _stock(owner_id, "B", 5)

    invoice = _create(
        owner_id,
        [
            {"stock_id": first, "quantity": 3, "rate": "12.50", "vat_percent": 10},
            {"stock_id": second, "quantity": 2, "rate": 20, "discount": 5},
        ],
    )

    assert _quantity(first) == 7
    assert _quantity(second) == 3
    assert len(invoice.items) == 2
    assert invoice.total == sum(item.line_total for item in invoice.items)
    assert invoice.total == Decimal("76.25")

    sales = StockMovement.query.filter_by(movement_type=MovementType.SALE).all()
    assert sorted(movement.quantity for movement in sales) == [-3, -2]
    assert {movement.reference for movement in sales} == {"INV-1042"}


def test_return_restores_each_stock(owner_id):
    stock_a = _stock(owner_id, "A", 10)
    stock_b = _stock(owner_id, "B", 10)
    invoice = _create(
        owner_id,
        [
            {"stock_id": stock_a, "quantity": 3, "rate": 10},
            {"stock_id": stock_b, "quantity": 2, "rate": 10},
        ],
    )

    before_a, before_b = _quantity(stock_a), _quantity(stock_b)
    invoice_lifecycle.return_invoice(owner_id, invoice.id)
    db.session.commit()

    assert _quantity(stock_a) == before_a + 3
    assert _quantity(stock_b) == before_b + 2


def test_second_return_is_rejected_without_stock_change(owner_id):
    stock_id = _stock(owner_id, "A", 10)
    invoice = _create(owner_id, [{"stock_id": stock_id, "quantity": 4, "rate": 8}])
    invoice_lifecycle.return_invoice(owner_id, invoice.id)
    db.session.commit()

    with pytest.raises(AlreadyReturnedError):
        invoice_lifecycle.return_invoice(owner_id, invoice.id)
    db.session.rollback()

    assert _quantity(stock_id) == 10


def test_insufficient_line_leaves_every_stock_untouched(owner_id):
    plenty = _stock(owner_id, "A", 10)
    scarce = _stock(owner_id, "B", 1)

    with pytest.raises(InsufficientStockError) as excinfo:
        invoice_lifecycle.create_invoice(
            owner_id,
            _invoice_payload(
                [
                    {"stock_id": plenty, "quantity": 2, "rate": 10},
                    {"stock_id": scarce, "quantity": 3, "rate": 10},
                ]
            ),
        )
    db.session.rollback()

    assert excinfo.value.details["stock_id"] == scarce
    assert _quantity(plenty) == 10
    assert _quantity(scarce) == 1
    assert Invoice.query.count() == 0


def test_repeated_lines_are_checked_together(owner_id):
    stock_id = _stock(owner_id, "A", 5)

    with pytest.raises(InsufficientStockError):
        invoice_lifecycle.create_invoice(
            owner_id,
            _invoice_payload(
                [
                    {"stock_id": stock_id, "quantity": 3, "rate": 10},
                    {"stock_id": stock_id, "quantity": 3, "rate": 10},
                ]
            ),
        )
    db.session.rollback()
    assert _quantity(stock_id) == 5


def test_lost_race_rolls_back_the_whole_invoice(owner_id, monkeypatch):
    plenty = _stock(owner_id, "A", 10)
    scarce = _stock(owner_id, "B", 1)

    # pretend the pre-check ran before another request emptied stock B
    monkeypatch.setattr(invoice_lifecycle, "ensure_available", lambda *args, **kwargs: {})

    with pytest.raises(InsufficientStockError):
        invoice_lifecycle.create_invoice(
            owner_id,
            _invoice_payload(
                [
                    {"stock_id": plenty, "quantity": 2, "rate": 10},
                    {"stock_id": scarce, "quantity": 3, "rate": 10},
                ]
            ),
        )
    db.session.rollback()

    assert _quantity(plenty) == 10
    assert _quantity(scarce) == 1
    assert Invoice.query.count() == 0
    assert StockMovement.query.filter_by(movement_type=MovementType.SALE).count() == 0


def test_duplicate_invoice_number_is_rejected_per_owner(owner_id):
    stock_id = _stock(owner_id, "A", 10)
    _create(owner_id, [{"stock_id": stock_id, "quantity": 1, "rate": 10}])

    with pytest.raises(DuplicateInvoiceNumberError):
        invoice_lifecycle.create_invoice(
            owner_id, _invoice_payload([{"stock_id": stock_id, "quantity": 1, "rate": 10}])
        )
    db.session.rollback()
    assert _quantity(stock_id) == 9

    other = User(username="bob")
    other.set_password("correct-horse")
    db.session.add(other)
    db.session.commit()
    other_stock = _stock(other.id, "A", 10)
    invoice = _create(other.id, [{"stock_id": other_stock, "quantity": 1, "rate": 10}])
    assert invoice.invoice_number == 1042


def test_barcode_references_are_resolved(owner_id):
    stock_id = _stock(owner_id, "B1", 10)
    invoice = _create(owner_id, [{"barcode": "B1", "quantity": 2, "rate": 8}])

    assert invoice.items[0].stock_id == stock_id
    assert _quantity(stock_id) == 8

    with pytest.raises(NotFoundError):
        invoice_lifecycle.create_invoice(
            owner_id,
            _invoice_payload([{"barcode": "nope", "quantity": 1, "rate": 8}], invoice_number=7),
        )


def test_stock_id_and_barcode_must_agree(owner_id):
    first = _stock(owner_id, "B1", 10)
    second = _stock(owner_id, "B2", 10)

    with pytest.raises(ValidationError) as excinfo:
        invoice_lifecycle.create_invoice(
            owner_id,
            _invoice_payload([{"stock_id": second, "barcode": "B1", "quantity": 1, "rate": 8}]),
        )
    assert excinfo.value.message == (
        f"Item 1: Stock ID {second} does not match barcode B1"
    )
    assert Invoice.query.count() == 0
    assert _quantity(first) == 10
    assert _quantity(second) == 10

    invoice = _create(owner_id, [{"stock_id": first, "barcode": "B1", "quantity": 2, "rate": 8}])
    assert invoice.items[0].stock_id == first
    assert _quantity(first) == 8


def test_unknown_stock_id_is_not_found(owner_id):
    with pytest.raises(NotFoundError):
        invoice_lifecycle.create_invoice(
            owner_id, _invoice_payload([{"stock_id": 999, "quantity": 1, "rate": 8}])
        )


def test_issuer_defaults_come_from_business(owner_id):
    business_service.create_business(
        owner_id,
        {
            "business_name": "Corner Shop",
            "business_type": "Retail",
            "business_address": "2 High Street",
            "business_phone": "555-0100",
            "business_email": "shop@corner.test",
        },
    )
    db.session.commit()
    stock_id = _stock(owner_id, "A", 10)

    invoice = _create(
        owner_id,
        [{"stock_id": stock_id, "quantity": 1, "rate": 8}],
        from_name="Front Desk",
    )

    assert invoice.from_name == "Front Desk"
    assert invoice.from_email == "shop@corner.test"
    assert invoice.from_address == "2 High Street"


def test_mark_paid_has_no_stock_effect(owner_id):
    stock_id = _stock(owner_id, "A", 10)
    invoice = _create(owner_id, [{"stock_id": stock_id, "quantity": 4, "rate": 8}])

    invoice_lifecycle.mark_paid(owner_id, invoice.id)
    db.session.commit()

    assert invoice_lifecycle.get_invoice(owner_id, invoice.id).status == InvoiceStatus.PAID
    assert _quantity(stock_id) == 6
    with pytest.raises(NotFoundError):
        invoice_lifecycle.mark_paid(owner_id, invoice.id + 1)


def test_paid_invoice_can_still_be_returned(owner_id):
    stock_id = _stock(owner_id, "A", 10)
    invoice = _create(
        owner_id, [{"stock_id": stock_id, "quantity": 4, "rate": 8}], status="PAID"
    )

    invoice_lifecycle.return_invoice(owner_id, invoice.id)
    db.session.commit()

    assert _quantity(stock_id) == 10


def test_return_lines_are_bounded_by_invoiced_quantities(owner_id):
    stock_a = _stock(owner_id, "A", 10)
    stock_b = _stock(owner_id, "B", 10)
    invoice = _create(
        owner_id,
        [
            {"stock_id": stock_a, "quantity": 3, "rate": 10},
            {"stock_id": stock_b, "quantity": 2, "rate": 10},
        ],
    )

    with pytest.raises(InsufficientStockError):
        invoice_lifecycle.return_invoice(
            owner_id, invoice.id, {"items": [{"stock_id": stock_a, "quantity": 4}]}
        )
    with pytest.raises(InsufficientStockError):
        invoice_lifecycle.return_invoice(
            owner_id, invoice.id, [{"stock_id": stock_b + 100, "quantity": 1}]
        )
    with pytest.raises(ValidationError):
        invoice_lifecycle.return_invoice(owner_id, invoice.id, {"items": []})
    db.session.rollback()

    result = invoice_lifecycle.return_invoice(
        owner_id, invoice.id, {"items": [{"stock_id": stock_a, "quantity": 1}]}
    )
    db.session.commit()

    assert result.restored == {stock_a: 1}
    assert _quantity(stock_a) == 8
    assert _quantity(stock_b) == 8
    assert result.invoice.status == InvoiceStatus.RETURNED


def test_return_skips_stock_deleted_since_the_sale(owner_id):
    kept = _stock(owner_id, "A", 10)
    removed = _stock(owner_id, "B", 10)
    invoice = _create(
        owner_id,
        [
            {"stock_id": kept, "quantity": 1, "rate": 10},
            {"stock_id": removed, "quantity": 1, "rate": 10},
        ],
    )
    stock_ledger.delete_stock(owner_id, removed)
    db.session.commit()

    result = invoice_lifecycle.return_invoice(owner_id, invoice.id)
    db.session.commit()

    assert result.restored == {kept: 1}
    assert result.skipped_stock_ids == (removed,)
    assert _quantity(kept) == 10


def test_editing_a_paid_invoice_marks_it_updated_until_paid_again(owner_id):
    stock_id = _stock(owner_id, "A", 10)
    invoice = _create(
        owner_id, [{"stock_id": stock_id, "quantity": 2, "rate": 8}], status="PAID"
    )

    invoice_lifecycle.update_invoice(
        owner_id,
        invoice.id,
        _invoice_payload([{"stock_id": stock_id, "quantity": 2, "rate": 9}], status="PAID"),
    )
    db.session.commit()

    edited = invoice_lifecycle.get_invoice(owner_id, invoice.id)
    assert edited.status == InvoiceStatus.UPDATED
    invoices, stocks = financials.load_history(owner_id)
    assert financials.quick_stats(invoices, stocks)["pending_invoices"] == 1

    invoice_lifecycle.mark_paid(owner_id, invoice.id)
    db.session.commit()
    invoices, stocks = financials.load_history(owner_id)
    assert financials.quick_stats(invoices, stocks)["pending_invoices"] == 0
    assert _quantity(stock_id) == 8


def test_update_moves_stock_by_difference(owner_id):
    stock_a = _stock(owner_id, "A", 10)
    stock_b = _stock(owner_id, "B", 10)
    invoice = _create(owner_id, [{"stock_id": stock_a, "quantity": 4, "rate": 8}])

    updated = invoice_lifecycle.update_invoice(
        owner_id,
        invoice.id,
        _invoice_payload(
            [
                {"stock_id": stock_a, "quantity": 1, "rate": 8},
                {"stock_id": stock_b, "quantity": 5, "rate": 8},
            ],
            client_name="Acme Holdings",
        ),
    )
    db.session.commit()

    assert updated.status == InvoiceStatus.UPDATED
    assert updated.client_name == "Acme Holdings"
    assert float(updated.total) == 48.0
    assert len(updated.items) == 2
    assert _quantity(stock_a) == 9
    assert _quantity(stock_b) == 5
    edits = StockMovement.query.filter_by(movement_type=MovementType.EDIT).all()
    assert sorted(movement.quantity for movement in edits) == [-5, 3]


def test_update_rejects_increase_beyond_stock(owner_id):
    stock_id = _stock(owner_id, "A", 5)
    invoice = _create(owner_id, [{"stock_id": stock_id, "quantity": 4, "rate": 8}])

    with pytest.raises(InsufficientStockError):
        invoice_lifecycle.update_invoice(
            owner_id,
            invoice.id,
            _invoice_payload([{"stock_id": stock_id, "quantity": 6, "rate": 8}]),
        )
    db.session.rollback()

    assert _quantity(stock_id) == 1
    assert invoice_lifecycle.get_invoice(owner_id, invoice.id).status == InvoiceStatus.PENDING


def test_update_checks_new_number_and_rejects_returned(owner_id):
    stock_id = _stock(owner_id, "A", 10)
    first = _create(owner_id, [{"stock_id": stock_id, "quantity": 1, "rate": 8}])
    second = _create(
        owner_id, [{"stock_id": stock_id, "quantity": 1, "rate": 8}], invoice_number=2000
    )

    with pytest.raises(DuplicateInvoiceNumberError):
        invoice_lifecycle.update_invoice(
            owner_id,
            second.id,
            _invoice_payload([{"stock_id": stock_id, "quantity": 1, "rate": 8}]),
        )
    db.session.rollback()

    invoice_lifecycle.return_invoice(owner_id, first.id)
    db.session.commit()
    with pytest.raises(AlreadyReturnedError):
        invoice_lifecycle.update_invoice(
            owner_id,
            first.id,
            _invoice_payload([{"stock_id": stock_id, "quantity": 1, "rate": 8}]),
        )


def test_delete_does_not_restore_stock(owner_id):
    stock_id = _stock(owner_id, "A", 10)
    invoice = _create(owner_id, [{"stock_id": stock_id, "quantity": 4, "rate": 8}])

    invoice_lifecycle.delete_invoice(owner_id, invoice.id)
    db.session.commit()

    assert _quantity(stock_id) == 6
    assert Invoice.query.count() == 0
    with pytest.raises(NotFoundError):
        invoice_lifecycle.get_invoice(owner_id, invoice.id)


def test_list_invoices_filters_by_status(owner_id):
    stock_id = _stock(owner_id, "A", 10)
    pending = _create(owner_id, [{"stock_id": stock_id, "quantity": 1, "rate": 8}])
    paid = _create(
        owner_id,
        [{"stock_id": stock_id, "quantity": 1, "rate": 8}],
        invoice_number=2000,
        status="PAID",
    )

    assert {invoice.id for invoice in invoice_lifecycle.list_invoices(owner_id)} == {
        pending.id,
        paid.id,
    }
    assert [invoice.id for invoice in invoice_lifecycle.list_invoices(owner_id, status="paid")] == [
        paid.id
    ]
