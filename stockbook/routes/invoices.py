from flask import Blueprint, current_app, jsonify, request

from stockbook.auth import owner_required
from stockbook.errors import ValidationError
from stockbook.extensions import db
from stockbook.services import invoice_lifecycle
from stockbook.services.uniqueness import generate_invoice_number, is_invoice_number_unique
from stockbook.utils.parsing import parse_int

bp = Blueprint("invoices", __name__, url_prefix="/api/invoices")


@bp.get("")
@owner_required
def list_invoices(owner_id: int):
    invoices = invoice_lifecycle.list_invoices(owner_id, status=request.args.get("status"))
    return jsonify([invoice.to_dict() for invoice in invoices])


@bp.post("")
@owner_required
def create_invoice(owner_id: int):
    invoice = invoice_lifecycle.create_invoice(owner_id, request.get_json(silent=True))
    db.session.commit()
    return jsonify({"success": True, "invoice": invoice.to_dict()}), 201


@bp.get("/check-unique")
@owner_required
def check_unique(owner_id: int):
    number, error = parse_int(
        request.args.get("invoice_number"), label="Invoice number", minimum=1
    )
    if error or number is None:
        raise ValidationError(error or "Invoice number is required")
    exclude_id, error = parse_int(request.args.get("exclude_id"), label="Invoice ID", minimum=1)
    if error:
        raise ValidationError(error)
    unique = is_invoice_number_unique(owner_id, number, exclude_invoice_id=exclude_id)
    return jsonify({"invoice_number": number, "unique": unique})


@bp.get("/next-number")
@owner_required
def next_number(owner_id: int):
    return jsonify({"invoice_number": generate_invoice_number(owner_id)})


@bp.get("/<int:invoice_id>")
@owner_required
def get_invoice(owner_id: int, invoice_id: int):
    return jsonify(invoice_lifecycle.get_invoice(owner_id, invoice_id).to_dict())


@bp.put("/<int:invoice_id>")
@owner_required
def update_invoice(owner_id: int, invoice_id: int):
    invoice = invoice_lifecycle.update_invoice(
        owner_id, invoice_id, request.get_json(silent=True)
    )
    db.session.commit()
    return jsonify({"success": True, "invoice": invoice.to_dict()})


@bp.delete("/<int:invoice_id>")
@owner_required
def delete_invoice(owner_id: int, invoice_id: int):
    invoice_lifecycle.delete_invoice(owner_id, invoice_id)
    db.session.commit()
    return jsonify({"success": True})


@bp.patch("/<int:invoice_id>/mark-paid")
@owner_required
def mark_paid(owner_id: int, invoice_id: int):
    invoice = invoice_lifecycle.mark_paid(owner_id, invoice_id)
    db.session.commit()
    return jsonify({"success": True, "invoice": invoice.to_dict()})


@bp.patch("/<int:invoice_id>/return")
@owner_required
def return_invoice(owner_id: int, invoice_id: int):
    # an empty body returns every stored line
    payload = request.get_json(silent=True) or None
    result = invoice_lifecycle.return_invoice(owner_id, invoice_id, payload)
    db.session.commit()
    if result.skipped_stock_ids:
        current_app.logger.warning(
            "Return of invoice %s skipped deleted stocks %s",
            result.invoice.reference,
            list(result.skipped_stock_ids),
        )
    return jsonify({"success": True, **result.to_dict()})
