from flask import Blueprint, current_app, jsonify, request

from stockbook.auth import owner_required
from stockbook.errors import NotFoundError
from stockbook.extensions import db
from stockbook.services import stock_ledger

bp = Blueprint("stock", __name__, url_prefix="/api/stock")


def _threshold() -> int:
    return int(current_app.config.get("STOCK_IN_STOCK_THRESHOLD", 1))


@bp.get("")
@owner_required
def list_stock(owner_id: int):
    barcode = (request.args.get("barcode") or "").strip()
    if barcode:
        stock = stock_ledger.lookup_by_barcode(owner_id, barcode)
        if stock is None:
            raise NotFoundError("Stock not found", barcode=barcode)
        return jsonify(stock.to_dict(in_stock_threshold=_threshold()))

    stocks = stock_ledger.list_stocks(owner_id)
    return jsonify([stock.to_dict(in_stock_threshold=_threshold()) for stock in stocks])


@bp.post("")
@owner_required
def create_stock(owner_id: int):
    stock = stock_ledger.create_stock(owner_id, request.get_json(silent=True))
    db.session.commit()
    return jsonify({"success": True, "stock": stock.to_dict(in_stock_threshold=_threshold())}), 201


@bp.get("/<int:stock_id>")
@owner_required
def get_stock(owner_id: int, stock_id: int):
    stock = stock_ledger.get_stock(owner_id, stock_id)
    return jsonify(stock.to_dict(in_stock_threshold=_threshold()))


@bp.patch("/<int:stock_id>")
@owner_required
def update_stock(owner_id: int, stock_id: int):
    stock = stock_ledger.update_stock(owner_id, stock_id, request.get_json(silent=True))
    db.session.commit()
    return jsonify({"success": True, "stock": stock.to_dict(in_stock_threshold=_threshold())})


@bp.delete("/<int:stock_id>")
@owner_required
def delete_stock(owner_id: int, stock_id: int):
    stock_ledger.delete_stock(owner_id, stock_id)
    db.session.commit()
    return jsonify({"success": True})
