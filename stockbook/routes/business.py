from flask import Blueprint, jsonify, request

from stockbook.auth import owner_required
from stockbook.extensions import db
from stockbook.services import business as business_service

bp = Blueprint("business", __name__, url_prefix="/api/business")


@bp.get("")
@owner_required
def get_business(owner_id: int):
    return jsonify(business_service.get_business(owner_id).to_dict())


@bp.post("")
@owner_required
def create_business(owner_id: int):
    business = business_service.create_business(owner_id, request.get_json(silent=True))
    db.session.commit()
    return jsonify({"success": True, "business": business.to_dict()}), 201


@bp.put("")
@owner_required
def update_business(owner_id: int):
    business = business_service.update_business(owner_id, request.get_json(silent=True))
    db.session.commit()
    return jsonify({"success": True, "business": business.to_dict()})
