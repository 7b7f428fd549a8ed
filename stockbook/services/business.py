from __future__ import annotations

import logging
from typing import Mapping

from stockbook.errors import NotFoundError, ValidationError
from stockbook.extensions import db
from stockbook.models import Business
from stockbook.utils.parsing import parse_email, parse_text

logger = logging.getLogger(__name__)

# (payload key, parser, label, required, limit)
_BUSINESS_FIELDS = (
    ("business_name", parse_text, "Business name", True, 255),
    ("business_type", parse_text, "Business type", True, 120),
    ("business_address", parse_text, "Business address", True, 500),
    ("business_phone", parse_text, "Business phone", True, 64),
    ("business_email", parse_email, "Business email", True, None),
    ("business_ein", parse_text, "EIN", False, 64),
    ("business_vat", parse_text, "VAT number", False, 64),
    ("business_logo", parse_text, "Logo URL", False, 1024),
    ("return_policy", parse_text, "Return policy", False, 5000),
)


def parse_business_payload(raw: Mapping, *, partial: bool = False) -> dict:
    if not isinstance(raw, Mapping):
        raise ValidationError("Business data must be an object")

    values: dict = {}
    errors: list[str] = []
    for key, parser, label, required, limit in _BUSINESS_FIELDS:
        if partial and key not in raw:
            continue
        options = {"label": label, "required": required}
        if limit is not None:
            options["limit"] = limit
        value, error = parser(raw.get(key), **options)
        if error:
            errors.append(error)
            continue
        values[key] = value

    if errors:
        raise ValidationError(errors)
    return values


def find_business(owner_id: int) -> Business | None:
    return Business.query.filter_by(owner_id=owner_id).first()


def get_business(owner_id: int) -> Business:
    business = find_business(owner_id)
    if business is None:
        raise NotFoundError("No business found")
    return business


def create_business(owner_id: int, raw: Mapping) -> Business:
    if find_business(owner_id) is not None:
        raise ValidationError("Business already exists")
    values = parse_business_payload(raw)
    business = Business(owner_id=owner_id, **values)
    db.session.add(business)
    db.session.flush()
    logger.info("Created business %s for owner %s", business.id, owner_id)
    return business


def update_business(owner_id: int, raw: Mapping) -> Business:
    business = get_business(owner_id)
    for key, value in parse_business_payload(raw, partial=True).items():
        setattr(business, key, value)
    db.session.flush()
    return business


def issuer_defaults(owner_id: int) -> tuple[str | None, str | None, str | None]:
    """``(name, email, address)`` used when an invoice omits its issuer."""

    business = find_business(owner_id)
    if business is None:
        return None, None, None
    return business.business_name, business.business_email, business.business_address
