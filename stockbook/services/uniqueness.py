from __future__ import annotations

import logging
import random

from flask import current_app, has_app_context
from sqlalchemy import func

from stockbook.extensions import db
from stockbook.models import Invoice

logger = logging.getLogger(__name__)

NUMBER_LOW = 1000
NUMBER_HIGH = 9999
DEFAULT_ATTEMPTS = 20


def is_invoice_number_unique(
    owner_id: int, number: int, exclude_invoice_id: int | None = None
) -> bool:
    query = Invoice.query.filter(
        Invoice.owner_id == owner_id, Invoice.invoice_number == number
    )
    if exclude_invoice_id is not None:
        query = query.filter(Invoice.id != exclude_invoice_id)
    return query.first() is None


def _attempts() -> int:
    if has_app_context():
        return int(current_app.config.get("INVOICE_NUMBER_ATTEMPTS", DEFAULT_ATTEMPTS))
    return DEFAULT_ATTEMPTS


def generate_invoice_number(owner_id: int, rng: random.Random | None = None) -> int:
    """Suggest an unused invoice number for ``owner_id``.

    Random four digit numbers are probed first; once those attempts are used
    up the next number after the owner's highest is returned.
    """

    rng = rng or random.SystemRandom()
    for _ in range(_attempts()):
        candidate = rng.randint(NUMBER_LOW, NUMBER_HIGH)
        if is_invoice_number_unique(owner_id, candidate):
            return candidate

    highest = (
        db.session.query(func.max(Invoice.invoice_number))
        .filter(Invoice.owner_id == owner_id)
        .scalar()
    )
    fallback = max(int(highest or 0) + 1, NUMBER_LOW)
    logger.info(
        "Random invoice numbers exhausted for owner %s, using %s", owner_id, fallback
    )
    return fallback
