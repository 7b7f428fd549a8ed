"""Business error taxonomy.

Services raise these; the Flask error handlers in
:mod:`stockbook.routes.errors` convert them into ``{"error", "message"}``
payloads with the matching HTTP status code.
"""

from __future__ import annotations


class StockbookError(Exception):
    kind = "error"
    status_code = 400

    def __init__(self, message: str, **details) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_result(self) -> dict:
        result = {"error": self.kind, "message": self.message}
        result.update(self.details)
        return result


class ValidationError(StockbookError):
    """Malformed or missing input.

    ``message`` is the first failing constraint; ``errors`` keeps every
    message that was collected.
    """

    kind = "validation_error"
    status_code = 400

    def __init__(self, errors: list[str] | str) -> None:
        if isinstance(errors, str):
            errors = [errors]
        errors = list(errors) or ["Validation failed"]
        super().__init__(errors[0], errors=errors)
        self.errors = errors


class InsufficientStockError(StockbookError):
    kind = "insufficient_stock"
    status_code = 409


class NotFoundError(StockbookError):
    kind = "not_found"
    status_code = 404


class DuplicateInvoiceNumberError(StockbookError):
    kind = "duplicate_invoice_number"
    status_code = 409


class AlreadyReturnedError(StockbookError):
    kind = "already_returned"
    status_code = 409


class UnauthorizedError(StockbookError):
    kind = "unauthorized"
    status_code = 401
