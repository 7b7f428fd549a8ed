"""CSV downloads for the reporting endpoints."""

from __future__ import annotations

import csv
from datetime import date
from decimal import Decimal
from typing import Iterable, Iterator, Sequence

from flask import Response, stream_with_context


class _Passthrough:
    """File-like target whose ``write`` hands the formatted line back."""

    def write(self, value: str) -> str:
        return value


def _cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, float):
        return f"{value:.2f}"
    if isinstance(value, Decimal):
        return format(value.quantize(Decimal("0.01")), "f")
    return str(value)


def _lines(rows: Iterable[dict], columns: Sequence[tuple[str, str]]) -> Iterator[str]:
    writer = csv.writer(_Passthrough())
    yield writer.writerow([label for _, label in columns])
    for row in rows:
        yield writer.writerow([_cell(row.get(key)) for key, _ in columns])


def export_rows_to_csv(
    rows: Iterable[dict],
    columns: Iterable[tuple[str, str]],
    filename: str,
) -> Response:
    """Stream ``rows`` as CSV; ``columns`` pairs each row key with its header."""

    response = Response(
        stream_with_context(_lines(rows, tuple(columns))), mimetype="text/csv"
    )
    response.headers["Content-Disposition"] = f'attachment; filename="{filename}"'
    return response
