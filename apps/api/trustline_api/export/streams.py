"""Streaming CSV / JSON writers shared by ledger and case exports."""

import csv
import io
import json
from typing import Iterable, Iterator, Sequence

from trustline_api.errors import ExportCancelled

MEDIA_TYPES = {
    "csv": "text/csv",
    "json": "application/json",
    "pdf": "application/pdf",
}


def check_cancelled(cancel_event) -> None:
    """Raise ExportCancelled if the cooperative cancel flag is set."""
    if cancel_event is not None and cancel_event.is_set():
        raise ExportCancelled("Export cancelled")


def dumps(value) -> str:
    """Compact JSON encoding that preserves the given key order."""
    return json.dumps(value, separators=(",", ":"), ensure_ascii=False, default=str)


def csv_cell(value) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (dict, list)):
        return dumps(value)
    return str(value)


def csv_stream(rows: Iterable[Sequence], cancel_event=None) -> Iterator[str]:
    """Yield one CSV line per row."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    for row in rows:
        check_cancelled(cancel_event)
        writer.writerow([csv_cell(value) for value in row])
        yield buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)


def json_array_stream(items: Iterable, cancel_event=None) -> Iterator[str]:
    """Yield a JSON array one element at a time."""
    yield "["
    first = True
    for item in items:
        check_cancelled(cancel_event)
        yield ("" if first else ",") + dumps(item)
        first = False
    yield "]"


def records_to_csv(fields: Sequence[str], records: Iterable[dict], cancel_event=None) -> Iterator[str]:
    """Stream dict records as CSV with a fixed header."""
    rows = ((record[name] for name in fields) for record in records)
    yield from csv_stream(_prepend(tuple(fields), rows), cancel_event)


def _prepend(first, rest: Iterable) -> Iterator:
    yield first
    yield from rest

