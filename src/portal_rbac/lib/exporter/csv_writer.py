"""CSV export writer for audit entries (RFC 4180 quoting, CRLF line endings)."""

import csv
import json
from collections.abc import Iterable
from typing import Any, TextIO

# Column order of an audit export
AUDIT_COLUMNS = [
    "id",
    "timestamp",
    "user_id",
    "role_before",
    "role_after",
    "performed_by",
    "reason",
    "ip_address",
    "user_agent",
    "metadata",
]


def to_csv_cell(value: object) -> str:
    """Render one value the way it appears in a CSV cell.

    None becomes an empty cell and nested structures become compact JSON with
    sorted keys, so a CSV cell can always be compared with the JSON export of
    the same record.
    """
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, dict | list):
        return json.dumps(value, sort_keys=True, separators=(",", ":"), default=str)
    return str(value)


def write_csv(
    stream: TextIO,
    records: Iterable[dict[str, Any]],
    *,
    columns: list[str] | None = None,
) -> int:
    """Write records to a text stream as CSV with a header row.

    Args:
        stream: Destination text stream (opened with ``newline=""`` if a file).
        records: Iterable of record dicts.
        columns: Column names to include. Defaults to AUDIT_COLUMNS.

    Returns:
        Number of records written.
    """
    cols = columns or AUDIT_COLUMNS
    count = 0

    writer = csv.DictWriter(stream, fieldnames=cols, extrasaction="ignore", lineterminator="\r\n")
    writer.writeheader()

    for record in records:
        writer.writerow({k: to_csv_cell(v) for k, v in record.items()})
        count += 1

    return count
