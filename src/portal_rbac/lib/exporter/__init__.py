"""Exporter library: public API for audit trail export.

Provides format-specific writers and a unified export function that renders
records to bytes.
"""

import io
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from portal_rbac.lib.exporter.csv_writer import AUDIT_COLUMNS, to_csv_cell, write_csv
from portal_rbac.lib.exporter.json_writer import write_json

# Format registry mapping format names to writer functions
_WRITERS: dict[str, Callable[..., int]] = {
    "csv": write_csv,
    "json": write_json,
}

_CONTENT_TYPES = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
}

SUPPORTED_FORMATS = list(_WRITERS.keys())


@dataclass
class ExportResult:
    """Result of an export operation."""

    record_count: int
    content: bytes
    content_type: str
    file_extension: str


def export_records(
    records: Iterable[dict[str, Any]],
    output_format: str,
    *,
    columns: list[str] | None = None,
) -> ExportResult:
    """Render records in the specified format.

    Args:
        records: Iterable of record dicts.
        output_format: Output format (csv, json).
        columns: Column selection for CSV format.

    Returns:
        ExportResult with the encoded payload and record count.

    Raises:
        ValueError: If the format is not supported.
    """
    if output_format not in _WRITERS:
        msg = f"Unsupported format: {output_format}. Supported: {SUPPORTED_FORMATS}"
        raise ValueError(msg)

    buffer = io.StringIO(newline="")
    if output_format == "csv":
        count = write_csv(buffer, records, columns=columns)
    else:
        count = _WRITERS[output_format](buffer, records)

    return ExportResult(
        record_count=count,
        content=buffer.getvalue().encode("utf-8"),
        content_type=_CONTENT_TYPES[output_format],
        file_extension=output_format,
    )


__all__ = [
    "AUDIT_COLUMNS",
    "ExportResult",
    "SUPPORTED_FORMATS",
    "export_records",
    "to_csv_cell",
    "write_csv",
    "write_json",
]
