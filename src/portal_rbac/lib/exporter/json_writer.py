"""JSON export writer for audit entries."""

import json
from collections.abc import Iterable
from typing import Any, TextIO


class _JSONEncoder(json.JSONEncoder):
    """Custom encoder handling UUIDs, dates, and other non-serializable types."""

    def default(self, o: object) -> Any:
        import uuid
        from datetime import date, datetime

        if isinstance(o, uuid.UUID):
            return str(o)
        if isinstance(o, datetime):
            return o.isoformat()
        if isinstance(o, date):
            return o.isoformat()
        return super().default(o)


def write_json(
    stream: TextIO,
    records: Iterable[dict[str, Any]],
) -> int:
    """Write records to a text stream as a JSON array.

    Records are written one at a time so a large export never needs a second
    in-memory copy of the whole list.

    Args:
        stream: Destination text stream.
        records: Iterable of record dicts.

    Returns:
        Number of records written.
    """
    count = 0

    stream.write("[")
    for i, record in enumerate(records):
        stream.write(",\n" if i > 0 else "\n")
        json.dump(record, stream, cls=_JSONEncoder, indent=2)
        count += 1
    stream.write("\n]\n" if count else "]\n")

    return count
