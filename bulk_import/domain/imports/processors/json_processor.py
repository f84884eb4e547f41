import json
from typing import Any, List

from bulk_import.domain.imports.processors.csv_processor import decode_text

# Keys API exports commonly wrap their record arrays in
ENVELOPE_KEYS = ("data", "rows", "items")


def process_json(file_content: bytes) -> List[Any]:
    """
    Process JSON file and return the list of records it holds.

    Accepts a top-level array, an object wrapping the array under one of
    ``ENVELOPE_KEYS``, or a single object (treated as one record).

    Raises:
        ValueError: If the content is not valid JSON or holds no records.
    """
    try:
        data = json.loads(decode_text(file_content))
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid JSON: {exc}") from exc

    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in ENVELOPE_KEYS:
            if isinstance(data.get(key), list):
                return data[key]
        return [data]
    raise ValueError("JSON must contain an object or array of objects")
