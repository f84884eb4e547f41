import math
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import pandas as pd


def make_json_safe(value: Any) -> Any:
    """
    Convert parsed and coerced import values into JSON-serialisable structures.

    Documents written to the record store and payloads returned to the HTTP
    layer both go through here, so spreadsheet artefacts (pandas timestamps,
    NaN cells, Decimals) never leak out.
    """
    if isinstance(value, dict):
        return {str(key): make_json_safe(val) for key, val in value.items()}
    if isinstance(value, (list, tuple)):
        return [make_json_safe(item) for item in value]
    if isinstance(value, (set, frozenset)):
        return sorted((make_json_safe(item) for item in value), key=str)
    if isinstance(value, Decimal):
        # Keep integers as ints, otherwise convert to string to avoid precision loss
        if value == value.to_integral():
            return int(value)
        return str(value)
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else value.isoformat()
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
        return None
    if isinstance(value, bytes):
        return value.decode(errors="ignore")
    if isinstance(value, (int, float, str, bool)) or value is None:
        return value
    return str(value)
