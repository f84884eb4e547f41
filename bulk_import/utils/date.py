"""
Date parsing utilities for flexible date format handling.

Imported spreadsheets carry dates as ISO strings, day/month or month/day
numeric strings, native spreadsheet datetimes, or pandas timestamps. This
module turns all of them into timezone-aware UTC datetimes.
"""

import logging
import re
from datetime import date, datetime, time, timezone
from typing import Any, Optional

import pandas as pd

from bulk_import.core.config import settings

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

_NUMERIC_DATE = re.compile(r"^\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}")
# Bare numbers are never dates; pandas would otherwise read "5" as a day of this month.
_BARE_NUMBER = re.compile(r"^[+-]?\d+(\.\d+)?$")

_failure_stats: dict = {}


def _record_parse_failure(value: Any, context: Optional[str], error: Exception) -> None:
    """
    Collect failure stats and emit limited logs (sampled warnings + periodic summaries).
    """
    key = context or "default"
    stats = _failure_stats.setdefault(key, {"count": 0, "samples": []})
    stats["count"] += 1
    count = stats["count"]

    if len(stats["samples"]) < FAILED_SAMPLE_LIMIT:
        stats["samples"].append(value)
        logger.warning("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse warnings after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def _to_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _prefer_dayfirst(value: str, default_dayfirst: bool) -> bool:
    parts = re.split(r"[/.-]", _NUMERIC_DATE.match(value).group(0))
    try:
        first = int(parts[0])
        second = int(parts[1])
    except ValueError:
        return default_dayfirst

    if first > 12 and second <= 31:
        return True
    if second > 12 and first <= 12:
        return False
    return default_dayfirst


def parse_flexible_date(
    value: Any,
    *,
    dayfirst: Optional[bool] = None,
    log_context: Optional[str] = None,
    log_failures: bool = True,
) -> Optional[datetime]:
    """
    Parse a date value from various formats and return a UTC datetime.

    Supports formats:
    - ISO 8601: "2024-09-04T23:09:18Z"
    - DD/MM/YYYY: "20/10/2025"
    - MM/DD/YYYY: "10/20/2025"
    - YYYY-MM-DD: "2025-10-20"
    - Native ``date``/``datetime``/``pd.Timestamp`` values

    Args:
        value: Date value in any supported format
        dayfirst: Tie-breaker for ambiguous numeric dates such as 03/04/2024;
            defaults to the ``date_default_dayfirst`` setting.

    Returns:
        Timezone-aware UTC datetime, or None if parsing fails
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, float) and pd.isna(value):
        return None
    if isinstance(value, pd.Timestamp):
        return None if pd.isna(value) else _to_utc(value.to_pydatetime())
    if isinstance(value, datetime):
        return _to_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    if not isinstance(value, str):
        return None

    value = value.strip()
    if value == "" or _BARE_NUMBER.match(value):
        if value and log_failures:
            _record_parse_failure(value, log_context, ValueError("bare number is not a date"))
        return None

    default_dayfirst = settings.date_default_dayfirst if dayfirst is None else dayfirst
    parse_attempts = []

    if _NUMERIC_DATE.match(value):
        preferred = _prefer_dayfirst(value, default_dayfirst)
        parse_attempts.append(
            lambda v, df=preferred: pd.to_datetime(v, utc=True, dayfirst=df, errors="raise")
        )
        # The alternate interpretation still rescues values like 12/31/2024 under dayfirst
        parse_attempts.append(
            lambda v, df=not preferred: pd.to_datetime(v, utc=True, dayfirst=df, errors="raise")
        )

    parse_attempts.append(lambda v: pd.to_datetime(v, utc=True, errors="raise"))

    last_error = None
    parsed = None
    for attempt in parse_attempts:
        try:
            parsed = attempt(value)
            break
        except (ValueError, TypeError, OverflowError) as exc:
            last_error = exc
            continue

    if parsed is None or pd.isna(parsed):
        if log_failures:
            _record_parse_failure(value, log_context, last_error or ValueError("Unable to determine format"))
        return None

    return _to_utc(parsed.to_pydatetime())
