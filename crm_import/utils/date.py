"""
Date parsing utilities for flexible date format handling.

Import files arrive with ISO dates, US ``MM/DD/YYYY``, day-first European dates
and free text like ``"March 5, 2025"``; ``parse_flexible_date`` accepts all of
them and returns a timezone-aware UTC ``datetime``.
"""
import logging
import re
from datetime import datetime
from typing import Any, Optional

import pandas as pd

from crm_import.core.config import settings

logger = logging.getLogger(__name__)

FAILED_SAMPLE_LIMIT = 5
SUPPRESSION_NOTICE_EVERY = 100

_failure_stats: dict = {}

_NUMERIC_DATE = re.compile(r"^\d{1,2}[/.-]\d{1,2}[/.-]\d{2,4}")
# Strings pandas would otherwise read as epoch offsets or bare years
_BARE_NUMBER = re.compile(r"^[+-]?\d+(\.\d+)?$")


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
        logger.debug("Failed to parse date%s value '%s': %s", f" ({key})" if context else "", value, error)
        return

    if count == FAILED_SAMPLE_LIMIT + 1 or count % SUPPRESSION_NOTICE_EVERY == 0:
        logger.info(
            "Suppressed additional date parse messages after %d failures%s; sample values=%s",
            count,
            f" ({key})" if context else "",
            stats["samples"],
        )


def _prefers_dayfirst(value: str) -> bool:
    parts = re.split(r"[/.-]", value)
    try:
        first, second = int(parts[0]), int(parts[1])
    except (ValueError, IndexError):
        return settings.date_default_dayfirst
    if first > 12 and second <= 31:
        return True
    if second > 12 and first <= 12:
        return False
    return settings.date_default_dayfirst


def parse_flexible_date(value: Any, *, log_context: Optional[str] = None, log_failures: bool = True) -> Optional[datetime]:
    """
    Parse a date value from various formats.

    Supports formats:
    - ISO 8601: "2024-09-04T23:09:18Z", "2025-10-20"
    - DD/MM/YYYY and MM/DD/YYYY (disambiguated by the day > 12 rule,
      otherwise ``settings.date_default_dayfirst``)
    - Anything else pandas can infer ("Oct 20 2025", "20 October 2025")

    Returns:
        A UTC ``datetime`` or None when the value is empty or unparseable.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value

    text = str(value).strip()
    if not text or _BARE_NUMBER.match(text):
        if text and log_failures:
            _record_parse_failure(text, log_context, ValueError("bare number is not a date"))
        return None

    parse_attempts = []
    if _NUMERIC_DATE.match(text):
        dayfirst = _prefers_dayfirst(text)
        parse_attempts.append(lambda v, df=dayfirst: pd.to_datetime(v, utc=True, dayfirst=df, errors="raise"))
        parse_attempts.append(lambda v, df=not dayfirst: pd.to_datetime(v, utc=True, dayfirst=df, errors="raise"))
    parse_attempts.append(lambda v: pd.to_datetime(v, utc=True, errors="raise"))

    last_error: Optional[Exception] = None
    for attempt in parse_attempts:
        try:
            parsed = attempt(text)
        except (ValueError, TypeError, OverflowError) as exc:
            last_error = exc
            continue
        if parsed is None or pd.isna(parsed):
            continue
        return parsed.to_pydatetime()

    if log_failures:
        _record_parse_failure(text, log_context, last_error or ValueError("Unable to determine format"))
    return None
