# spendlens/ingest/normalize.py
from __future__ import annotations

import re
from datetime import date
from typing import Optional

import pandas as pd

from spendlens.core.models import UNKNOWN_PAYEE

MAX_PAYEE_LENGTH = 180

_COMPACT_DATE = re.compile(r"^(\d{4})(\d{2})(\d{2})$")
_ISO_DATE = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")
_US_DATE = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_CLEAN_AMOUNT = re.compile(r"[$,\s]")
_PLAIN_AMOUNT = re.compile(r"^[+-]?(\d+(\.\d*)?|\.\d+)$")
_WHITESPACE = re.compile(r"\s+")
_LEADING_TAG = re.compile(r"^\[[^\]]*\]")
_NON_KEY_CHARS = re.compile(r"[^a-z0-9 ]")


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def normalize_date(raw_date: str | None) -> Optional[date]:
    """Parse a bank-native date string.

    Formats are tried in order: ``YYYYMMDD``, ``YYYY-MM-DD``,
    ``M/D/YYYY`` (month first), then a generic parse keeping only the date
    part. Returns ``None`` when nothing yields a valid calendar date.
    """
    text = (raw_date or "").strip()
    if not text:
        return None

    m = _COMPACT_DATE.match(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _ISO_DATE.match(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _US_DATE.match(text)
    if m:
        return _safe_date(int(m.group(3)), int(m.group(1)), int(m.group(2)))

    try:
        parsed = pd.to_datetime(text, errors="coerce")
    except (ValueError, TypeError, OverflowError):
        return None
    if parsed is None or pd.isna(parsed):
        return None
    return parsed.date()


def normalize_amount(raw_amount: str | None) -> Optional[float]:
    """Strip ``$`` and thousands separators and parse; sign is kept as given."""
    cleaned = _CLEAN_AMOUNT.sub("", raw_amount or "")
    if not _PLAIN_AMOUNT.match(cleaned):
        return None
    return float(cleaned)


def clean_payee(description: str | None) -> str:
    text = _WHITESPACE.sub(" ", description or "").strip()
    text = _LEADING_TAG.sub("", text, count=1).strip()
    text = text[:MAX_PAYEE_LENGTH]
    return text or UNKNOWN_PAYEE


def normalize_payee_key(payee: str | None) -> str:
    """Lowercase alphanumeric grouping key; never shown to users."""
    text = _NON_KEY_CHARS.sub(" ", (payee or "").lower())
    return _WHITESPACE.sub(" ", text).strip()[:MAX_PAYEE_LENGTH]
