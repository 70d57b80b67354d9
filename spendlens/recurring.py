# spendlens/recurring.py
from __future__ import annotations

import logging
import math
from collections import OrderedDict
from datetime import date, datetime, timedelta
from statistics import mean, pstdev
from typing import Dict, Iterable, List, Optional

from spendlens.core.models import RecurringCandidate, Transaction
from spendlens.errors import StoreError
from spendlens.ingest.normalize import normalize_payee_key

logger = logging.getLogger(__name__)

RECURRING_SUMMARY_TABLE = "recurring_summary"

WEEKLY = "weekly"
MONTHLY = "monthly"
UNKNOWN = "unknown"


def _parse_date(value) -> Optional[date]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def detect_recurring(
    transactions: Iterable[Transaction],
    lookback_days: int = 90,
    min_occurrences: int = 3,
    *,
    min_interval: float = 6,
    max_interval: float = 40,
    max_stddev: float = 15,
    weekly_max_interval: float = 10,
    as_of: date | None = None,
) -> List[RecurringCandidate]:
    """Find payees whose recent charges arrive at a steady interval.

    Transactions in the trailing ``lookback_days`` are grouped by normalised
    payee. A group qualifies with at least ``min_occurrences`` members, a mean
    gap within ``[min_interval, max_interval]`` days and a population
    standard deviation of the gaps no larger than ``max_stddev``.
    """
    as_of = as_of or date.today()
    window_start = as_of - timedelta(days=lookback_days)

    groups: Dict[str, List[Transaction]] = OrderedDict()
    for tx in transactions:
        if tx.date < window_start or tx.date > as_of:
            continue
        key = tx.payee_norm or normalize_payee_key(tx.payee_clean)
        if not key:
            continue
        groups.setdefault(key, []).append(tx)

    candidates: List[RecurringCandidate] = []
    for key, txs in groups.items():
        if len(txs) < min_occurrences:
            continue
        txs = sorted(txs, key=lambda t: t.date)
        gaps = [(b.date - a.date).days for a, b in zip(txs, txs[1:])]
        avg_interval = mean(gaps)
        sd = pstdev(gaps)
        if not (min_interval <= avg_interval <= max_interval) or sd > max_stddev:
            continue

        last = txs[-1]
        candidates.append(
            RecurringCandidate(
                payee=last.payee_clean,
                avg_amount=mean(t.amount for t in txs),
                frequency=WEEKLY if avg_interval <= weekly_max_interval else MONTHLY,
                last_date=last.date,
                next_expected_date=last.date + timedelta(days=_round_half_up(avg_interval)),
                occurrences=len(txs),
                payee_norm=key,
            )
        )

    candidates.sort(key=lambda c: c.next_expected_date)
    logger.debug("Detected %d recurring payee(s)", len(candidates))
    return candidates


def load_recurring_summary(store) -> List[RecurringCandidate]:
    """Read precomputed recurring rows; an empty list means none exist."""
    rows = store.select(RECURRING_SUMMARY_TABLE, order_by="id")
    summary = []
    for row in rows:
        payee = row.get("payee") or "Unknown"
        frequency = row.get("frequency") or UNKNOWN
        summary.append(
            RecurringCandidate(
                payee=payee,
                avg_amount=float(row.get("avg_amount") or 0.0),
                frequency=frequency if frequency in (WEEKLY, MONTHLY) else UNKNOWN,
                last_date=_parse_date(row.get("last_date")),
                next_expected_date=_parse_date(row.get("next_expected_date")),
                occurrences=int(row.get("occurrences") or 1),
                payee_norm=normalize_payee_key(payee),
            )
        )
    return summary


def resolve_recurring(
    store,
    transactions: List[Transaction],
    settings: Dict[str, object] | None = None,
    as_of: date | None = None,
) -> List[RecurringCandidate]:
    """Use the precomputed summary when present, else run the heuristic."""
    try:
        precomputed = load_recurring_summary(store)
    except StoreError as exc:
        logger.warning("Recurring summary unavailable, using heuristic: %s", exc)
        precomputed = []
    if precomputed:
        return precomputed

    settings = settings or {}
    return detect_recurring(
        transactions,
        lookback_days=int(settings.get("lookback_days", 90)),
        min_occurrences=int(settings.get("min_occurrences", 3)),
        min_interval=float(settings.get("min_interval", 6)),
        max_interval=float(settings.get("max_interval", 40)),
        max_stddev=float(settings.get("max_stddev", 15)),
        weekly_max_interval=float(settings.get("weekly_max_interval", 10)),
        as_of=as_of,
    )


def upcoming_bills(candidates: Iterable[RecurringCandidate]) -> List[Dict[str, object]]:
    return [
        {
            "payee": c.payee,
            "amount": round(c.avg_amount, 2),
            "next_date": c.next_expected_date.isoformat() if c.next_expected_date else None,
        }
        for c in candidates
    ]
