# spendlens/summary.py
from __future__ import annotations

import logging
from collections import Counter, OrderedDict
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import pandas as pd

from spendlens.cache import NullCache, SummaryCache
from spendlens.core.categorizer import load_mappings_or_empty
from spendlens.core.models import UNCATEGORIZED, PayeeMapping, Transaction
from spendlens.recurring import resolve_recurring, upcoming_bills

logger = logging.getLogger(__name__)

TRANSACTIONS_TABLE = "transactions"

SCENARIOS = (
    ("conservative", 0.05),
    ("moderate", 0.10),
    ("aggressive", 0.15),
)
PROJECTION_WEEKS = (12, 26)


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _in_window(tx: Transaction, as_of: date, days: int) -> bool:
    return as_of - timedelta(days=days) < tx.date <= as_of


def weekly_series(
    transactions: Sequence[Transaction],
    weeks: int = 26,
    as_of: date | None = None,
) -> List[Dict[str, Any]]:
    """Spend per Monday-anchored week, oldest first, zero-filled.

    Spend is the absolute value of negative amounts; inflows are ignored.
    The last bucket is the week containing ``as_of``.
    """
    as_of = as_of or date.today()
    current = _week_start(as_of)
    starts = [current - timedelta(weeks=offset) for offset in range(weeks - 1, -1, -1)]

    frame = pd.DataFrame(
        {
            "date": [tx.date for tx in transactions],
            "amount": [float(tx.amount) for tx in transactions],
        }
    )
    spend = frame[frame["amount"] < 0] if not frame.empty else frame
    if spend.empty:
        totals = pd.Series(0.0, index=starts)
    else:
        buckets = spend["date"].map(_week_start)
        totals = (-spend["amount"]).groupby(buckets).sum().reindex(starts, fill_value=0.0)

    return [
        {"weekStart": start.isoformat(), "amount": round(float(totals[start]), 2)}
        for start in starts
    ]


def _average_weekly_spend(series: Sequence[Dict[str, Any]]) -> float:
    if not series:
        return 0.0
    return sum(item["amount"] for item in series) / len(series)


def compute_tiles(
    transactions: Sequence[Transaction],
    weeks: int = 26,
    net_flow_days: int = 30,
    as_of: date | None = None,
) -> Dict[str, float]:
    """Headline figures: balance, average weekly spend and rolling net flow."""
    as_of = as_of or date.today()
    balance = sum(tx.amount for tx in transactions)
    weekly_avg = _average_weekly_spend(weekly_series(transactions, weeks, as_of))
    net_flow = sum(tx.amount for tx in transactions if _in_window(tx, as_of, net_flow_days))
    return {
        "currentBalance": round(balance, 2),
        "weeklyAvgSpend26": round(weekly_avg, 2),
        "monthlyNetFlow": round(net_flow, 2),
    }


def top_by(
    transactions: Iterable[Transaction],
    key_fn: Callable[[Transaction], str],
    n: int,
) -> List[tuple]:
    """Group by ``key_fn``, sum signed amounts, keep the ``n`` largest by magnitude.

    Ties keep the order in which the groups were first seen.
    """
    totals: Dict[str, float] = OrderedDict()
    for tx in transactions:
        key = key_fn(tx)
        totals[key] = totals.get(key, 0.0) + tx.amount
    ranked = sorted(totals.items(), key=lambda item: abs(item[1]), reverse=True)
    return ranked[:n]


def savings_scenarios(
    transactions: Sequence[Transaction],
    weeks: int = 26,
    as_of: date | None = None,
) -> Dict[str, Any]:
    """Suggest weekly savings at fixed rates of a baseline weekly figure.

    The baseline is last week's net flow, or the negated average weekly
    spend when the trailing seven days net to zero. Projections are simple
    multiples with no compounding.
    """
    as_of = as_of or date.today()
    # compared in cents
    net_7 = round(sum(tx.amount for tx in transactions if _in_window(tx, as_of, 7)), 2)
    if net_7:
        baseline, source = net_7, "net_flow_7d"
    else:
        baseline = -_average_weekly_spend(weekly_series(transactions, weeks, as_of))
        source = "weekly_avg_spend"

    magnitude = abs(baseline)
    scenarios: Dict[str, Any] = {
        "baseline_weekly": round(baseline, 2),
        "baseline_source": source,
    }
    for name, pct in SCENARIOS:
        weekly_amount = magnitude * pct
        scenario = {"pct": pct, "weekly_amount": round(weekly_amount, 2)}
        for horizon in PROJECTION_WEEKS:
            scenario[f"projection_{horizon}_weeks"] = round(weekly_amount * horizon, 2)
        scenarios[name] = scenario
    return scenarios


def unmapped_payees(
    transactions: Iterable[Transaction],
    mappings: Iterable[PayeeMapping],
    n: int = 10,
) -> List[Dict[str, Any]]:
    """Most frequent payees that no mapping rule names yet."""
    mapped = {m.normalized for m in mappings if m.normalized}
    counts = Counter(tx.payee_clean for tx in transactions if tx.payee_clean not in mapped)
    return [{"payee": payee, "count": count} for payee, count in counts.most_common(n)]


def spend_by_category(
    transactions: Iterable[Transaction],
    days: int = 30,
    as_of: date | None = None,
) -> List[Dict[str, Any]]:
    as_of = as_of or date.today()
    recent = [tx for tx in transactions if _in_window(tx, as_of, days)]
    ranked = top_by(recent, lambda tx: tx.category or UNCATEGORIZED, len(recent))
    return [{"category": cat, "total": round(total, 2)} for cat, total in ranked]


def fetch_transactions(store, limit: int | None = None) -> List[Transaction]:
    """Load the most recent canonical transactions, oldest first.

    Failures propagate; without transactions there is nothing to summarise.
    """
    records = store.select(TRANSACTIONS_TABLE, order_by="date", descending=True, limit=limit)
    return [Transaction.from_record(r) for r in reversed(records)]


def build_dashboard_summary(
    store,
    config: Dict[str, Any],
    as_of: date | None = None,
) -> Dict[str, Any]:
    """Assemble the full dashboard payload from the caller's transactions."""
    as_of = as_of or date.today()
    summary_cfg: Dict[str, Any] = config.get("summary", {})
    recurring_cfg: Dict[str, Any] = config.get("recurring", {})
    weeks = int(summary_cfg.get("weeks", 26))

    transactions = fetch_transactions(store, summary_cfg.get("fetch_limit"))
    mappings = load_mappings_or_empty(store)
    recurring = resolve_recurring(store, transactions, recurring_cfg, as_of)

    top_categories = top_by(
        transactions,
        lambda tx: tx.category or UNCATEGORIZED,
        int(summary_cfg.get("top_categories", 5)),
    )
    top_payees = top_by(
        transactions,
        lambda tx: tx.payee_clean,
        int(summary_cfg.get("top_payees", 10)),
    )

    logger.info(
        "Built summary over %d transaction(s), %d recurring payee(s)",
        len(transactions),
        len(recurring),
    )
    return {
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "tiles": compute_tiles(
            transactions,
            weeks=weeks,
            net_flow_days=int(summary_cfg.get("net_flow_days", 30)),
            as_of=as_of,
        ),
        "topCategories": [
            {"category": cat, "amount": round(total, 2)} for cat, total in top_categories
        ],
        "topPayees": [
            {"payee": payee, "amount": round(total, 2)} for payee, total in top_payees
        ],
        "recurring": [c.to_payload() for c in recurring],
        "upcomingBills": upcoming_bills(recurring),
        "charts": {
            "weeklySeries26": weekly_series(transactions, weeks, as_of),
            "spendByCategory30": spend_by_category(
                transactions, int(summary_cfg.get("net_flow_days", 30)), as_of
            ),
        },
        "savingsScenarios": savings_scenarios(transactions, weeks, as_of),
        "unmappedPayees": unmapped_payees(
            transactions, mappings, int(summary_cfg.get("unmapped_payees", 10))
        ),
    }


class DashboardService:
    """Read-through cache around :func:`build_dashboard_summary`."""

    def __init__(self, config: Dict[str, Any], cache: Optional[SummaryCache] = None) -> None:
        self.config = config
        self.cache = cache if cache is not None else NullCache()

    def summary(self, store, caller: str, as_of: date | None = None) -> Dict[str, Any]:
        cached = self.cache.get(caller)
        if cached is not None:
            return {"cached": True, **cached}
        payload = build_dashboard_summary(store, self.config, as_of)
        self.cache.put(caller, payload)
        return {"cached": False, **payload}
