from datetime import date

from conftest import make_tx
from spendlens.recurring import (
    RECURRING_SUMMARY_TABLE,
    detect_recurring,
    resolve_recurring,
    upcoming_bills,
)

AS_OF = date(2025, 7, 31)


def test_monthly_payee_with_three_occurrences():
    txs = [
        make_tx("2025-05-10", -15.99, "StreamFlix"),
        make_tx("2025-06-09", -15.99, "StreamFlix"),
        make_tx("2025-07-09", -15.99, "StreamFlix"),
    ]
    found = detect_recurring(txs, as_of=AS_OF)
    assert len(found) == 1
    candidate = found[0]
    assert candidate.frequency == "monthly"
    assert candidate.occurrences == 3
    assert candidate.avg_amount == -15.99
    assert candidate.last_date == date(2025, 7, 9)
    assert candidate.next_expected_date == date(2025, 8, 8)


def test_two_occurrences_are_never_recurring():
    txs = [
        make_tx("2025-06-09", -15.99, "StreamFlix"),
        make_tx("2025-07-09", -15.99, "StreamFlix"),
    ]
    assert detect_recurring(txs, as_of=AS_OF) == []


def test_irregular_intervals_are_excluded():
    # gaps of 10 and 50 days: mean 30, population sd 20
    txs = [
        make_tx("2025-05-10", -40.0, "Hardware"),
        make_tx("2025-05-20", -40.0, "Hardware"),
        make_tx("2025-07-09", -40.0, "Hardware"),
    ]
    assert detect_recurring(txs, as_of=AS_OF) == []


def test_weekly_and_too_frequent_payees():
    weekly = [make_tx(d, -20.0, "Gym Class") for d in ("2025-07-03", "2025-07-10", "2025-07-17", "2025-07-24")]
    daily = [make_tx(d, -4.0, "Cafe") for d in ("2025-07-20", "2025-07-22", "2025-07-24", "2025-07-26")]
    found = detect_recurring(weekly + daily, as_of=AS_OF)
    assert [c.payee for c in found] == ["Gym Class"]
    assert found[0].frequency == "weekly"
    assert found[0].next_expected_date == date(2025, 7, 31)


def test_lookback_window_excludes_old_transactions():
    txs = [
        make_tx("2025-03-01", -9.0, "Cloud Storage"),
        make_tx("2025-03-31", -9.0, "Cloud Storage"),
        make_tx("2025-04-30", -9.0, "Cloud Storage"),
        make_tx("2025-05-30", -9.0, "Cloud Storage"),
    ]
    assert detect_recurring(txs, as_of=AS_OF) == []
    assert len(detect_recurring(txs, lookback_days=180, as_of=AS_OF)) == 1


def test_grouping_uses_normalized_payee():
    txs = [
        make_tx("2025-05-10", -10.0, "Spotify AB"),
        make_tx("2025-06-09", -12.0, "SPOTIFY ab"),
        make_tx("2025-07-09", -14.0, "spotify-ab"),
    ]
    found = detect_recurring(txs, as_of=AS_OF)
    assert len(found) == 1
    assert found[0].payee == "spotify-ab"
    assert found[0].avg_amount == -12.0


def test_precomputed_summary_replaces_heuristic(store):
    txs = [make_tx(d, -15.99, "StreamFlix") for d in ("2025-05-10", "2025-06-09", "2025-07-09")]
    store.insert(
        RECURRING_SUMMARY_TABLE,
        [
            {
                "payee": "Rent",
                "avg_amount": -1200.0,
                "frequency": "monthly",
                "last_date": "2025-07-01",
                "next_expected_date": "2025-08-01",
                "occurrences": 6,
            }
        ],
    )
    found = resolve_recurring(store, txs, as_of=AS_OF)
    assert [c.payee for c in found] == ["Rent"]
    assert found[0].next_expected_date == date(2025, 8, 1)


def test_heuristic_used_when_summary_empty(store):
    txs = [make_tx(d, -15.99, "StreamFlix") for d in ("2025-05-10", "2025-06-09", "2025-07-09")]
    found = resolve_recurring(store, txs, {"min_occurrences": 3}, as_of=AS_OF)
    assert [c.payee for c in found] == ["StreamFlix"]


def test_upcoming_bills():
    txs = [make_tx(d, -15.99, "StreamFlix") for d in ("2025-05-10", "2025-06-09", "2025-07-09")]
    assert upcoming_bills(detect_recurring(txs, as_of=AS_OF)) == [
        {"payee": "StreamFlix", "amount": -15.99, "next_date": "2025-08-08"}
    ]
