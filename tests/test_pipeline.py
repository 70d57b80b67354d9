import pytest

from conftest import STATEMENT_TSV
from spendlens.core.models import PayeeMapping, StagingRow
from spendlens.errors import EmptyStatementError, NoValidRowsError, StoreError
from spendlens.ingest.pipeline import (
    CHECK_INSERT,
    DELETE_REINSERT,
    STAGING_TABLE,
    TRANSACTIONS_TABLE,
    import_statement,
    process_pending,
    seed_demo,
    stage_and_commit,
    transform_and_commit,
)
from spendlens.stores.sqlite import SQLiteStore


def _transactions(store):
    return store.select(TRANSACTIONS_TABLE, order_by="source_staging_id")


def test_import_statement_scenario(store):
    result = import_statement(store, STATEMENT_TSV, "july.tsv")
    payload = result.to_payload()

    assert payload["ok"] is True
    assert payload["detected"]["headerIndex"] == 2
    assert payload["detected"]["delimiter"] == "\t"
    assert payload["inserted_count"] == 5
    assert payload["processed_count"] == 4
    assert payload["skipped_count"] == 1

    txs = _transactions(store)
    assert len(txs) == 4
    assert [t["date"] for t in txs] == ["2025-07-01", "2025-07-03", "2025-07-05", "2025-07-09"]
    assert txs[0]["payee_clean"] == "Corner Cafe"
    assert txs[0]["payee_norm"] == "corner cafe"
    assert txs[0]["description"] == "[POS] Corner   Cafe"
    assert txs[2]["amount"] == 1500.0

    staging = store.select(STAGING_TABLE)
    assert len(staging) == 5
    assert all(row["processed"] for row in staging)
    broken = [row for row in staging if row["description"] == "Broken Row"][0]
    assert broken["id"] not in {t["source_staging_id"] for t in txs}


def test_import_statement_applies_mappings(store):
    store.insert(
        "payee_mapping",
        [
            {"pattern": "shell", "normalized": "Shell", "category": "Fuel"},
            {"pattern": "gas", "normalized": "Gas Station", "category": "Car"},
        ],
    )
    import_statement(store, STATEMENT_TSV)
    shell = [t for t in _transactions(store) if "Shell" in t["description"]][0]
    assert shell["category"] == "Fuel"
    assert shell["payee_clean"] == "Shell"
    others = [t for t in _transactions(store) if "Shell" not in t["description"]]
    assert {t["category"] for t in others} == {"Uncategorized"}


def test_empty_statement_is_rejected(store):
    with pytest.raises(EmptyStatementError):
        import_statement(store, "  \n\n ")
    assert store.select(STAGING_TABLE) == []


@pytest.mark.parametrize("strategy", [DELETE_REINSERT, CHECK_INSERT])
def test_transform_is_idempotent(store, strategy):
    rows = [
        StagingRow("20250701", "DEBIT", "-10.00", "Coffee"),
        StagingRow("20250702", "DEBIT", "-20.00", "Lunch"),
        StagingRow("bad", "DEBIT", "-30.00", "Nope"),
    ]
    staged = stage_and_commit(store, rows)

    first = transform_and_commit(store, staged, [], strategy=strategy)
    before = [(t["source_staging_id"], t["date"], t["amount"]) for t in _transactions(store)]
    second = transform_and_commit(store, staged, [], strategy=strategy)
    after = [(t["source_staging_id"], t["date"], t["amount"]) for t in _transactions(store)]

    assert first.processed_count == second.processed_count == 2
    assert before == after
    assert len(after) == 2
    if strategy == CHECK_INSERT:
        assert second.skipped_existing_count == 2
        assert second.inserted_transactions == 0


class InterleavedStore(SQLiteStore):
    """Another import of the same batch commits right after our delete."""

    def __init__(self, db_path):
        super().__init__(db_path=db_path)
        self.rival_rows = []

    def delete(self, table, *, where_in):
        removed = super().delete(table, where_in=where_in)
        if table == TRANSACTIONS_TABLE and self.rival_rows:
            super().insert(table, self.rival_rows)
        return removed


def test_interleaved_reimport_keeps_one_transaction_per_row(tmp_path):
    racing = InterleavedStore(str(tmp_path / "race.db"))
    staged = stage_and_commit(
        racing,
        [
            StagingRow("20250701", "DEBIT", "-10.00", "Coffee"),
            StagingRow("20250702", "DEBIT", "-20.00", "Lunch"),
        ],
    )
    transform_and_commit(racing, staged, [])
    racing.rival_rows = [
        {k: v for k, v in t.items() if k != "id"} for t in _transactions(racing)
    ]

    result = transform_and_commit(racing, staged, [], strategy=DELETE_REINSERT)

    txs = _transactions(racing)
    assert [t["source_staging_id"] for t in txs] == [row.id for row in staged]
    assert result.inserted_transactions == 0
    assert result.skipped_existing_count == 2


def test_insert_can_skip_conflicting_rows(store):
    first = store.insert(
        TRANSACTIONS_TABLE,
        [{"date": "2025-07-01", "amount": -1.0, "description": "A", "payee_clean": "A",
          "payee_norm": "a", "source_staging_id": 1}],
    )
    again = store.insert(
        TRANSACTIONS_TABLE,
        [
            {"date": "2025-07-01", "amount": -1.0, "description": "A", "payee_clean": "A",
             "payee_norm": "a", "source_staging_id": 1},
            {"date": "2025-07-02", "amount": -2.0, "description": "B", "payee_clean": "B",
             "payee_norm": "b", "source_staging_id": 2},
        ],
        skip_conflicts_on="source_staging_id",
    )
    assert [r["source_staging_id"] for r in again] == [2]
    assert again[0]["id"] != first[0]["id"]
    assert len(_transactions(store)) == 2


def test_transform_all_rows_invalid_marks_processed(store):
    staged = stage_and_commit(store, [StagingRow("nope", "DEBIT", "x", "Bad")])
    with pytest.raises(NoValidRowsError) as excinfo:
        transform_and_commit(store, staged, [])
    assert excinfo.value.counters["skipped_count"] == 1
    assert store.select(STAGING_TABLE)[0]["processed"] is True
    assert _transactions(store) == []


def test_transform_rejects_unknown_strategy(store):
    with pytest.raises(ValueError):
        transform_and_commit(store, [], [], strategy="upsert")


class FlakyStore(SQLiteStore):
    """Fails staging inserts after a number of successful batches."""

    def __init__(self, db_path, fail_after):
        super().__init__(db_path=db_path)
        self.fail_after = fail_after
        self.calls = 0

    def insert(self, table, rows, **kwargs):
        if table == STAGING_TABLE:
            self.calls += 1
            if self.calls > self.fail_after:
                raise StoreError("payload rejected")
        return super().insert(table, rows, **kwargs)


def test_stage_and_commit_reports_partial_progress(tmp_path):
    flaky = FlakyStore(str(tmp_path / "flaky.db"), fail_after=1)
    rows = [StagingRow("20250701", "DEBIT", str(-i), f"Row {i}") for i in range(5)]

    with pytest.raises(StoreError) as excinfo:
        stage_and_commit(flaky, rows, batch_size=2)

    assert excinfo.value.counters == {"inserted_count": 2, "retryable": True}
    assert excinfo.value.status_code == 502
    assert len(flaky.select(STAGING_TABLE)) == 2


def test_process_pending_picks_up_unprocessed_rows(store):
    store.insert(
        STAGING_TABLE,
        [
            StagingRow("20250701", "DEBIT", "-4.50", "Bakery").to_record(),
            StagingRow("20250702", "DEBIT", "-8.00", "Deli", processed=True).to_record(),
        ],
    )
    result = process_pending(store)
    assert result.processed_count == 1
    assert [t["payee_clean"] for t in _transactions(store)] == ["Bakery"]
    assert process_pending(store).processed_count == 0


def test_seed_demo(store):
    result = seed_demo(store)
    assert result.processed_count == 10
    assert len(_transactions(store)) == 10
