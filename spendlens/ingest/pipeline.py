# spendlens/ingest/pipeline.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Sequence, TypeVar

from spendlens.core.categorizer import classify, load_mappings
from spendlens.core.models import HeaderInfo, PayeeMapping, StagingRow, Transaction
from spendlens.errors import EmptyStatementError, NoValidRowsError, StoreError
from spendlens.ingest.normalize import (
    clean_payee,
    normalize_amount,
    normalize_date,
    normalize_payee_key,
)
from spendlens.ingest.parser import detect_header, parse_rows, split_lines

logger = logging.getLogger(__name__)

STAGING_TABLE = "staging_import"
TRANSACTIONS_TABLE = "transactions"

DEFAULT_BATCH_SIZE = 500
DELETE_REINSERT = "delete_reinsert"
CHECK_INSERT = "check_insert"
STRATEGIES = (DELETE_REINSERT, CHECK_INSERT)

T = TypeVar("T")

DEMO_ROWS = [
    ("2025-09-01", "Card", "-25.00", "Coffee"),
    ("2025-09-02", "Card", "-120.00", "Groceries"),
    ("2025-09-03", "Card", "-60.00", "Gas"),
    ("2025-09-04", "Card", "-15.00", "Snacks"),
    ("2025-09-05", "Card", "-200.00", "Rent"),
    ("2025-09-06", "Card", "-50.00", "Utilities"),
    ("2025-09-07", "Card", "-12.00", "Lunch"),
    ("2025-09-08", "Card", "-30.00", "Transport"),
    ("2025-09-09", "Card", "-9.99", "Subscription"),
    ("2025-09-10", "Card", "-40.00", "Shopping"),
]


def _chunks(items: Sequence[T], size: int) -> Iterator[Sequence[T]]:
    size = max(1, int(size))
    for start in range(0, len(items), size):
        yield items[start:start + size]


@dataclass
class TransformResult:
    processed_count: int = 0
    skipped_count: int = 0
    skipped_existing_count: int = 0
    inserted_transactions: int = 0
    transactions: List[Transaction] = field(default_factory=list)


@dataclass
class ImportResult:
    header: HeaderInfo
    inserted_count: int
    transform: TransformResult
    filename: Optional[str] = None
    sample_size: int = 5

    def to_payload(self) -> Dict[str, Any]:
        return {
            "ok": True,
            "filename": self.filename,
            "detected": {
                "delimiter": self.header.delimiter,
                "headerIndex": self.header.index,
                "headerColumns": self.header.columns,
            },
            "inserted_count": self.inserted_count,
            "processed_count": self.transform.processed_count,
            "skipped_count": self.transform.skipped_count,
            "skipped_existing_count": self.transform.skipped_existing_count,
            "sample_transactions": [
                tx.to_record() for tx in self.transform.transactions[: self.sample_size]
            ],
        }


def stage_and_commit(
    store,
    rows: Sequence[StagingRow],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> List[StagingRow]:
    """Append raw rows to the staging table in batches.

    Earlier batches stay committed when a later one fails; the raised
    ``StoreError`` reports how many rows made it in.
    """
    staged: List[StagingRow] = []
    for chunk in _chunks(rows, batch_size):
        try:
            stored = store.insert(STAGING_TABLE, [row.to_record() for row in chunk])
        except StoreError as exc:
            logger.error("Staging failed after %d row(s): %s", len(staged), exc)
            raise exc.with_counters(inserted_count=len(staged), retryable=True) from exc
        staged.extend(StagingRow.from_record(record) for record in stored)
    logger.info("Staged %d row(s)", len(staged))
    return staged


def transform_row(row: StagingRow, mappings: Sequence[PayeeMapping]) -> Optional[Transaction]:
    """Build the canonical transaction for one staging row, or ``None``."""
    tx_date = normalize_date(row.date_raw)
    amount = normalize_amount(row.amount_raw)
    if tx_date is None or amount is None:
        return None
    category, override = classify(row.description, mappings)
    payee = override or clean_payee(row.description)
    return Transaction(
        date=tx_date,
        amount=amount,
        description=row.description,
        payee_clean=payee,
        payee_norm=normalize_payee_key(payee),
        category=category,
        source_staging_id=row.id,
    )


def _existing_staging_ids(store, staging_ids: Sequence[int], batch_size: int) -> set:
    existing = set()
    for chunk in _chunks(staging_ids, batch_size):
        found = store.select(
            TRANSACTIONS_TABLE,
            columns=["source_staging_id"],
            where_in={"source_staging_id": chunk},
        )
        existing.update(r["source_staging_id"] for r in found)
    return existing


def _mark_processed(store, staging_ids: Sequence[int], batch_size: int) -> None:
    for chunk in _chunks(staging_ids, batch_size):
        store.update(STAGING_TABLE, {"processed": True}, where_in={"id": chunk})


def transform_and_commit(
    store,
    staged_rows: Sequence[StagingRow],
    mappings: Sequence[PayeeMapping],
    *,
    strategy: str = DELETE_REINSERT,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> TransformResult:
    """Write exactly one transaction per normalisable staging row.

    ``delete_reinsert`` removes transactions already derived from the batch
    before inserting; ``check_insert`` only inserts rows whose staging id has
    no transaction yet. Either way reprocessing a batch never duplicates.
    All rows of the batch are marked processed afterwards, including the
    ones that failed normalisation.
    """
    if strategy not in STRATEGIES:
        raise ValueError(f"Unknown idempotency strategy '{strategy}'")

    result = TransformResult()
    for row in staged_rows:
        tx = transform_row(row, mappings)
        if tx is None:
            result.skipped_count += 1
            continue
        result.transactions.append(tx)
    result.processed_count = len(result.transactions)
    if result.skipped_count:
        logger.info("Skipped %d row(s) with unparseable date or amount", result.skipped_count)

    staging_ids = [row.id for row in staged_rows if row.id is not None]
    try:
        if not result.transactions:
            _mark_processed(store, staging_ids, batch_size)
            raise NoValidRowsError(
                "No rows had a parseable date and amount",
                processed_count=0,
                skipped_count=result.skipped_count,
            )

        if strategy == DELETE_REINSERT:
            for chunk in _chunks(staging_ids, batch_size):
                store.delete(TRANSACTIONS_TABLE, where_in={"source_staging_id": chunk})
            pending = result.transactions
        else:
            existing = _existing_staging_ids(store, staging_ids, batch_size)
            pending = [tx for tx in result.transactions if tx.source_staging_id not in existing]
            result.skipped_existing_count = len(result.transactions) - len(pending)

        for chunk in _chunks(pending, batch_size):
            # a concurrent run may have committed some of these already
            stored = store.insert(
                TRANSACTIONS_TABLE,
                [tx.to_record() for tx in chunk],
                skip_conflicts_on="source_staging_id",
            )
            ids = {record.get("source_staging_id"): record.get("id") for record in stored}
            for tx in chunk:
                tx.id = ids.get(tx.source_staging_id)
            result.inserted_transactions += len(stored)
            result.skipped_existing_count += len(chunk) - len(stored)

        _mark_processed(store, staging_ids, batch_size)
    except StoreError as exc:
        raise exc.with_counters(
            processed_count=result.processed_count,
            skipped_count=result.skipped_count,
            inserted_transactions=result.inserted_transactions,
        ) from exc

    logger.info(
        "Committed %d transaction(s) (%d already present, %d skipped)",
        result.inserted_transactions,
        result.skipped_existing_count,
        result.skipped_count,
    )
    return result


def _import_settings(settings: Dict[str, Any] | None) -> Dict[str, Any]:
    settings = settings or {}
    return {
        "batch_size": int(settings.get("batch_size") or DEFAULT_BATCH_SIZE),
        "strategy": settings.get("strategy") or DELETE_REINSERT,
        "sample_size": int(settings.get("sample_size", 5)),
    }


def import_statement(
    store,
    content: str,
    filename: str | None = None,
    settings: Dict[str, Any] | None = None,
) -> ImportResult:
    """Parse, stage, normalise and commit one uploaded statement."""
    opts = _import_settings(settings)
    if not content or not content.strip():
        raise EmptyStatementError("Statement content is empty")

    lines = split_lines(content)
    header = detect_header(lines)
    logger.info(
        "Detected header at line %d (%r) in %s",
        header.index,
        header.delimiter,
        filename or "<upload>",
    )
    candidates = parse_rows(lines, header)

    staged = stage_and_commit(store, candidates, opts["batch_size"])
    try:
        mappings = load_mappings(store)
        transform = transform_and_commit(
            store,
            staged,
            mappings,
            strategy=opts["strategy"],
            batch_size=opts["batch_size"],
        )
    except (StoreError, NoValidRowsError) as exc:
        exc.counters.setdefault("inserted_count", len(staged))
        raise
    return ImportResult(
        header=header,
        inserted_count=len(staged),
        transform=transform,
        filename=filename,
        sample_size=opts["sample_size"],
    )


def process_pending(store, settings: Dict[str, Any] | None = None) -> TransformResult:
    """Transform every staging row still waiting to be processed."""
    opts = _import_settings(settings)
    records = store.select(STAGING_TABLE, where={"processed": False}, order_by="id")
    if not records:
        logger.info("No pending staging rows")
        return TransformResult()
    rows = [StagingRow.from_record(r) for r in records]
    mappings = load_mappings(store)
    return transform_and_commit(
        store,
        rows,
        mappings,
        strategy=opts["strategy"],
        batch_size=opts["batch_size"],
    )


def seed_demo(store, settings: Dict[str, Any] | None = None) -> TransformResult:
    """Stage and commit a small fixed demo statement."""
    opts = _import_settings(settings)
    rows = [
        StagingRow(date_raw=d, transaction_type=t.upper(), amount_raw=a, description=desc)
        for d, t, a, desc in DEMO_ROWS
    ]
    staged = stage_and_commit(store, rows, opts["batch_size"])
    return transform_and_commit(
        store,
        staged,
        load_mappings(store),
        strategy=opts["strategy"],
        batch_size=opts["batch_size"],
    )
