# spendlens/core/models.py
from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional

UNCATEGORIZED = "Uncategorized"
UNKNOWN_PAYEE = "Unknown"


@dataclass
class HeaderInfo:
    index: int
    delimiter: str
    columns: List[str]


@dataclass
class StagingRow:
    date_raw: str
    transaction_type: str
    amount_raw: str
    description: str
    processed: bool = False
    id: Optional[int] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "date_raw": self.date_raw,
            "transaction_type": self.transaction_type,
            "amount_raw": self.amount_raw,
            "description": self.description,
            "processed": self.processed,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "StagingRow":
        return cls(
            date_raw=str(record.get("date_raw") or ""),
            transaction_type=str(record.get("transaction_type") or ""),
            amount_raw=str(record.get("amount_raw") or ""),
            description=str(record.get("description") or ""),
            processed=bool(record.get("processed")),
            id=record.get("id"),
        )


@dataclass
class Transaction:
    date: date
    amount: float
    description: str
    payee_clean: str
    payee_norm: str
    category: str = UNCATEGORIZED
    source_staging_id: Optional[int] = None
    processed: bool = True
    id: Optional[int] = None

    def to_record(self) -> Dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "amount": self.amount,
            "description": self.description,
            "payee_clean": self.payee_clean,
            "payee_norm": self.payee_norm,
            "category": self.category,
            "source_staging_id": self.source_staging_id,
            "processed": self.processed,
        }

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Transaction":
        raw_date = record["date"]
        return cls(
            date=raw_date if isinstance(raw_date, date) else date.fromisoformat(str(raw_date)[:10]),
            amount=float(record["amount"]),
            description=record.get("description") or "",
            payee_clean=record.get("payee_clean") or UNKNOWN_PAYEE,
            payee_norm=record.get("payee_norm") or "",
            category=record.get("category") or UNCATEGORIZED,
            source_staging_id=record.get("source_staging_id"),
            processed=bool(record.get("processed", True)),
            id=record.get("id"),
        )


@dataclass
class PayeeMapping:
    pattern: str
    category: str
    normalized: Optional[str] = None


@dataclass
class RecurringCandidate:
    payee: str
    avg_amount: float
    frequency: str
    last_date: Optional[date]
    next_expected_date: Optional[date]
    occurrences: int
    payee_norm: str = ""

    def to_payload(self) -> Dict[str, Any]:
        return {
            "payee": self.payee,
            "avg_amount": round(self.avg_amount, 2),
            "frequency": self.frequency,
            "last_date": self.last_date.isoformat() if self.last_date else None,
            "next_expected_date": (
                self.next_expected_date.isoformat() if self.next_expected_date else None
            ),
            "occurrences": self.occurrences,
        }
