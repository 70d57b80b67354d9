from datetime import date

import pytest

from spendlens.core.models import Transaction
from spendlens.ingest.normalize import normalize_payee_key
from spendlens.stores.sqlite import SQLiteStore


@pytest.fixture
def store(tmp_path):
    return SQLiteStore(db_path=str(tmp_path / "spendlens.db"))


def make_tx(day, amount, payee="Coffee Shop", category="Uncategorized"):
    return Transaction(
        date=day if isinstance(day, date) else date.fromisoformat(day),
        amount=amount,
        description=payee,
        payee_clean=payee,
        payee_norm=normalize_payee_key(payee),
        category=category,
    )


STATEMENT_TSV = "\n".join(
    [
        "Account export generated 2025-07-31",
        "Account: ****1234",
        "Transaction Type\tDate Posted\tTransaction Amount\tDescription",
        "debit\t20250701\t-12.50\t[POS] Corner   Cafe",
        "debit\t20250703\t-60.00\tShell Gas #44",
        "credit\t20250705\t$1,500.00\tPAYROLL ACME",
        "debit\t20250707\tabc\tBroken Row",
        "debit\t07/09/2025\t-9.99\tNetflix.com",
    ]
)
