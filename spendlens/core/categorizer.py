# spendlens/core/categorizer.py
from __future__ import annotations

import logging
from typing import Iterable, List, NamedTuple, Optional

from spendlens.core.models import UNCATEGORIZED, PayeeMapping
from spendlens.errors import StoreError

logger = logging.getLogger(__name__)

MAPPING_TABLE = "payee_mapping"


class Classification(NamedTuple):
    category: str
    normalized_payee: Optional[str]


def classify(description: str, mappings: Iterable[PayeeMapping]) -> Classification:
    """First mapping whose pattern occurs in the description wins."""
    text = (description or "").lower()
    for mapping in mappings:
        pattern = (mapping.pattern or "").lower()
        if pattern and pattern in text:
            override = (mapping.normalized or "").strip() or None
            return Classification(mapping.category or UNCATEGORIZED, override)
    return Classification(UNCATEGORIZED, None)


def load_mappings(store) -> List[PayeeMapping]:
    """Fetch mapping rules in insertion order."""
    rows = store.select(MAPPING_TABLE, order_by="id")
    return [
        PayeeMapping(
            pattern=row.get("pattern") or "",
            category=row.get("category") or UNCATEGORIZED,
            normalized=row.get("normalized"),
        )
        for row in rows
    ]


def load_mappings_or_empty(store) -> List[PayeeMapping]:
    try:
        return load_mappings(store)
    except StoreError as exc:
        logger.warning("Could not load payee mappings, continuing without: %s", exc)
        return []
