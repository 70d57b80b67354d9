# spendlens/stores/base.py
from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence

Record = Dict[str, Any]


class BaseStore(ABC):
    """Row-oriented access to the named tables the pipeline depends on.

    Filters are deliberately narrow: equality (``where``), membership
    (``where_in``) and lower bounds (``gte``), all combined with AND.
    """

    @abstractmethod
    def insert(
        self,
        table: str,
        rows: Sequence[Record],
        *,
        skip_conflicts_on: Optional[str] = None,
    ) -> List[Record]:
        """Insert rows and return them as stored, including their ``id``.

        With ``skip_conflicts_on`` naming a unique column, rows whose value
        already exists are left out silently and are not returned.
        """

    @abstractmethod
    def select(
        self,
        table: str,
        *,
        columns: Optional[Sequence[str]] = None,
        where: Optional[Mapping[str, Any]] = None,
        where_in: Optional[Mapping[str, Iterable[Any]]] = None,
        gte: Optional[Mapping[str, Any]] = None,
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        """Return matching rows as dictionaries."""

    @abstractmethod
    def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        where: Optional[Mapping[str, Any]] = None,
        where_in: Optional[Mapping[str, Iterable[Any]]] = None,
    ) -> int:
        """Update matching rows and return how many changed."""

    @abstractmethod
    def delete(
        self,
        table: str,
        *,
        where_in: Mapping[str, Iterable[Any]],
    ) -> int:
        """Delete matching rows and return how many were removed."""

    @abstractmethod
    def authenticate(self, token: str | None) -> Optional[str]:
        """Resolve a caller's bearer token to an identity, or ``None``."""

    def for_token(self, token: str) -> "BaseStore":
        """Return a store whose reads are scoped to the token's owner."""
        return self
