# spendlens/stores/supabase_store.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

import httpx
from supabase import AuthApiError, AuthError, Client, PostgrestAPIError, create_client

from spendlens.errors import StoreError
from spendlens.stores.base import BaseStore, Record

logger = logging.getLogger(__name__)

# auth statuses that mean the token itself was refused
_REJECTED_TOKEN_STATUSES = (400, 401, 403)


def _filter_value(value: Any) -> Any:
    if isinstance(value, bool):
        return "true" if value else "false"
    return value


def _apply_filters(
    query,
    where: Optional[Mapping[str, Any]],
    where_in: Optional[Mapping[str, Sequence[Any]]],
    gte: Optional[Mapping[str, Any]] = None,
):
    for col, value in (where or {}).items():
        query = query.eq(col, _filter_value(value))
    for col, values in (where_in or {}).items():
        query = query.in_(col, list(values))
    for col, value in (gte or {}).items():
        query = query.gte(col, _filter_value(value))
    return query


def _materialise(where_in: Optional[Mapping[str, Iterable[Any]]]) -> Optional[Dict[str, List[Any]]]:
    """Listify ``where_in``; ``None`` when an empty list means nothing can match."""
    lists = {col: list(values) for col, values in (where_in or {}).items()}
    if any(not values for values in lists.values()):
        return None
    return lists


class SupabaseStore(BaseStore):
    """Store backed by a Supabase project through the ``supabase`` client.

    The unscoped store talks to PostgREST with the service key. A store
    returned by :meth:`for_token` sends the caller's JWT instead, so the
    project's row-level security policies decide which rows are visible.

    Idempotent re-imports rely on a unique constraint on
    ``transactions.source_staging_id`` (see ``examples/supabase_schema.sql``).
    """

    def __init__(
        self,
        config: Dict[str, Any],
        *,
        token: str | None = None,
        client_factory: Callable[..., Client] | None = None,
    ) -> None:
        store_cfg = config.get("store", {})
        url = store_cfg.get("url")
        if not url:
            raise StoreError("Supabase store requires 'store.url' (or SPENDLENS_STORE_URL)")
        self.config = config
        self.url = str(url).rstrip("/")
        self.service_key = store_cfg.get("service_key") or ""
        self.anon_key = store_cfg.get("anon_key") or self.service_key
        self.token = token
        self._client_factory = client_factory or create_client

        key = self.anon_key if token else self.service_key
        if not key:
            raise StoreError(
                "Supabase store requires 'store.service_key' (or SPENDLENS_STORE_SERVICE_KEY)"
            )
        self.client = self._client_factory(self.url, key)
        if token:
            self.client.postgrest.auth(token)

    def _execute(self, action: str, table: str, query) -> List[Record]:
        try:
            response = query.execute()
        except (PostgrestAPIError, httpx.HTTPError) as exc:
            logger.error("%s %s failed: %s", action, table, exc)
            raise StoreError(f"{action} {table} failed: {exc}") from exc
        return list(response.data or [])

    def insert(
        self,
        table: str,
        rows: Sequence[Record],
        *,
        skip_conflicts_on: Optional[str] = None,
    ) -> List[Record]:
        if not rows:
            return []
        builder = self.client.table(table)
        if skip_conflicts_on:
            query = builder.upsert(
                list(rows), on_conflict=skip_conflicts_on, ignore_duplicates=True
            )
        else:
            query = builder.insert(list(rows))
        return self._execute("insert", table, query)

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
        lists = _materialise(where_in)
        if lists is None:
            return []
        query = self.client.table(table).select(",".join(columns) if columns else "*")
        query = _apply_filters(query, where, lists, gte)
        if order_by:
            query = query.order(order_by, desc=descending)
        if limit is not None:
            query = query.limit(int(limit))
        return self._execute("select", table, query)

    def update(
        self,
        table: str,
        values: Mapping[str, Any],
        *,
        where: Optional[Mapping[str, Any]] = None,
        where_in: Optional[Mapping[str, Iterable[Any]]] = None,
    ) -> int:
        lists = _materialise(where_in)
        if lists is None:
            return 0
        if not where and not lists:
            raise StoreError(f"Refusing unfiltered update of {table}")
        query = _apply_filters(self.client.table(table).update(dict(values)), where, lists)
        return len(self._execute("update", table, query))

    def delete(self, table: str, *, where_in: Mapping[str, Iterable[Any]]) -> int:
        lists = _materialise(where_in)
        if not lists:
            return 0
        query = _apply_filters(self.client.table(table).delete(), None, lists)
        return len(self._execute("delete", table, query))

    def authenticate(self, token: str | None) -> Optional[str]:
        if not token:
            return None
        try:
            response = self.client.auth.get_user(token)
        except AuthApiError as exc:
            if exc.status in _REJECTED_TOKEN_STATUSES:
                return None
            raise StoreError(f"Auth lookup failed: {exc}") from exc
        except (AuthError, httpx.HTTPError) as exc:
            raise StoreError(f"Auth lookup failed: {exc}") from exc
        user = getattr(response, "user", None)
        return user.id if user is not None else None

    def for_token(self, token: str) -> "SupabaseStore":
        return SupabaseStore(self.config, token=token, client_factory=self._client_factory)
