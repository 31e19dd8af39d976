"""
Document store over Supabase tables.

Every repository goes through a `BaseStore` so that the same find/insert/update
semantics (and the single generic `upsert`) are shared by orders, accounts,
entitlements and payment events.

Atomicity model:
- Each call is one PostgREST request, which Postgres executes atomically.
- Unique constraints are the only cross-request guard. A unique violation on
  insert surfaces as `DuplicateKeyError` so callers can treat it as "someone
  else got there first".
- `update` accepts the current value of a column as a filter, which gives a
  compare-and-set write (used for order status transitions).
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional

from postgrest.exceptions import APIError
from supabase import Client  # type: ignore[import-not-found]

logger = logging.getLogger(__name__)

# Postgres SQLSTATE for unique_violation
_UNIQUE_VIOLATION = "23505"

Row = Dict[str, Any]


class DuplicateKeyError(RuntimeError):
    """Raised when an insert collides with an existing unique key."""


@dataclass(frozen=True, slots=True)
class UpsertResult:
    """
    Result of `BaseStore.upsert`.

    row: the stored row after the write
    created: True if the row was inserted, False if an existing row was patched
    """

    row: Row
    created: bool


class BaseStore(ABC):
    """Minimal table-oriented persistence interface."""

    @abstractmethod
    def find_one(self, table: str, filters: Mapping[str, Any]) -> Optional[Row]:
        ...

    @abstractmethod
    def find_many(
        self,
        table: str,
        filters: Mapping[str, Any],
        *,
        limit: Optional[int] = None,
    ) -> List[Row]:
        ...

    @abstractmethod
    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        """Insert one row. Raises DuplicateKeyError on a unique violation."""

    @abstractmethod
    def update(
        self,
        table: str,
        filters: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> List[Row]:
        """Patch every row matching `filters`; returns the updated rows."""

    def upsert(
        self,
        table: str,
        key: Mapping[str, Any],
        patch: Mapping[str, Any],
        *,
        defaults: Optional[Mapping[str, Any]] = None,
    ) -> UpsertResult:
        """
        Find by `key`, then patch it or insert it.

        `defaults` are written only when the row is created (ids, created_at).
        If a concurrent writer inserts the same key between our lookup and our
        insert, the insert's unique violation is absorbed and the row is
        patched instead, so callers always get exactly one row per key.

        Example:
            result = store.upsert("accounts", {"email": email}, {"paid": True},
                                  defaults={"account_id": new_id})
            if result.created:
                ...
        """

        existing = self.find_one(table, key)
        if existing is not None:
            return UpsertResult(row=self._patch_existing(table, key, patch, existing), created=False)

        row: Row = {**(defaults or {}), **patch, **key}
        try:
            return UpsertResult(row=self.insert(table, row), created=True)
        except DuplicateKeyError:
            logger.info(
                f"Concurrent insert on {table}, patching existing row instead",
                extra={"table": table, "key": dict(key)},
            )
            existing = self.find_one(table, key) or {}
            return UpsertResult(row=self._patch_existing(table, key, patch, existing), created=False)

    def _patch_existing(
        self,
        table: str,
        key: Mapping[str, Any],
        patch: Mapping[str, Any],
        existing: Row,
    ) -> Row:
        if not patch:
            return existing
        rows = self.update(table, key, patch)
        return rows[0] if rows else {**existing, **patch}


class SupabaseStore(BaseStore):
    """BaseStore backed by supabase-py's PostgREST query builder."""

    def __init__(self, client: Client) -> None:
        self._client = client

    @staticmethod
    def _apply_filters(query: Any, filters: Mapping[str, Any]) -> Any:
        for column, value in filters.items():
            if value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, value)
        return query

    @staticmethod
    def _check(response: Any, action: str) -> List[Row]:
        error = getattr(response, "error", None)
        if error:
            raise RuntimeError(f"Failed to {action}: {error}")
        return list(getattr(response, "data", None) or [])

    def find_one(self, table: str, filters: Mapping[str, Any]) -> Optional[Row]:
        query = self._apply_filters(self._client.table(table).select("*"), filters)
        rows = self._check(query.limit(1).execute(), f"fetch from {table}")
        return rows[0] if rows else None

    def find_many(
        self,
        table: str,
        filters: Mapping[str, Any],
        *,
        limit: Optional[int] = None,
    ) -> List[Row]:
        query = self._apply_filters(self._client.table(table).select("*"), filters)
        if limit is not None:
            query = query.limit(limit)
        return self._check(query.execute(), f"list {table}")

    def insert(self, table: str, row: Mapping[str, Any]) -> Row:
        try:
            response = self._client.table(table).insert(dict(row)).execute()
        except APIError as e:
            if getattr(e, "code", None) == _UNIQUE_VIOLATION:
                raise DuplicateKeyError(f"Duplicate key inserting into {table}: {e}") from e
            raise RuntimeError(f"Failed to insert into {table}: {e}") from e

        rows = self._check(response, f"insert into {table}")
        return rows[0] if rows else dict(row)

    def update(
        self,
        table: str,
        filters: Mapping[str, Any],
        patch: Mapping[str, Any],
    ) -> List[Row]:
        if not filters:
            raise ValueError("Refusing to update without filters")
        query = self._apply_filters(self._client.table(table).update(dict(patch)), filters)
        try:
            response = query.execute()
        except APIError as e:
            raise RuntimeError(f"Failed to update {table}: {e}") from e
        return self._check(response, f"update {table}")


__all__ = [
    "BaseStore",
    "DuplicateKeyError",
    "Row",
    "SupabaseStore",
    "UpsertResult",
]
