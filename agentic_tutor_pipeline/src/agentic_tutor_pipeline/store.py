"""
Durable Store

Narrow insert/select/update interface over named record collections.

SupabaseStore talks to PostgREST through the (synchronous) Supabase client,
pushed onto a worker thread so stage coroutines are not blocked.
InMemoryStore keeps rows in dicts with the same foreign keys enforced; it
backs tests and local development without a database.
"""

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from agentic_tutor_pipeline.errors import PersistenceError
from agentic_tutor_pipeline.models import (
    SESSIONS_TABLE,
    CONTENT_TABLE,
    QUESTIONS_TABLE,
    RESPONSES_TABLE,
    FEEDBACK_TABLE,
    MESSAGES_TABLE,
)

logger = logging.getLogger(__name__)

Rows = Union[Dict[str, Any], List[Dict[str, Any]]]

# table -> {column: referenced table}
FOREIGN_KEYS: Dict[str, Dict[str, str]] = {
    SESSIONS_TABLE: {},
    CONTENT_TABLE: {"session_id": SESSIONS_TABLE},
    QUESTIONS_TABLE: {"session_id": SESSIONS_TABLE},
    RESPONSES_TABLE: {"session_id": SESSIONS_TABLE, "question_id": QUESTIONS_TABLE},
    FEEDBACK_TABLE: {"response_id": RESPONSES_TABLE},
    MESSAGES_TABLE: {"session_id": SESSIONS_TABLE},
}

# Server-side timestamp column per table
TIMESTAMP_COLUMNS = {
    RESPONSES_TABLE: "submitted_at",
}


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class SupabaseStore:
    """Store backed by a Supabase client."""

    def __init__(self, client):
        self.client = client

    async def _execute(self, build_query, action: str):
        try:
            return await asyncio.to_thread(lambda: build_query().execute())
        except Exception as e:
            logger.error(f"❌ [Store] {action} failed: {e}")
            raise PersistenceError(f"{action} failed: {e}") from e

    async def insert(self, table: str, rows: Rows) -> List[Dict[str, Any]]:
        """Insert one row or a batch; returns the stored rows."""
        payload = rows if isinstance(rows, list) else [rows]
        result = await self._execute(
            lambda: self.client.table(table).insert(payload),
            f"Insert into {table}",
        )
        if not result.data:
            raise PersistenceError(f"Insert into {table} returned no rows")
        return result.data

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None,
        columns: str = "*",
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """Rows matching every filter and none of the exclusions."""
        def build():
            query = self.client.table(table).select(columns)
            for column, value in (filters or {}).items():
                query = query.eq(column, value)
            for column, value in (exclude or {}).items():
                query = query.neq(column, value)
            if order_by:
                query = query.order(order_by, desc=False)
            if limit:
                query = query.limit(limit)
            return query

        result = await self._execute(build, f"Select from {table}")
        return result.data or []

    async def select_one(self, table: str, **filters) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, filters=filters, limit=1)
        return rows[0] if rows else None

    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        def build():
            query = self.client.table(table).update(values)
            for column, value in filters.items():
                query = query.eq(column, value)
            return query

        result = await self._execute(build, f"Update {table}")
        return result.data or []


class InMemoryStore:
    """
    Dict-backed store with the same interface as SupabaseStore.

    Assigns ids and timestamps the way the database defaults would, and
    rejects rows whose foreign keys point at missing records.
    """

    def __init__(self):
        self.tables: Dict[str, List[Dict[str, Any]]] = {name: [] for name in FOREIGN_KEYS}

    def _exists(self, table: str, record_id: Any) -> bool:
        return any(row.get("id") == record_id for row in self.tables.get(table, []))

    def _check_foreign_keys(self, table: str, row: Dict[str, Any]):
        for column, referenced in FOREIGN_KEYS.get(table, {}).items():
            value = row.get(column)
            if value is None or not self._exists(referenced, value):
                raise PersistenceError(
                    f"Insert into {table} violates foreign key {column} -> {referenced} ({value})"
                )

    async def insert(self, table: str, rows: Rows) -> List[Dict[str, Any]]:
        payload = rows if isinstance(rows, list) else [rows]
        if table not in self.tables:
            raise PersistenceError(f"Unknown table: {table}")

        prepared = []
        for row in payload:
            stored = copy.deepcopy(row)
            stored.setdefault("id", str(uuid.uuid4()))
            stored.setdefault("created_at", utc_now())
            if table in TIMESTAMP_COLUMNS:
                stored.setdefault(TIMESTAMP_COLUMNS[table], utc_now())
            self._check_foreign_keys(table, stored)
            prepared.append(stored)

        # All-or-nothing, like a single INSERT statement
        self.tables[table].extend(prepared)
        return copy.deepcopy(prepared)

    async def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        exclude: Optional[Dict[str, Any]] = None,
        columns: str = "*",
        order_by: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        if table not in self.tables:
            raise PersistenceError(f"Unknown table: {table}")

        rows = [
            row for row in self.tables[table]
            if all(row.get(k) == v for k, v in (filters or {}).items())
            and all(row.get(k) != v for k, v in (exclude or {}).items())
        ]
        if order_by:
            rows = sorted(rows, key=lambda row: (row.get(order_by) is None, row.get(order_by) or ""))
        if limit:
            rows = rows[:limit]
        return copy.deepcopy(rows)

    async def select_one(self, table: str, **filters) -> Optional[Dict[str, Any]]:
        rows = await self.select(table, filters=filters, limit=1)
        return rows[0] if rows else None

    async def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        if table not in self.tables:
            raise PersistenceError(f"Unknown table: {table}")

        updated = []
        for row in self.tables[table]:
            if all(row.get(k) == v for k, v in filters.items()):
                row.update(copy.deepcopy(values))
                updated.append(copy.deepcopy(row))
        return updated
