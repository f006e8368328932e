"""Supabase REST adapter: integrity checks only.

``AsyncSupabaseAdapter`` satisfies ``DatabaseClient`` through the
supabase-py async client.  PostgREST offers neither raw SQL nor a
transaction spanning several requests, so ``execute()`` and
``transaction()`` raise ``NotImplementedError`` and ``resequence()``
refuses to run.  Point a ``postgres`` profile at the project's direct
connection string to resequence a Supabase database.

Usage:
    from db_resequencer.adapters.supabase import AsyncSupabaseAdapter

    adapter = AsyncSupabaseAdapter(url="https://xyzproject.supabase.co", key="eyJ...")
    report = await check_integrity(adapter, "admins", "email")
    await adapter.close()
"""

import asyncio
from typing import Any

from supabase import AsyncClient, acreate_client


def _apply_filters(query, filters: dict[str, Any] | None):
    for column, value in (filters or {}).items():
        query = query.eq(column, value)
    return query


class AsyncSupabaseAdapter:
    """``DatabaseClient`` over the Supabase table API.

    The client is created on first use; concurrent first calls share one
    ``acreate_client`` call.

    Args:
        url: Supabase project URL.
        key: API key (anon or service role).
    """

    dialect = "supabase"
    page_size = 1000

    def __init__(self, url: str, key: str) -> None:
        self._url = url
        self._key = key
        self._client: AsyncClient | None = None
        self._client_lock = asyncio.Lock()

    async def _client_or_connect(self) -> AsyncClient:
        if self._client is None:
            async with self._client_lock:
                if self._client is None:
                    self._client = await acreate_client(self._url, self._key)
        return self._client

    async def select(
        self,
        table: str,
        columns: str,
        filters: dict[str, Any] | None = None,
        order_by: str | None = None,
    ) -> list[dict]:
        """Read every matching row, ``page_size`` rows per request.

        PostgREST caps a single response (1000 rows by default), so rows
        are fetched with ``range()`` until a short page comes back.
        ``order_by="email, id"`` becomes two ascending sorts.
        """
        client = await self._client_or_connect()
        sort = [c.strip() for c in (order_by or "").split(",") if c.strip()]
        rows: list[dict] = []
        while True:
            query = _apply_filters(client.table(table).select(columns), filters)
            for column in sort:
                query = query.order(column)
            start = len(rows)
            response = await query.range(start, start + self.page_size - 1).execute()
            rows.extend(response.data)
            if len(response.data) < self.page_size:
                return rows

    async def insert(self, table: str, data: dict) -> dict:
        client = await self._client_or_connect()
        payload = {k: v for k, v in data.items() if not k.startswith("_")}
        response = await client.table(table).insert(payload).execute()
        return response.data[0]

    async def update(self, table: str, data: dict, filters: dict[str, Any]) -> dict:
        client = await self._client_or_connect()
        response = await _apply_filters(client.table(table).update(data), filters).execute()
        if not response.data:
            raise ValueError(f"No rows matched filters: {filters}")
        return response.data[0]

    async def delete(self, table: str, filters: dict[str, Any]) -> None:
        client = await self._client_or_connect()
        await _apply_filters(client.table(table).delete(), filters).execute()

    async def execute(self, sql: str, params: dict | None = None) -> None:
        raise NotImplementedError("Raw SQL not supported for this adapter type")

    def transaction(self):
        """Always raises ``NotImplementedError``; see the module docstring."""
        raise NotImplementedError("Transactions not supported for this adapter type")

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
