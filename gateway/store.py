"""Record store clients for the ``users`` and ``rate_limits`` tables."""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict, Iterable, Mapping, Optional, Protocol

import anyio
import httpx

from .database import Database
from .errors import NOT_FOUND_CODE, RecordNotFound, StoreError
from .models import TABLE_KEYS

logger = logging.getLogger("accounts.gateway.store")

_SINGLE_OBJECT = "application/vnd.pgrst.object+json"


class RecordStore(Protocol):
    """Row-level access keyed by each table's primary key.

    ``get`` and ``update`` raise :class:`RecordNotFound` when no row matches and
    :class:`StoreError` for every other failure.
    """

    async def get(self, table: str, key: str, columns: Iterable[str]) -> Dict[str, Any]:
        ...

    async def update(
        self,
        table: str,
        key: str,
        values: Mapping[str, Any],
        columns: Iterable[str],
    ) -> Dict[str, Any]:
        ...

    async def upsert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        ...

    async def aclose(self) -> None:
        ...


class SQLiteRecordStore:
    """Record store backed by the local SQLite :class:`Database`."""

    def __init__(self, database: Database) -> None:
        self._database = database

    @property
    def database(self) -> Database:
        return self._database

    async def get(self, table: str, key: str, columns: Iterable[str]) -> Dict[str, Any]:
        call = functools.partial(self._database.fetch_row, table, key, tuple(columns))
        return await anyio.to_thread.run_sync(call)

    async def update(
        self,
        table: str,
        key: str,
        values: Mapping[str, Any],
        columns: Iterable[str],
    ) -> Dict[str, Any]:
        call = functools.partial(self._database.update_row, table, key, dict(values), tuple(columns))
        return await anyio.to_thread.run_sync(call)

    async def upsert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        call = functools.partial(self._database.upsert_row, table, dict(values))
        return await anyio.to_thread.run_sync(call)

    async def aclose(self) -> None:
        return None


class PostgRESTRecordStore:
    """Record store that talks to a Supabase PostgREST endpoint."""

    def __init__(
        self,
        base_url: str,
        api_key: str,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/rest/v1",
            headers={
                "apikey": api_key,
                "Authorization": f"Bearer {api_key}",
                "Accept": _SINGLE_OBJECT,
            },
            timeout=timeout,
            transport=transport,
        )

    @staticmethod
    def _key_filter(table: str, key: str) -> Dict[str, str]:
        try:
            key_column = TABLE_KEYS[table]
        except KeyError as exc:
            raise StoreError(f"Unknown table '{table}'") from exc
        return {key_column: f"eq.{key}"}

    async def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise StoreError(f"Record store request failed: {exc}") from exc

        if response.is_error:
            code: Optional[str] = None
            message = response.text.strip() or f"Record store returned HTTP {response.status_code}"
            try:
                payload = response.json()
            except ValueError:
                payload = None
            if isinstance(payload, dict):
                code = payload.get("code")
                message = payload.get("message") or message
            if code == NOT_FOUND_CODE:
                raise RecordNotFound(message)
            logger.debug("Record store rejected %s %s: %s (%s)", method, path, message, code)
            raise StoreError(message, code=code)

        try:
            payload = response.json()
        except ValueError as exc:
            raise StoreError("Record store returned an unexpected response format") from exc
        if not isinstance(payload, dict):
            raise StoreError("Record store returned an unexpected response format")
        return payload

    async def get(self, table: str, key: str, columns: Iterable[str]) -> Dict[str, Any]:
        params = {**self._key_filter(table, key), "select": ",".join(columns)}
        return await self._request("GET", f"/{table}", params=params)

    async def update(
        self,
        table: str,
        key: str,
        values: Mapping[str, Any],
        columns: Iterable[str],
    ) -> Dict[str, Any]:
        params = {**self._key_filter(table, key), "select": ",".join(columns)}
        return await self._request(
            "PATCH",
            f"/{table}",
            params=params,
            json=dict(values),
            headers={"Prefer": "return=representation"},
        )

    async def upsert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        try:
            key_column = TABLE_KEYS[table]
        except KeyError as exc:
            raise StoreError(f"Unknown table '{table}'") from exc
        return await self._request(
            "POST",
            f"/{table}",
            params={"on_conflict": key_column},
            json=dict(values),
            headers={"Prefer": "resolution=merge-duplicates,return=representation"},
        )

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["PostgRESTRecordStore", "RecordStore", "SQLiteRecordStore"]
