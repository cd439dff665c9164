from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gateway.errors import AuthError, RecordNotFound, StoreError
from gateway.models import TABLE_KEYS


class FakeClock:
    """Millisecond clock that only moves when told to."""

    def __init__(self, start: int = 1_700_000_000_000) -> None:
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> None:
        self.now += ms


class MemoryStore:
    """Dictionary-backed record store with optional injected failures."""

    def __init__(self) -> None:
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {table: {} for table in TABLE_KEYS}
        self.calls: List[Tuple[str, str]] = []
        self.get_error: Optional[StoreError] = None
        self.write_error: Optional[StoreError] = None

    @staticmethod
    def _project(row: Mapping[str, Any], columns: Iterable[str]) -> Dict[str, Any]:
        return {column: row.get(column) for column in columns}

    async def get(self, table: str, key: str, columns: Iterable[str]) -> Dict[str, Any]:
        self.calls.append(("get", table))
        if self.get_error is not None:
            raise self.get_error
        row = self.tables[table].get(key)
        if row is None:
            raise RecordNotFound()
        return self._project(row, columns)

    async def update(
        self,
        table: str,
        key: str,
        values: Mapping[str, Any],
        columns: Iterable[str],
    ) -> Dict[str, Any]:
        self.calls.append(("update", table))
        if self.write_error is not None:
            raise self.write_error
        row = self.tables[table].get(key)
        if row is None:
            raise RecordNotFound()
        row.update(values)
        return self._project(row, columns)

    async def upsert(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        self.calls.append(("upsert", table))
        if self.write_error is not None:
            raise self.write_error
        key = str(values[TABLE_KEYS[table]])
        row = self.tables[table].setdefault(key, {})
        row.update(values)
        return dict(row)

    async def aclose(self) -> None:
        return None


class FakeIdentity:
    """Identity provider double that records every call."""

    def __init__(self) -> None:
        self.calls: List[Tuple[str, Tuple[Any, ...]]] = []
        self.error: Optional[AuthError] = None
        self.created_user: Optional[Dict[str, Any]] = {
            "id": "u1",
            "email": "a@b.com",
            "created_at": "2024-01-01T00:00:00+00:00",
        }

    async def create_account(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        self.calls.append(("create_account", (email,)))
        if self.error is not None:
            raise self.error
        if self.created_user is None:
            return None
        return {**self.created_user, "email": email}

    async def update_password(self, user_id: str, password: str) -> None:
        self.calls.append(("update_password", (user_id,)))
        if self.error is not None:
            raise self.error

    async def delete_account(self, user_id: str) -> None:
        self.calls.append(("delete_account", (user_id,)))
        if self.error is not None:
            raise self.error

    async def aclose(self) -> None:
        return None


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def memory_store() -> MemoryStore:
    return MemoryStore()


@pytest.fixture()
def fake_identity() -> FakeIdentity:
    return FakeIdentity()
