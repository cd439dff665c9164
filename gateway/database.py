"""SQLite-backed persistence for the local gateway backend."""
from __future__ import annotations

import sqlite3
import uuid
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Mapping

from passlib.context import CryptContext

from .errors import RecordNotFound, StoreError
from .models import TABLE_KEYS


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def _current_timestamp() -> datetime:
    return datetime.now(timezone.utc)


def _serialize_datetime(value: datetime) -> str:
    return value.isoformat()


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: str) -> bool:
    try:
        return _pwd_context.verify(password, hashed)
    except (ValueError, TypeError):
        return False


class Database:
    """Simple wrapper around SQLite for the ``users`` and ``rate_limits`` tables."""

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with self._connect() as conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    id TEXT PRIMARY KEY,
                    email TEXT UNIQUE,
                    password_hash TEXT,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS rate_limits (
                    ip TEXT PRIMARY KEY,
                    count INTEGER NOT NULL DEFAULT 0 CHECK (count >= 0),
                    timestamp INTEGER NOT NULL
                );
                """
            )

    # ------------------------------------------------------------------
    # Generic row access
    # ------------------------------------------------------------------
    @staticmethod
    def _key_column(table: str) -> str:
        try:
            return TABLE_KEYS[table]
        except KeyError as exc:
            raise StoreError(f"Unknown table '{table}'") from exc

    @staticmethod
    def _column_list(columns: Iterable[str]) -> str:
        names = list(columns)
        for name in names:
            if not name.isidentifier():
                raise StoreError(f"Invalid column name '{name}'")
        return ", ".join(names)

    def fetch_row(self, table: str, key: str, columns: Iterable[str]) -> Dict[str, Any]:
        key_column = self._key_column(table)
        select = self._column_list(columns)
        try:
            with self._connect() as conn:
                row = conn.execute(
                    f"SELECT {select} FROM {table} WHERE {key_column} = ?",
                    (key,),
                ).fetchone()
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        if row is None:
            raise RecordNotFound()
        return dict(row)

    def update_row(
        self,
        table: str,
        key: str,
        values: Mapping[str, Any],
        columns: Iterable[str],
    ) -> Dict[str, Any]:
        if not values:
            raise StoreError("No values supplied for update")
        key_column = self._key_column(table)
        self._column_list(values)
        assignments = ", ".join(f"{name} = ?" for name in values)
        try:
            with self._connect() as conn:
                cursor = conn.execute(
                    f"UPDATE {table} SET {assignments} WHERE {key_column} = ?",
                    (*values.values(), key),
                )
                if cursor.rowcount == 0:
                    raise RecordNotFound()
        except sqlite3.IntegrityError as exc:
            raise StoreError(str(exc), code="23505") from exc
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return self.fetch_row(table, key, columns)

    def upsert_row(self, table: str, values: Mapping[str, Any]) -> Dict[str, Any]:
        key_column = self._key_column(table)
        if key_column not in values:
            raise StoreError(f"Upsert into '{table}' requires the '{key_column}' column")
        names = self._column_list(values)
        placeholders = ", ".join("?" for _ in values)
        updates = ", ".join(
            f"{name} = excluded.{name}" for name in values if name != key_column
        )
        statement = f"INSERT INTO {table} ({names}) VALUES ({placeholders}) ON CONFLICT({key_column}) DO "
        statement += f"UPDATE SET {updates}" if updates else "NOTHING"
        try:
            with self._connect() as conn:
                conn.execute(statement, tuple(values.values()))
        except sqlite3.Error as exc:
            raise StoreError(str(exc)) from exc
        return self.fetch_row(table, str(values[key_column]), values.keys())

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------
    def create_user(self, email: str, password: str) -> Dict[str, Any]:
        """Create a new account and return its public projection."""

        if not password:
            raise ValueError("Password must not be empty")

        user_id = str(uuid.uuid4())
        normalized_email = email.strip().lower()
        created_at = _serialize_datetime(_current_timestamp())

        with self._connect() as conn:
            try:
                conn.execute(
                    "INSERT INTO users (id, email, password_hash, created_at) VALUES (?, ?, ?, ?)",
                    (user_id, normalized_email, hash_password(password), created_at),
                )
            except sqlite3.IntegrityError as exc:
                raise ValueError("User already registered") from exc

        return {"id": user_id, "email": normalized_email, "created_at": created_at}

    def set_user_password(self, user_id: str, password: str) -> None:
        if not password:
            raise ValueError("Password must not be empty")

        with self._connect() as conn:
            cursor = conn.execute(
                "UPDATE users SET password_hash = ? WHERE id = ?",
                (hash_password(password), user_id),
            )
        if cursor.rowcount == 0:
            raise ValueError("User not found")

    def delete_user(self, user_id: str) -> None:
        with self._connect() as conn:
            cursor = conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
        if cursor.rowcount == 0:
            raise ValueError("User not found")

    # ------------------------------------------------------------------
    # Rate limit maintenance
    # ------------------------------------------------------------------
    def reset_rate_limit(self, client_key: str) -> bool:
        with self._connect() as conn:
            cursor = conn.execute("UPDATE rate_limits SET count = 0 WHERE ip = ?", (client_key,))
        return cursor.rowcount > 0


__all__ = ["Database", "hash_password", "verify_password"]
