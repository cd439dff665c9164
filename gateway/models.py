"""Domain models shared by the gateway handlers and collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional

USERS_TABLE = "users"
RATE_LIMITS_TABLE = "rate_limits"

# Primary key column for each table the gateway touches.
TABLE_KEYS: Dict[str, str] = {
    USERS_TABLE: "id",
    RATE_LIMITS_TABLE: "ip",
}

USER_COLUMNS = ("id", "email", "created_at")
RATE_LIMIT_COLUMNS = ("ip", "count", "timestamp")


@dataclass(frozen=True)
class AccountCredentials:
    """Email/password pair supplied to the registration endpoint."""

    email: str
    password: str


@dataclass(frozen=True)
class UserRecord:
    """Projection of a row in the ``users`` table."""

    id: str
    email: Optional[str]
    created_at: Optional[str]

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "UserRecord":
        return UserRecord(
            id=str(row["id"]),
            email=row.get("email"),
            created_at=row.get("created_at"),
        )


@dataclass(frozen=True)
class RateLimitEntry:
    """Request counter for a single client key.

    ``window_start`` is expressed in epoch milliseconds.
    """

    client_key: str
    count: int
    window_start: int

    @staticmethod
    def from_row(row: Mapping[str, Any]) -> "RateLimitEntry":
        return RateLimitEntry(
            client_key=str(row["ip"]),
            count=int(row["count"]),
            window_start=int(row["timestamp"]),
        )

    def to_row(self) -> Dict[str, Any]:
        return {"ip": self.client_key, "count": self.count, "timestamp": self.window_start}


class RateLimitDecision(str, Enum):
    ALLOWED = "allowed"
    LIMITED = "limited"


__all__ = [
    "AccountCredentials",
    "RATE_LIMITS_TABLE",
    "RATE_LIMIT_COLUMNS",
    "RateLimitDecision",
    "RateLimitEntry",
    "TABLE_KEYS",
    "USERS_TABLE",
    "USER_COLUMNS",
    "UserRecord",
]
