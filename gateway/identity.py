"""Identity provider clients used to create, update and delete accounts."""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

import anyio
import httpx

from .database import Database
from .errors import AuthError

logger = logging.getLogger("accounts.gateway.identity")


class IdentityProvider(Protocol):
    """Account lifecycle operations; failures raise :class:`AuthError`."""

    async def create_account(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        ...

    async def update_password(self, user_id: str, password: str) -> None:
        ...

    async def delete_account(self, user_id: str) -> None:
        ...

    async def aclose(self) -> None:
        ...


class LocalIdentityProvider:
    """Stores accounts in the same SQLite database as the record store.

    Creating an account inserts the ``users`` row, and deleting it removes the
    row again, so the local backend keeps both views consistent.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    async def _run(self, func, *args: Any) -> Any:
        try:
            return await anyio.to_thread.run_sync(functools.partial(func, *args))
        except ValueError as exc:
            raise AuthError(str(exc), status_code=400) from exc

    async def create_account(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        return await self._run(self._database.create_user, email, password)

    async def update_password(self, user_id: str, password: str) -> None:
        await self._run(self._database.set_user_password, user_id, password)

    async def delete_account(self, user_id: str) -> None:
        await self._run(self._database.delete_user, user_id)

    async def aclose(self) -> None:
        return None


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        payload = None
    if isinstance(payload, dict):
        for key in ("msg", "message", "error_description", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    text = response.text.strip()
    return text or f"Identity provider returned HTTP {response.status_code}"


class SupabaseAuthClient:
    """Identity provider backed by the Supabase GoTrue REST API."""

    def __init__(
        self,
        base_url: str,
        anon_key: str,
        *,
        service_key: Optional[str] = None,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._anon_key = anon_key
        self._service_key = service_key or anon_key
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/") + "/auth/v1",
            headers={"apikey": anon_key},
            timeout=timeout,
            transport=transport,
        )

    async def _request(self, method: str, path: str, *, token: str, **kwargs: Any) -> httpx.Response:
        headers = {"Authorization": f"Bearer {token}"}
        try:
            response = await self._client.request(method, path, headers=headers, **kwargs)
        except httpx.HTTPError as exc:
            raise AuthError(f"Identity provider request failed: {exc}") from exc
        if response.is_error:
            message = _error_message(response)
            logger.debug("Identity provider rejected %s %s: %s", method, path, message)
            raise AuthError(message, status_code=response.status_code)
        return response

    async def create_account(self, email: str, password: str) -> Optional[Dict[str, Any]]:
        response = await self._request(
            "POST",
            "/signup",
            token=self._anon_key,
            json={"email": email, "password": password},
        )
        try:
            payload = response.json()
        except ValueError as exc:
            raise AuthError("Identity provider returned an unexpected response format") from exc
        if not isinstance(payload, dict):
            return None
        # Sessions wrap the user; signups awaiting confirmation return it bare.
        user = payload.get("user") if "user" in payload else payload
        if isinstance(user, dict) and user.get("id"):
            return user
        return None

    async def update_password(self, user_id: str, password: str) -> None:
        await self._request(
            "PUT",
            f"/admin/users/{quote(user_id, safe='')}",
            token=self._service_key,
            json={"password": password},
        )

    async def delete_account(self, user_id: str) -> None:
        await self._request(
            "DELETE",
            f"/admin/users/{quote(user_id, safe='')}",
            token=self._service_key,
        )

    async def aclose(self) -> None:
        await self._client.aclose()


__all__ = ["IdentityProvider", "LocalIdentityProvider", "SupabaseAuthClient"]
