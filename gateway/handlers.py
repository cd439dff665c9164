"""Request handlers for the account endpoints.

Each handler returns a JSON envelope and never lets an exception escape:
:class:`GatewayError` subclasses carry their own status code and anything else
is reported as a 500.
"""

from __future__ import annotations

import functools
import json
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict

import anyio
from fastapi import Request, status
from fastapi.responses import JSONResponse

from .config import GatewaySettings
from .errors import (
    DEFAULT_ERROR_MESSAGE,
    AuthError,
    GatewayError,
    InternalError,
    NotFound,
    QuotaExceeded,
    RecordNotFound,
    StoreError,
    UpstreamError,
    ValidationError,
)
from .identity import IdentityProvider
from .models import USERS_TABLE, USER_COLUMNS, AccountCredentials, RateLimitDecision, UserRecord
from .ratelimit import RateLimiter, client_key_from_headers
from .responses import create_response, error_response, user_to_response
from .store import RecordStore
from .validation import validate_email, validate_password

logger = logging.getLogger("accounts.gateway.handlers")


@dataclass(frozen=True)
class GatewayContext:
    """Collaborators shared by every handler invocation."""

    settings: GatewaySettings
    store: RecordStore
    identity: IdentityProvider
    limiter: RateLimiter


Handler = Callable[[Request, GatewayContext], Awaitable[JSONResponse]]


def envelope(func: Callable[[Request, GatewayContext], Awaitable[Dict[str, Any]]]) -> Handler:
    """Run ``func`` under the request deadline and shape its outcome."""

    @functools.wraps(func)
    async def wrapper(request: Request, context: GatewayContext) -> JSONResponse:
        try:
            with anyio.fail_after(context.settings.request_timeout):
                body = await func(request, context)
        except GatewayError as exc:
            return error_response(exc.message, exc.status_code)
        except TimeoutError:
            logger.error("%s timed out after %.1fs", func.__name__, context.settings.request_timeout)
            return error_response("Request timed out", InternalError.status_code)
        except Exception as exc:
            logger.exception("Unexpected error in %s", func.__name__)
            return error_response(str(exc) or DEFAULT_ERROR_MESSAGE, InternalError.status_code)
        return create_response(body, status.HTTP_200_OK)

    return wrapper


async def read_json_body(request: Request) -> Dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except ValueError as exc:
        raise ValidationError("Invalid JSON body") from exc
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON body")
    return payload


def _require_user_id(body: Dict[str, Any], request: Request, *, allow_query: bool = False) -> str:
    user_id = body.get("user_id")
    if not user_id and allow_query:
        user_id = request.query_params.get("user_id")
    if not user_id:
        raise ValidationError("User ID is required")
    if not isinstance(user_id, (str, int)) or isinstance(user_id, bool):
        raise ValidationError("User ID must be a string")
    return str(user_id)


def _check_email(value: Any) -> str:
    if not isinstance(value, str) or not validate_email(value):
        raise ValidationError("Invalid email format")
    return value


def _check_password(value: Any) -> str:
    if not isinstance(value, str) or not validate_password(value):
        raise ValidationError("Password does not meet complexity requirements")
    return value


@envelope
async def register(request: Request, context: GatewayContext) -> Dict[str, Any]:
    body = await read_json_body(request)
    email = body.get("email")
    password = body.get("password")
    if not email or not password:
        raise ValidationError("Email and password are required")

    policy = context.settings.rate_limit
    client_key = client_key_from_headers(request.headers)
    decision = await context.limiter.check_and_increment(client_key, policy.window_ms, policy.max_requests)
    if decision is RateLimitDecision.LIMITED:
        raise QuotaExceeded()

    credentials = AccountCredentials(email=_check_email(email), password=_check_password(password))

    try:
        user = await context.identity.create_account(credentials.email, credentials.password)
    except AuthError as exc:
        logger.warning("Identity provider rejected registration: %s", exc.message)
        raise UpstreamError(exc.message) from exc

    if not user:
        raise NotFound("No user data available")
    return {"user": user}


@envelope
async def get_details(request: Request, context: GatewayContext) -> Dict[str, Any]:
    body = await read_json_body(request)
    user_id = _require_user_id(body, request, allow_query=True)

    try:
        row = await context.store.get(USERS_TABLE, user_id, USER_COLUMNS)
    except RecordNotFound as exc:
        raise NotFound("User not found") from exc
    except StoreError as exc:
        raise UpstreamError(exc.message) from exc

    return {"user": user_to_response(UserRecord.from_row(row))}


@envelope
async def update_details(request: Request, context: GatewayContext) -> Dict[str, Any]:
    body = await read_json_body(request)
    user_id = _require_user_id(body, request)

    changes: Dict[str, Any] = {}
    email = body.get("email")
    if email:
        changes["email"] = _check_email(email)

    password = body.get("password")
    if password:
        _check_password(password)
        try:
            await context.identity.update_password(user_id, password)
        except AuthError as exc:
            raise UpstreamError(exc.message) from exc

    if changes:
        try:
            row = await context.store.update(USERS_TABLE, user_id, changes, USER_COLUMNS)
        except StoreError as exc:
            raise UpstreamError(exc.message) from exc
        return {"user": user_to_response(UserRecord.from_row(row))}

    return {"user": {"id": user_id}}


@envelope
async def delete_account(request: Request, context: GatewayContext) -> Dict[str, Any]:
    body = await read_json_body(request)
    user_id = _require_user_id(body, request, allow_query=True)

    try:
        await context.identity.delete_account(user_id)
    except AuthError as exc:
        raise UpstreamError(exc.message) from exc

    logger.info("Deleted account %s", user_id)
    return {"message": "User account deleted successfully"}


__all__ = [
    "GatewayContext",
    "Handler",
    "delete_account",
    "envelope",
    "get_details",
    "read_json_body",
    "register",
    "update_details",
]
