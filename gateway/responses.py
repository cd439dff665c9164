"""Response envelope helpers shared by the router and handlers."""

from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import Response, status
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from .models import UserRecord

CORS_HEADERS: Dict[str, str] = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "authorization, x-client-info, apikey, content-type",
}


class UserResponse(BaseModel):
    """Public projection of a user row; password material is never included."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    email: Optional[str] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")


def user_to_response(user: UserRecord) -> Dict[str, Any]:
    return UserResponse(
        id=user.id,
        email=user.email,
        created_at=user.created_at,
    ).model_dump(by_alias=True)


def create_response(body: Dict[str, Any], status_code: int) -> JSONResponse:
    return JSONResponse(content=body, status_code=status_code, headers=dict(CORS_HEADERS))


def error_response(message: str, status_code: int) -> JSONResponse:
    return create_response({"error": message}, status_code)


def preflight_response() -> Response:
    return Response(status_code=status.HTTP_200_OK, headers=dict(CORS_HEADERS))


def not_found_response() -> JSONResponse:
    return error_response("Not Found", status.HTTP_404_NOT_FOUND)


__all__ = [
    "CORS_HEADERS",
    "create_response",
    "error_response",
    "not_found_response",
    "preflight_response",
    "UserResponse",
    "user_to_response",
]
