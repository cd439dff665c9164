"""Method/path dispatch for the account gateway."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional, Tuple

from fastapi import Request, Response

from . import handlers
from .handlers import GatewayContext, Handler
from .responses import not_found_response, preflight_response

logger = logging.getLogger("accounts.gateway.router")

ROUTES: Dict[Tuple[str, str], Handler] = {
    ("POST", "/api/user/register"): handlers.register,
    ("GET", "/api/user/details"): handlers.get_details,
    ("PUT", "/api/user/update"): handlers.update_details,
    ("DELETE", "/api/user/delete"): handlers.delete_account,
}


class RequestRouter:
    """Select exactly one handler for a request, or answer it directly."""

    def __init__(
        self,
        context: GatewayContext,
        routes: Optional[Mapping[Tuple[str, str], Handler]] = None,
    ) -> None:
        self._context = context
        self._routes = dict(ROUTES if routes is None else routes)

    def resolve(self, method: str, path: str) -> Optional[Handler]:
        return self._routes.get((method.upper(), path))

    async def dispatch(self, request: Request) -> Response:
        method = request.method.upper()
        path = request.url.path
        logger.info("Received %s request to %s", method, path)

        if method == "OPTIONS":
            return preflight_response()

        handler = self.resolve(method, path)
        if handler is None:
            logger.info("No matching route found for %s %s", method, path)
            return not_found_response()
        return await handler(request, self._context)


__all__ = ["ROUTES", "RequestRouter"]
