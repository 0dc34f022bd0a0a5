"""Request logging middleware."""

import re
import time

from loguru import logger
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from relay.api.identity import IdentityProvider

STATIC_ASSET = re.compile(r"\.(css|js|jpg|png|gif|ico|svg|woff|woff2)$")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """One log line per request: method, path, status, elapsed time and caller."""

    def __init__(self, app, identity_provider: IdentityProvider):
        super().__init__(app)
        self.identity_provider = identity_provider

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if STATIC_ASSET.search(request.url.path):
            return await call_next(request)

        started = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000

        identity = self.identity_provider.resolve(request)
        logger.info(
            f"{request.method} {request.url.path} {response.status_code} "
            f"{elapsed_ms:.1f} ms - {identity.id}"
        )
        return response
