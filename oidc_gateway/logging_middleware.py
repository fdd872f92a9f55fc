"""
Request logging middleware.

Logs one line per request with the response size. The size is counted by
wrapping the response body iterator, so nothing on the response object is
patched.
"""

import logging
import time
from typing import AsyncIterator

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.responses import Response

logger = logging.getLogger("oidc_gateway.access")


class ByteCountingIterator:
    """Async iterator that passes chunks through and counts their bytes."""

    def __init__(self, body_iterator: AsyncIterator[bytes]):
        self._body_iterator = body_iterator
        self.byte_count = 0

    def __aiter__(self) -> "ByteCountingIterator":
        return self

    async def __anext__(self) -> bytes:
        chunk = await self._body_iterator.__anext__()
        if isinstance(chunk, str):
            chunk = chunk.encode("utf-8")
        self.byte_count += len(chunk)
        return chunk


class ResponseSizeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        started = time.perf_counter()
        response = await call_next(request)

        counter = ByteCountingIterator(response.body_iterator)

        async def logged_body() -> AsyncIterator[bytes]:
            try:
                async for chunk in counter:
                    yield chunk
            finally:
                logger.info(
                    f"{request.method} {request.url.path} {response.status_code}",
                    extra={
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": response.status_code,
                        "bytes": counter.byte_count,
                        "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                    },
                )

        response.body_iterator = logged_body()
        return response
