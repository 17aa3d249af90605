"""Request timeout middleware and timeout settings."""

import asyncio
from fastapi import Request, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

# Seconds for a whole API request. Must exceed the 30s ceiling on a tool call.
REQUEST_TIMEOUT = 60


class TimeoutMiddleware(BaseHTTPMiddleware):
    """Answer 504 when a request exceeds ``timeout`` seconds."""

    def __init__(self, app, timeout: int = REQUEST_TIMEOUT):
        super().__init__(app)
        self.timeout = timeout

    async def dispatch(self, request: Request, call_next):
        try:
            return await asyncio.wait_for(call_next(request), timeout=self.timeout)
        except asyncio.TimeoutError:
            return JSONResponse(
                status_code=status.HTTP_504_GATEWAY_TIMEOUT,
                content={"detail": f"Request timeout after {self.timeout} seconds"},
            )
