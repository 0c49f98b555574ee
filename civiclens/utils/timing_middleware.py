import time
import logging
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger("performance")

QUIET_PATHS = {"/", "/health", "/favicon.ico", "/robots.txt"}


class TimingMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, slow_ms: int = 2500):
        super().__init__(app)
        self.slow_ms = slow_ms

    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response: Response = await call_next(request)
        process_time = (time.time() - start_time) * 1000

        # Health checks are polled constantly
        path = request.url.path
        if path not in QUIET_PATHS:
            if process_time > self.slow_ms:
                logger.warning(f"🐌 Slow request {request.method} {path} took {process_time:.2f} ms (threshold {self.slow_ms} ms)")
            else:
                logger.info(f"⏱️ Request {request.method} {path} took {process_time:.2f} ms")

        response.headers["X-Process-Time-ms"] = f"{process_time:.2f}"
        return response
