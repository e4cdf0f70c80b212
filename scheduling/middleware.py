import logging
import time
import uuid

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

REQUEST_ID_HEADER = "X-Request-ID"


class HTTPLogMiddleware(BaseHTTPMiddleware):
    """Logs each request with a correlation id echoed back in ``X-Request-ID``."""

    def __init__(self, app, logger_name: str = "scheduling.http"):
        super().__init__(app)
        self._logger = logging.getLogger(logger_name)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:12]
        start = time.monotonic()
        self._logger.debug("[%s] %s %s", request_id, request.method, request.url.path)
        try:
            response: Response = await call_next(request)
        except Exception as e:
            elapsed_ms = int((time.monotonic() - start) * 1000)
            self._logger.warning("[%s] failed after %sms: %r", request_id, elapsed_ms, e)
            raise
        elapsed_ms = int((time.monotonic() - start) * 1000)
        response.headers[REQUEST_ID_HEADER] = request_id
        self._logger.debug("[%s] %s in %sms", request_id, response.status_code, elapsed_ms)
        return response
