"""Request tracking middleware."""

import time
import uuid
from collections.abc import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..utils.logging import LogContext, get_logger

logger = get_logger(__name__, LogContext.WEB)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestTrackingMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id and log how it was answered.

    A caller-supplied ``X-Request-ID`` is kept so ids line up across services.
    503 answers are logged as warnings together with the schema readiness
    flag, which separates requests that arrived during the startup migration
    pass from ones that hit an unreachable database afterwards.
    """

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        started = time.perf_counter()

        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id

        fields = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "elapsed_ms": round((time.perf_counter() - started) * 1000, 2),
            "request_id": request_id,
            "schema_ready": bool(getattr(request.app.state, "schema_ready", False)),
        }
        if response.status_code == 503:
            logger.warning("Request refused: student storage unavailable", **fields)
        else:
            logger.info("Request handled", **fields)
        return response
