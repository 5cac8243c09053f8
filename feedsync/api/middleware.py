"""Request logging middleware for the feedsync API.

Every request gets a short request id, echoed in the X-Request-ID header and
attached to its log records together with the import source id when the path
names one, so a JSON log line can be traced back to the run it belongs to.
"""

import logging
import re
import time
import uuid
from typing import Callable, Dict

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)

_IMPORT_PATH = re.compile(r"^/api/imports/(?P<source_id>[A-Za-z0-9_-]+)(?:/stream)?$")


def _log_context(request: Request, request_id: str) -> Dict[str, str]:
    context = {"request_id": request_id, "endpoint": request.url.path}
    match = _IMPORT_PATH.match(request.url.path)
    if match and match.group("source_id") != "history":
        context["source_id"] = match.group("source_id")
    return context


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request with its status and processing time.

    Query strings are left out of the log line; they carry file and user names.
    Streamed imports are logged when their headers go out, not when the
    stream ends.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        start_time = time.time()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        context = _log_context(request, request_id)

        try:
            response = await call_next(request)
        except Exception as e:
            elapsed = time.time() - start_time
            logger.error(
                f"{request.method} {request.url.path} failed after {elapsed:.3f}s: {e}",
                exc_info=True,
                extra=context,
            )
            return JSONResponse(
                status_code=500,
                content={"error": "Internal server error", "detail": "An unexpected error occurred"},
                headers={"X-Request-ID": request_id},
            )

        elapsed = time.time() - start_time
        response.headers["X-Process-Time"] = f"{elapsed:.3f}"
        response.headers["X-Request-ID"] = request_id
        log = logger.warning if response.status_code >= 400 else logger.info
        log(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed:.3f}s)", extra=context)
        return response


def setup_middleware(app) -> None:
    app.add_middleware(LoggingMiddleware)
