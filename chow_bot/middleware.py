"""
FastAPI middleware for Chow Bot.
"""

import logging
import uuid
from typing import Callable

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from .logging_config import request_id_var

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """
    Tags every request with an id for log correlation.

    An incoming X-Request-ID header is reused, otherwise a UUID is generated.
    The id is stored on ``request.state.request_id``, exposed to log records
    through ``request_id_var`` and echoed in the response header.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = request_id
        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers[REQUEST_ID_HEADER] = request_id
            logger.debug("%s %s -> %s", request.method, request.url.path, response.status_code)
            return response
        finally:
            request_id_var.reset(token)
