"""Logging middleware for FastAPI."""

import time
import uuid

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from machina.infrastructure.logging.logger import get_logger


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logs each request and response under a generated request id."""

    def __init__(self, app, log_requests: bool = True, log_responses: bool = True):
        super().__init__(app)
        self.log_requests = log_requests
        self.log_responses = log_responses
        self.logger = get_logger(__name__)

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        start_time = time.time()
        if self.log_requests:
            self._log_request(request, request_id)

        try:
            response = await call_next(request)
        except Exception as e:
            self._log_error(request, e, request_id, time.time() - start_time)
            raise

        if self.log_responses:
            self._log_response(request, response, request_id, time.time() - start_time)
        response.headers["X-Request-ID"] = request_id
        return response

    def _log_request(self, request: Request, request_id: str):
        self.logger.info(
            "Request received",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            client_ip=request.client.host if request.client else "unknown",
            user_id=request.headers.get("X-User-Id", "system"),
        )
        if request.query_params:
            self.logger.debug("Request query params", request_id=request_id,
                              params=dict(request.query_params))

    def _log_response(self, request: Request, response: Response, request_id: str, duration: float):
        self.logger.info(
            "Response sent",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration=round(duration, 3),
        )

    def _log_error(self, request: Request, error: Exception, request_id: str, duration: float):
        self.logger.error(
            "Request failed",
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            error=f"{type(error).__name__}: {error}",
            duration=round(duration, 3),
        )
