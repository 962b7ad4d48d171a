"""Correlation ID middleware for request tracing across services."""

import uuid
from contextvars import ContextVar
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.types import ASGIApp

import logfire

_correlation_id: ContextVar[str | None] = ContextVar("correlation_id", default=None)


def current_correlation_id() -> str | None:
    """Correlation ID of the request being handled, if any.

    Stamped onto outgoing queue events so a scan can be traced from the
    cron call that scheduled it.
    """
    return _correlation_id.get()


class CorrelationIDMiddleware(BaseHTTPMiddleware):
    """
    Middleware to add correlation IDs to requests for distributed tracing.

    Adds a unique correlation ID to each request that can be used to
    trace requests across services and correlate logs.
    """

    def __init__(self, app: ASGIApp, header_name: str = "X-Correlation-ID"):
        """
        Initialize correlation ID middleware.

        Args:
            app: ASGI application
            header_name: HTTP header name for correlation ID
        """
        super().__init__(app)
        self.header_name = header_name

    async def dispatch(
        self, request: Request, call_next: Callable
    ) -> Response:
        correlation_id = request.headers.get(
            self.header_name.lower(),
            str(uuid.uuid4())
        )

        request.state.correlation_id = correlation_id
        token = _correlation_id.set(correlation_id)
        try:
            with logfire.span("request", correlation_id=correlation_id):
                response = await call_next(request)
        finally:
            _correlation_id.reset(token)

        response.headers[self.header_name] = correlation_id
        return response
