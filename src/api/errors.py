"""Translate domain exceptions into HTTP responses."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from src.services.change_lifecycle import (
    ChangeNotFoundError,
    InvalidHypothesisError,
    InvalidTransitionError,
)
from src.services.event_queue import QueueError
from src.services.page_service import (
    DuplicatePageError,
    InvalidUrlError,
    OwnerProfileMissingError,
    PageNotFoundError,
)
from src.services.scan_lifecycle import ScanNotFoundError
from src.services.suggestion_service import (
    InvalidSuggestionStatusError,
    SuggestionNotFoundError,
)
from src.services.tier_policy import PolicyViolationError

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: list[tuple[type[Exception], int, str]] = [
    (DuplicatePageError, 409, "duplicate_page"),
    (InvalidTransitionError, 409, "invalid_transition"),
    (OwnerProfileMissingError, 409, "owner_profile_missing"),
    (PageNotFoundError, 404, "not_found"),
    (ChangeNotFoundError, 404, "not_found"),
    (ScanNotFoundError, 404, "not_found"),
    (SuggestionNotFoundError, 404, "not_found"),
    (InvalidUrlError, 422, "invalid_url"),
    (InvalidHypothesisError, 422, "invalid_hypothesis"),
    (InvalidSuggestionStatusError, 422, "invalid_status"),
]


def _handler(status_code: int, code: str):
    async def handle(request: Request, exc: Exception) -> JSONResponse:
        return JSONResponse(
            status_code=status_code,
            content={"error": code, "detail": str(exc)},
        )

    return handle


async def _policy_violation(request: Request, exc: PolicyViolationError) -> JSONResponse:
    logger.info("Policy rejection on %s: %s", request.url.path, exc.code)
    return JSONResponse(
        status_code=403,
        content={"error": exc.code, "detail": str(exc)},
    )


async def _queue_unavailable(request: Request, exc: QueueError) -> JSONResponse:
    logger.error("Work queue unavailable on %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"error": "queue_unavailable", "detail": str(exc)},
    )


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(PolicyViolationError, _policy_violation)
    app.add_exception_handler(QueueError, _queue_unavailable)
    for exc_type, status_code, code in _STATUS_BY_ERROR:
        app.add_exception_handler(exc_type, _handler(status_code, code))
