"""Helpers shared by the repositories: query timing, paging, error codes."""

import time
from contextlib import contextmanager
from typing import Any, Callable, Iterator

import logfire

from src.constants import QUERY_PAGE_SIZE, SLOW_QUERY_MS

# Postgres SQLSTATE for unique_violation
UNIQUE_VIOLATION = "23505"


@contextmanager
def timed_query(operation: str, **context: Any) -> Iterator[None]:
    """
    Run a database call inside a Logfire span.

    Failures are logged with the elapsed time and re-raised; calls slower
    than ``SLOW_QUERY_MS`` are logged as warnings.

    Example:
        with timed_query("get_page", page_id=page_id):
            result = client.table("pages").select("*").eq("id", page_id).execute()
    """
    started = time.perf_counter()
    with logfire.span("db {operation}", operation=operation, **context):
        try:
            yield
        except Exception as e:
            logfire.error(
                f"{operation} failed",
                operation=operation,
                error=str(e),
                error_type=type(e).__name__,
                elapsed_ms=round((time.perf_counter() - started) * 1000, 1),
                **context,
            )
            raise

    elapsed_ms = (time.perf_counter() - started) * 1000
    if elapsed_ms >= SLOW_QUERY_MS:
        logfire.warning(
            f"Slow query: {operation}",
            operation=operation,
            elapsed_ms=round(elapsed_ms, 1),
            **context,
        )


def fetch_all(
    build_query: Callable[[], Any],
    page_size: int = QUERY_PAGE_SIZE,
) -> list[dict[str, Any]]:
    """
    Read every row of a select by walking it with ``.range()``.

    PostgREST caps a single response (1000 rows by default), so unbounded
    listings must be paged. ``build_query`` returns a fresh, ordered select;
    the order must be total (end on a unique column) or rows can repeat or
    go missing between pages.
    """
    if page_size < 1:
        raise ValueError("page_size must be positive")

    rows: list[dict[str, Any]] = []
    offset = 0
    while True:
        result = build_query().range(offset, offset + page_size - 1).execute()
        batch = result.data or []
        rows.extend(batch)
        if len(batch) < page_size:
            return rows
        offset += page_size


def is_unique_violation(exc: BaseException) -> bool:
    """
    Check whether an exception is a Postgres unique constraint violation.

    PostgREST surfaces the SQLSTATE as ``code`` on its APIError; inserts that
    race on an idempotency key rely on this to treat the loser as success.
    """
    code = getattr(exc, "code", None)
    if code is None and exc.args and isinstance(exc.args[0], dict):
        code = exc.args[0].get("code")
    return str(code) == UNIQUE_VIOLATION
