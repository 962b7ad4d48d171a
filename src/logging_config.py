"""Logfire setup and log hygiene helpers."""

import logging
from typing import Any

import logfire
from fastapi import FastAPI

from src.config import get_settings

LOCAL_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logfire(app: FastAPI) -> None:
    """
    Configure Pydantic Logfire and route stdlib logging through it.

    Sets up:
    - FastAPI instrumentation (request/response tracing)
    - Pydantic instrumentation (model validation logging)
    - Stdlib ``logging`` (used by the HTTP routers) forwarded to Logfire,
      with console output kept for local development
    """
    settings = get_settings()

    logfire_config: dict[str, Any] = {"environment": settings.env}
    if settings.logfire_token:
        logfire_config["token"] = settings.logfire_token
    else:
        # Without a token only the local console receives spans
        logfire_config["send_to_logfire"] = False

    logfire.configure(**logfire_config)
    logfire.instrument_fastapi(app)
    logfire.instrument_pydantic()

    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    handlers: list[logging.Handler] = [logfire.LogfireLoggingHandler()]
    if settings.env == "local":
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter(LOCAL_LOG_FORMAT))
        handlers.append(console)

    logging.basicConfig(level=level, handlers=handlers, force=True)


def mask_secret(value: str | None, mask_char: str = "*") -> str:
    """
    Mask an API key or token for logging.

    Keeps the first and last two characters so operators can tell keys
    apart, e.g. ``"phc_abcdef"`` becomes ``"ph******ef"``.
    """
    if not value:
        return ""

    if len(value) <= 4:
        return mask_char * len(value)

    return f"{value[:2]}{mask_char * (len(value) - 4)}{value[-2:]}"
