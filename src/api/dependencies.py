"""Request dependencies shared by the routers.

Handlers receive the service container through ``get_container`` so tests can
swap it with ``app.dependency_overrides``.
"""

import logging
import secrets

from fastapi import Depends, Header, HTTPException, Request

from src.config import Settings, get_settings
from src.middleware.rate_limiter import RateLimiter, get_rate_limiter, rate_limit_key
from src.services.container import ServiceContainer

logger = logging.getLogger(__name__)


def get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "container", None)
    if container is None:
        raise HTTPException(status_code=503, detail="Service not ready")
    return container


def _check_bearer(authorization: str | None, expected: str, caller: str) -> None:
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not secrets.compare_digest(
        token.encode(), expected.encode()
    ):
        logger.warning("Rejected %s request with invalid credentials", caller)
        raise HTTPException(status_code=401, detail="Unauthorized")


def require_cron_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    """Cron endpoints are only callable by the external scheduler."""
    _check_bearer(authorization, settings.cron_secret, "cron")


def require_pipeline_secret(
    authorization: str | None = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> None:
    _check_bearer(authorization, settings.effective_pipeline_secret, "pipeline")


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str:
    """Owner identity set by the auth gateway in front of this service."""
    owner_id = (x_owner_id or "").strip()
    if not owner_id:
        raise HTTPException(status_code=401, detail="Missing owner identity")
    return owner_id


def rate_limited(action: str):
    """Dependency factory enforcing the per-owner limit for ``action``."""

    def dependency(
        owner_id: str = Depends(get_owner_id),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> str:
        key = rate_limit_key(owner_id, action)
        if not limiter.check_rate_limit(key):
            raise HTTPException(
                status_code=429,
                detail="Too many requests",
                headers={"Retry-After": str(limiter.retry_after_seconds(key))},
            )
        return owner_id

    return dependency
