"""Shared pytest fixtures and configuration.

Fixture Categories:
1. Settings and clock: mock_settings, now
2. In-memory stores: profiles, page_repo, scan_repo, change_repo,
   suggestion_repo (see tests/fakes.py)
3. Services: queue, scheduler, lifecycle, container
4. Infrastructure: mock_logfire, respx_mock, rate_limiter, test_client
"""

import os
from contextlib import contextmanager
from datetime import datetime, timezone
from unittest.mock import MagicMock, Mock

import pytest

# Tests never ship spans anywhere
os.environ.setdefault("LOGFIRE_IGNORE_NO_CONFIG", "1")

import logfire
import respx

from src.api.dependencies import get_container
from src.config import Settings, get_settings
from src.main import app
from src.middleware.rate_limiter import RateLimiter, get_rate_limiter, reset_rate_limiter
from src.models.tier_models import OwnerProfile
from src.services.backup_runner import BackupRunner
from src.services.change_lifecycle import ChangeLifecycleStore
from src.services.checkpoint_engine import CheckpointEngine
from src.services.container import ServiceContainer
from src.services.event_queue import RecordingEventQueue
from src.services.page_service import PageService
from src.services.scan_lifecycle import ScanLifecycle
from src.services.scan_scheduler import ScanScheduler
from src.services.suggestion_service import SuggestionService
from tests.fakes import (
    FakeChangeRepository,
    FakePageRepository,
    FakeProfileRepository,
    FakeResolver,
    FakeScanRepository,
    FakeSuggestionRepository,
)

CRON_SECRET = "test-cron-secret"
PIPELINE_SECRET = "test-pipeline-secret"


@pytest.fixture
def respx_mock():
    """Respx mock fixture for HTTP mocking."""
    with respx.mock(assert_all_called=False) as mock:
        yield mock


@pytest.fixture
def mock_settings(monkeypatch):
    """Application settings with test secrets, patched into get_settings."""
    settings = Settings(
        supabase_url="https://test.supabase.co",
        supabase_service_key="test-service-key",
        cron_secret=CRON_SECRET,
        pipeline_secret=PIPELINE_SECRET,
        queue_event_url="http://queue.test/e/key",
        queue_sync_url="http://app.test/api/queue",
        env="local",
        logfire_token=None,
        _env_file=None,
    )
    monkeypatch.setattr("src.config.get_settings", lambda: settings)
    monkeypatch.setattr("src.main.get_settings", lambda: settings)
    monkeypatch.setattr("src.services.event_queue.get_settings", lambda: settings)
    monkeypatch.setattr("src.services.analytics_adapter.get_settings", lambda: settings)
    monkeypatch.setattr("src.services.checkpoint_engine.get_settings", lambda: settings)
    return settings


@pytest.fixture(autouse=True)
def _fresh_rate_limiter():
    reset_rate_limiter()
    yield
    reset_rate_limiter()


@pytest.fixture
def mock_logfire(monkeypatch):
    """
    Replace Logfire's logging calls with mocks.

    Returns the mock so tests can assert on structured log calls.
    """

    @contextmanager
    def mock_span(*args, **kwargs):
        yield MagicMock()

    mock_logfire_module = MagicMock()
    for attr in ["debug", "info", "warn", "warning", "error", "configure",
                 "instrument_fastapi", "instrument_pydantic"]:
        setattr(mock_logfire_module, attr, Mock())
    mock_logfire_module.span = mock_span

    for attr in ["debug", "info", "warn", "warning", "error", "span", "configure",
                 "instrument_fastapi", "instrument_pydantic"]:
        if hasattr(logfire, attr):
            monkeypatch.setattr(logfire, attr, getattr(mock_logfire_module, attr))

    return mock_logfire_module


@pytest.fixture
def now():
    """A fixed Wednesday afternoon in UTC."""
    return datetime(2025, 3, 12, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def profiles():
    return FakeProfileRepository(
        [
            OwnerProfile(id="owner-free", subscription_tier="free"),
            OwnerProfile(id="owner-starter", subscription_tier="starter"),
            OwnerProfile(id="owner-pro", subscription_tier="pro", subscription_status="active"),
        ]
    )


@pytest.fixture
def page_repo():
    return FakePageRepository()


@pytest.fixture
def scan_repo(now):
    return FakeScanRepository(clock=lambda: now)


@pytest.fixture
def change_repo():
    return FakeChangeRepository()


@pytest.fixture
def suggestion_repo():
    return FakeSuggestionRepository()


@pytest.fixture
def queue():
    return RecordingEventQueue()


@pytest.fixture
def scheduler(page_repo, profiles, scan_repo, queue, now):
    return ScanScheduler(page_repo, profiles, scan_repo, queue, clock=lambda: now)


@pytest.fixture
def lifecycle(change_repo, now):
    return ChangeLifecycleStore(change_repo, clock=lambda: now)


@pytest.fixture
def resolver():
    return FakeResolver()


@pytest.fixture
def container(
    mock_settings,
    page_repo,
    profiles,
    scan_repo,
    change_repo,
    suggestion_repo,
    queue,
    scheduler,
    lifecycle,
    resolver,
    now,
):
    """Service container wired to the in-memory stores."""
    return ServiceContainer(
        settings=mock_settings,
        queue=queue,
        scheduler=scheduler,
        backup=BackupRunner(scheduler, scan_repo, queue),
        lifecycle=lifecycle,
        checkpoints=CheckpointEngine(
            change_repo,
            page_repo,
            profiles,
            lifecycle,
            resolver,
            mock_settings,
            clock=lambda: now,
        ),
        pages=PageService(
            page_repo, profiles, scan_repo, change_repo, suggestion_repo, queue
        ),
        scans=ScanLifecycle(scan_repo, page_repo),
        suggestions=SuggestionService(suggestion_repo, page_repo, clock=lambda: now),
    )


@pytest.fixture
def rate_limiter():
    return RateLimiter(max_requests=3, window_seconds=60)


@pytest.fixture
def test_client(mock_settings, mock_logfire, container, rate_limiter):
    """FastAPI TestClient for E2E tests, with the container swapped for fakes."""
    from fastapi.testclient import TestClient

    app.dependency_overrides[get_container] = lambda: container
    app.dependency_overrides[get_settings] = lambda: mock_settings
    app.dependency_overrides[get_rate_limiter] = lambda: rate_limiter
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def cron_headers():
    return {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture
def pipeline_headers():
    return {"Authorization": f"Bearer {PIPELINE_SECRET}"}
