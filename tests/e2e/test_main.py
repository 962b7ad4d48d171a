"""End-to-end tests for main application."""

from unittest.mock import AsyncMock, MagicMock, patch

from fastapi.testclient import TestClient

from src.main import APP_VERSION, app


class TestMainApplication:
    """Test FastAPI application initialization."""

    def test_app_metadata(self):
        assert app.title == "PagePulse"
        assert app.description is not None
        assert app.version == APP_VERSION

    def test_root_endpoint(self, test_client):
        response = test_client.get("/")

        assert response.status_code == 200
        data = response.json()
        assert data["message"] == "PagePulse API"
        assert data["environment"] == "local"
        assert data["version"] == APP_VERSION

    def test_cors_middleware(self, test_client):
        response = test_client.options("/health")

        assert response.status_code in [200, 405]

    def test_app_routes(self):
        routes = {route.path for route in app.routes}

        for path in (
            "/",
            "/health",
            "/api/cron/scheduled-scans",
            "/api/cron/daily-scans",
            "/api/cron/checkpoints",
            "/api/pipeline/scans/{job_id}/start",
            "/api/pipeline/changes",
            "/api/pages",
            "/api/pages/{page_id}/rescan",
            "/api/changes",
            "/api/suggestions/{suggestion_id}",
        ):
            assert path in routes

    def test_requests_without_container_are_unavailable(self, mock_settings):
        """Before startup has built services, owner endpoints answer 503."""
        client = TestClient(app)

        response = client.get("/api/pages", headers={"X-Owner-Id": "owner-pro"})

        assert response.status_code == 503


class TestLifespan:
    def test_startup_builds_container_and_subscribes(self, mock_settings, mock_logfire):
        container = MagicMock()
        container.queue.ensure_subscription = AsyncMock(return_value=True)

        with patch("src.main.setup_logfire") as setup, patch(
            "src.main.get_supabase_client", return_value=MagicMock()
        ), patch("src.main.build_container", return_value=container) as build, patch(
            "src.main.sentry_sdk"
        ) as mock_sentry:
            with TestClient(app):
                assert app.state.container is container

        setup.assert_called_once_with(app)
        build.assert_called_once()
        container.queue.ensure_subscription.assert_awaited_once()
        mock_sentry.init.assert_not_called()
        app.state.container = None

    def test_sentry_initialized_when_dsn_set(self, mock_settings, mock_logfire, monkeypatch):
        settings = mock_settings.model_copy(update={"sentry_dsn": "https://key@sentry.test/1"})
        monkeypatch.setattr("src.main.get_settings", lambda: settings)
        container = MagicMock()
        container.queue.ensure_subscription = AsyncMock(return_value=False)

        with patch("src.main.setup_logfire"), patch(
            "src.main.get_supabase_client", return_value=MagicMock()
        ), patch("src.main.build_container", return_value=container), patch(
            "src.main.sentry_sdk"
        ) as mock_sentry:
            with TestClient(app):
                pass

        assert mock_sentry.init.call_args.kwargs["dsn"] == "https://key@sentry.test/1"
        assert mock_sentry.init.call_args.kwargs["send_default_pii"] is False
        app.state.container = None
