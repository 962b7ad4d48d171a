"""End-to-end tests for the owner page endpoints."""

import pytest

from src.services.event_queue import QueueError

PRO = {"X-Owner-Id": "owner-pro"}
FREE = {"X-Owner-Id": "owner-free"}


class TestOwnerIdentity:
    def test_missing_owner_header(self, test_client):
        response = test_client.get("/api/pages")

        assert response.status_code == 401


class TestRegisterPage:
    def test_register_and_list(self, test_client, page_repo):
        response = test_client.post(
            "/api/pages",
            json={"url": "HTTPS://Shop.test/Pricing#plans", "name": "Pricing", "scan_frequency": "daily"},
            headers=PRO,
        )

        assert response.status_code == 201
        page = response.json()
        assert page["url"] == "https://shop.test/Pricing"
        assert page["scan_frequency"] == "daily"

        listing = test_client.get("/api/pages", headers=PRO).json()
        assert [row["id"] for row in listing] == [page["id"]]
        assert listing[0]["attention"]["reason"] == "no_scans_yet"

    def test_free_tier_daily_is_forbidden(self, test_client):
        response = test_client.post(
            "/api/pages",
            json={"url": "https://shop.test/", "scan_frequency": "daily"},
            headers=FREE,
        )

        assert response.status_code == 403
        assert response.json()["error"] == "scan_frequency_not_allowed"

    def test_page_limit(self, test_client):
        test_client.post("/api/pages", json={"url": "https://one.test/"}, headers=FREE)

        response = test_client.post("/api/pages", json={"url": "https://two.test/"}, headers=FREE)

        assert response.status_code == 403
        assert response.json()["error"] == "page_limit_reached"

    def test_duplicate_url(self, test_client):
        test_client.post("/api/pages", json={"url": "https://shop.test/"}, headers=PRO)

        response = test_client.post(
            "/api/pages", json={"url": "https://SHOP.test:443"}, headers=PRO
        )

        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_page"

    def test_owner_without_profile_is_409(self, test_client, page_repo):
        response = test_client.post(
            "/api/pages", json={"url": "https://new.test/"}, headers={"X-Owner-Id": "owner-new"}
        )

        assert response.status_code == 409
        assert response.json()["error"] == "owner_profile_missing"
        assert page_repo.pages == {}

    @pytest.mark.parametrize("url", ["ftp://shop.test/", "shop.test", "https://u:p@shop.test/"])
    def test_invalid_url(self, test_client, url):
        response = test_client.post("/api/pages", json={"url": url}, headers=PRO)

        assert response.status_code == 422
        assert response.json()["error"] == "invalid_url"

    def test_rate_limited_with_retry_after(self, test_client):
        for i in range(3):
            test_client.post("/api/pages", json={"url": f"https://s{i}.test/"}, headers=PRO)

        response = test_client.post("/api/pages", json={"url": "https://s9.test/"}, headers=PRO)

        assert response.status_code == 429
        assert int(response.headers["Retry-After"]) >= 1


class TestUpdateAndDelete:
    def test_update_frequency(self, test_client, page_repo):
        page = page_repo.add("owner-pro", "https://pro.test/")

        response = test_client.patch(
            f"/api/pages/{page.id}", json={"scan_frequency": "weekly"}, headers=PRO
        )

        assert response.status_code == 200
        assert response.json()["scan_frequency"] == "weekly"

    def test_other_owner_cannot_delete(self, test_client, page_repo):
        page = page_repo.add("owner-pro", "https://pro.test/")

        response = test_client.delete(f"/api/pages/{page.id}", headers=FREE)

        assert response.status_code == 404
        assert page.id in page_repo.pages

    def test_delete(self, test_client, page_repo):
        page = page_repo.add("owner-pro", "https://pro.test/")

        response = test_client.delete(f"/api/pages/{page.id}", headers=PRO)

        assert response.status_code == 204
        assert page.id not in page_repo.pages


class TestRescan:
    def test_manual_rescan_is_queued(self, test_client, page_repo, queue):
        page = page_repo.add("owner-free", "https://free.test/")

        response = test_client.post(f"/api/pages/{page.id}/rescan", headers=FREE)

        assert response.status_code == 202
        assert response.json()["trigger_type"] == "manual"
        assert queue.events[0][1]["scan_job_id"] == response.json()["id"]

    def test_deploy_rescan_needs_paid_tier(self, test_client, page_repo):
        page = page_repo.add("owner-free", "https://free.test/")

        response = test_client.post(
            f"/api/pages/{page.id}/rescan?trigger=deploy&deploy_id=dpl_1", headers=FREE
        )

        assert response.status_code == 403
        assert response.json()["error"] == "deploy_scans_not_allowed"

    def test_scheduled_trigger_rejected(self, test_client, page_repo):
        page = page_repo.add("owner-pro", "https://pro.test/")

        response = test_client.post(f"/api/pages/{page.id}/rescan?trigger=daily", headers=PRO)

        assert response.status_code == 422

    def test_queue_outage_is_503(self, test_client, page_repo, queue, scan_repo, monkeypatch):
        page = page_repo.add("owner-pro", "https://pro.test/")

        async def down(event_name, payload):
            raise QueueError("queue unreachable")

        monkeypatch.setattr(queue, "enqueue", down)

        response = test_client.post(f"/api/pages/{page.id}/rescan", headers=PRO)

        assert response.status_code == 503
        assert response.json()["error"] == "queue_unavailable"
        assert len(scan_repo.jobs) == 1
        (job,) = scan_repo.jobs.values()
        assert job.status.value == "failed"
