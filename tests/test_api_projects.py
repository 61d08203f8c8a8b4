"""
Tests — project API.

Covers:
    - project CRUD + validation
    - playwright_config merge and effective defaults
    - init-playwright folder layout
    - tags (project + global, fallback from test cases)
    - health and JSON error handlers
"""

import os

from conftest import _create_project, _create_test_case
from testmanager.models import db
from testmanager.services import user_service


class TestProjectCRUD:
    def test_create_and_get(self, client):
        p = _create_project(client, description="Web shop")
        assert p["environment"] == "development"
        assert p["playwright_config"]["browser"] == "chromium"
        assert p["playwright_config"]["base_url"] == "https://shop.example.com"

        res = client.get(f"/api/v1/projects/{p['id']}")
        assert res.status_code == 200
        body = res.get_json()
        assert body["test_case_count"] == 0
        assert body["fixture_count"] == 0

    def test_create_requires_name(self, client):
        res = client.post("/api/v1/projects", json={"url": "https://x"})
        assert res.status_code == 422

    def test_non_object_body(self, client):
        res = client.post("/api/v1/projects", json=["not", "an", "object"])
        assert res.status_code == 400

    def test_duplicate_name_conflicts(self, client):
        _create_project(client)
        res = client.post("/api/v1/projects", json={"name": "Shop"})
        assert res.status_code == 409

    def test_invalid_environment(self, client):
        res = client.post("/api/v1/projects", json={"name": "X", "environment": "moon"})
        assert res.status_code == 422

    def test_invalid_playwright_config(self, client):
        res = client.post("/api/v1/projects", json={
            "name": "X", "playwright_config": {"browser": "netscape"},
        })
        assert res.status_code == 422
        res = client.post("/api/v1/projects", json={
            "name": "Y", "playwright_config": {"colour": "blue"},
        })
        assert res.status_code == 422

    def test_update_merges_config(self, client):
        p = _create_project(client, playwright_config={"retries": 2})
        res = client.put(f"/api/v1/projects/{p['id']}", json={
            "playwright_config": {"browser": "firefox", "timeout": "5000"},
        })
        assert res.status_code == 200
        cfg = res.get_json()["playwright_config"]
        assert cfg["browser"] == "firefox"
        assert cfg["timeout"] == 5000
        assert cfg["retries"] == 2

    def test_list_with_search(self, client):
        _create_project(client, name="Shop")
        _create_project(client, name="Admin portal")
        res = client.get("/api/v1/projects?search=portal")
        body = res.get_json()
        assert body["total"] == 1
        assert body["items"][0]["name"] == "Admin portal"

    def test_delete_cascades(self, client):
        p = _create_project(client)
        tc = _create_test_case(client, p["id"])
        res = client.delete(f"/api/v1/projects/{p['id']}")
        assert res.status_code == 200
        assert client.get(f"/api/v1/projects/{p['id']}").status_code == 404
        assert client.get(f"/api/v1/test-cases/{tc['id']}").status_code == 404

    def test_missing_project(self, client):
        res = client.get("/api/v1/projects/999")
        assert res.status_code == 404
        assert "error" in res.get_json()


class TestInitPlaywright:
    def test_creates_folder_layout(self, client, pw_root):
        p = _create_project(client, name="Admin Portal")
        res = client.post(f"/api/v1/projects/{p['id']}/init-playwright")
        assert res.status_code == 200
        body = res.get_json()
        assert body["playwright_project_path"] == "admin-portal"
        root = pw_root / "admin-portal"
        assert (root / "tests").is_dir()
        assert (root / "fixtures" / "index.ts").read_text() == "// Fixtures export file\n"

    def test_create_with_init_flag(self, client, pw_root):
        _create_project(client, playwright_project_path="shop", init_playwright=True)
        assert os.path.isdir(pw_root / "shop" / "fixtures")


class TestTags:
    def test_fallback_to_test_case_tags(self, client):
        p = _create_project(client)
        _create_test_case(client, p["id"], name="A", tags=["smoke", "ui"])
        _create_test_case(client, p["id"], name="B", tags="ui, api")
        res = client.get(f"/api/v1/projects/{p['id']}/tags")
        assert [t["value"] for t in res.get_json()] == ["api", "smoke", "ui"]

    def test_project_tags_override_global(self, client):
        user_service.seed_tags()
        db.session.commit()
        p = _create_project(client)
        res = client.post(f"/api/v1/projects/{p['id']}/tags", json={"value": "smoke", "label": "Quick check"})
        assert res.status_code == 201

        tags = {t["value"]: t["label"] for t in client.get(f"/api/v1/projects/{p['id']}/tags").get_json()}
        assert tags["smoke"] == "Quick check"
        assert tags["regression"] == "Regression"

    def test_duplicate_and_invalid_tag(self, client):
        p = _create_project(client)
        assert client.post(f"/api/v1/projects/{p['id']}/tags", json={"value": "x"}).status_code == 201
        assert client.post(f"/api/v1/projects/{p['id']}/tags", json={"value": "x"}).status_code == 409
        assert client.post(f"/api/v1/projects/{p['id']}/tags", json={"value": "a,b"}).status_code == 422


class TestAppLevel:
    def test_health(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_unknown_api_route(self, client):
        res = client.get("/api/v1/nothing-here")
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nothing-here"

    def test_method_not_allowed(self, client):
        assert client.patch("/api/v1/projects").status_code == 405

    def test_timing_headers(self, client):
        res = client.get("/api/v1/projects", headers={"X-Request-ID": "abc123"})
        assert res.headers["X-Request-ID"] == "abc123"
        assert float(res.headers["X-Request-Duration-Ms"]) >= 0
