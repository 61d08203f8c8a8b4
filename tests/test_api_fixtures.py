"""
Tests — fixture API.

Covers:
    - fixture CRUD, type / export_name defaults
    - clone
    - fixture references: same project only, no cycles, cleared on delete
    - generated fixture file + fixtures/index.ts export line
"""

from conftest import _add_step, _create_fixture, _create_project, _create_test_case


class TestFixtureCRUD:
    def test_create_defaults(self, client):
        p = _create_project(client)
        fx = _create_fixture(client, p["id"], name="Logged in user")
        assert fx["type"] == "extend"
        assert fx["export_name"] == "loggedInUser"
        assert fx["version"] == "1.0"

    def test_invalid_type(self, client):
        p = _create_project(client)
        res = client.post(f"/api/v1/projects/{p['id']}/fixtures", json={"name": "x", "type": "global"})
        assert res.status_code == 422

    def test_update_and_versions(self, client):
        p = _create_project(client)
        fx = _create_fixture(client, p["id"])
        res = client.put(f"/api/v1/fixtures/{fx['id']}", json={"type": "inline", "export_name": "bad name"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["type"] == "inline"
        assert body["export_name"] == "loggedInUser"
        versions = client.get(f"/api/v1/fixtures/{fx['id']}/versions").get_json()
        assert versions["total"] == 2

    def test_list_and_search(self, client):
        p = _create_project(client)
        _create_fixture(client, p["id"], name="Admin session")
        _create_fixture(client, p["id"], name="Empty cart")
        res = client.get(f"/api/v1/projects/{p['id']}/fixtures?search=cart").get_json()
        assert [f["name"] for f in res["items"]] == ["Empty cart"]

    def test_clone(self, client):
        p = _create_project(client)
        fx = _create_fixture(client, p["id"], name="Admin session", steps=[{"action": "Log in as admin"}])
        res = client.post(f"/api/v1/fixtures/{fx['id']}/clone")
        assert res.status_code == 201
        copy = res.get_json()
        assert copy["name"] == "Admin session - Copy"
        assert copy["export_name"] == "adminSessionCopy"
        assert [s["action"] for s in copy["steps"]] == ["Log in as admin"]

    def test_delete_clears_references(self, client):
        p = _create_project(client)
        fx = _create_fixture(client, p["id"])
        tc = _create_test_case(client, p["id"])
        step = _add_step(client, "test-cases", tc["id"], "Log in", fixture_ref_id=fx["id"])
        assert client.delete(f"/api/v1/fixtures/{fx['id']}").status_code == 200
        assert client.get(f"/api/v1/steps/{step['id']}").get_json()["fixture_ref_id"] is None


class TestFixtureReferences:
    def test_other_project_rejected(self, client):
        p = _create_project(client)
        other = _create_project(client, name="Other")
        foreign = _create_fixture(client, other["id"])
        tc = _create_test_case(client, p["id"])
        res = client.post(f"/api/v1/test-cases/{tc['id']}/steps", json={
            "action": "Log in", "fixture_ref_id": foreign["id"],
        })
        assert res.status_code == 422

    def test_self_reference_rejected(self, client):
        p = _create_project(client)
        fx = _create_fixture(client, p["id"])
        res = client.post(f"/api/v1/fixtures/{fx['id']}/steps", json={
            "action": "Recurse", "fixture_ref_id": fx["id"],
        })
        assert res.status_code == 422

    def test_transitive_cycle_rejected(self, client):
        p = _create_project(client)
        a = _create_fixture(client, p["id"], name="A")
        b = _create_fixture(client, p["id"], name="B")
        c = _create_fixture(client, p["id"], name="C")
        _add_step(client, "fixtures", a["id"], "call B", fixture_ref_id=b["id"])
        _add_step(client, "fixtures", b["id"], "call C", fixture_ref_id=c["id"])
        res = client.post(f"/api/v1/fixtures/{c['id']}/steps", json={
            "action": "call A", "fixture_ref_id": a["id"],
        })
        assert res.status_code == 422
        assert client.get(f"/api/v1/fixtures/{c['id']}/steps").get_json()["steps"] == []


class TestFixtureFile:
    def test_file_and_index(self, client, pw_root):
        p = _create_project(client, playwright_project_path="shop", init_playwright=True)
        fx = _create_fixture(client, p["id"], name="Logged in user")
        _add_step(client, "fixtures", fx["id"], "Open login", playwright_script="await page.goto('/login');")
        _add_step(client, "fixtures", fx["id"], "Submit")

        fixture_file = pw_root / "shop" / "fixtures" / "logged-in-user.fixture.ts"
        content = fixture_file.read_text()
        assert "export const test = base.extend<{ loggedInUser: void }>({" in content
        assert "await page.goto('/login');" in content
        assert "await use();" in content

        index = (pw_root / "shop" / "fixtures" / "index.ts").read_text()
        line = "export { test as loggedInUser } from './logged-in-user.fixture';"
        assert index.count(line) == 1

    def test_inline_file_endpoint(self, client):
        p = _create_project(client)
        fx = _create_fixture(client, p["id"], name="Accept cookies", type="inline")
        body = client.get(f"/api/v1/fixtures/{fx['id']}/file").get_json()
        assert body["path"] == "fixtures/accept-cookies.fixture.ts"
        assert "export async function acceptCookies(page: Page) {" in body["content"]
        assert "// Add your fixture implementation here" in body["content"]
