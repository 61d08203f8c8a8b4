"""
Tests — step API (shared by test cases and fixtures).

Covers:
    - add / positional insert / bulk
    - edit (order is not editable), delete closes the gap
    - move, move-up / move-down, duplicate
    - reorder with foreign ids and stale expected_version
"""

import pytest

from conftest import _actions, _add_step, _create_fixture, _create_project, _create_test_case


@pytest.fixture()
def fixture_abc(client):
    p = _create_project(client)
    fx = _create_fixture(client, p["id"], name="Cart")
    steps = [_add_step(client, "fixtures", fx["id"], a) for a in ("A", "B", "C")]
    return fx, steps


def _version_count(client, kind, parent_id):
    return client.get(f"/api/v1/{kind}/{parent_id}/versions").get_json()["total"]


class TestAddSteps:
    def test_add_appends(self, fixture_abc, client):
        fx, steps = fixture_abc
        assert [s["order"] for s in steps] == [0, 1, 2]
        assert _version_count(client, "fixtures", fx["id"]) == 4

    def test_add_at_position(self, fixture_abc, client):
        fx, _ = fixture_abc
        step = _add_step(client, "fixtures", fx["id"], "X", position=1)
        assert step["order"] == 1
        assert _actions(client, "fixtures", fx["id"]) == ["A", "X", "B", "C"]

    def test_action_required(self, fixture_abc, client):
        fx, _ = fixture_abc
        res = client.post(f"/api/v1/fixtures/{fx['id']}/steps", json={"data": "x"})
        assert res.status_code == 400

    def test_unknown_parent(self, client):
        res = client.post("/api/v1/test-cases/999/steps", json={"action": "x"})
        assert res.status_code == 404

    def test_bulk_single_version(self, client):
        p = _create_project(client)
        tc = _create_test_case(client, p["id"])
        res = client.post(f"/api/v1/test-cases/{tc['id']}/steps/bulk", json={
            "steps": [{"action": "one"}, {"action": "two"}, {"action": "three"}],
        })
        assert res.status_code == 201
        body = res.get_json()
        assert len(body["created"]) == 3
        assert [s["order"] for s in body["steps"]] == [0, 1, 2]
        assert _version_count(client, "test-cases", tc["id"]) == 2

    def test_bulk_requires_objects(self, client):
        p = _create_project(client)
        tc = _create_test_case(client, p["id"])
        res = client.post(f"/api/v1/test-cases/{tc['id']}/steps/bulk", json={"steps": ["one"]})
        assert res.status_code == 400


class TestEditDelete:
    def test_update_fields(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        res = client.put(f"/api/v1/steps/{b['id']}", json={"expected": "Cart shows 1 item", "disabled": True})
        assert res.status_code == 200
        body = res.get_json()
        assert body["expected"] == "Cart shows 1 item"
        assert body["disabled"] is True
        assert body["order"] == 1

    def test_order_not_editable(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        res = client.put(f"/api/v1/steps/{a['id']}", json={"order": 2})
        assert res.status_code == 422
        assert _actions(client, "fixtures", fx["id"]) == ["A", "B", "C"]

    def test_delete_middle(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        res = client.delete(f"/api/v1/steps/{b['id']}")
        assert res.status_code == 200
        steps = res.get_json()["steps"]
        assert [(s["action"], s["order"]) for s in steps] == [("A", 0), ("C", 1)]
        assert client.get(f"/api/v1/steps/{b['id']}").status_code == 404

    def test_unknown_step(self, client):
        assert client.put("/api/v1/steps/999", json={"action": "x"}).status_code == 404
        assert client.delete("/api/v1/steps/999").status_code == 404


class TestMoves:
    def test_move_to_front(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        res = client.put(f"/api/v1/steps/{c['id']}/move", json={"position": 0})
        assert res.status_code == 200
        body = res.get_json()
        assert body["step"]["order"] == 0
        assert [(s["action"], s["order"]) for s in body["steps"]] == [("C", 0), ("A", 1), ("B", 2)]

    def test_move_out_of_range(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        before = _version_count(client, "fixtures", fx["id"])
        res = client.put(f"/api/v1/steps/{a['id']}/move", json={"position": 5})
        assert res.status_code == 422
        assert _actions(client, "fixtures", fx["id"]) == ["A", "B", "C"]
        assert _version_count(client, "fixtures", fx["id"]) == before

    def test_move_requires_position(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        assert client.put(f"/api/v1/steps/{a['id']}/move", json={}).status_code == 400

    def test_move_stale_version(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        res = client.put(f"/api/v1/steps/{a['id']}/move", json={"position": 2, "expected_version": 2})
        assert res.status_code == 409
        assert res.get_json()["details"]["current_version"] == 4

    def test_move_up_and_down(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        assert client.post(f"/api/v1/steps/{b['id']}/move-up").status_code == 200
        assert _actions(client, "fixtures", fx["id"]) == ["B", "A", "C"]
        client.post(f"/api/v1/steps/{b['id']}/move-down")
        assert _actions(client, "fixtures", fx["id"]) == ["A", "B", "C"]

    def test_boundary_moves_are_noops(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        before = _version_count(client, "fixtures", fx["id"])
        client.post(f"/api/v1/steps/{a['id']}/move-up")
        client.post(f"/api/v1/steps/{c['id']}/move-down")
        assert _actions(client, "fixtures", fx["id"]) == ["A", "B", "C"]
        assert _version_count(client, "fixtures", fx["id"]) == before

    def test_duplicate(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        res = client.post(f"/api/v1/steps/duplicate/{a['id']}")
        assert res.status_code == 201
        copy = res.get_json()
        assert copy["action"] == "A (Copy)"
        assert copy["order"] == 3


class TestReorder:
    def test_permutation(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        res = client.put(f"/api/v1/fixtures/{fx['id']}/steps/reorder", json={
            "step_ids": [c["id"], a["id"], b["id"]], "expected_version": 4,
        })
        assert res.status_code == 200
        assert [s["action"] for s in res.get_json()["steps"]] == ["C", "A", "B"]

    def test_foreign_step_rejected(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        p2 = _create_project(client, name="Other")
        other = _create_fixture(client, p2["id"])
        x = _add_step(client, "fixtures", other["id"], "X")
        res = client.put(f"/api/v1/fixtures/{fx['id']}/steps/reorder", json={
            "step_ids": [a["id"], b["id"], x["id"]],
        })
        assert res.status_code == 422
        assert res.get_json()["details"]["invalid_step_ids"] == [x["id"]]
        assert _actions(client, "fixtures", fx["id"]) == ["A", "B", "C"]

    def test_stale_reorder(self, fixture_abc, client):
        fx, (a, b, c) = fixture_abc
        res = client.put(f"/api/v1/fixtures/{fx['id']}/steps/reorder", json={
            "step_ids": [c["id"], b["id"], a["id"]], "expected_version": 1,
        })
        assert res.status_code == 409
        assert _actions(client, "fixtures", fx["id"]) == ["A", "B", "C"]

    def test_step_ids_must_be_list(self, fixture_abc, client):
        fx, _ = fixture_abc
        res = client.put(f"/api/v1/fixtures/{fx['id']}/steps/reorder", json={"step_ids": "1,2,3"})
        assert res.status_code == 400
