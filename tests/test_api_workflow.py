"""
Workflow API — HTTP contract of /api/v1/projects/<pid>/workflow/<kind>.

Refusals are rendered with the taxonomy code as ``code`` plus
``details.error_kind`` / ``details.recoverable``.
"""

import pytest


def _url(project, kind="timesheet", suffix=""):
    return f"/api/v1/projects/{project.id}/workflow/{kind}{suffix}"


@pytest.fixture()
def ts_id(client, project, users, billing, auth_headers):
    res = client.post(
        _url(project),
        json={"resource_id": billing["alice"].id, "work_date": "2025-01-06", "hours": 7.5},
        headers=auth_headers(users["contributor"]),
    )
    assert res.status_code == 201
    return res.get_json()["entity_id"]


class TestAuthAndHealth:
    def test_health_needs_no_token(self, client):
        assert client.get("/api/v1/health").status_code == 200
        res = client.get("/api/v1/health/live")
        assert res.status_code == 200
        assert res.get_json()["checks"]["database"]["status"] == "ok"

    def test_missing_token(self, client, project):
        res = client.get(_url(project, suffix="/1"))
        assert res.status_code == 401
        body = res.get_json()
        assert body["code"] == "ERR_UNAUTHORIZED"
        assert body["details"]["reason"] == "missing bearer token"

    def test_invalid_token(self, client, project):
        res = client.get(_url(project, suffix="/1"), headers={"Authorization": "Bearer not-a-jwt"})
        assert res.status_code == 401
        assert res.get_json()["details"]["reason"] == "invalid token"


class TestCreate:
    def test_create_returns_entity(self, client, project, users, billing, auth_headers):
        res = client.post(
            _url(project),
            json={"resource_id": billing["alice"].id, "work_date": "2025-01-06", "hours": "8"},
            headers=auth_headers(users["contributor"]),
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["ok"] is True
        assert body["entity"]["status"] == "draft"
        assert body["entity"]["hours"] == 8.0

    def test_viewer_is_refused(self, client, project, users, billing, auth_headers):
        res = client.post(
            _url(project),
            json={"resource_id": billing["alice"].id, "work_date": "2025-01-06", "hours": 8},
            headers=auth_headers(users["viewer"]),
        )
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "InsufficientRole"
        assert body["details"]["error_kind"] == "authorization"
        assert body["details"]["recoverable"] is False

    def test_invalid_fields(self, client, project, users, billing, auth_headers):
        res = client.post(
            _url(project),
            json={"resource_id": billing["alice"].id, "work_date": "06/01/2025", "hours": 30},
            headers=auth_headers(users["contributor"]),
        )
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_CONSTRAINT"
        assert set(body["details"]) == {"work_date", "hours"}

    def test_unknown_kind(self, client, project, users, auth_headers):
        res = client.post(_url(project, kind="spaceship"), json={}, headers=auth_headers(users["admin"]))
        assert res.status_code == 404


class TestReadAndEdit:
    def test_get_with_available_actions(self, client, project, users, ts_id, auth_headers):
        res = client.get(_url(project, suffix=f"/{ts_id}"), headers=auth_headers(users["contributor"]))
        assert res.status_code == 200
        body = res.get_json()
        assert body["entity"]["id"] == ts_id
        assert [a["action"] for a in body["available_actions"]] == ["submit", "edit", "delete"]

    def test_other_project_answers_not_found(self, client, other_project, users, ts_id, auth_headers):
        res = client.get(_url(other_project, suffix=f"/{ts_id}"), headers=auth_headers(users["org_admin"]))
        assert res.status_code == 404
        assert res.get_json()["code"] == "NotFound"

    def test_outsider_is_hidden(self, client, project, users, ts_id, auth_headers):
        res = client.get(_url(project, suffix=f"/{ts_id}"), headers=auth_headers(users["outsider"]))
        assert res.status_code == 403
        assert res.get_json()["code"] == "NotAMember"

    def test_patch(self, client, project, users, ts_id, auth_headers):
        headers = auth_headers(users["contributor"])
        res = client.patch(
            _url(project, suffix=f"/{ts_id}"), json={"hours": 6, "expected_version": 1}, headers=headers
        )
        assert res.status_code == 200
        assert res.get_json()["version"] == 2

        empty = client.patch(_url(project, suffix=f"/{ts_id}"), json={"expected_version": 2}, headers=headers)
        assert empty.status_code == 400

        stale = client.patch(
            _url(project, suffix=f"/{ts_id}"), json={"hours": 5, "expected_version": 1}, headers=headers
        )
        assert stale.status_code == 409
        assert stale.get_json()["code"] == "StaleState"

    def test_history(self, client, project, users, ts_id, auth_headers):
        res = client.get(_url(project, suffix=f"/{ts_id}/history"), headers=auth_headers(users["viewer"]))
        assert res.status_code == 200
        assert [row["action"] for row in res.get_json()["audit"]] == ["create"]


class TestTransitions:
    def _transition(self, client, project, ts_id, headers, **body):
        return client.post(_url(project, suffix=f"/{ts_id}/transition"), json=body, headers=headers)

    def test_submit_then_approve(self, client, project, users, ts_id, auth_headers):
        res = self._transition(
            client, project, ts_id, auth_headers(users["contributor"]), action="submit", expected_version=1
        )
        assert res.status_code == 200
        assert res.get_json()["new_status"] == "submitted"

        res = self._transition(
            client, project, ts_id, auth_headers(users["customer_pm"]), action="approve", expected_version=2
        )
        assert res.status_code == 200
        assert res.get_json()["new_status"] == "approved"

    def test_stale_version_is_recoverable(self, client, project, users, ts_id, auth_headers):
        self._transition(client, project, ts_id, auth_headers(users["contributor"]), action="submit")
        res = self._transition(
            client, project, ts_id, auth_headers(users["customer_pm"]), action="approve", expected_version=1
        )
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "StaleState"
        assert body["details"]["error_kind"] == "concurrency"
        assert body["details"]["recoverable"] is True

    def test_illegal_transition(self, client, project, users, ts_id, auth_headers):
        res = self._transition(client, project, ts_id, auth_headers(users["customer_pm"]), action="approve")
        assert res.status_code == 409
        body = res.get_json()
        assert body["code"] == "IllegalTransition"
        assert body["details"]["current_status"] == "draft"

    def test_reject_needs_reason(self, client, project, users, ts_id, auth_headers):
        self._transition(client, project, ts_id, auth_headers(users["contributor"]), action="submit")
        res = self._transition(client, project, ts_id, auth_headers(users["customer_pm"]), action="reject")
        assert res.status_code == 422
        assert res.get_json()["code"] == "ReasonRequired"

    def test_wrong_side(self, client, project, users, ts_id, auth_headers):
        self._transition(client, project, ts_id, auth_headers(users["contributor"]), action="submit")
        res = self._transition(client, project, ts_id, auth_headers(users["supplier_pm"]), action="approve")
        assert res.status_code == 403
        assert res.get_json()["code"] == "WrongChargeabilitySide"

    def test_action_required(self, client, project, users, ts_id, auth_headers):
        res = self._transition(client, project, ts_id, auth_headers(users["admin"]))
        assert res.status_code == 400

    def test_bad_expected_version(self, client, project, users, ts_id, auth_headers):
        res = self._transition(
            client, project, ts_id, auth_headers(users["admin"]), action="submit", expected_version="two"
        )
        assert res.status_code == 400

    def test_reject_and_reopen(self, client, project, users, ts_id, auth_headers):
        self._transition(client, project, ts_id, auth_headers(users["contributor"]), action="submit")
        self._transition(
            client, project, ts_id, auth_headers(users["customer_pm"]), action="reject", reason="Wrong day"
        )
        res = client.post(_url(project, suffix=f"/{ts_id}/reopen"), headers=auth_headers(users["contributor"]))
        assert res.status_code == 201
        body = res.get_json()
        assert body["entity"]["supersedes_id"] == ts_id
        assert body["entity"]["status"] == "draft"


class TestBatchAndDelete:
    def test_batch_transition(self, client, project, users, billing, auth_headers, make_timesheet):
        one = make_timesheet(billing["alice"], "2025-01-06", 8, status="submitted")
        two = make_timesheet(billing["bob"], "2025-01-07", 8, status="approved")
        res = client.post(
            _url(project, suffix="/batch-transition"),
            json={"ids": [one.id, two.id], "action": "approve"},
            headers=auth_headers(users["customer_pm"]),
        )
        assert res.status_code == 200
        body = res.get_json()
        assert [r["entity_id"] for r in body["success"]] == [one.id]
        assert [r["error"]["code"] for r in body["errors"]] == ["IllegalTransition"]

    def test_batch_requires_integer_ids(self, client, project, users, auth_headers):
        res = client.post(
            _url(project, suffix="/batch-transition"),
            json={"ids": ["a"], "action": "approve"},
            headers=auth_headers(users["customer_pm"]),
        )
        assert res.status_code == 400

    def test_delete_own_draft(self, client, project, users, ts_id, auth_headers):
        res = client.delete(
            _url(project, suffix=f"/{ts_id}?expected_version=1"), headers=auth_headers(users["contributor"])
        )
        assert res.status_code == 200

        gone = client.get(_url(project, suffix=f"/{ts_id}"), headers=auth_headers(users["admin"]))
        assert gone.status_code == 404

    def test_delete_someone_elses_draft(self, client, project, users, ts_id, auth_headers):
        res = client.delete(_url(project, suffix=f"/{ts_id}"), headers=auth_headers(users["contributor2"]))
        assert res.status_code == 403
        assert res.get_json()["code"] == "NotOwnerOrWrongState"
