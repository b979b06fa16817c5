"""
HTTP surface tests — admins_bp and audit_bp through the Flask test client.

Covers:
  - bearer token required, invalid tokens rejected
  - create / get / update / delete / restore round-trip
  - error mapping (403 self-action, 403 escalation, 404, 409 cycle, 422)
  - decision checks, scopes, hierarchy endpoints
  - audit listing requires settings.view_audit_logs
"""

import pytest


@pytest.fixture()
def org(make_admin, school, branch):
    e1 = make_admin("E1", "entity_admin")
    sub1 = make_admin("SUB1", "sub_entity_admin", parent="E1")
    s1 = make_admin("S1", "school_admin", parent="SUB1")
    b1 = make_admin("B1", "branch_admin", parent="S1")
    return {"E1": e1, "SUB1": sub1, "S1": s1, "B1": b1}


class TestAuth:

    def test_health_is_public(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_missing_token(self, client, org):
        res = client.get("/api/v1/admins")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token(self, client, org):
        res = client.get("/api/v1/admins", headers={"Authorization": "Bearer not.a.jwt"})
        assert res.status_code == 401


class TestAdminsApi:

    def test_list_visible(self, client, org, auth_headers):
        res = client.get("/api/v1/admins", headers=auth_headers(org["B1"]))
        assert res.status_code == 200
        assert [a["id"] for a in res.get_json()["items"]] == ["B1"]

    def test_create_and_get(self, client, org, auth_headers):
        res = client.post("/api/v1/admins", headers=auth_headers(org["E1"]), json={
            "name": "Nia New", "email": "nia@example.com",
            "admin_level": "school_admin", "parent_admin_id": "SUB1",
        })
        assert res.status_code == 201
        new_id = res.get_json()["id"]

        res = client.get(f"/api/v1/admins/{new_id}", headers=auth_headers(org["E1"]))
        assert res.status_code == 200
        assert res.get_json()["email"] == "nia@example.com"

    def test_create_missing_fields(self, client, org, auth_headers):
        res = client.post("/api/v1/admins", headers=auth_headers(org["E1"]), json={"name": "X"})
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"

    def test_create_invalid_email(self, client, org, auth_headers):
        res = client.post("/api/v1/admins", headers=auth_headers(org["E1"]), json={
            "name": "Nia New", "email": "nope", "admin_level": "branch_admin",
        })
        assert res.status_code == 422

    def test_create_escalation(self, client, org, auth_headers):
        res = client.post("/api/v1/admins", headers=auth_headers(org["S1"]), json={
            "name": "Evil Twin", "email": "evil@example.com", "admin_level": "entity_admin",
        })
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_PRIVILEGE_ESCALATION"

    def test_create_duplicate(self, client, org, auth_headers):
        res = client.post("/api/v1/admins", headers=auth_headers(org["E1"]), json={
            "name": "Copy Cat", "email": "b1@example.com", "admin_level": "branch_admin",
        })
        assert res.status_code == 409

    def test_invisible_admin_is_404(self, client, org, auth_headers):
        res = client.get("/api/v1/admins/E1", headers=auth_headers(org["B1"]))
        assert res.status_code == 404

    def test_update(self, client, org, auth_headers):
        res = client.put("/api/v1/admins/S1", headers=auth_headers(org["SUB1"]),
                         json={"name": "Sam Updated"})
        assert res.status_code == 200
        assert res.get_json()["name"] == "Sam Updated"

    def test_self_deactivate_forbidden(self, client, org, auth_headers):
        res = client.delete("/api/v1/admins/E1", headers=auth_headers(org["E1"]))
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_SELF_ACTION"
        assert body["error"] == "You cannot deactivate your own account"

    def test_delete_and_restore(self, client, org, auth_headers):
        headers = auth_headers(org["E1"])
        res = client.delete("/api/v1/admins/S1", headers=headers)
        assert res.status_code == 200
        assert res.get_json()["is_active"] is False

        res = client.get("/api/v1/admins/B1", headers=headers)
        assert res.get_json()["parent_admin_id"] == "SUB1"

        res = client.post("/api/v1/admins/S1/restore", headers=headers)
        assert res.get_json()["is_active"] is True

    def test_permissions_endpoint(self, client, org, auth_headers):
        res = client.get("/api/v1/admins/S1/permissions", headers=auth_headers(org["E1"]))
        perms = res.get_json()["permissions"]
        assert perms["users"]["create_branch_admin"] is True
        assert perms["organization"]["view_all_schools"] is False


class TestDecisionChecks:

    def test_can_modify(self, client, org, auth_headers):
        res = client.get("/api/v1/admins/S1/can-modify", headers=auth_headers(org["B1"]))
        assert res.get_json()["allowed"] is False
        res = client.get("/api/v1/admins/B1/can-modify?intent=deactivate",
                         headers=auth_headers(org["S1"]))
        assert res.get_json() == {"allowed": True, "reason": None}

    def test_can_modify_unknown_intent(self, client, org, auth_headers):
        res = client.get("/api/v1/admins/B1/can-modify?intent=explode",
                         headers=auth_headers(org["S1"]))
        assert res.status_code == 422

    def test_can_assign(self, client, org, auth_headers):
        res = client.get("/api/v1/permissions/can-assign?level=entity_admin",
                         headers=auth_headers(org["S1"]))
        assert res.get_json()["allowed"] is False
        res = client.get("/api/v1/permissions/can-assign?level=branch_admin",
                         headers=auth_headers(org["S1"]))
        assert res.get_json()["allowed"] is True


class TestScopesAndHierarchyApi:

    def test_scope_round_trip(self, client, org, auth_headers, school):
        headers = auth_headers(org["E1"])
        res = client.post("/api/v1/admins/S1/scopes", headers=headers,
                          json={"scope_type": "school", "scope_id": school.id})
        assert res.status_code == 201
        assignment_id = res.get_json()["id"]

        res = client.get("/api/v1/admins/S1/scopes", headers=headers)
        assert [s["id"] for s in res.get_json()["items"]] == [assignment_id]

        res = client.delete(f"/api/v1/admins/S1/scopes/{assignment_id}", headers=headers)
        assert res.status_code == 200
        res = client.get("/api/v1/admins/S1/scopes", headers=headers)
        assert res.get_json()["items"] == []

    def test_scope_for_entity_admin_is_noop(self, client, org, auth_headers, school):
        make = client.post("/api/v1/admins", headers=auth_headers(org["E1"]), json={
            "name": "Second Entity", "email": "e2@example.com", "admin_level": "entity_admin",
        })
        e2 = make.get_json()["id"]
        res = client.post(f"/api/v1/admins/{e2}/scopes", headers=auth_headers(org["E1"]),
                          json={"scope_type": "school", "scope_id": school.id})
        assert res.status_code == 200

    def test_unparseable_scope_expiry_is_422(self, client, org, auth_headers, school):
        res = client.post("/api/v1/admins/S1/scopes", headers=auth_headers(org["E1"]), json={
            "scope_type": "school", "scope_id": school.id, "expires_at": "2020-13-45",
        })
        assert res.status_code == 422
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"expires_at": "2020-13-45"}
        res = client.get("/api/v1/admins/S1/scopes", headers=auth_headers(org["E1"]))
        assert res.get_json()["items"] == []

    def test_unparseable_expiry_at_creation_is_422(self, client, org, auth_headers, school):
        res = client.post("/api/v1/admins", headers=auth_headers(org["E1"]), json={
            "name": "Tia Temp", "email": "tia@example.com", "admin_level": "school_admin",
            "scopes": [{"scope_type": "school", "scope_id": school.id, "expires_at": "soon"}],
        })
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_scope_expiry_round_trip(self, client, org, auth_headers, school):
        res = client.post("/api/v1/admins/S1/scopes", headers=auth_headers(org["E1"]), json={
            "scope_type": "school", "scope_id": school.id, "expires_at": "2099-06-30T12:00:00Z",
        })
        assert res.status_code == 201
        assert res.get_json()["expires_at"].startswith("2099-06-30T12:00:00")

    def test_school_admin_cannot_scope_outside_own_school(self, client, org, auth_headers, branch):
        res = client.post("/api/v1/admins/B1/scopes", headers=auth_headers(org["S1"]),
                          json={"scope_type": "branch", "scope_id": branch.id})
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"

    def test_grant_escalation_lists_flags(self, client, org, auth_headers):
        res = client.put("/api/v1/admins/S1", headers=auth_headers(org["SUB1"]), json={
            "permissions": {"settings": {"manage_company_settings": True}},
        })
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_PRIVILEGE_ESCALATION"
        assert body["details"] == {"permissions": ["settings.manage_company_settings"]}

    def test_cycle_is_409(self, client, org, auth_headers):
        res = client.put("/api/v1/admins/S1/parent", headers=auth_headers(org["E1"]),
                         json={"parent_admin_id": "B1"})
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_HIERARCHY_CYCLE"

    def test_ancestors_and_descendants(self, client, org, auth_headers):
        headers = auth_headers(org["E1"])
        res = client.get("/api/v1/admins/B1/ancestors", headers=headers)
        assert [a["id"] for a in res.get_json()["items"]] == ["E1", "SUB1", "S1", "B1"]
        res = client.get("/api/v1/admins/SUB1/descendants", headers=headers)
        assert {a["id"] for a in res.get_json()["items"]} == {"S1", "B1"}

    def test_hierarchy_views(self, client, org, auth_headers):
        headers = auth_headers(org["E1"])
        assert client.get("/api/v1/hierarchy", headers=headers).get_json()["roots"][0]["admin"]["id"] == "E1"
        assert client.get("/api/v1/hierarchy/stats", headers=headers).get_json()["total_admins"] == 4
        assert client.get("/api/v1/hierarchy/integrity", headers=headers).get_json()["valid"] is True


class TestAuditApi:

    def test_audit_requires_permission(self, client, org, auth_headers):
        res = client.get("/api/v1/audit", headers=auth_headers(org["B1"]))
        assert res.status_code == 403

    def test_audit_listing_and_summary(self, client, org, auth_headers):
        headers = auth_headers(org["E1"])
        client.put("/api/v1/admins/S1", headers=headers, json={"name": "Sam Audited"})

        res = client.get("/api/v1/audit?action_type=admin_modified", headers=headers)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 1
        assert body["logs"][0]["target_id"] == "S1"

        summary = client.get("/api/v1/audit/summary", headers=headers).get_json()
        assert summary["total_actions"] == 1

        trail = client.get("/api/v1/audit/trail/administrator/S1", headers=headers).get_json()
        assert len(trail["items"]) == 1

        hits = client.get("/api/v1/audit/search?q=audited", headers=headers).get_json()
        assert len(hits["items"]) == 1

    def test_search_requires_text(self, client, org, auth_headers):
        res = client.get("/api/v1/audit/search", headers=auth_headers(org["E1"]))
        assert res.status_code == 400


class TestRateLimitKey:

    def test_key_prefers_company(self, app):
        from flask import g

        from orgadmin.middleware.rate_limiter import company_rate_limit_key

        with app.test_request_context("/api/v1/admins", environ_base={"REMOTE_ADDR": "10.1.1.1"}):
            g.company_id = None
            assert company_rate_limit_key() == "10.1.1.1"
            g.company_id = 7
            assert company_rate_limit_key() == "company:7"
