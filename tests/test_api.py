"""Tests for the HTTP layer."""

import pytest
from fastapi.testclient import TestClient

from conftest import TENANT_ID
from crm_engine.api import create_app
from crm_engine.api.dependencies import get_db_session, get_notifier


@pytest.fixture
def client(session, notifier):
    """Test client bound to the test session and recording notifier."""
    app = create_app()
    app.dependency_overrides[get_db_session] = lambda: session
    app.dependency_overrides[get_notifier] = lambda: notifier
    return TestClient(app)


@pytest.fixture
def tenant_roles(roles):
    """Default tenant roles keyed by name."""
    return {r.role["name"]: r.role["id"] for r in roles.initialize_tenant_roles(TENANT_ID)}


@pytest.fixture
def admin_headers(roles, tenant_roles, actor):
    roles.assign_role(TENANT_ID, actor.user_id, tenant_roles["ADMIN"])
    return {"X-Tenant-ID": str(TENANT_ID), "X-User-ID": str(actor.user_id)}


@pytest.fixture
def client_headers(roles, tenant_roles, make_user):
    user_id = make_user("Client Carl", email="carl@example.com")
    roles.assign_role(TENANT_ID, user_id, tenant_roles["CLIENT"])
    return {"X-Tenant-ID": str(TENANT_ID), "X-User-ID": str(user_id)}


DOCUMENT_BODY = {
    "title": "Website build",
    "client_id": 101,
    "client_email": "client@example.com",
    "items": [
        {"name": "Design", "quantity": 2, "unit_price": "50", "tax_rate": 10},
        {"item_name": "Hosting", "unit_price": "40", "unit": "pieces"},
    ],
}


class TestHealth:
    def test_probes(self, client):
        assert client.get("/live").json() == {"status": "alive"}
        assert client.get("/ready").json() == {"status": "ready"}
        assert client.get("/health").json()["database"] == "healthy"


class TestHeaders:
    """Test tenant and actor header handling."""

    def test_missing_tenant(self, client, admin_headers):
        response = client.get("/api/v1/roles", headers={"X-User-ID": admin_headers["X-User-ID"]})

        assert response.status_code == 400

    def test_invalid_user(self, client):
        response = client.get(
            "/api/v1/roles", headers={"X-Tenant-ID": str(TENANT_ID), "X-User-ID": "abc"}
        )

        assert response.status_code == 400


class TestModules:
    def test_list_for_clients(self, client, catalog):
        response = client.get("/api/v1/modules", params={"actor_type": "CLIENT"})

        assert response.status_code == 200
        assert all(m["actor_type"] in ("CLIENT", "ALL") for m in response.json())


class TestRoleRoutes:
    """Test role management endpoints."""

    def test_create_and_fetch(self, client, admin_headers):
        response = client.post(
            "/api/v1/roles", json={"role_name": "Support"}, headers=admin_headers
        )

        assert response.status_code == 201
        body = response.json()
        assert body["permissions_seeded"] is True
        role_id = body["role"]["id"]

        fetched = client.get(f"/api/v1/roles/{role_id}", headers=admin_headers).json()
        assert fetched["name"] == "Support"
        assert len(fetched["permissions"]) > 0

    def test_duplicate_is_conflict(self, client, admin_headers):
        client.post("/api/v1/roles", json={"name": "Support"}, headers=admin_headers)

        response = client.post("/api/v1/roles", json={"name": "Support"}, headers=admin_headers)

        assert response.status_code == 409
        assert response.json()["code"] == "CONFLICT"

    def test_list_roles(self, client, admin_headers):
        names = [r["name"] for r in client.get("/api/v1/roles", headers=admin_headers).json()]

        assert names[:3] == ["ADMIN", "CLIENT", "EMPLOYEE"]

    def test_set_permissions_accepts_module_alias(self, client, admin_headers, tenant_roles):
        role_id = tenant_roles["MANAGER"]

        response = client.put(
            f"/api/v1/roles/{role_id}/permissions",
            json={"permissions": [{"module": "settings", "can_view": True, "can_edit": True}]},
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json() == [
            {
                "module_key": "settings",
                "can_view": True,
                "can_add": False,
                "can_edit": True,
                "can_delete": False,
            }
        ]

    def test_empty_permissions_rejected(self, client, admin_headers, tenant_roles):
        response = client.put(
            f"/api/v1/roles/{tenant_roles['MANAGER']}/permissions",
            json={"permissions": []},
            headers=admin_headers,
        )

        assert response.status_code == 400

    def test_system_role_delete_rejected(self, client, admin_headers, tenant_roles):
        response = client.delete(
            f"/api/v1/roles/{tenant_roles['ADMIN']}", headers=admin_headers
        )

        assert response.status_code == 400

    def test_delete_assigned_role_reports_count(
        self, client, admin_headers, tenant_roles, make_user
    ):
        role_id = tenant_roles["MANAGER"]
        for name in ("Ann", "Ben"):
            client.post(
                f"/api/v1/roles/{role_id}/assign",
                json={"user_id": make_user(name)},
                headers=admin_headers,
            )

        response = client.delete(f"/api/v1/roles/{role_id}", headers=admin_headers)

        assert response.status_code == 409
        assert "2" in response.json()["detail"]

    def test_assign_and_unassign(self, client, admin_headers, tenant_roles, make_user):
        user_id = make_user("Ann")
        role_id = tenant_roles["EMPLOYEE"]

        first = client.post(
            f"/api/v1/roles/{role_id}/assign", json={"user_id": user_id}, headers=admin_headers
        )
        second = client.post(
            f"/api/v1/roles/{role_id}/assign", json={"user_id": user_id}, headers=admin_headers
        )
        users = client.get(f"/api/v1/roles/{role_id}/users", headers=admin_headers).json()
        removed = client.delete(
            f"/api/v1/roles/{role_id}/assign/{user_id}", headers=admin_headers
        )

        assert first.json()["changed"] is True
        assert second.json()["changed"] is False
        assert [u["id"] for u in users] == [user_id]
        assert removed.json()["changed"] is True

    def test_user_permissions_of_caller(self, client, client_headers):
        response = client.get("/api/v1/roles/user-permissions", headers=client_headers)

        assert response.status_code == 200
        body = response.json()
        assert [r["name"] for r in body["roles"]] == ["CLIENT"]
        assert body["permissions"]["invoices"]["can_view"] is True
        assert body["permissions"]["invoices"]["can_delete"] is False

    def test_client_cannot_manage_roles(self, client, client_headers):
        response = client.post("/api/v1/roles", json={"name": "Hacker"}, headers=client_headers)

        assert response.status_code == 403
        assert response.json()["code"] == "PERMISSION_DENIED"

    def test_other_users_permissions_need_roles_view(
        self, client, client_headers, admin_headers
    ):
        response = client.get(
            "/api/v1/roles/user-permissions",
            params={"user_id": admin_headers["X-User-ID"]},
            headers=client_headers,
        )

        assert response.status_code == 403


class TestDocumentRoutes:
    """Test document endpoints."""

    def test_create_contract(self, client, admin_headers):
        response = client.post("/api/v1/contracts", json=DOCUMENT_BODY, headers=admin_headers)

        assert response.status_code == 201
        document = response.json()["document"]
        assert document["number"] == "CONT#001"
        assert document["kind"] == "contract"
        assert document["sub_total"] == "150.00"
        assert [i["unit"] for i in document["items"]] == ["Pcs", "Pcs"]

    def test_illegal_transition(self, client, admin_headers):
        created = client.post(
            "/api/v1/contracts", json=DOCUMENT_BODY, headers=admin_headers
        ).json()["document"]

        response = client.put(
            f"/api/v1/contracts/{created['id']}/status",
            json={"status": "Accepted"},
            headers=admin_headers,
        )

        assert response.status_code == 400
        assert response.json()["code"] == "INVALID_TRANSITION"
        assert "Sent" in response.json()["detail"]

    def test_send_and_accept(self, client, admin_headers, notifier):
        created = client.post(
            "/api/v1/contracts", json=DOCUMENT_BODY, headers=admin_headers
        ).json()["document"]

        sent = client.post(f"/api/v1/contracts/{created['id']}/send", headers=admin_headers)
        accepted = client.put(
            f"/api/v1/contracts/{created['id']}/status",
            json={"status": "accepted"},
            headers=admin_headers,
        )

        assert sent.json()["document"]["status"] == "Sent"
        assert accepted.json()["document"]["status"] == "Accepted"
        assert [event for event, _, _ in notifier.sent] == ["contract_sent", "contract_accepted"]

    def test_failed_notification_is_warning(self, client, admin_headers, notifier):
        created = client.post(
            "/api/v1/contracts", json=DOCUMENT_BODY, headers=admin_headers
        ).json()["document"]
        notifier.fail_with = "smtp down"

        response = client.post(
            f"/api/v1/contracts/{created['id']}/send", headers=admin_headers
        )

        assert response.status_code == 200
        assert response.json()["document"]["status"] == "Draft"
        assert response.json()["warnings"]

    def test_not_found(self, client, admin_headers):
        response = client.get("/api/v1/invoices/999", headers=admin_headers)

        assert response.status_code == 404
        assert response.json()["code"] == "NOT_FOUND"

    def test_update_and_delete(self, client, admin_headers):
        created = client.post(
            "/api/v1/estimates", json=DOCUMENT_BODY, headers=admin_headers
        ).json()["document"]

        patched = client.patch(
            f"/api/v1/estimates/{created['id']}",
            json={"discount": 10},
            headers=admin_headers,
        )
        deleted = client.delete(f"/api/v1/estimates/{created['id']}", headers=admin_headers)

        assert patched.json()["document"]["total"] == "135.00"
        assert deleted.status_code == 204
        listed = client.get("/api/v1/estimates", headers=admin_headers).json()
        assert listed["total"] == 0

    def test_convert_estimate(self, client, admin_headers):
        estimate = client.post(
            "/api/v1/estimates", json=DOCUMENT_BODY, headers=admin_headers
        ).json()["document"]

        response = client.post(
            f"/api/v1/estimates/{estimate['id']}/convert-to-invoice", headers=admin_headers
        )

        assert response.status_code == 201
        invoice = response.json()["document"]
        assert invoice["status"] == "Unpaid"
        assert invoice["estimate_id"] == estimate["id"]
        reloaded = client.get(f"/api/v1/estimates/{estimate['id']}", headers=admin_headers)
        assert reloaded.json()["status"] == "Accepted"

    def test_recurring_invoices(self, client, admin_headers):
        body = {
            **DOCUMENT_BODY,
            "billing_frequency": "quarterly",
            "start_date": "2024-01-15",
            "total_count": 2,
        }

        response = client.post("/api/v1/invoices/recurring", json=body, headers=admin_headers)

        assert response.status_code == 201
        issued = [r["document"] for r in response.json()]
        assert [d["issue_date"] for d in issued] == ["2024-01-15", "2024-04-15"]
        assert [d["due_date"] for d in issued] == ["2024-04-14", "2024-07-14"]
        assert all(d["billing_frequency"] == "Quarterly" for d in issued)

    def test_client_can_view_but_not_create_invoices(self, client, client_headers):
        listed = client.get("/api/v1/invoices", headers=client_headers)
        created = client.post("/api/v1/invoices", json=DOCUMENT_BODY, headers=client_headers)

        assert listed.status_code == 200
        assert created.status_code == 403


class TestActivityRoutes:
    def test_lists_document_activity(self, client, admin_headers):
        client.post("/api/v1/contracts", json=DOCUMENT_BODY, headers=admin_headers)

        response = client.get(
            "/api/v1/activities", params={"module": "contracts"}, headers=admin_headers
        )

        assert response.status_code == 200
        assert [a["action"] for a in response.json()["items"]] == ["created"]
