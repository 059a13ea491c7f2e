import asyncio

import pytest
from fastapi.testclient import TestClient

from batch_alert.core.config import get_settings
from batch_alert.core.sessions import session_registry
from batch_alert.main import app

PASSWORD = "SecurePass123"


@pytest.fixture(autouse=True)
def users_db(tmp_path, monkeypatch):
    db_path = tmp_path / "users.db"
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{db_path}")
    get_settings.cache_clear()
    yield
    asyncio.run(session_registry.reset())
    get_settings.cache_clear()


def _headers(client: TestClient, email: str, password: str = PASSWORD) -> dict[str, str]:
    response = client.post("/auth/login", json={"email": email, "password": password})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def _bootstrap_admin(client: TestClient) -> dict[str, str]:
    client.post(
        "/auth/register",
        json={"email": "admin@example.com", "full_name": "Avery Admin", "password": PASSWORD},
    )
    return _headers(client, "admin@example.com")


def test_invite_with_temporary_password():
    with TestClient(app) as client:
        admin = _bootstrap_admin(client)

        response = client.post(
            "/api/users/",
            json={
                "email": "designer@example.com",
                "full_name": "Riley Design",
                "role": "design_lead",
                "department": "design",
            },
            headers=admin,
        )
        assert response.status_code == 201
        payload = response.json()
        assert payload["profile"]["role"] == "design_lead"
        temporary_password = payload["temporary_password"]
        assert temporary_password

        designer = _headers(client, "designer@example.com", temporary_password)
        me = client.get("/auth/me", headers=designer).json()
        assert me["capabilities"]["can_manage_webhooks"] is True
        assert me["capabilities"]["can_manage_users"] is False


def test_invite_rejects_duplicate_email():
    with TestClient(app) as client:
        admin = _bootstrap_admin(client)
        body = {
            "email": "lead@example.com",
            "full_name": "Taylor Lead",
            "role": "tech_lead",
            "department": "tech",
            "password": PASSWORD,
        }

        assert client.post("/api/users/", json=body, headers=admin).status_code == 201
        duplicate = client.post("/api/users/", json=body, headers=admin)
        assert duplicate.status_code == 409


def test_user_management_is_admin_only():
    with TestClient(app) as client:
        admin = _bootstrap_admin(client)
        client.post(
            "/api/users/",
            json={
                "email": "pm@example.com",
                "full_name": "Jordan PM",
                "role": "project_lead",
                "department": "marketing",
                "password": PASSWORD,
            },
            headers=admin,
        )
        project_lead = _headers(client, "pm@example.com")

        assert client.get("/api/users/", headers=project_lead).status_code == 403
        forbidden = client.post(
            "/api/users/",
            json={
                "email": "other@example.com",
                "full_name": "Other",
                "role": "admin",
                "department": "tech",
            },
            headers=project_lead,
        )
        assert forbidden.status_code == 403

        listing = client.get("/api/users/", headers=admin)
        assert listing.status_code == 200
        emails = [profile["email"] for profile in listing.json()]
        assert emails == ["pm@example.com", "admin@example.com"]


def test_update_role_and_toggle_activity():
    with TestClient(app) as client:
        admin = _bootstrap_admin(client)
        admin_id = client.get("/auth/me", headers=admin).json()["profile"]["id"]
        invite = client.post(
            "/api/users/",
            json={
                "email": "finance@example.com",
                "full_name": "Casey Finance",
                "role": "project_lead",
                "department": "finance",
                "password": PASSWORD,
            },
            headers=admin,
        )
        profile_id = invite.json()["profile"]["id"]

        updated = client.patch(
            f"/api/users/{profile_id}",
            json={"role": "finance_lead"},
            headers=admin,
        )
        assert updated.status_code == 200
        assert updated.json()["role"] == "finance_lead"
        assert updated.json()["department"] == "finance"

        own = client.post(f"/api/users/{admin_id}/toggle-active", headers=admin)
        assert own.status_code == 422

        deactivated = client.post(f"/api/users/{profile_id}/toggle-active", headers=admin)
        assert deactivated.json()["is_active"] is False
        reactivated = client.post(f"/api/users/{profile_id}/toggle-active", headers=admin)
        assert reactivated.json()["is_active"] is True

        missing = client.patch("/api/users/999", json={"full_name": "Ghost"}, headers=admin)
        assert missing.status_code == 404
