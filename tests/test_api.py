"""HTTP behaviour: session establishment and the three role gates."""

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from app.config import Settings
from app.db.models import AuditLog
from app.main import build_services, create_app
from app.security import Role
from app.services.identity_store import IdentityStore
from conftest import OUTSIDER_EMAIL, STAFF_EMAIL, STUDENT_EMAIL

GATED_ROUTES = {
    "admin": "/api/admin/users",
    "instructor": "/api/instructor/listings",
    "student": "/api/student/profile",
}


def test_health_and_index(client):
    assert client.get("/health").json() == {"status": "ok"}
    assert client.get("/").status_code == 200


@pytest.mark.parametrize("path", [*GATED_ROUTES.values(), "/api/me", "/api/auth/session"])
def test_gated_routes_require_a_session(client, path):
    response = client.get(path)

    assert response.status_code == 401
    assert response.json() == {"status": 401, "message": "Unauthorized: No active session"}


def test_unknown_session_token_is_invalid(client, settings):
    client.cookies.set(settings.session_cookie_name, "momoi_not-a-real-token")

    response = client.get("/api/me")

    assert response.status_code == 401
    assert response.json() == {"status": 401, "message": "Unauthorized: Invalid session"}


def test_student_sign_in_sets_cookie_and_session(client, sign_in, settings):
    response = sign_in(STUDENT_EMAIL, "google-student")

    assert response.status_code == 200
    body = response.json()
    assert body["user"]["role"] == "STUDENT"
    assert body["user"]["email"] == STUDENT_EMAIL
    assert settings.session_cookie_name in response.cookies
    set_cookie = response.headers["set-cookie"].lower()
    assert "httponly" in set_cookie
    assert "samesite=lax" in set_cookie

    current = client.get("/api/auth/session")
    assert current.status_code == 200
    assert current.json()["user"] == body["user"]
    assert current.json()["session"]["id"] == body["session"]["id"]


def test_repeat_sign_in_keeps_platform_id(client, sign_in):
    first = sign_in(STUDENT_EMAIL, "google-repeat").json()
    second = sign_in(STUDENT_EMAIL, "google-repeat").json()

    assert first["user"]["id"] == second["user"]["id"]
    assert first["session"]["id"] != second["session"]["id"]


@pytest.mark.parametrize("email", [OUTSIDER_EMAIL, STAFF_EMAIL])
def test_refused_sign_in_is_generic(client, sign_in, settings, email):
    response = sign_in(email, "google-refused")

    assert response.status_code == 401
    assert response.json() == {"status": 401, "message": "Unauthorized"}
    assert settings.session_cookie_name not in response.cookies


def test_listed_instructor_signs_in_once(client, sign_in, add_listing):
    add_listing(STAFF_EMAIL)

    assert sign_in(STAFF_EMAIL, "google-prof").json()["user"]["role"] == "INSTRUCTOR"
    assert sign_in(STAFF_EMAIL, "google-impostor").status_code == 401
    assert sign_in(STAFF_EMAIL, "google-prof").status_code == 200


def test_student_gates(client, sign_in):
    sign_in(STUDENT_EMAIL, "google-gates-student")

    assert client.get(GATED_ROUTES["admin"]).json() == {"status": 403, "message": "Forbidden: Admins only"}
    assert client.get(GATED_ROUTES["instructor"]).json() == {
        "status": 403,
        "message": "Forbidden: Instructors and Admins only",
    }
    profile = client.get(GATED_ROUTES["student"])
    assert profile.status_code == 200
    assert profile.json()["student_id"] == "6406021234567"


def test_instructor_gates(client, sign_in, add_listing):
    add_listing(STAFF_EMAIL)
    sign_in(STAFF_EMAIL, "google-gates-instructor")

    assert client.get(GATED_ROUTES["admin"]).status_code == 403
    listings = client.get(GATED_ROUTES["instructor"])
    assert listings.status_code == 200
    item = listings.json()["items"][0]
    assert (item["email"], item["consumed"]) == (STAFF_EMAIL, True)
    assert item["consumed_at"] is not None
    assert client.get(GATED_ROUTES["student"]).json() == {"status": 403, "message": "Forbidden: Students only"}


def test_admin_gates(client, sign_in, add_user):
    add_user("google-gates-admin", Role.ADMIN)
    response = sign_in("dean@itm.kmutnb.ac.th", "google-gates-admin")
    assert response.json()["user"]["role"] == "ADMIN"

    users = client.get(GATED_ROUTES["admin"])
    assert users.status_code == 200
    assert users.json()["count"] == 1
    assert client.get(GATED_ROUTES["instructor"]).status_code == 200
    assert client.get(GATED_ROUTES["student"]).status_code == 403


def test_admin_reads_audit_log(client, sign_in, add_user):
    add_user("google-auditor", Role.ADMIN)
    sign_in("dean@itm.kmutnb.ac.th", "google-auditor")

    response = client.get("/api/admin/audit-logs", params={"action": "session.create"})

    assert response.status_code == 200
    assert response.json()["count"] == 1
    assert response.json()["items"][0]["resource_type"] == "auth_session"


def test_me_reports_actor(client, sign_in):
    sign_in(STUDENT_EMAIL, "google-me")

    body = client.get("/api/me").json()

    assert body["role"] == "STUDENT"
    assert body["subject_id"] == "google-me"


def test_sign_out_revokes_session(client, sign_in, settings):
    sign_in(STUDENT_EMAIL, "google-bye")
    token = client.cookies.get(settings.session_cookie_name)

    response = client.post("/api/auth/sign-out")
    assert response.status_code == 200
    assert response.json() == {"signed_out": True}

    client.cookies.set(settings.session_cookie_name, token)
    assert client.get("/api/me").json()["message"] == "Unauthorized: Invalid session"


def test_session_from_trusted_headers(client, settings):
    response = client.post(
        "/api/auth/session",
        headers={
            settings.identity_email_header: STUDENT_EMAIL,
            settings.identity_subject_header: "google-proxy",
        },
    )

    assert response.status_code == 200
    assert response.json()["user"]["role"] == "STUDENT"
    assert client.get("/api/me").json()["subject_id"] == "google-proxy"


def test_session_without_identity_headers_is_refused(client):
    response = client.post("/api/auth/session")

    assert response.status_code == 401
    assert response.json() == {"status": 401, "message": "Unauthorized"}


def test_dev_sign_in_is_disabled_in_production(tmp_path):
    settings = Settings(
        environment="production",
        database_url=f"sqlite:///{tmp_path / 'prod.db'}",
        enable_autocreate_schema=True,
        session_secret="s" * 48,
        public_base_url="https://momoi.example.com",
    )
    with TestClient(create_app(settings, build_services(settings))) as client:
        response = client.post(
            "/api/auth/sign-in/dev",
            json={"email": STUDENT_EMAIL, "subject_id": "google-prod"},
        )

    assert response.status_code == 404
    assert response.json() == {"status": 404, "message": "Not Found"}


def test_long_request_id_is_clipped_before_auditing(client, services):
    response = client.post(
        "/api/auth/sign-in/dev",
        json={"email": STUDENT_EMAIL, "subject_id": "google-long-rid"},
        headers={"X-Request-Id": "a" * 100},
    )
    assert response.status_code == 200

    with services.session_factory() as session:
        request_ids = session.execute(select(AuditLog.request_id)).scalars().all()
    assert request_ids
    assert set(request_ids) == {"a" * 64}


def test_blank_request_id_gets_a_generated_one(client, services):
    client.post(
        "/api/auth/sign-in/dev",
        json={"email": STUDENT_EMAIL, "subject_id": "google-blank-rid"},
        headers={"X-Request-Id": "   "},
    )

    with services.session_factory() as session:
        request_ids = session.execute(select(AuditLog.request_id)).scalars().all()
    assert request_ids
    assert all(request_id and request_id.strip() for request_id in request_ids)


class _UnreachableStore(IdentityStore):
    def get_user_by_subject(self, db, subject_id):
        raise OperationalError("SELECT platform_users", {}, Exception("could not connect to server"))


def test_storage_outage_answers_503(sign_in, services, monkeypatch):
    monkeypatch.setattr(services.resolver, "store", _UnreachableStore())

    response = sign_in(STUDENT_EMAIL, "google-outage")

    assert response.status_code == 503
    assert response.json() == {"status": 503, "message": "Service temporarily unavailable"}
    assert services.settings.session_cookie_name not in response.cookies


def test_student_id_ignores_email_case(client, sign_in):
    sign_in("S6406021234567@EMAIL.KMUTNB.AC.TH", "google-upper")

    response = client.get(GATED_ROUTES["student"])

    assert response.status_code == 200
    assert response.json()["student_id"] == "6406021234567"


def test_audit_log_filters_by_known_actions_only(client, sign_in, add_user):
    add_user("google-auditor-2", Role.ADMIN)
    sign_in("dean@itm.kmutnb.ac.th", "google-auditor-2")

    listed = client.get("/api/admin/audit-logs", params={"resource_type": "auth_session"})
    assert listed.status_code == 200
    assert [item["action"] for item in listed.json()["items"]] == ["session.create"]
    assert listed.json()["items"][0]["metadata"] == {"subject_id": "google-auditor-2"}

    assert client.get("/api/admin/audit-logs", params={"action": "tenant.delete"}).status_code == 422
