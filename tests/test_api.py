"""
HTTP level tests: authentication, sessions, permission checks and the
error contract of every router.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select, update

from app.features.audit.models import AuditLog, LoginEvent
from app.features.departments.models import Department
from app.features.sessions.models import UserSession
from app.features.users.models import UserStatus
from app.utils import today, utcnow
from tests.conftest import ADMIN_EMAIL, ADMIN_PASSWORD
from tests.factories import get_role_by_name, grant, make_user


async def login(client, email, password, headers=None):
    return await client.post("/api/auth/login", json={"email": email, "password": password}, headers=headers)


async def bearer(client, email, password="password123") -> dict:
    response = await login(client, email, password)
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['token']}"}


async def user_with_role(session_factory, role_name, email, status=UserStatus.ACTIVE) -> str:
    async with session_factory() as db:
        user = await make_user(db, email=email, status=status)
        if role_name:
            await grant(db, user, await get_role_by_name(db, role_name))
        await db.commit()
        return user.id


async def login_events(session_factory) -> list[LoginEvent]:
    async with session_factory() as db:
        result = await db.execute(select(LoginEvent).order_by(LoginEvent.occurred_at))
        return list(result.scalars().all())


# ==================== Authentication ====================


async def test_health(client):
    response = await client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


async def test_admin_login(client, seeded, session_factory):
    response = await login(client, ADMIN_EMAIL, ADMIN_PASSWORD)

    assert response.status_code == 200
    body = response.json()
    assert body["token_type"] == "bearer"
    assert body["principal"]["user"]["email"] == ADMIN_EMAIL
    assert "Administrator" in [role["name"] for role in body["principal"]["roles"]]
    assert "department:delete" in [p["action"] for p in body["principal"]["permissions"]]

    events = await login_events(session_factory)
    assert len(events) == 1
    assert events[0].success
    assert events[0].user_id == seeded["admin_id"]
    assert events[0].ip_address == "127.0.0.1"


async def test_login_email_is_case_insensitive(client, seeded):
    response = await login(client, ADMIN_EMAIL.upper(), ADMIN_PASSWORD)

    assert response.status_code == 200


async def test_wrong_password(client, seeded, session_factory):
    response = await login(client, ADMIN_EMAIL, "wrong-password")

    assert response.status_code == 401
    assert response.json() == {"error": "Invalid email or password"}
    assert response.headers["www-authenticate"] == "Bearer"

    events = await login_events(session_factory)
    assert len(events) == 1
    assert not events[0].success
    assert events[0].user_id == seeded["admin_id"]
    assert events[0].failure_reason == "Invalid password"


async def test_unknown_email(client, seeded, session_factory):
    response = await login(client, "nobody@company.com", "whatever")

    assert response.status_code == 401
    assert response.json()["error"] == "Invalid email or password"

    events = await login_events(session_factory)
    assert events[0].user_id is None
    assert events[0].failure_reason == "Invalid email"


@pytest.mark.parametrize("status", [UserStatus.INACTIVE, UserStatus.BLOCKED, UserStatus.PENDING])
async def test_inactive_account_cannot_login(client, seeded, session_factory, status):
    await user_with_role(session_factory, "Viewer", "former@company.com", status=status)

    response = await login(client, "former@company.com", "password123")

    assert response.status_code == 403
    assert response.json()["error"] == "Account is not active. Please contact administrator."
    events = await login_events(session_factory)
    assert events[-1].failure_reason == f"Account status: {status.value}"


async def test_unparseable_forwarded_address_is_stored_as_null(client, seeded, session_factory):
    response = await login(client, ADMIN_EMAIL, ADMIN_PASSWORD, headers={"X-Forwarded-For": "not-an-ip"})

    assert response.status_code == 200
    events = await login_events(session_factory)
    assert events[0].ip_address is None


async def test_zone_scoped_forwarded_address_is_stored_as_null(client, seeded, session_factory):
    forwarded = "fe80::1%" + "x" * 60

    response = await login(client, ADMIN_EMAIL, ADMIN_PASSWORD, headers={"X-Forwarded-For": forwarded})

    assert response.status_code == 200
    events = await login_events(session_factory)
    assert events[0].ip_address is None
    async with session_factory() as db:
        session = (await db.execute(select(UserSession))).scalar_one()
        assert session.ip_address is None


async def test_forwarded_address_first_hop(client, seeded, session_factory):
    await login(client, ADMIN_EMAIL, ADMIN_PASSWORD, headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

    events = await login_events(session_factory)
    assert events[0].ip_address == "203.0.113.9"


async def test_login_validation(client):
    response = await client.post("/api/auth/login", json={"email": ""})

    assert response.status_code == 400
    body = response.json()
    assert body["error"] == "Validation failed"
    assert "password" in body["fields"]


# ==================== Sessions ====================


async def test_missing_token(client):
    response = await client.get("/api/auth/me")

    assert response.status_code == 401
    assert response.json() == {"error": "Not authenticated"}


async def test_garbage_token(client):
    response = await client.get("/api/auth/me", headers={"Authorization": "Bearer garbage"})

    assert response.status_code == 401


async def test_me_and_session_status(client, admin_headers):
    me = await client.get("/api/auth/me", headers=admin_headers)
    status = await client.get("/api/auth/session", headers=admin_headers)

    assert me.status_code == 200
    assert me.json()["user"]["email"] == ADMIN_EMAIL
    assert status.status_code == 200
    assert status.json()["authenticated"] is True
    assert status.json()["remaining_seconds"] > 0


async def test_idle_session_expires(client, admin_headers, session_factory):
    async with session_factory() as db:
        await db.execute(update(UserSession).values(last_activity_at=utcnow() - timedelta(hours=2)))
        await db.commit()

    response = await client.get("/api/auth/me", headers=admin_headers)

    assert response.status_code == 401
    assert response.json()["error"] == "Your session has expired. Please log in again."
    async with session_factory() as db:
        session = (await db.execute(select(UserSession))).scalar_one()
        assert session.end_reason == "expired"
        assert session.ended_at is not None


async def test_session_status_does_not_extend_session(client, admin_headers, session_factory):
    idle_since = utcnow() - timedelta(minutes=20)
    async with session_factory() as db:
        await db.execute(update(UserSession).values(last_activity_at=idle_since))
        await db.commit()

    first = await client.get("/api/auth/session", headers=admin_headers)
    second = await client.get("/api/auth/session", headers=admin_headers)

    assert first.status_code == 200
    assert first.json()["timeout_seconds"] == 1800
    assert 590 <= first.json()["remaining_seconds"] <= 600
    assert second.json()["remaining_seconds"] <= first.json()["remaining_seconds"]
    async with session_factory() as db:
        session = (await db.execute(select(UserSession))).scalar_one()
        assert session.last_activity_at == idle_since


async def test_session_status_reports_expiry(client, admin_headers, session_factory):
    async with session_factory() as db:
        await db.execute(update(UserSession).values(last_activity_at=utcnow() - timedelta(minutes=31)))
        await db.commit()

    response = await client.get("/api/auth/session", headers=admin_headers)

    assert response.status_code == 401
    assert response.json()["error"] == "Your session has expired. Please log in again."
    async with session_factory() as db:
        session = (await db.execute(select(UserSession))).scalar_one()
        assert session.end_reason == "expired"


async def test_activity_extends_session(client, admin_headers, session_factory):
    past = utcnow() - timedelta(minutes=10)
    async with session_factory() as db:
        await db.execute(update(UserSession).values(last_activity_at=past))
        await db.commit()

    response = await client.post("/api/auth/activity", headers=admin_headers)

    assert response.status_code == 200
    async with session_factory() as db:
        session = (await db.execute(select(UserSession))).scalar_one()
        assert session.last_activity_at > past


async def test_logout_ends_session(client, admin_headers, session_factory):
    response = await client.post("/api/auth/logout", headers=admin_headers)
    assert response.status_code == 200

    after = await client.get("/api/auth/me", headers=admin_headers)
    assert after.status_code == 401

    async with session_factory() as db:
        session = (await db.execute(select(UserSession))).scalar_one()
        assert session.end_reason == "logout"
        entries = (await db.execute(select(AuditLog.action))).scalars().all()
        assert "logout" in entries


# ==================== Permissions ====================


async def test_viewer_can_read_but_not_write(client, seeded, session_factory):
    await user_with_role(session_factory, "Viewer", "viewer@company.com")
    headers = await bearer(client, "viewer@company.com")

    listed = await client.get("/api/departments/", headers=headers)
    created = await client.post("/api/departments/", json={"name": "Finance", "code": "FIN"}, headers=headers)
    audit = await client.get("/api/audit-logs", headers=headers)

    assert listed.status_code == 200
    assert created.status_code == 403
    assert created.json() == {"error": "Permission denied: department:create"}
    assert audit.status_code == 403


async def test_user_without_roles_is_denied(client, seeded, session_factory):
    await user_with_role(session_factory, None, "norole@company.com")
    headers = await bearer(client, "norole@company.com")

    response = await client.get("/api/users/", headers=headers)

    assert response.status_code == 403


async def test_revoked_role_takes_effect_on_next_request(client, admin_headers, session_factory):
    user_id = await user_with_role(session_factory, "Viewer", "revoked@company.com")
    headers = await bearer(client, "revoked@company.com")
    async with session_factory() as db:
        viewer = await get_role_by_name(db, "Viewer")
    assert (await client.get("/api/departments/", headers=headers)).status_code == 200

    revoked = await client.delete(f"/api/user-roles/{user_id}/{viewer.id}", headers=admin_headers)

    assert revoked.status_code == 200
    assert revoked.json()["valid_to"] == today().isoformat()
    assert (await client.get("/api/departments/", headers=headers)).status_code == 403


# ==================== Departments ====================


async def test_department_code_is_unique_case_insensitively(client, admin_headers):
    first = await client.post("/api/departments/", json={"name": "Human Resources", "code": "HR"}, headers=admin_headers)
    second = await client.post("/api/departments/", json={"name": "Other HR", "code": "hr"}, headers=admin_headers)

    assert first.status_code == 201
    assert first.json()["code"] == "HR"
    assert second.status_code == 409
    assert second.json() == {"error": "Department code already exists", "field": "code"}


async def test_department_validation(client, admin_headers):
    response = await client.post("/api/departments/", json={"name": "X", "code": "a"}, headers=admin_headers)

    assert response.status_code == 400
    assert set(response.json()["fields"]) == {"name", "code"}


async def test_department_with_users_cannot_be_deleted(client, admin_headers, session_factory):
    async with session_factory() as db:
        it = (await db.execute(select(Department).where(Department.code == "IT"))).scalar_one()

    response = await client.delete(f"/api/departments/{it.id}", headers=admin_headers)

    assert response.status_code == 409


async def test_department_crud(client, admin_headers):
    created = await client.post("/api/departments/", json={"name": "Finance", "code": "fin"}, headers=admin_headers)
    department_id = created.json()["id"]

    updated = await client.put(f"/api/departments/{department_id}", json={"name": "Finance Team"}, headers=admin_headers)
    deleted = await client.delete(f"/api/departments/{department_id}", headers=admin_headers)
    missing = await client.get(f"/api/departments/{department_id}", headers=admin_headers)

    assert updated.json()["name"] == "Finance Team"
    assert deleted.status_code == 200
    assert missing.status_code == 404
    assert missing.json() == {"error": "Department not found"}


# ==================== Users ====================


def new_user_payload(**overrides) -> dict:
    payload = {
        "employee_number": "EMP900",
        "name": "Jane Doe",
        "email": "Jane.Doe@Company.com",
        "password": "password123",
        "status": "active",
        "start_date": today().isoformat(),
    }
    payload.update(overrides)
    return payload


async def test_create_user(client, admin_headers, session_factory):
    response = await client.post("/api/users/", json=new_user_payload(), headers=admin_headers)

    assert response.status_code == 201
    body = response.json()
    assert body["email"] == "jane.doe@company.com"
    assert body["employment"]["start_date"] == today().isoformat()
    assert "password_hash" not in body

    duplicate = await client.post(
        "/api/users/", json=new_user_payload(employee_number="EMP901"), headers=admin_headers
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["field"] == "email"

    async with session_factory() as db:
        actions = (await db.execute(select(AuditLog.action))).scalars().all()
    assert actions.count("user_created") == 1


async def test_create_user_rejects_end_before_start(client, admin_headers):
    payload = new_user_payload(end_date=(today() - timedelta(days=1)).isoformat())

    response = await client.post("/api/users/", json=payload, headers=admin_headers)

    assert response.status_code == 400


async def test_block_requires_reason(client, admin_headers, session_factory):
    user_id = await user_with_role(session_factory, "Viewer", "blockme@company.com")

    missing = await client.post(f"/api/users/{user_id}/block", json={}, headers=admin_headers)
    blocked = await client.post(
        f"/api/users/{user_id}/block", json={"reason": "Policy violation"}, headers=admin_headers
    )

    assert missing.status_code == 400
    assert missing.json()["field"] == "reason"
    assert blocked.status_code == 200
    assert blocked.json()["status"] == "blocked"

    async with session_factory() as db:
        entries = (await db.execute(
            select(AuditLog).where(AuditLog.action == "user_blocked", AuditLog.target_user_id == user_id)
        )).scalars().all()
    assert len(entries) == 1
    assert "Policy violation" in entries[0].details


async def test_blocked_user_session_is_revoked(client, admin_headers, session_factory):
    user_id = await user_with_role(session_factory, "Viewer", "kicked@company.com")
    headers = await bearer(client, "kicked@company.com")

    await client.post(f"/api/users/{user_id}/block", json={"reason": "Left the company"}, headers=admin_headers)
    response = await client.get("/api/departments/", headers=headers)

    assert response.status_code == 401


async def test_status_change_through_update(client, admin_headers, session_factory):
    user_id = await user_with_role(session_factory, "Viewer", "status@company.com")

    without_reason = await client.put(f"/api/users/{user_id}", json={"status": "blocked"}, headers=admin_headers)
    with_reason = await client.put(
        f"/api/users/{user_id}", json={"status": "blocked", "reason": "Audit finding"}, headers=admin_headers
    )

    assert without_reason.status_code == 400
    assert with_reason.status_code == 200
    assert with_reason.json()["status"] == "blocked"


@pytest.mark.parametrize("field", ["name", "email", "employee_number"])
async def test_update_rejects_null_for_required_fields(client, admin_headers, session_factory, field):
    user_id = await user_with_role(session_factory, "Viewer", "nulls@company.com")

    response = await client.put(f"/api/users/{user_id}", json={field: None}, headers=admin_headers)

    assert response.status_code == 400
    assert field in response.json()["fields"]
    unchanged = await client.get(f"/api/users/{user_id}", headers=admin_headers)
    assert unchanged.json()["email"] == "nulls@company.com"


async def test_soft_and_permanent_delete(client, admin_headers, session_factory):
    user_id = await user_with_role(session_factory, "Viewer", "leaver@company.com")

    soft = await client.delete(f"/api/users/{user_id}", headers=admin_headers)
    assert soft.json()["permanent"] is False
    assert (await client.get(f"/api/users/{user_id}", headers=admin_headers)).json()["status"] == "inactive"

    hard = await client.delete(f"/api/users/{user_id}?permanent=true", headers=admin_headers)
    assert hard.status_code == 200
    assert hard.json()["roles_removed"] == 1
    assert (await client.get(f"/api/users/{user_id}", headers=admin_headers)).status_code == 404


async def test_admin_cannot_deactivate_itself(client, admin_headers, seeded):
    response = await client.delete(f"/api/users/{seeded['admin_id']}", headers=admin_headers)

    assert response.status_code == 400


# ==================== Roles ====================


async def test_role_assignment_conflicts(client, admin_headers, session_factory):
    user_id = await user_with_role(session_factory, None, "assignee@company.com")
    async with session_factory() as db:
        auditor = await get_role_by_name(db, "Auditor")

    payload = {"user_id": user_id, "role_id": auditor.id}
    first = await client.post("/api/user-roles/", json=payload, headers=admin_headers)
    again = await client.post("/api/user-roles/", json=payload, headers=admin_headers)
    revoked = await client.delete(f"/api/user-roles/{user_id}/{auditor.id}", headers=admin_headers)
    revoked_again = await client.delete(f"/api/user-roles/{user_id}/{auditor.id}", headers=admin_headers)
    history = await client.get(f"/api/user-roles/{user_id}?include_history=true", headers=admin_headers)

    assert first.status_code == 201
    assert first.json()["is_current"] is True
    assert again.status_code == 409
    assert again.json()["error"] == "User already has this role"
    assert revoked.status_code == 200
    assert revoked_again.status_code == 404
    assert revoked_again.json()["error"] == "Active role assignment not found"
    assert len(history.json()) == 1
    assert history.json()[0]["is_current"] is False


async def test_role_held_by_users_cannot_be_deleted(client, admin_headers, session_factory):
    async with session_factory() as db:
        administrator = await get_role_by_name(db, "Administrator")

    response = await client.delete(f"/api/roles/{administrator.id}", headers=admin_headers)

    assert response.status_code == 409


async def test_role_rename_is_stripped(client, admin_headers, session_factory):
    created = await client.post("/api/roles/", json={"name": "Ops"}, headers=admin_headers)
    role_id = created.json()["id"]

    renamed = await client.put(f"/api/roles/{role_id}", json={"name": "  Operations  "}, headers=admin_headers)
    clash = await client.put(f"/api/roles/{role_id}", json={"name": "  viewer "}, headers=admin_headers)
    too_short = await client.put(f"/api/roles/{role_id}", json={"name": "  x  "}, headers=admin_headers)

    assert renamed.status_code == 200
    assert renamed.json()["name"] == "Operations"
    assert clash.status_code == 409
    assert too_short.status_code == 400


async def test_create_role_with_permissions(client, admin_headers):
    permissions = (await client.get("/api/permissions/", headers=admin_headers)).json()
    read_ids = [p["id"] for p in permissions if p["action"].endswith(":read")]

    created = await client.post(
        "/api/roles/", json={"name": "Readers", "permission_ids": read_ids}, headers=admin_headers
    )
    duplicate = await client.post("/api/roles/", json={"name": "readers"}, headers=admin_headers)

    assert created.status_code == 201
    assert sorted(p["id"] for p in created.json()["permissions"]) == sorted(read_ids)
    assert duplicate.status_code == 409


# ==================== Audit ====================


async def test_audit_export(client, admin_headers):
    await client.post("/api/departments/", json={"name": "Finance", "code": "FIN"}, headers=admin_headers)

    csv_response = await client.get("/api/audit-export?format=csv", headers=admin_headers)
    xlsx_response = await client.get("/api/audit-export?format=xlsx", headers=admin_headers)
    bad_format = await client.get("/api/audit-export?format=pdf", headers=admin_headers)

    assert csv_response.status_code == 200
    assert csv_response.headers["content-type"].startswith("text/csv")
    disposition = csv_response.headers["content-disposition"]
    assert disposition == f'attachment; filename="audit-export-{today().isoformat()}.csv"'
    lines = csv_response.text.splitlines()
    assert lines[0].startswith("Type,Timestamp,User,Action")
    assert any("department_created" in line for line in lines)
    assert any("login_success" in line for line in lines)

    assert xlsx_response.status_code == 200
    assert xlsx_response.content[:2] == b"PK"
    assert bad_format.status_code == 400


async def test_audit_listings(client, admin_headers):
    await login(client, ADMIN_EMAIL, "wrong-password")

    logs = await client.get("/api/audit-logs", headers=admin_headers)
    failed = await client.get("/api/login-events?success=false", headers=admin_headers)
    bad_range = await client.get(
        "/api/audit-logs?start_date=2024-05-02&end_date=2024-05-01", headers=admin_headers
    )

    assert logs.status_code == 200
    assert failed.json()["total"] == 1
    assert failed.json()["items"][0]["failure_reason"] == "Invalid password"
    assert bad_range.status_code == 400


async def test_dashboard_endpoints(client, admin_headers):
    stats = await client.get("/api/dashboard-stats", headers=admin_headers)
    activity = await client.get("/api/recent-activity?limit=5", headers=admin_headers)
    alerts = await client.get("/api/security-alerts", headers=admin_headers)

    assert stats.status_code == 200
    assert stats.json()["total_users"] == 1
    assert stats.json()["active_users"] == 1
    assert stats.json()["recent_logins"] == 1
    assert activity.json()[0]["type"] == "login"
    assert alerts.json()[0]["id"] == "all_clear"


# ==================== Contracts ====================


async def test_contract_checks(client, admin_headers, session_factory):
    async with session_factory() as db:
        expired = await make_user(db, email="expired@company.com", end_date=today() - timedelta(days=1))
        pending = await make_user(db, email="starting@company.com", status=UserStatus.PENDING, start_date=today())
        await db.commit()
        expired_id, pending_id = expired.id, pending.id

    response = await client.post("/api/contracts/", json={"action": "run_all_checks"}, headers=admin_headers)

    assert response.status_code == 200
    body = response.json()
    assert body["deactivated_user_ids"] == [expired_id]
    assert body["activated_user_ids"] == [pending_id]


async def test_unknown_route(client):
    response = await client.get("/api/nothing-here")

    assert response.status_code == 404
    assert "error" in response.json()
