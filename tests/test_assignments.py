"""
Role assignment manager and role catalogue.
"""
from datetime import timedelta

import pytest
from sqlalchemy import select

from app.core.errors import Conflict, DuplicateError, NotFound, ValidationFailed
from app.features.audit.models import AuditLog
from app.features.audit.recorder import AuditContext
from app.features.permissions import assignments, service
from app.features.permissions.evaluator import current_assignments, load_principal
from app.features.permissions.models import Role, UserRole, role_permissions
from app.utils import today
from tests.factories import grant, make_role, make_user


CTX = AuditContext(actor_id=None, ip_address="10.0.0.1", user_agent="pytest")


async def open_rows(db, user_id, role_id):
    result = await db.execute(
        select(UserRole).where(
            UserRole.user_id == user_id, UserRole.role_id == role_id, UserRole.valid_to.is_(None)
        )
    )
    return result.scalars().all()


async def test_assign_then_revoke_leaves_no_open_row(db_session):
    user = await make_user(db_session)
    role = await make_role(db_session, "Editors", ["user:update"])

    assignment = await assignments.assign(db_session, user.id, role.id, CTX)
    assert assignment.valid_from == today()
    assert assignment.valid_to is None
    assert len(await open_rows(db_session, user.id, role.id)) == 1

    revoked = await assignments.revoke(db_session, user.id, role.id, CTX)
    assert revoked.id == assignment.id
    assert revoked.valid_to == today()
    assert await open_rows(db_session, user.id, role.id) == []

    # Row is kept, only closed
    history = await assignments.list_assignments(db_session, user.id, include_history=True)
    assert [row.id for row in history] == [assignment.id]
    assert await assignments.list_assignments(db_session, user.id) == []


async def test_revoke_closes_every_open_row(db_session):
    user = await make_user(db_session)
    role = await make_role(db_session, "Editors", ["user:update"])
    # assign() does not guard against duplicates
    await assignments.assign(db_session, user.id, role.id, CTX)
    await assignments.assign(db_session, user.id, role.id, CTX)
    assert len(await open_rows(db_session, user.id, role.id)) == 2

    assert await assignments.revoke(db_session, user.id, role.id, CTX) is not None
    assert await open_rows(db_session, user.id, role.id) == []


async def test_revoke_without_open_assignment_returns_none(db_session):
    user = await make_user(db_session)
    role = await make_role(db_session, "Editors", ["user:update"])

    assert await assignments.revoke(db_session, user.id, role.id, CTX) is None


async def test_assign_and_revoke_are_audited(db_session):
    user = await make_user(db_session)
    role = await make_role(db_session, "Editors", ["user:update"])
    await assignments.assign(db_session, user.id, role.id, CTX)
    await assignments.revoke(db_session, user.id, role.id, CTX)

    result = await db_session.execute(
        select(AuditLog.action).where(AuditLog.target_user_id == user.id)
    )
    assert sorted(result.scalars().all()) == ["role_assigned", "role_revoked"]


async def test_assign_unknown_user_or_role(db_session):
    user = await make_user(db_session)
    role = await make_role(db_session, "Editors", ["user:update"])

    with pytest.raises(NotFound):
        await assignments.assign(db_session, "missing", role.id, CTX)
    with pytest.raises(NotFound):
        await assignments.assign(db_session, user.id, "missing", CTX)


async def test_future_valid_to_is_a_scheduled_revocation(db_session):
    user = await make_user(db_session)
    scheduled = await make_role(db_session, "Scheduled", ["audit:read"])
    ended = await make_role(db_session, "Ended", ["audit:export"])
    upcoming = await make_role(db_session, "Upcoming", ["user:delete"])
    await grant(db_session, user, scheduled, valid_to=today() + timedelta(days=5))
    await grant(db_session, user, ended, valid_from=today() - timedelta(days=10), valid_to=today())
    await grant(db_session, user, upcoming, valid_from=today() + timedelta(days=1))

    current = await current_assignments(db_session, user.id)
    assert [a.role.name for a in current] == ["Scheduled"]

    principal = await load_principal(db_session, user)
    assert principal.actions == {"audit:read"}

    later = await load_principal(db_session, user, on=today() + timedelta(days=5))
    assert later.actions == {"user:delete"}


async def test_role_name_is_unique_case_insensitively(db_session):
    await service.create_role(db_session, "Auditors", None, CTX)

    with pytest.raises(DuplicateError) as exc:
        await service.create_role(db_session, "AUDITORS", None, CTX)
    assert exc.value.field == "name"
    assert exc.value.status_code == 409


async def test_create_role_with_unknown_permission(db_session):
    with pytest.raises(ValidationFailed) as exc:
        await service.create_role(db_session, "Broken", None, CTX, permission_ids=["nope"])
    assert exc.value.field == "permission_ids"


async def test_set_role_permissions_replaces_the_set(db_session):
    role = await make_role(db_session, "Editors", ["user:update", "user:read"])
    other = await make_role(db_session, "Others", ["audit:read"])
    audit_read = other.permissions[0]

    updated = await service.set_role_permissions(db_session, role.id, [audit_read.id], CTX)

    assert [p.action for p in updated.permissions] == ["audit:read"]


async def test_delete_role_refused_while_assigned(db_session):
    user = await make_user(db_session)
    role = await make_role(db_session, "Editors", ["user:update"])
    await grant(db_session, user, role)

    with pytest.raises(Conflict):
        await service.delete_role(db_session, role.id, CTX)
    assert await db_session.get(Role, role.id) is not None


async def test_delete_role_removes_history_and_bindings(db_session):
    user = await make_user(db_session)
    role = await make_role(db_session, "Editors", ["user:update"])
    await grant(db_session, user, role, valid_from=today() - timedelta(days=3), valid_to=today())
    role_id = role.id

    await service.delete_role(db_session, role_id, CTX)

    assert (await db_session.execute(select(Role).where(Role.id == role_id))).first() is None
    assert (await db_session.execute(select(UserRole).where(UserRole.role_id == role_id))).first() is None
    bindings = await db_session.execute(select(role_permissions).where(role_permissions.c.role_id == role_id))
    assert bindings.first() is None

    entry = (await db_session.execute(select(AuditLog).where(AuditLog.action == "role_deleted"))).scalar_one()
    assert entry.old_values["name"] == "Editors"
    assert entry.old_values["removed_assignments"] == [
        {"user_id": user.id, "valid_from": (today() - timedelta(days=3)).isoformat(), "valid_to": today().isoformat()}
    ]
    assert user.id in entry.details


async def test_list_roles_counts_current_holders(db_session):
    first = await make_user(db_session)
    second = await make_user(db_session)
    role = await make_role(db_session, "Editors", ["user:update"])
    await grant(db_session, first, role)
    await grant(db_session, second, role, valid_from=today() - timedelta(days=3), valid_to=today())

    counts = {r.name: count for r, count in await service.list_roles(db_session)}
    assert counts == {"Editors": 1}
