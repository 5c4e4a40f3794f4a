"""Domain store: uniqueness, partial updates, links and cascades."""
import uuid

import pytest
from sqlalchemy import func, select

from lms_admin.core.errors import ConflictError, NotFoundError
from lms_admin.core.models import RolePermission, UserPermission, UserRole
from lms_admin.core.rbac import Caller
from lms_admin.core.store import DomainStore


@pytest.fixture
def store(db_session):
    return DomainStore(db_session)


def _user(store, username="alice", email=None):
    return store.create_user(
        username=username,
        email=email or f"{username}@example.com",
        first_name=username.title(),
        last_name="Tester",
        actor="admin-sub",
    )


def _count(session, model):
    return session.scalar(select(func.count()).select_from(model))


def test_create_user_sets_audit_columns(store):
    user = _user(store)

    assert isinstance(user.id, uuid.UUID)
    assert user.is_active is True
    assert user.keycloak_id is None
    assert user.created_by == "admin-sub"
    assert user.updated_by == "admin-sub"


def test_duplicate_username_is_conflict(store):
    _user(store, "alice")
    with pytest.raises(ConflictError) as exc:
        _user(store, "alice", email="other@example.com")
    assert "Username" in exc.value.detail


def test_duplicate_email_is_conflict(store):
    _user(store, "alice", email="shared@example.com")
    with pytest.raises(ConflictError) as exc:
        _user(store, "bob", email="shared@example.com")
    assert "Email" in exc.value.detail


def test_get_user_unknown_or_malformed_id(store):
    with pytest.raises(NotFoundError):
        store.get_user(uuid.uuid4())
    with pytest.raises(NotFoundError):
        store.get_user("not-a-uuid")


def test_update_user_keeps_omitted_fields(store):
    user = _user(store)
    updated = store.update_user(user.id, {"first_name": "Alicia"}, actor="ops")

    assert updated.first_name == "Alicia"
    assert updated.last_name == "Tester"
    assert updated.email == "alice@example.com"
    assert updated.updated_by == "ops"


def test_update_user_email_clash(store):
    _user(store, "alice")
    bob = _user(store, "bob")
    with pytest.raises(ConflictError):
        store.update_user(bob.id, {"email": "alice@example.com"})


def test_duplicate_role_name_is_conflict(store):
    store.create_role(name="teacher")
    with pytest.raises(ConflictError):
        store.create_role(name="teacher")


def test_list_roles_active_only_sorted(store):
    store.create_role(name="student")
    archived = store.create_role(name="archived")
    store.create_role(name="admin")
    store.update_role(archived.id, {"is_active": False})

    assert [r.name for r in store.list_roles()] == ["admin", "student"]
    assert [r.name for r in store.list_roles(active_only=False)] == ["admin", "archived", "student"]
    assert store.managed_role_names() == {"admin", "archived", "student"}


def test_rename_role_to_existing_name_is_conflict(store):
    store.create_role(name="teacher")
    student = store.create_role(name="student")
    with pytest.raises(ConflictError):
        store.update_role(student.id, {"name": "teacher"})


def test_permission_resource_action_unique(store):
    store.create_permission(name="Edit course", resource="course", action="edit")
    with pytest.raises(ConflictError):
        store.create_permission(name="Edit again", resource="course", action="edit")


def test_update_permission_to_existing_pair_is_conflict(store):
    store.create_permission(name="Edit course", resource="course", action="edit")
    view = store.create_permission(name="View course", resource="course", action="view")
    with pytest.raises(ConflictError):
        store.update_permission(view.id, {"action": "edit"})


def test_deactivate_permission_keeps_row_and_point_lookup(store):
    permission = store.create_permission(name="Edit course", resource="course", action="edit")
    store.deactivate_permission(permission.id, actor="admin-sub")

    assert store.list_permissions() == []
    assert [p.id for p in store.list_permissions(active_only=False)] == [permission.id]
    assert store.get_permission(permission.id).is_active is False


def test_list_permissions_ordered_by_resource_then_action(store):
    store.create_permission(name="View lesson", resource="lesson", action="view")
    store.create_permission(name="View course", resource="course", action="view")
    store.create_permission(name="Edit course", resource="course", action="edit")

    pairs = [(p.resource, p.action) for p in store.list_permissions()]
    assert pairs == [("course", "edit"), ("course", "view"), ("lesson", "view")]


def test_add_user_role_twice_creates_one_row(store, db_session):
    user = _user(store)
    role = store.create_role(name="teacher")

    assert store.add_user_role(user, role) is True
    assert store.add_user_role(user, role) is False
    assert _count(db_session, UserRole) == 1


def test_remove_absent_user_role_is_noop(store):
    user = _user(store)
    role = store.create_role(name="teacher")
    assert store.remove_user_role(user, role) is False


def test_user_roles_sorted_by_name(store):
    user = _user(store)
    for name in ("student", "author", "teacher"):
        store.add_user_role(user, store.create_role(name=name))
    assert [r.name for r in store.user_roles(user)] == ["author", "student", "teacher"]


def test_delete_user_cascades_links(store, db_session):
    user = _user(store)
    role = store.create_role(name="teacher")
    permission = store.create_permission(name="Edit course", resource="course", action="edit")
    store.add_user_role(user, role)
    store.add_user_permission(user, permission)

    store.delete_user(user)

    assert _count(db_session, UserRole) == 0
    assert _count(db_session, UserPermission) == 0
    assert store.get_role(role.id).name == "teacher"


def test_delete_role_cascades_links(store, db_session):
    user = _user(store)
    role = store.create_role(name="teacher")
    permission = store.create_permission(name="Edit course", resource="course", action="edit")
    store.add_user_role(user, role)
    store.add_role_permission(role, permission)

    store.delete_role(role)

    assert _count(db_session, UserRole) == 0
    assert _count(db_session, RolePermission) == 0
    assert store.get_permission(permission.id).name == "Edit course"


def test_set_user_directory_id_unique(store):
    alice = _user(store, "alice")
    bob = _user(store, "bob")
    store.set_user_directory_id(alice, "kc-1")
    with pytest.raises(ConflictError):
        store.set_user_directory_id(bob, "kc-1")


def test_concurrent_duplicate_assignment_is_benign(service, store, db_session, monkeypatch):
    user = _user(store)
    role = store.create_role(name="teacher")
    # Another request inserts the same pair after our existence check ran
    store.add_user_role(user, role)
    real_scalar = db_session.scalar
    stale = []

    def _scalar(statement, *args, **kwargs):
        if not stale and "user_roles" in str(statement):
            stale.append(statement)
            return None
        return real_scalar(statement, *args, **kwargs)

    monkeypatch.setattr(db_session, "scalar", _scalar)

    result = service.assign_role(user.id, role.id, Caller(subject="admin-sub", username="admin"))

    assert stale, "existence check was not reached"
    assert result["assigned"] is False
    assert _count(db_session, UserRole) == 1
    # Session rolled back cleanly and accepts new work
    assert [r.name for r in store.user_roles(user)] == ["teacher"]
    assert store.create_role(name="student").name == "student"
