"""Tests for the permission matrix."""

import pytest
from sqlalchemy import text

from conftest import TENANT_ID
from crm_engine.context import SYSTEM_ACTOR
from crm_engine.errors import NotFoundError, PermissionDeniedError, ValidationError
from crm_engine.services.permission_matrix import (
    PermissionEntry,
    PermissionFlags,
    PermissionService,
)


@pytest.fixture
def permissions(session):
    return PermissionService(session)


@pytest.fixture
def custom_role(roles):
    """A role classified as view-only."""
    return roles.create_role(TENANT_ID, SYSTEM_ACTOR, "Auditor").role["id"]


class TestPermissionFlags:
    def test_or_is_union(self):
        a = PermissionFlags(can_view=True, can_add=False)
        b = PermissionFlags(can_view=False, can_add=True, can_delete=True)
        assert a | b == PermissionFlags(True, True, False, True)

    def test_allows_rejects_unknown_action(self):
        with pytest.raises(ValidationError):
            PermissionFlags().allows("publish")


class TestSetPermissions:
    """Test permission writes."""

    def test_upsert_replaces_flags(self, permissions, custom_role):
        permissions.set_permissions(
            TENANT_ID,
            custom_role,
            [PermissionEntry("invoices", can_view=True, can_add=True, can_edit=True)],
        )

        stored = {p.module_key: p for p in permissions.get_permissions(TENANT_ID, custom_role)}
        assert stored["invoices"].flags == PermissionFlags(True, True, True, False)

    def test_keys_stripped_and_blank_dropped(self, permissions, custom_role):
        written = permissions.set_permissions(
            TENANT_ID,
            custom_role,
            [
                {"module_key": "  tickets ", "can_view": True, "can_delete": True},
                {"module_key": "   ", "can_view": True},
            ],
        )

        assert [e.module_key for e in written] == ["tickets"]

    def test_module_alias_accepted(self, permissions, custom_role):
        permissions.set_permissions(
            TENANT_ID, custom_role, [{"module": "invoices", "can_view": True, "can_edit": True}]
        )

        stored = {p.module_key: p for p in permissions.get_permissions(TENANT_ID, custom_role)}
        assert stored["invoices"].flags == PermissionFlags(True, False, True, False)

    def test_duplicates_last_entry_wins(self, permissions, custom_role):
        written = permissions.set_permissions(
            TENANT_ID,
            custom_role,
            [
                PermissionEntry("notes", can_view=True, can_add=True),
                PermissionEntry("notes ", can_view=False, can_delete=True),
            ],
        )

        assert written == [PermissionEntry("notes", can_view=False, can_delete=True)]
        stored = {p.module_key: p for p in permissions.get_permissions(TENANT_ID, custom_role)}
        assert stored["notes"].flags == PermissionFlags(False, False, False, True)

    def test_no_surviving_entries_rejected(self, permissions, custom_role):
        with pytest.raises(ValidationError):
            permissions.set_permissions(TENANT_ID, custom_role, [PermissionEntry("")])
        with pytest.raises(ValidationError):
            permissions.set_permissions(TENANT_ID, custom_role, [])

    def test_missing_role_rejected(self, permissions, catalog):
        with pytest.raises(ValidationError):
            permissions.set_permissions(TENANT_ID, 999, [PermissionEntry("invoices", True)])

    def test_role_of_other_tenant_rejected(self, permissions, custom_role):
        with pytest.raises(ValidationError):
            permissions.set_permissions(99, custom_role, [PermissionEntry("invoices", True)])

    def test_idempotent(self, permissions, custom_role, session):
        entries = [PermissionEntry("files", can_view=True, can_add=True)]
        permissions.set_permissions(TENANT_ID, custom_role, entries)
        permissions.set_permissions(TENANT_ID, custom_role, entries)

        rows = session.execute(
            text(
                "SELECT COUNT(*) FROM role_permissions "
                "WHERE role_id = :role_id AND module_key = 'files'"
            ),
            {"role_id": custom_role},
        ).scalar_one()
        assert rows == 1


class TestGetPermissions:
    def test_ordered_by_module_key(self, permissions, custom_role):
        keys = [p.module_key for p in permissions.get_permissions(TENANT_ID, custom_role)]
        assert keys == sorted(keys)
        assert keys

    def test_unknown_role(self, permissions, catalog):
        with pytest.raises(NotFoundError):
            permissions.get_permissions(TENANT_ID, 404)


class TestResolveEffectivePermissions:
    """Test the OR-union across roles."""

    def test_no_roles_is_empty_not_error(self, permissions, make_user, catalog):
        user_id = make_user("Nobody")

        effective = permissions.resolve_effective_permissions(TENANT_ID, user_id)

        assert effective.roles == []
        assert effective.permissions == {}
        assert effective.can("invoices", "view") is False

    def test_union_over_conflicting_roles(self, permissions, roles, make_user):
        """Test one role denies, another grants: the union grants."""
        user_id = make_user("Bob")
        deny = roles.create_role(TENANT_ID, SYSTEM_ACTOR, "Denier").role["id"]
        grant = roles.create_role(TENANT_ID, SYSTEM_ACTOR, "Granter").role["id"]
        permissions.set_permissions(
            TENANT_ID, deny, [PermissionEntry("invoices", can_view=False, can_edit=True)]
        )
        permissions.set_permissions(
            TENANT_ID, grant, [PermissionEntry("invoices", can_view=True, can_delete=True)]
        )
        roles.assign_role(TENANT_ID, user_id, deny)
        roles.assign_role(TENANT_ID, user_id, grant)

        effective = permissions.resolve_effective_permissions(TENANT_ID, user_id)

        assert effective.permissions["invoices"] == PermissionFlags(True, False, True, True)
        assert {r.name for r in effective.roles} == {"Denier", "Granter"}

    def test_union_matches_or_for_every_module(self, permissions, roles, make_user):
        """Test can_x(U, M) == OR(can_x(Ri, M)) across default profiles."""
        user_id = make_user("Carol")
        role_ids = [
            roles.create_role(TENANT_ID, SYSTEM_ACTOR, name).role["id"]
            for name in ("Sales", "HR", "Auditor")
        ]
        for role_id in role_ids:
            roles.assign_role(TENANT_ID, user_id, role_id)

        effective = permissions.resolve_effective_permissions(TENANT_ID, user_id)

        per_role = [
            {p.module_key: p.flags for p in permissions.get_permissions(TENANT_ID, r)}
            for r in role_ids
        ]
        for module, flags in effective.permissions.items():
            for action in ("view", "add", "edit", "delete"):
                expected = any(rp[module].allows(action) for rp in per_role if module in rp)
                assert flags.allows(action) is expected

    def test_deleted_roles_ignored(self, permissions, roles, make_user, session):
        user_id = make_user("Dave")
        role_id = roles.create_role(TENANT_ID, SYSTEM_ACTOR, "Temp").role["id"]
        roles.assign_role(TENANT_ID, user_id, role_id)
        session.execute(text("UPDATE roles SET is_deleted = TRUE WHERE id = :id"), {"id": role_id})
        session.commit()

        assert permissions.resolve_effective_permissions(TENANT_ID, user_id).roles == []

    def test_require_permission(self, permissions, roles, make_user):
        user_id = make_user("Erin")
        admin = roles.create_role(TENANT_ID, SYSTEM_ACTOR, "ADMIN").role["id"]
        client = roles.create_role(TENANT_ID, SYSTEM_ACTOR, "CLIENT").role["id"]
        roles.assign_role(TENANT_ID, user_id, client)

        assert permissions.has_permission(TENANT_ID, user_id, "invoices", "view") is True
        with pytest.raises(PermissionDeniedError):
            permissions.require_permission(TENANT_ID, user_id, "invoices", "delete")

        roles.assign_role(TENANT_ID, user_id, admin)
        permissions.require_permission(TENANT_ID, user_id, "invoices", "delete")


class TestSeedDefaultPermissions:
    def test_admin_seed_for_invoices(self, permissions, roles):
        """Test ADMIN created for tenant 7 gets full invoices flags."""
        role_id = roles.create_role(TENANT_ID, SYSTEM_ACTOR, "ADMIN").role["id"]

        stored = {p.module_key: p for p in permissions.get_permissions(TENANT_ID, role_id)}
        assert stored["invoices"].flags == PermissionFlags(True, True, True, True)

    def test_reseeding_is_idempotent(self, permissions, roles, catalog):
        role_id = roles.create_role(TENANT_ID, SYSTEM_ACTOR, "EMPLOYEE").role["id"]

        count = permissions.seed_default_permissions(role_id, "EMPLOYEE")

        assert count == len(catalog)
        assert len(permissions.get_permissions(TENANT_ID, role_id)) == len(catalog)
