"""Permission matrix: role x module -> CRUD flags, and per-user resolution."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.orm import Session

from crm_engine.database import atomic
from crm_engine.errors import NotFoundError, PermissionDeniedError, ValidationError
from crm_engine.services.default_permissions import default_permissions_for_role
from crm_engine.services.module_registry import ModuleRegistry

logger = logging.getLogger(__name__)

ACTIONS = ("view", "add", "edit", "delete")


@dataclass(frozen=True)
class PermissionFlags:
    """The four CRUD flags of one module."""

    can_view: bool = False
    can_add: bool = False
    can_edit: bool = False
    can_delete: bool = False

    def __or__(self, other: PermissionFlags) -> PermissionFlags:
        return PermissionFlags(
            can_view=self.can_view or other.can_view,
            can_add=self.can_add or other.can_add,
            can_edit=self.can_edit or other.can_edit,
            can_delete=self.can_delete or other.can_delete,
        )

    def allows(self, action: str) -> bool:
        """Check a single action ("view", "add", "edit" or "delete")."""
        if action not in ACTIONS:
            raise ValidationError(
                f"Unknown action '{action}'. Must be one of: {', '.join(ACTIONS)}"
            )
        return bool(getattr(self, f"can_{action}"))


@dataclass(frozen=True)
class PermissionEntry:
    """Flags for one module of a role."""

    module_key: str
    can_view: bool = False
    can_add: bool = False
    can_edit: bool = False
    can_delete: bool = False

    @property
    def flags(self) -> PermissionFlags:
        return PermissionFlags(self.can_view, self.can_add, self.can_edit, self.can_delete)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> PermissionEntry:
        """Build an entry from a row or request dict."""
        return cls(
            module_key=str(data.get("module_key") or data.get("module") or ""),
            can_view=bool(data.get("can_view")),
            can_add=bool(data.get("can_add")),
            can_edit=bool(data.get("can_edit")),
            can_delete=bool(data.get("can_delete")),
        )


@dataclass(frozen=True)
class RoleRef:
    """Descriptor of a role assigned to a user."""

    id: int
    name: str
    is_system_role: bool = False


@dataclass(frozen=True)
class EffectivePermissions:
    """Union of a user's role permissions, per module."""

    user_id: int
    roles: list[RoleRef] = field(default_factory=list)
    permissions: dict[str, PermissionFlags] = field(default_factory=dict)

    def can(self, module: str, action: str) -> bool:
        """Check a capability; unknown modules grant nothing."""
        return self.permissions.get(module, PermissionFlags()).allows(action)


class PermissionService:
    """Reads and writes the permission matrix.

    Notes:
    - role_permissions is unique per (role_id, module_key); writes are upserts.
    - Effective permissions are the OR of every non-deleted assigned role.
    """

    def __init__(self, db: Session):
        self.db = db

    def _get_role(self, tenant_id: int, role_id: int) -> Mapping[str, Any] | None:
        return (
            self.db.execute(
                text("""
                    SELECT id, name, is_system_role
                    FROM roles
                    WHERE id = :role_id AND tenant_id = :tenant_id AND is_deleted = FALSE
                """),
                {"role_id": role_id, "tenant_id": tenant_id},
            )
            .mappings()
            .first()
        )

    def _upsert(self, role_id: int, entries: Iterable[PermissionEntry]) -> int:
        sql = text("""
            INSERT INTO role_permissions (
                role_id, module_key, can_view, can_add, can_edit, can_delete
            )
            VALUES (:role_id, :module_key, :can_view, :can_add, :can_edit, :can_delete)
            ON CONFLICT (role_id, module_key) DO UPDATE SET
                can_view = excluded.can_view,
                can_add = excluded.can_add,
                can_edit = excluded.can_edit,
                can_delete = excluded.can_delete
        """)
        count = 0
        for entry in entries:
            self.db.execute(
                sql,
                {
                    "role_id": role_id,
                    "module_key": entry.module_key,
                    "can_view": entry.can_view,
                    "can_add": entry.can_add,
                    "can_edit": entry.can_edit,
                    "can_delete": entry.can_delete,
                },
            )
            count += 1
        return count

    def set_permissions(
        self,
        tenant_id: int,
        role_id: int,
        entries: Iterable[PermissionEntry | Mapping[str, Any]],
    ) -> list[PermissionEntry]:
        """Replace the flags of the given modules for a role.

        Module keys are stripped, blank keys dropped, and duplicates collapse
        with the last entry winning. All survivors are written in one
        transaction.

        Returns:
            The entries written, ordered by module key

        Raises:
            ValidationError: No usable entries, or the role is missing/deleted
        """
        collapsed: dict[str, PermissionEntry] = {}
        for raw in entries:
            entry = raw if isinstance(raw, PermissionEntry) else PermissionEntry.from_mapping(raw)
            key = entry.module_key.strip()
            if not key:
                continue
            # Re-inserting moves the key to the end, so the last entry wins
            collapsed.pop(key, None)
            collapsed[key] = PermissionEntry(
                key, entry.can_view, entry.can_add, entry.can_edit, entry.can_delete
            )

        if not collapsed:
            raise ValidationError("At least one permission entry with a module key is required")
        if self._get_role(tenant_id, role_id) is None:
            raise ValidationError(f"Role {role_id} does not exist")

        with atomic(self.db):
            self._upsert(role_id, collapsed.values())

        logger.info("Updated %d permissions for role %s", len(collapsed), role_id)
        return sorted(collapsed.values(), key=lambda e: e.module_key)

    def get_permissions(self, tenant_id: int, role_id: int) -> list[PermissionEntry]:
        """Stored permissions of a role, ordered by module key."""
        if self._get_role(tenant_id, role_id) is None:
            raise NotFoundError("Role", role_id)

        rows = self.db.execute(
            text("""
                SELECT module_key, can_view, can_add, can_edit, can_delete
                FROM role_permissions
                WHERE role_id = :role_id
                ORDER BY module_key
            """),
            {"role_id": role_id},
        ).mappings()
        return [PermissionEntry.from_mapping(row) for row in rows]

    def resolve_effective_permissions(self, tenant_id: int, user_id: int) -> EffectivePermissions:
        """OR together the permissions of every role assigned to a user.

        A user with no roles gets an empty result, not an error.
        """
        role_rows = self.db.execute(
            text("""
                SELECT r.id, r.name, r.is_system_role
                FROM user_roles ur
                JOIN roles r ON r.id = ur.role_id
                WHERE ur.user_id = :user_id
                  AND r.tenant_id = :tenant_id
                  AND r.is_deleted = FALSE
                ORDER BY r.name
            """),
            {"user_id": user_id, "tenant_id": tenant_id},
        ).mappings().all()

        roles = [
            RoleRef(id=int(r["id"]), name=r["name"], is_system_role=bool(r["is_system_role"]))
            for r in role_rows
        ]
        if not roles:
            return EffectivePermissions(user_id=user_id)

        perm_rows = self.db.execute(
            text("""
                SELECT module_key, can_view, can_add, can_edit, can_delete
                FROM role_permissions
                WHERE role_id IN :role_ids
            """).bindparams(bindparam("role_ids", expanding=True)),
            {"role_ids": [r.id for r in roles]},
        ).mappings()

        merged: dict[str, PermissionFlags] = {}
        for row in perm_rows:
            flags = PermissionEntry.from_mapping(row).flags
            key = row["module_key"]
            merged[key] = merged.get(key, PermissionFlags()) | flags

        return EffectivePermissions(
            user_id=user_id,
            roles=roles,
            permissions=dict(sorted(merged.items())),
        )

    def has_permission(self, tenant_id: int, user_id: int, module: str, action: str) -> bool:
        """Check whether a user may perform an action on a module."""
        return self.resolve_effective_permissions(tenant_id, user_id).can(module, action)

    def require_permission(self, tenant_id: int, user_id: int, module: str, action: str) -> None:
        """Raise PermissionDeniedError unless the user may act on the module."""
        if not self.has_permission(tenant_id, user_id, module, action):
            raise PermissionDeniedError(module, action)

    def seed_default_permissions(self, role_id: int, role_name: str) -> int:
        """Write the default profile for a role over every active module.

        Returns:
            Number of module rows written
        """
        module_keys = ModuleRegistry(self.db).active_module_keys()
        defaults = default_permissions_for_role(role_name, module_keys)
        entries = [PermissionEntry(key, *flags) for key, flags in defaults.items()]

        with atomic(self.db):
            count = self._upsert(role_id, entries)

        logger.info("Seeded %d default permissions for role %s (%s)", count, role_id, role_name)
        return count
