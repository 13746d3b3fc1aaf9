"""Role management: lifecycle of tenant roles and user assignments."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

from sqlalchemy import text
from sqlalchemy.orm import Session

from crm_engine.context import SYSTEM_ACTOR, Actor
from crm_engine.database import atomic
from crm_engine.errors import ConflictError, NotFoundError, ValidationError
from crm_engine.services.activity_service import ActivityService
from crm_engine.services.permission_matrix import PermissionService

logger = logging.getLogger(__name__)

# (name, description, is_system_role) seeded for every new tenant
DEFAULT_TENANT_ROLES: tuple[tuple[str, str, bool], ...] = (
    ("ADMIN", "Full access to all company features and settings", True),
    ("EMPLOYEE", "Standard employee access to assigned tasks and projects", True),
    ("CLIENT", "Client access to view projects, invoices, and make payments", True),
    ("MANAGER", "Manager access with team oversight capabilities", False),
)

ROLES_MODULE = "roles"


@dataclass(frozen=True)
class RoleResult:
    """Outcome of a role mutation."""

    role: dict[str, Any]
    permissions_seeded: bool = True
    warnings: list[str] = field(default_factory=list)


def _role_dict(row: Mapping[str, Any]) -> dict[str, Any]:
    role = dict(row)
    role["is_system_role"] = bool(role.get("is_system_role"))
    if "user_count" in role:
        role["user_count"] = int(role["user_count"] or 0)
    return role


class RoleService:
    """Creates, renames, deletes and assigns tenant roles.

    Invariants:
    - Role names are unique per tenant among non-deleted roles (case-sensitive).
    - System roles are never renamed or deleted.
    - A role with assigned users cannot be deleted.
    """

    def __init__(self, db: Session):
        self.db = db
        self.permissions = PermissionService(db)
        self.activity = ActivityService(db)

    def _find_role(self, tenant_id: int, role_id: int) -> dict[str, Any] | None:
        row = (
            self.db.execute(
                text("""
                    SELECT id, tenant_id, name, description, is_system_role,
                           created_at, updated_at
                    FROM roles
                    WHERE id = :role_id AND tenant_id = :tenant_id AND is_deleted = FALSE
                """),
                {"role_id": role_id, "tenant_id": tenant_id},
            )
            .mappings()
            .first()
        )
        return _role_dict(row) if row else None

    def _require_role(self, tenant_id: int, role_id: int) -> dict[str, Any]:
        role = self._find_role(tenant_id, role_id)
        if role is None:
            raise NotFoundError("Role", role_id)
        return role

    def _name_taken(self, tenant_id: int, name: str, exclude_id: int | None = None) -> bool:
        row = self.db.execute(
            text("""
                SELECT id FROM roles
                WHERE tenant_id = :tenant_id AND name = :name AND is_deleted = FALSE
                  AND (:exclude_id IS NULL OR id <> :exclude_id)
            """),
            {"tenant_id": tenant_id, "name": name, "exclude_id": exclude_id},
        ).first()
        return row is not None

    def create_role(
        self,
        tenant_id: int,
        actor: Actor,
        name: str,
        description: str = "",
        is_system_role: bool = False,
    ) -> RoleResult:
        """Create a role and seed its default permissions.

        The role survives a seeding failure; the result then reports
        permissions_seeded=False.

        Raises:
            ValidationError: Blank name
            ConflictError: Name already used in the tenant
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Role name is required")
        if self._name_taken(tenant_id, name):
            raise ConflictError(f"Role '{name}' already exists")

        with atomic(self.db):
            role_id = self.db.execute(
                text("""
                    INSERT INTO roles (tenant_id, name, description, is_system_role, is_deleted)
                    VALUES (:tenant_id, :name, :description, :is_system_role, FALSE)
                    RETURNING id
                """),
                {
                    "tenant_id": tenant_id,
                    "name": name,
                    "description": (description or "").strip(),
                    "is_system_role": is_system_role,
                },
            ).scalar_one()
            self.activity.record(
                tenant_id=tenant_id,
                actor=actor,
                module=ROLES_MODULE,
                module_id=role_id,
                action="created",
                description=f"Role '{name}' created",
            )

        warnings: list[str] = []
        seeded = True
        try:
            self.permissions.seed_default_permissions(role_id, name)
        except Exception:
            logger.exception("Failed to seed default permissions for role %s", role_id)
            seeded = False
            warnings.append("Default permissions could not be seeded")

        logger.info("Created role %s (%s) for tenant %s", role_id, name, tenant_id)
        return RoleResult(
            role=self._require_role(tenant_id, role_id),
            permissions_seeded=seeded,
            warnings=warnings,
        )

    def update_role(
        self,
        tenant_id: int,
        actor: Actor,
        role_id: int,
        name: str | None = None,
        description: str | None = None,
    ) -> RoleResult:
        """Update a role's name and/or description.

        Raises:
            NotFoundError: Unknown role
            ValidationError: No fields, blank name, or renaming a system role
            ConflictError: New name already used in the tenant
        """
        role = self._require_role(tenant_id, role_id)
        if name is None and description is None:
            raise ValidationError("No fields to update")

        sets: list[str] = []
        params: dict[str, Any] = {"role_id": role_id, "tenant_id": tenant_id}

        if name is not None:
            new_name = name.strip()
            if not new_name:
                raise ValidationError("Role name cannot be blank")
            if role["is_system_role"]:
                raise ValidationError("System roles cannot be renamed")
            if new_name != role["name"]:
                if self._name_taken(tenant_id, new_name, exclude_id=role_id):
                    raise ConflictError(f"Role '{new_name}' already exists")
                sets.append("name = :name")
                params["name"] = new_name

        if description is not None:
            sets.append("description = :description")
            params["description"] = description.strip()

        if not sets:
            return RoleResult(role=role)

        with atomic(self.db):
            self.db.execute(
                text(f"""
                    UPDATE roles SET {", ".join(sets)}, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :role_id AND tenant_id = :tenant_id
                """),
                params,
            )
            self.activity.record(
                tenant_id=tenant_id,
                actor=actor,
                module=ROLES_MODULE,
                module_id=role_id,
                action="updated",
                description=f"Role '{params.get('name', role['name'])}' updated",
            )

        return RoleResult(role=self._require_role(tenant_id, role_id))

    def rename_role(self, tenant_id: int, actor: Actor, role_id: int, new_name: str) -> RoleResult:
        """Rename a role (see update_role)."""
        return self.update_role(tenant_id, actor, role_id, name=new_name)

    def delete_role(self, tenant_id: int, actor: Actor, role_id: int) -> None:
        """Soft-delete a role with no assigned users.

        Raises:
            NotFoundError: Unknown role
            ValidationError: System role
            ConflictError: Users still assigned (message reports the count)
        """
        role = self._require_role(tenant_id, role_id)
        if role["is_system_role"]:
            raise ValidationError("System roles cannot be deleted")

        assigned = self.db.execute(
            text("SELECT COUNT(*) FROM user_roles WHERE role_id = :role_id"),
            {"role_id": role_id},
        ).scalar_one()
        if assigned:
            raise ConflictError(
                f"Cannot delete role '{role['name']}': {assigned} user(s) still assigned"
            )

        with atomic(self.db):
            self.db.execute(
                text("""
                    UPDATE roles SET is_deleted = TRUE, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :role_id AND tenant_id = :tenant_id
                """),
                {"role_id": role_id, "tenant_id": tenant_id},
            )
            self.activity.record(
                tenant_id=tenant_id,
                actor=actor,
                module=ROLES_MODULE,
                module_id=role_id,
                action="deleted",
                description=f"Role '{role['name']}' deleted",
            )
        logger.info("Deleted role %s for tenant %s", role_id, tenant_id)

    def _require_user(self, tenant_id: int, user_id: int) -> None:
        row = self.db.execute(
            text("""
                SELECT id FROM users
                WHERE id = :user_id AND tenant_id = :tenant_id AND is_deleted = FALSE
            """),
            {"user_id": user_id, "tenant_id": tenant_id},
        ).first()
        if row is None:
            raise NotFoundError("User", user_id)

    def assign_role(
        self,
        tenant_id: int,
        user_id: int,
        role_id: int,
        actor: Actor | None = None,
    ) -> bool:
        """Assign a role to a user. Idempotent.

        Returns:
            True if a new assignment was created, False if it already existed
        """
        role = self._require_role(tenant_id, role_id)
        self._require_user(tenant_id, user_id)

        with atomic(self.db):
            result = self.db.execute(
                text("""
                    INSERT INTO user_roles (user_id, role_id)
                    VALUES (:user_id, :role_id)
                    ON CONFLICT (user_id, role_id) DO NOTHING
                """),
                {"user_id": user_id, "role_id": role_id},
            )
            created = result.rowcount > 0
            if created and actor is not None:
                self.activity.record(
                    tenant_id=tenant_id,
                    actor=actor,
                    module=ROLES_MODULE,
                    module_id=role_id,
                    action="assigned",
                    description=f"Role '{role['name']}' assigned to user {user_id}",
                )
        return created

    def unassign_role(
        self,
        tenant_id: int,
        user_id: int,
        role_id: int,
        actor: Actor | None = None,
    ) -> bool:
        """Remove a role from a user. Idempotent.

        Returns:
            True if an assignment was removed
        """
        role = self._require_role(tenant_id, role_id)
        self._require_user(tenant_id, user_id)

        with atomic(self.db):
            result = self.db.execute(
                text("DELETE FROM user_roles WHERE user_id = :user_id AND role_id = :role_id"),
                {"user_id": user_id, "role_id": role_id},
            )
            removed = result.rowcount > 0
            if removed and actor is not None:
                self.activity.record(
                    tenant_id=tenant_id,
                    actor=actor,
                    module=ROLES_MODULE,
                    module_id=role_id,
                    action="unassigned",
                    description=f"Role '{role['name']}' removed from user {user_id}",
                )
        return removed

    def list_users_for_role(self, tenant_id: int, role_id: int) -> list[dict[str, Any]]:
        """Users holding a role, ordered by name."""
        self._require_role(tenant_id, role_id)
        rows = self.db.execute(
            text("""
                SELECT u.id, u.name, u.email
                FROM user_roles ur
                JOIN users u ON u.id = ur.user_id
                WHERE ur.role_id = :role_id
                  AND u.tenant_id = :tenant_id
                  AND u.is_deleted = FALSE
                ORDER BY u.name, u.id
            """),
            {"role_id": role_id, "tenant_id": tenant_id},
        ).mappings()
        return [dict(row) for row in rows]

    def list_roles(self, tenant_id: int) -> list[dict[str, Any]]:
        """Roles of a tenant with user counts; system roles first, then by name."""
        rows = self.db.execute(
            text("""
                SELECT r.id, r.tenant_id, r.name, r.description, r.is_system_role,
                       r.created_at, r.updated_at, COUNT(ur.id) AS user_count
                FROM roles r
                LEFT JOIN user_roles ur ON ur.role_id = r.id
                WHERE r.tenant_id = :tenant_id AND r.is_deleted = FALSE
                GROUP BY r.id, r.tenant_id, r.name, r.description, r.is_system_role,
                         r.created_at, r.updated_at
                ORDER BY r.is_system_role DESC, r.name
            """),
            {"tenant_id": tenant_id},
        ).mappings()
        return [_role_dict(row) for row in rows]

    def get_role(self, tenant_id: int, role_id: int) -> dict[str, Any]:
        """A role with its stored permissions."""
        role = self._require_role(tenant_id, role_id)
        role["permissions"] = self.permissions.get_permissions(tenant_id, role_id)
        return role

    def initialize_tenant_roles(self, tenant_id: int) -> list[RoleResult]:
        """Create the default roles for a tenant, skipping those that exist."""
        created: list[RoleResult] = []
        for name, description, is_system in DEFAULT_TENANT_ROLES:
            if self._name_taken(tenant_id, name):
                logger.info("Role %s already exists for tenant %s, skipping", name, tenant_id)
                continue
            created.append(
                self.create_role(
                    tenant_id,
                    SYSTEM_ACTOR,
                    name,
                    description=description,
                    is_system_role=is_system,
                )
            )
        return created
