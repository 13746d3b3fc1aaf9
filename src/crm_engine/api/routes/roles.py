"""Role and permission endpoints."""

from dataclasses import asdict
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, status

from crm_engine.api.dependencies import (
    CurrentActor,
    DbSession,
    TenantId,
    require_permission,
)
from crm_engine.api.schemas import (
    AssignmentResponse,
    AssignRoleRequest,
    EffectivePermissionsResponse,
    ErrorResponse,
    PermissionEntrySchema,
    PermissionFlagsSchema,
    PermissionsUpdate,
    RoleCreate,
    RoleMutationResponse,
    RoleRefSchema,
    RoleResponse,
    RoleUpdate,
    UserResponse,
)
from crm_engine.context import Actor
from crm_engine.services.permission_matrix import PermissionEntry, PermissionService
from crm_engine.services.role_service import ROLES_MODULE, RoleService

router = APIRouter(prefix="/roles", tags=["roles"])

CanView = Annotated[Actor, Depends(require_permission(ROLES_MODULE, "view"))]
CanAdd = Annotated[Actor, Depends(require_permission(ROLES_MODULE, "add"))]
CanEdit = Annotated[Actor, Depends(require_permission(ROLES_MODULE, "edit"))]
CanDelete = Annotated[Actor, Depends(require_permission(ROLES_MODULE, "delete"))]
RoleId = Annotated[int, Path()]


def _entries(entries: list[PermissionEntry]) -> list[PermissionEntrySchema]:
    return [PermissionEntrySchema(**asdict(e)) for e in entries]


def _role(role: dict[str, Any]) -> RoleResponse:
    data = dict(role)
    if data.get("permissions") is not None:
        data["permissions"] = _entries(data["permissions"])
    return RoleResponse(**data)


# ============================================================================
# Roles
# ============================================================================


@router.get("", response_model=list[RoleResponse])
def list_roles(db: DbSession, tenant_id: TenantId, actor: CanView) -> list[RoleResponse]:
    """List the tenant's roles with user counts."""
    return [_role(r) for r in RoleService(db).list_roles(tenant_id)]


@router.post(
    "",
    response_model=RoleMutationResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def create_role(
    db: DbSession,
    tenant_id: TenantId,
    actor: CanAdd,
    payload: RoleCreate,
) -> RoleMutationResponse:
    """Create a role and seed its default permissions."""
    result = RoleService(db).create_role(tenant_id, actor, payload.name, payload.description)
    return RoleMutationResponse(
        role=_role(result.role),
        permissions_seeded=result.permissions_seeded,
        warnings=result.warnings,
    )


@router.get("/user-permissions", response_model=EffectivePermissionsResponse)
def get_user_permissions(
    db: DbSession,
    tenant_id: TenantId,
    actor: CurrentActor,
    user_id: int | None = None,
) -> EffectivePermissionsResponse:
    """Effective permissions of the caller, or of another user (needs roles view)."""
    service = PermissionService(db)
    target = actor.user_id if user_id is None else user_id
    if target != actor.user_id:
        service.require_permission(tenant_id, actor.user_id, ROLES_MODULE, "view")
    effective = service.resolve_effective_permissions(tenant_id, target)
    return EffectivePermissionsResponse(
        user_id=effective.user_id,
        roles=[RoleRefSchema(**asdict(r)) for r in effective.roles],
        permissions={
            key: PermissionFlagsSchema(**asdict(flags))
            for key, flags in effective.permissions.items()
        },
    )


@router.get(
    "/{role_id}",
    response_model=RoleResponse,
    responses={404: {"model": ErrorResponse}},
)
def get_role(db: DbSession, tenant_id: TenantId, actor: CanView, role_id: RoleId) -> RoleResponse:
    """Get a role with its permissions."""
    return _role(RoleService(db).get_role(tenant_id, role_id))


@router.patch(
    "/{role_id}",
    response_model=RoleMutationResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def update_role(
    db: DbSession,
    tenant_id: TenantId,
    actor: CanEdit,
    role_id: RoleId,
    payload: RoleUpdate,
) -> RoleMutationResponse:
    """Rename a role or change its description."""
    result = RoleService(db).update_role(
        tenant_id, actor, role_id, name=payload.name, description=payload.description
    )
    return RoleMutationResponse(role=_role(result.role), warnings=result.warnings)


@router.delete(
    "/{role_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
def delete_role(db: DbSession, tenant_id: TenantId, actor: CanDelete, role_id: RoleId) -> None:
    """Soft-delete a role with no assigned users."""
    RoleService(db).delete_role(tenant_id, actor, role_id)


# ============================================================================
# Permissions and assignments
# ============================================================================


@router.get("/{role_id}/permissions", response_model=list[PermissionEntrySchema])
def get_permissions(
    db: DbSession, tenant_id: TenantId, actor: CanView, role_id: RoleId
) -> list[PermissionEntrySchema]:
    """Stored permissions of a role, ordered by module key."""
    return _entries(PermissionService(db).get_permissions(tenant_id, role_id))


@router.put(
    "/{role_id}/permissions",
    response_model=list[PermissionEntrySchema],
    responses={400: {"model": ErrorResponse}},
)
def set_permissions(
    db: DbSession,
    tenant_id: TenantId,
    actor: CanEdit,
    role_id: RoleId,
    payload: PermissionsUpdate,
) -> list[PermissionEntrySchema]:
    """Replace flags for the given modules."""
    written = PermissionService(db).set_permissions(
        tenant_id, role_id, [p.to_entry() for p in payload.permissions]
    )
    return _entries(written)


@router.get("/{role_id}/users", response_model=list[UserResponse])
def list_role_users(
    db: DbSession, tenant_id: TenantId, actor: CanView, role_id: RoleId
) -> list[UserResponse]:
    """Users holding a role."""
    return [UserResponse(**u) for u in RoleService(db).list_users_for_role(tenant_id, role_id)]


@router.post("/{role_id}/assign", response_model=AssignmentResponse)
def assign_role(
    db: DbSession,
    tenant_id: TenantId,
    actor: CanEdit,
    role_id: RoleId,
    payload: AssignRoleRequest,
) -> AssignmentResponse:
    """Assign a role to a user (idempotent)."""
    changed = RoleService(db).assign_role(tenant_id, payload.user_id, role_id, actor=actor)
    return AssignmentResponse(user_id=payload.user_id, role_id=role_id, changed=changed)


@router.delete("/{role_id}/assign/{user_id}", response_model=AssignmentResponse)
def unassign_role(
    db: DbSession,
    tenant_id: TenantId,
    actor: CanEdit,
    role_id: RoleId,
    user_id: Annotated[int, Path()],
) -> AssignmentResponse:
    """Remove a role from a user (idempotent)."""
    changed = RoleService(db).unassign_role(tenant_id, user_id, role_id, actor=actor)
    return AssignmentResponse(user_id=user_id, role_id=role_id, changed=changed)
