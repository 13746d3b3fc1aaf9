"""Default permission profiles for newly created roles.

Pure and table-driven: a role name is classified onto a profile, and the
profile is expanded over the active module keys.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass

ALL = "*"


@dataclass(frozen=True)
class PermissionProfile:
    """Module sets granted per action. ALL in a set means every module."""

    name: str
    view: frozenset[str]
    add: frozenset[str] = frozenset()
    edit: frozenset[str] = frozenset()
    delete: frozenset[str] = frozenset()
    # Excluded from add/edit even when those are ALL
    add_edit_except: frozenset[str] = frozenset()

    def flags_for(self, module_key: str) -> tuple[bool, bool, bool, bool]:
        """Return (can_view, can_add, can_edit, can_delete) for one module."""

        def granted(modules: frozenset[str]) -> bool:
            return ALL in modules or module_key in modules

        mutable = module_key not in self.add_edit_except
        return (
            granted(self.view),
            mutable and granted(self.add),
            mutable and granted(self.edit),
            granted(self.delete),
        )


_SHARED_DELETE = frozenset({"messages", "tickets", "documents"})

_EMPLOYEE_ADD = frozenset({
    "myTasks", "myProjects", "timeTracking", "events", "messages",
    "tickets", "documents", "attendance", "leaveRequests",
})
_EMPLOYEE_EDIT = _EMPLOYEE_ADD - {"attendance", "leaveRequests"}

ADMIN_PROFILE = PermissionProfile(
    name="ADMIN",
    view=frozenset({ALL}),
    add=frozenset({ALL}),
    edit=frozenset({ALL}),
    delete=frozenset({ALL}),
)

EMPLOYEE_PROFILE = PermissionProfile(
    name="EMPLOYEE",
    view=frozenset({ALL}),
    add=_EMPLOYEE_ADD,
    edit=_EMPLOYEE_EDIT,
    delete=_SHARED_DELETE,
)

HR_PROFILE = PermissionProfile(
    name="HR",
    view=frozenset({ALL}),
    add=_EMPLOYEE_ADD | {"employees", "tasks", "projects"},
    edit=_EMPLOYEE_EDIT | {"employees", "attendance", "tasks", "projects"},
    delete=_SHARED_DELETE,
)

SALES_PROFILE = PermissionProfile(
    name="SALES",
    view=frozenset({ALL}),
    add=_EMPLOYEE_EDIT | {"leads", "clients", "proposals", "invoices"},
    edit=_EMPLOYEE_EDIT | {"leads", "clients", "proposals"},
    delete=_SHARED_DELETE,
)

CLIENT_PROFILE = PermissionProfile(
    name="CLIENT",
    view=frozenset({
        "dashboard", "projects", "proposals", "invoices", "payments",
        "contracts", "store", "files", "messages", "tickets", "notes",
        "orders", "subscriptions",
    }),
    add=frozenset({"payments", "messages", "tickets", "notes"}),
    edit=frozenset({"messages", "tickets", "notes"}),
    delete=frozenset({"messages", "tickets", "notes"}),
)

MANAGER_PROFILE = PermissionProfile(
    name="MANAGER",
    view=frozenset({ALL}),
    add=frozenset({ALL}),
    edit=frozenset({ALL}),
    delete=frozenset({"tasks", "projects", "messages", "tickets", "documents"}),
    add_edit_except=frozenset({"settings", "reports"}),
)

# Unrecognised roles can look but not touch
VIEW_ONLY_PROFILE = PermissionProfile(name="VIEW_ONLY", view=frozenset({ALL}))

ROLE_ALIASES: dict[str, PermissionProfile] = {
    "ADMIN": ADMIN_PROFILE,
    "EMPLOYEE": EMPLOYEE_PROFILE,
    "HR": HR_PROFILE,
    "HUMAN RESOURCES": HR_PROFILE,
    "SALES": SALES_PROFILE,
    "SALES REP": SALES_PROFILE,
    "SALES REPRESENTATIVE": SALES_PROFILE,
    "CLIENT": CLIENT_PROFILE,
    "MANAGER": MANAGER_PROFILE,
}

# Substring rules, checked in order after exact aliases
KEYWORD_RULES: tuple[tuple[tuple[str, ...], PermissionProfile], ...] = (
    (("EMPLOYEE", "STAFF", "WORKER", "MEMBER"), EMPLOYEE_PROFILE),
)


def classify_role(role_name: str) -> PermissionProfile:
    """Pick the default profile for a role name (case-insensitive)."""
    key = " ".join((role_name or "").upper().split())
    profile = ROLE_ALIASES.get(key)
    if profile is not None:
        return profile
    for keywords, rule_profile in KEYWORD_RULES:
        if any(k in key for k in keywords):
            return rule_profile
    return VIEW_ONLY_PROFILE


def default_permissions_for_role(
    role_name: str, module_keys: Iterable[str]
) -> dict[str, tuple[bool, bool, bool, bool]]:
    """Expand the role's profile over module keys.

    Returns:
        {module_key: (can_view, can_add, can_edit, can_delete)}
    """
    profile = classify_role(role_name)
    return {key: profile.flags_for(key) for key in module_keys}
