"""Module registry: the catalog of permissionable feature areas."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_engine.enums import ActorType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ModuleInfo:
    """One entry of the module catalog."""

    module_key: str
    display_name: str
    actor_type: str = ActorType.ALL.value
    sort_order: int = 0
    is_active: bool = True


def _m(key: str, name: str, actor: ActorType, order: int) -> ModuleInfo:
    return ModuleInfo(key, name, actor.value, order)


# Shipped catalog, loaded by scripts/migrate.py
DEFAULT_MODULES: tuple[ModuleInfo, ...] = (
    _m("dashboard", "Dashboard", ActorType.ALL, 1),
    _m("leads", "Leads", ActorType.ADMIN, 2),
    _m("clients", "Clients", ActorType.ADMIN, 3),
    _m("employees", "Employees", ActorType.ADMIN, 4),
    _m("projects", "Projects", ActorType.ALL, 5),
    _m("tasks", "Tasks", ActorType.ADMIN, 6),
    _m("myTasks", "My Tasks", ActorType.EMPLOYEE, 7),
    _m("myProjects", "My Projects", ActorType.EMPLOYEE, 8),
    _m("timeTracking", "Time Tracking", ActorType.EMPLOYEE, 9),
    _m("attendance", "Attendance", ActorType.EMPLOYEE, 10),
    _m("leaveRequests", "Leave Requests", ActorType.EMPLOYEE, 11),
    _m("events", "Events", ActorType.ALL, 12),
    _m("proposals", "Proposals", ActorType.ALL, 13),
    _m("estimates", "Estimates", ActorType.ADMIN, 14),
    _m("contracts", "Contracts", ActorType.ALL, 15),
    _m("invoices", "Invoices", ActorType.ALL, 16),
    _m("payments", "Payments", ActorType.ALL, 17),
    _m("store", "Store", ActorType.CLIENT, 18),
    _m("orders", "Orders", ActorType.CLIENT, 19),
    _m("subscriptions", "Subscriptions", ActorType.CLIENT, 20),
    _m("files", "Files", ActorType.ALL, 21),
    _m("documents", "Documents", ActorType.EMPLOYEE, 22),
    _m("notes", "Notes", ActorType.ALL, 23),
    _m("messages", "Messages", ActorType.ALL, 24),
    _m("tickets", "Tickets", ActorType.ALL, 25),
    _m("reports", "Reports", ActorType.ADMIN, 26),
    _m("roles", "Roles & Permissions", ActorType.ADMIN, 27),
    _m("settings", "Settings", ActorType.ADMIN, 28),
)


class ModuleRegistry:
    """Read access to the module catalog.

    The catalog is configuration: request handlers only read it.
    """

    def __init__(self, db: Session):
        self.db = db

    def list_modules(self, actor_type: str | None = None) -> list[ModuleInfo]:
        """List active modules visible to an actor type.

        A module matches when its actor_type is ALL or equals the filter.
        No filter (or ALL) returns every active module. An unreadable
        registry yields an empty list.
        """
        actor = (actor_type or "").strip().upper()
        params: dict[str, str] = {}
        sql = """
            SELECT module_key, display_name, actor_type, sort_order, is_active
            FROM modules
            WHERE is_active = TRUE
        """
        if actor and actor != ActorType.ALL.value:
            sql += " AND (actor_type = 'ALL' OR actor_type = :actor_type)"
            params["actor_type"] = actor
        sql += " ORDER BY sort_order, display_name"

        # A failed read rolls back to the savepoint only
        try:
            with self.db.begin_nested():
                rows = self.db.execute(text(sql), params).mappings().all()
        except SQLAlchemyError:
            logger.warning("Module registry unreadable, returning no modules", exc_info=True)
            return []

        return [
            ModuleInfo(
                module_key=row["module_key"],
                display_name=row["display_name"],
                actor_type=row["actor_type"],
                sort_order=int(row["sort_order"]),
                is_active=bool(row["is_active"]),
            )
            for row in rows
        ]

    def active_module_keys(self) -> list[str]:
        """Keys of every active module, in catalog order."""
        return [m.module_key for m in self.list_modules()]


def load_catalog(db: Session, modules: Iterable[ModuleInfo] = DEFAULT_MODULES) -> int:
    """Upsert catalog entries by key. Returns the number of entries written.

    Caller owns the transaction.
    """
    sql = text("""
        INSERT INTO modules (module_key, display_name, actor_type, sort_order, is_active)
        VALUES (:module_key, :display_name, :actor_type, :sort_order, :is_active)
        ON CONFLICT (module_key) DO UPDATE SET
            display_name = excluded.display_name,
            actor_type = excluded.actor_type,
            sort_order = excluded.sort_order,
            is_active = excluded.is_active
    """)
    count = 0
    for module in modules:
        if module.actor_type not in {a.value for a in ActorType}:
            raise ValueError(f"Invalid actor_type for module {module.module_key}")
        db.execute(
            sql,
            {
                "module_key": module.module_key,
                "display_name": module.display_name,
                "actor_type": module.actor_type,
                "sort_order": module.sort_order,
                "is_active": module.is_active,
            },
        )
        count += 1
    logger.info("Loaded %d modules into the catalog", count)
    return count
