"""Activity log: audit trail of document and role mutations."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import text
from sqlalchemy.orm import Session

from crm_engine.context import Actor


@dataclass(frozen=True)
class ActivityPage:
    """One page of activity entries, newest first."""

    items: list[dict[str, Any]] = field(default_factory=list)
    total: int = 0
    limit: int = 50
    offset: int = 0


class ActivityService:
    """Writes and reads the activities table.

    record() runs inside the caller's transaction and never commits.
    """

    def __init__(self, db: Session):
        self.db = db

    def record(
        self,
        *,
        tenant_id: int,
        actor: Actor,
        module: str,
        module_id: int | None,
        action: str,
        description: str = "",
    ) -> None:
        """Append an activity row."""
        self.db.execute(
            text("""
                INSERT INTO activities (tenant_id, user_id, module, module_id, action, description)
                VALUES (:tenant_id, :user_id, :module, :module_id, :action, :description)
            """),
            {
                "tenant_id": tenant_id,
                "user_id": actor.user_id,
                "module": module,
                "module_id": module_id,
                "action": action,
                "description": description,
            },
        )

    def list_activities(
        self,
        tenant_id: int,
        module: str | None = None,
        module_id: int | None = None,
        user_id: int | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> ActivityPage:
        """List activities for a tenant, newest first, with the filtered total."""
        limit = max(1, min(int(limit), 500))
        offset = max(0, int(offset))

        where = ["tenant_id = :tenant_id"]
        params: dict[str, Any] = {"tenant_id": tenant_id}
        if module:
            where.append("module = :module")
            params["module"] = module
        if module_id is not None:
            where.append("module_id = :module_id")
            params["module_id"] = module_id
        if user_id is not None:
            where.append("user_id = :user_id")
            params["user_id"] = user_id
        clause = " AND ".join(where)

        total = self.db.execute(
            text(f"SELECT COUNT(*) FROM activities WHERE {clause}"), params
        ).scalar_one()
        rows = self.db.execute(
            text(f"""
                SELECT id, tenant_id, user_id, module, module_id, action, description, created_at
                FROM activities
                WHERE {clause}
                ORDER BY created_at DESC, id DESC
                LIMIT :limit OFFSET :offset
            """),
            {**params, "limit": limit, "offset": offset},
        ).mappings()

        return ActivityPage(
            items=[dict(row) for row in rows],
            total=int(total),
            limit=limit,
            offset=offset,
        )
