"""FastAPI dependencies for dependency injection."""

from collections.abc import Callable, Generator
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.orm import Session

from crm_engine.config import get_settings
from crm_engine.context import Actor
from crm_engine.database import init_db
from crm_engine.services.document_service import DocumentService
from crm_engine.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
)
from crm_engine.services.permission_matrix import PermissionService


def get_db_session() -> Generator[Session, None, None]:
    """Get database session dependency."""
    _, factory = init_db()
    with factory() as session:
        try:
            yield session
        finally:
            session.close()


def _parse_id(value: str | None, header: str) -> int:
    if not value:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"{header} header is required",
        )
    try:
        return int(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid {header} format",
        )


def get_tenant_id(x_tenant_id: Annotated[str | None, Header()] = None) -> int:
    """Extract tenant ID from header."""
    return _parse_id(x_tenant_id, "X-Tenant-ID")


def get_actor(x_user_id: Annotated[str | None, Header()] = None) -> Actor:
    """Extract the acting user from header."""
    return Actor(user_id=_parse_id(x_user_id, "X-User-ID"))


def get_notifier() -> NotificationDispatcher:
    """Notification dispatcher dependency (override to plug in email)."""
    return LoggingNotificationDispatcher()


# Type aliases for cleaner dependency injection
DbSession = Annotated[Session, Depends(get_db_session)]
TenantId = Annotated[int, Depends(get_tenant_id)]
CurrentActor = Annotated[Actor, Depends(get_actor)]
Notifier = Annotated[NotificationDispatcher, Depends(get_notifier)]


def get_document_service(db: DbSession, notifier: Notifier) -> DocumentService:
    """Document service bound to the request session."""
    return DocumentService(db, notifier=notifier, numbering=get_settings().numbering)


Documents = Annotated[DocumentService, Depends(get_document_service)]


def require_permission(module: str, action: str) -> Callable[..., Actor]:
    """Build a dependency that gates a route on a module capability.

    Usage:
        actor: Annotated[Actor, Depends(require_permission("roles", "edit"))]
    """

    def dependency(db: DbSession, tenant_id: TenantId, actor: CurrentActor) -> Actor:
        PermissionService(db).require_permission(tenant_id, actor.user_id, module, action)
        return actor

    return dependency
