"""Module catalog endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query

from crm_engine.api.dependencies import DbSession
from crm_engine.api.schemas import ModuleResponse
from crm_engine.services.module_registry import ModuleRegistry

router = APIRouter(prefix="/modules", tags=["modules"])


@router.get("", response_model=list[ModuleResponse])
def list_modules(
    db: DbSession,
    actor_type: Annotated[str | None, Query()] = None,
) -> list[ModuleResponse]:
    """List active modules, optionally filtered by actor type."""
    return [
        ModuleResponse.model_validate(m) for m in ModuleRegistry(db).list_modules(actor_type)
    ]
