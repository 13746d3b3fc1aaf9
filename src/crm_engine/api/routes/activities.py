"""Activity log endpoints."""

from typing import Annotated

from fastapi import APIRouter, Query

from crm_engine.api.dependencies import CurrentActor, DbSession, TenantId
from crm_engine.api.schemas import ActivityListResponse, ActivityResponse
from crm_engine.services.activity_service import ActivityService

router = APIRouter(prefix="/activities", tags=["activities"])


@router.get("", response_model=ActivityListResponse)
def list_activities(
    db: DbSession,
    tenant_id: TenantId,
    actor: CurrentActor,
    module: str | None = None,
    module_id: int | None = None,
    user_id: int | None = None,
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> ActivityListResponse:
    """List activities for the tenant, newest first."""
    page = ActivityService(db).list_activities(
        tenant_id,
        module=module,
        module_id=module_id,
        user_id=user_id,
        limit=limit,
        offset=offset,
    )
    return ActivityListResponse(
        items=[ActivityResponse(**item) for item in page.items],
        total=page.total,
        limit=page.limit,
        offset=page.offset,
    )
