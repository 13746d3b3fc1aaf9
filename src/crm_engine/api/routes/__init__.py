"""API routes."""

from crm_engine.api.routes.activities import router as activities_router
from crm_engine.api.routes.documents import (
    contracts_router,
    estimates_router,
    invoices_router,
)
from crm_engine.api.routes.health import router as health_router
from crm_engine.api.routes.modules import router as modules_router
from crm_engine.api.routes.roles import router as roles_router

__all__ = [
    "activities_router",
    "contracts_router",
    "estimates_router",
    "health_router",
    "invoices_router",
    "modules_router",
    "roles_router",
]
