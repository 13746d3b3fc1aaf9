"""CRM engine services."""

from crm_engine.services.activity_service import ActivityService
from crm_engine.services.document_service import DocumentDraft, DocumentPatch, DocumentService
from crm_engine.services.module_registry import ModuleRegistry
from crm_engine.services.permission_matrix import PermissionService
from crm_engine.services.role_service import RoleService
from crm_engine.services.state_machine import (
    ContractStateMachine,
    EstimateStateMachine,
    InvoiceStateMachine,
)

__all__ = [
    "ActivityService",
    "ContractStateMachine",
    "DocumentDraft",
    "DocumentPatch",
    "DocumentService",
    "EstimateStateMachine",
    "InvoiceStateMachine",
    "ModuleRegistry",
    "PermissionService",
    "RoleService",
]
