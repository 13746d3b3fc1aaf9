"""ORM models describing the CRM schema."""

from crm_engine.models.activity import Activity
from crm_engine.models.base import Base, TimestampMixin
from crm_engine.models.documents import (
    Contract,
    ContractItem,
    CreditNote,
    Estimate,
    EstimateItem,
    Invoice,
    InvoiceItem,
    Payment,
)
from crm_engine.models.rbac import Module, Role, RolePermission, User, UserRole

__all__ = [
    "Activity",
    "Base",
    "Contract",
    "ContractItem",
    "CreditNote",
    "Estimate",
    "EstimateItem",
    "Invoice",
    "InvoiceItem",
    "Module",
    "Payment",
    "Role",
    "RolePermission",
    "TimestampMixin",
    "User",
    "UserRole",
]
