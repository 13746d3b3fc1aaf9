"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from crm_engine.calculators import LineItem
from crm_engine.enums import Unit
from crm_engine.normalizers import normalize_unit
from crm_engine.services.document_service import DocumentDraft, DocumentPatch
from crm_engine.services.permission_matrix import PermissionEntry

# ============================================================================
# Common schemas
# ============================================================================


class ErrorResponse(BaseModel):
    """Schema for error response."""

    detail: str
    code: str | None = None
    context: dict[str, Any] | None = None


# ============================================================================
# Module schemas
# ============================================================================


class ModuleResponse(BaseModel):
    """Schema for a module catalog entry."""

    model_config = ConfigDict(from_attributes=True)

    module_key: str
    display_name: str
    actor_type: str
    sort_order: int


# ============================================================================
# Role and permission schemas
# ============================================================================


class PermissionEntrySchema(BaseModel):
    """Flags for one module. Accepts "module" as an alias of module_key."""

    model_config = ConfigDict(from_attributes=True)

    module_key: str = Field(validation_alias=AliasChoices("module_key", "module"))
    can_view: bool = False
    can_add: bool = False
    can_edit: bool = False
    can_delete: bool = False

    def to_entry(self) -> PermissionEntry:
        return PermissionEntry(
            module_key=self.module_key,
            can_view=self.can_view,
            can_add=self.can_add,
            can_edit=self.can_edit,
            can_delete=self.can_delete,
        )


class PermissionsUpdate(BaseModel):
    """Schema for replacing a role's permissions."""

    permissions: list[PermissionEntrySchema]


class RoleCreate(BaseModel):
    """Schema for creating a role."""

    name: str = Field(validation_alias=AliasChoices("name", "role_name"))
    description: str = ""


class RoleUpdate(BaseModel):
    """Schema for updating a role."""

    name: str | None = Field(default=None, validation_alias=AliasChoices("name", "role_name"))
    description: str | None = None


class RoleResponse(BaseModel):
    """Schema for role response."""

    id: int
    name: str
    description: str | None = None
    is_system_role: bool
    user_count: int | None = None
    permissions: list[PermissionEntrySchema] | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class RoleMutationResponse(BaseModel):
    """Schema for role create/update response."""

    role: RoleResponse
    permissions_seeded: bool = True
    warnings: list[str] = []


class AssignRoleRequest(BaseModel):
    """Schema for assigning a role to a user."""

    user_id: int


class AssignmentResponse(BaseModel):
    """Schema for assignment changes."""

    user_id: int
    role_id: int
    changed: bool


class UserResponse(BaseModel):
    """Schema for a user holding a role."""

    id: int
    name: str
    email: str | None = None


class RoleRefSchema(BaseModel):
    """Schema for a role held by a user."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    is_system_role: bool


class PermissionFlagsSchema(BaseModel):
    """Schema for effective flags of one module."""

    model_config = ConfigDict(from_attributes=True)

    can_view: bool
    can_add: bool
    can_edit: bool
    can_delete: bool


class EffectivePermissionsResponse(BaseModel):
    """Schema for a user's effective permissions."""

    model_config = ConfigDict(from_attributes=True)

    user_id: int
    roles: list[RoleRefSchema]
    permissions: dict[str, PermissionFlagsSchema]


# ============================================================================
# Document schemas
# ============================================================================


class LineItemSchema(BaseModel):
    """Schema for a document line item."""

    name: str = Field(default="Item", validation_alias=AliasChoices("name", "item_name"))
    description: str | None = None
    quantity: Decimal = Decimal("1")
    unit: str = Unit.PCS.value
    unit_price: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")
    amount: Decimal | None = None

    def to_line_item(self) -> LineItem:
        return LineItem(
            name=self.name,
            description=self.description,
            quantity=self.quantity,
            unit=Unit(normalize_unit(self.unit)),
            unit_price=self.unit_price,
            tax_rate=self.tax_rate,
            amount=self.amount,
        )


class DocumentCreate(BaseModel):
    """Schema for creating a document.

    Supplying sub_total switches to manual totals; total then overrides the
    computed total.
    """

    title: str | None = None
    client_id: int | None = None
    client_email: str | None = None
    project_id: int | None = None
    issue_date: date | None = None
    due_date: date | None = None
    discount: Decimal = Decimal("0")
    discount_type: str = "percent"
    note: str | None = None
    status: str | None = None
    items: list[LineItemSchema] = []
    sub_total: Decimal | None = None
    total: Decimal | None = None

    def to_draft(self) -> DocumentDraft:
        return DocumentDraft(
            title=self.title,
            client_id=self.client_id,
            client_email=self.client_email,
            project_id=self.project_id,
            issue_date=self.issue_date,
            due_date=self.due_date,
            discount=self.discount,
            discount_type=self.discount_type,
            note=self.note,
            status=self.status,
            items=[i.to_line_item() for i in self.items],
            manual_sub_total=self.sub_total,
            manual_total=self.total,
        )


class DocumentUpdate(BaseModel):
    """Schema for a partial document update."""

    title: str | None = None
    client_id: int | None = None
    client_email: str | None = None
    project_id: int | None = None
    issue_date: date | None = None
    due_date: date | None = None
    discount: Decimal | None = None
    discount_type: str | None = None
    note: str | None = None
    status: str | None = None
    items: list[LineItemSchema] | None = None
    sub_total: Decimal | None = None
    total: Decimal | None = None

    def to_patch(self) -> DocumentPatch:
        return DocumentPatch(
            title=self.title,
            client_id=self.client_id,
            client_email=self.client_email,
            project_id=self.project_id,
            issue_date=self.issue_date,
            due_date=self.due_date,
            discount=self.discount,
            discount_type=self.discount_type,
            note=self.note,
            status=self.status,
            items=None if self.items is None else [i.to_line_item() for i in self.items],
            manual_sub_total=self.sub_total,
            manual_total=self.total,
        )


class StatusUpdate(BaseModel):
    """Schema for a status change request."""

    status: str


class SendRequest(BaseModel):
    """Schema for sending a document."""

    recipient: str | None = None


class ConvertEstimateRequest(BaseModel):
    """Schema for converting an estimate to an invoice."""

    items: list[LineItemSchema] | None = None
    issue_date: date | None = None
    due_date: date | None = None


class RecurringInvoiceCreate(DocumentCreate):
    """Schema for creating a series of recurring invoices."""

    billing_frequency: str
    start_date: date
    count: int = Field(validation_alias=AliasChoices("count", "total_count"))


class LineItemResponse(BaseModel):
    """Schema for a stored line item."""

    id: int
    position: int
    name: str
    description: str | None = None
    quantity: Decimal
    unit: str
    unit_price: Decimal
    tax_rate: Decimal
    amount: Decimal


class DocumentResponse(BaseModel):
    """Schema for contract, invoice and estimate responses.

    Invoice-only fields are None for other kinds.
    """

    id: int
    kind: str
    tenant_id: int
    number: str
    title: str | None = None
    client_id: int | None = None
    client_email: str | None = None
    project_id: int | None = None
    status: str
    issue_date: date | None = None
    due_date: date | None = None
    discount: Decimal
    discount_type: str
    sub_total: Decimal
    discount_amount: Decimal
    tax_amount: Decimal
    total: Decimal
    note: str | None = None
    sent_at: datetime | None = None
    created_by: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    items: list[LineItemResponse] = []

    stored_status: str | None = None
    paid_amount: Decimal | None = None
    credited_amount: Decimal | None = None
    due_amount: Decimal | None = None
    estimate_id: int | None = None
    is_recurring: bool | None = None
    billing_frequency: str | None = None
    recurring_start_date: date | None = None
    recurring_total_count: int | None = None


class DocumentEnvelope(BaseModel):
    """Schema for a document mutation result."""

    document: DocumentResponse
    warnings: list[str] = []


class DocumentListResponse(BaseModel):
    """Schema for listing documents."""

    items: list[DocumentResponse]
    total: int
    limit: int
    offset: int


# ============================================================================
# Activity schemas
# ============================================================================


class ActivityResponse(BaseModel):
    """Schema for an activity entry."""

    id: int
    user_id: int | None = None
    module: str
    module_id: int | None = None
    action: str
    description: str
    created_at: datetime | None = None


class ActivityListResponse(BaseModel):
    """Schema for listing activities."""

    items: list[ActivityResponse]
    total: int
    limit: int
    offset: int
