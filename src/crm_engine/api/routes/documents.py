"""Contract, invoice and estimate endpoints.

The three kinds share one router factory; estimates add conversion and
invoices add recurring series.
"""

from typing import Annotated, Any

from fastapi import APIRouter, Depends, Path, Query, status

from crm_engine.api.dependencies import Documents, TenantId, require_permission
from crm_engine.api.schemas import (
    ConvertEstimateRequest,
    DocumentCreate,
    DocumentEnvelope,
    DocumentListResponse,
    DocumentResponse,
    DocumentUpdate,
    ErrorResponse,
    RecurringInvoiceCreate,
    SendRequest,
    StatusUpdate,
)
from crm_engine.context import Actor
from crm_engine.services.document_service import DOCUMENT_KINDS, DocumentResult

DocumentId = Annotated[int, Path()]


def _envelope(result: DocumentResult) -> DocumentEnvelope:
    return DocumentEnvelope(
        document=DocumentResponse(**result.document),
        warnings=result.warnings,
    )


def _gate(kind: str, action: str) -> Any:
    return Annotated[Actor, Depends(require_permission(DOCUMENT_KINDS[kind].module, action))]


def build_document_router(kind: str) -> APIRouter:
    """Create the CRUD, status and send routes for one document kind."""
    spec = DOCUMENT_KINDS[kind]
    router = APIRouter(prefix=f"/{spec.table}", tags=[spec.table])

    CanView = _gate(kind, "view")
    CanAdd = _gate(kind, "add")
    CanEdit = _gate(kind, "edit")
    CanDelete = _gate(kind, "delete")

    @router.get("", response_model=DocumentListResponse)
    def list_documents(
        documents: Documents,
        tenant_id: TenantId,
        actor: CanView,
        status_filter: Annotated[str | None, Query(alias="status")] = None,
        client_id: int | None = None,
        search: str | None = None,
        limit: Annotated[int, Query(ge=1, le=500)] = 50,
        offset: Annotated[int, Query(ge=0)] = 0,
    ) -> DocumentListResponse:
        """List documents, newest first."""
        page = documents.list_documents(
            tenant_id,
            kind,
            status=status_filter,
            client_id=client_id,
            search=search,
            limit=limit,
            offset=offset,
        )
        return DocumentListResponse(
            items=[DocumentResponse(**d) for d in page.items],
            total=page.total,
            limit=page.limit,
            offset=page.offset,
        )

    @router.post(
        "",
        response_model=DocumentEnvelope,
        status_code=status.HTTP_201_CREATED,
        responses={400: {"model": ErrorResponse}},
    )
    def create_document(
        documents: Documents,
        tenant_id: TenantId,
        actor: CanAdd,
        payload: DocumentCreate,
    ) -> DocumentEnvelope:
        """Create a document with a fresh number."""
        return _envelope(documents.create_document(tenant_id, actor, kind, payload.to_draft()))

    @router.get(
        "/{document_id}",
        response_model=DocumentResponse,
        responses={404: {"model": ErrorResponse}},
    )
    def get_document(
        documents: Documents,
        tenant_id: TenantId,
        actor: CanView,
        document_id: DocumentId,
    ) -> DocumentResponse:
        """Get a document with its items."""
        return DocumentResponse(**documents.get_document(tenant_id, kind, document_id))

    @router.patch(
        "/{document_id}",
        response_model=DocumentEnvelope,
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    )
    def update_document(
        documents: Documents,
        tenant_id: TenantId,
        actor: CanEdit,
        document_id: DocumentId,
        payload: DocumentUpdate,
    ) -> DocumentEnvelope:
        """Partially update a document; items are replaced and totals recomputed."""
        return _envelope(
            documents.update_document(tenant_id, actor, kind, document_id, payload.to_patch())
        )

    @router.put(
        "/{document_id}/status",
        response_model=DocumentEnvelope,
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    )
    def change_status(
        documents: Documents,
        tenant_id: TenantId,
        actor: CanEdit,
        document_id: DocumentId,
        payload: StatusUpdate,
    ) -> DocumentEnvelope:
        """Move a document to a new status."""
        return _envelope(
            documents.change_status(tenant_id, actor, kind, document_id, payload.status)
        )

    @router.post(
        "/{document_id}/send",
        response_model=DocumentEnvelope,
        responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
    )
    def send_document(
        documents: Documents,
        tenant_id: TenantId,
        actor: CanEdit,
        document_id: DocumentId,
        payload: SendRequest | None = None,
    ) -> DocumentEnvelope:
        """Email a document to its client."""
        recipient = payload.recipient if payload else None
        return _envelope(
            documents.send_document(tenant_id, actor, kind, document_id, recipient=recipient)
        )

    @router.delete(
        "/{document_id}",
        status_code=status.HTTP_204_NO_CONTENT,
        responses={404: {"model": ErrorResponse}},
    )
    def delete_document(
        documents: Documents,
        tenant_id: TenantId,
        actor: CanDelete,
        document_id: DocumentId,
    ) -> None:
        """Soft-delete a document."""
        documents.delete_document(tenant_id, actor, kind, document_id)

    return router


contracts_router = build_document_router("contract")
estimates_router = build_document_router("estimate")
invoices_router = build_document_router("invoice")

InvoiceCreator = Annotated[Actor, Depends(require_permission("invoices", "add"))]


@estimates_router.post(
    "/{estimate_id}/convert-to-invoice",
    response_model=DocumentEnvelope,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
def convert_estimate_to_invoice(
    documents: Documents,
    tenant_id: TenantId,
    actor: InvoiceCreator,
    estimate_id: Annotated[int, Path()],
    payload: ConvertEstimateRequest | None = None,
) -> DocumentEnvelope:
    """Create an issued invoice from an estimate and accept the estimate."""
    items = None
    if payload is not None and payload.items:
        items = [i.to_line_item() for i in payload.items]
    return _envelope(
        documents.convert_estimate_to_invoice(
            tenant_id,
            actor,
            estimate_id,
            items=items,
            issue_date=payload.issue_date if payload else None,
            due_date=payload.due_date if payload else None,
        )
    )


@invoices_router.post(
    "/recurring",
    response_model=list[DocumentEnvelope],
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
def create_recurring_invoices(
    documents: Documents,
    tenant_id: TenantId,
    actor: InvoiceCreator,
    payload: RecurringInvoiceCreate,
) -> list[DocumentEnvelope]:
    """Create a series of issued invoices spaced by the billing frequency."""
    results = documents.create_recurring_invoices(
        tenant_id,
        actor,
        payload.to_draft(),
        payload.billing_frequency,
        payload.start_date,
        payload.count,
    )
    return [_envelope(r) for r in results]
