"""Document lifecycle: contracts, invoices and estimates.

Handles creation with numbering, item replacement with totals
recomputation, status transitions, sending, estimate conversion and
recurring invoice generation.
"""

from __future__ import annotations

import calendar
import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

from sqlalchemy import bindparam, text
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crm_engine.calculators import (
    DocumentTotals,
    LineItem,
    compute_totals,
    manual_totals,
    resolve_item_amount,
    round_to_cents,
)
from crm_engine.calculators.types import to_decimal
from crm_engine.config import NumberingConfig
from crm_engine.context import Actor
from crm_engine.database import atomic
from crm_engine.enums import BillingFrequency
from crm_engine.errors import (
    DependencyError,
    InvalidTransitionError,
    NotFoundError,
    ValidationError,
)
from crm_engine.normalizers import (
    normalize_billing_frequency,
    normalize_discount_type,
    normalize_status,
)
from crm_engine.services.activity_service import ActivityService
from crm_engine.services.notifications import (
    LoggingNotificationDispatcher,
    NotificationDispatcher,
    NotificationResult,
)
from crm_engine.services.numbering import DocumentNumberGenerator
from crm_engine.services.state_machine import (
    ContractStateMachine,
    EstimateStateMachine,
    EstimateStatus,
    InvoiceStateMachine,
    InvoiceStatus,
    machine_for,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DocumentKind:
    """Storage layout of one document kind."""

    kind: str
    table: str
    items_table: str
    item_fk: str
    module: str  # Permission module key

    @property
    def label(self) -> str:
        return self.kind.capitalize()


DOCUMENT_KINDS: dict[str, DocumentKind] = {
    "contract": DocumentKind("contract", "contracts", "contract_items", "contract_id", "contracts"),
    "invoice": DocumentKind("invoice", "invoices", "invoice_items", "invoice_id", "invoices"),
    "estimate": DocumentKind("estimate", "estimates", "estimate_items", "estimate_id", "estimates"),
}

# Statuses a document may be created in
INITIAL_STATUSES: dict[str, set[str]] = {
    "contract": {"Draft"},
    "invoice": {InvoiceStatus.DRAFT.value, InvoiceStatus.UNPAID.value},
    "estimate": {"Draft"},
}

# Months between recurring invoices, and days until each is due
RECURRENCE_MONTHS = {
    BillingFrequency.MONTHLY.value: 1,
    BillingFrequency.QUARTERLY.value: 3,
    BillingFrequency.YEARLY.value: 12,
}
RECURRENCE_DUE_DAYS = {
    BillingFrequency.MONTHLY.value: 30,
    BillingFrequency.QUARTERLY.value: 90,
    BillingFrequency.YEARLY.value: 365,
}

DEFAULT_DUE_DAYS = 30

_HEADER_COLUMNS = """
    id, tenant_id, number, title, client_id, client_email, project_id, status,
    issue_date, due_date, discount, discount_type, sub_total, discount_amount,
    tax_amount, total, note, sent_at, created_by, created_at, updated_at
"""
_INVOICE_COLUMNS = """,
    estimate_id, is_recurring, billing_frequency, recurring_start_date, recurring_total_count
"""
_MONEY_FIELDS = ("discount", "sub_total", "discount_amount", "tax_amount", "total")


@dataclass
class DocumentDraft:
    """Input for a new document.

    Totals come from items unless manual_sub_total is given, which takes the
    explicit manual path (manual_total then overrides the computed total).
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
    items: list[LineItem] = field(default_factory=list)
    manual_sub_total: Decimal | None = None
    manual_total: Decimal | None = None


@dataclass
class DocumentPatch:
    """Partial update of a document. None means unchanged."""

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
    items: list[LineItem] | None = None
    manual_sub_total: Decimal | None = None
    manual_total: Decimal | None = None

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.__dataclass_fields__)


@dataclass(frozen=True)
class DocumentResult:
    """A document as read after a mutation, plus non-fatal warnings."""

    document: dict[str, Any]
    warnings: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class DocumentPage:
    """One page of documents."""

    items: list[dict[str, Any]]
    total: int
    limit: int
    offset: int


def _add_months(start: date, months: int) -> date:
    """Shift a date by whole months, clamping to the month's last day."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def _as_date(value: Any) -> date | None:
    if value is None or value == "":
        return None
    if isinstance(value, date):
        return value
    return date.fromisoformat(str(value)[:10])


def _iso(value: date | None) -> str | None:
    return value.isoformat() if value is not None else None


def _money(value: Any) -> Decimal:
    return round_to_cents(to_decimal(value))


def _item_params(item: LineItem) -> dict[str, Any]:
    return {
        "name": item.name,
        "description": item.description,
        "quantity": str(item.quantity),
        "unit": item.unit.value,
        "unit_price": str(item.unit_price),
        "tax_rate": str(item.tax_rate),
        "amount": str(resolve_item_amount(item)),
    }


class DocumentService:
    """Lifecycle operations for financial documents.

    Notes:
    - Every item write recomputes totals before persisting.
    - Item replacement is delete-then-reinsert inside one transaction.
    - Invoice status is derived from payments and credit notes on every read.
    - Notification failures are returned as warnings, never raised.
    """

    def __init__(
        self,
        db: Session,
        notifier: NotificationDispatcher | None = None,
        numbering: NumberingConfig | None = None,
    ):
        self.db = db
        self.notifier = notifier or LoggingNotificationDispatcher()
        self.numbers = DocumentNumberGenerator(db, numbering)
        self.activity = ActivityService(db)

    # -- reads -------------------------------------------------------------

    def _kind(self, kind: str) -> DocumentKind:
        try:
            return DOCUMENT_KINDS[kind]
        except KeyError:
            raise ValidationError(
                f"Unknown document kind '{kind}'. Must be one of: {', '.join(DOCUMENT_KINDS)}"
            ) from None

    def _columns(self, spec: DocumentKind) -> str:
        if spec.kind == "invoice":
            return _HEADER_COLUMNS + _INVOICE_COLUMNS
        return _HEADER_COLUMNS

    def _load_items(self, spec: DocumentKind, document_id: int) -> list[dict[str, Any]]:
        rows = self.db.execute(
            text(f"""
                SELECT id, position, name, description, quantity, unit, unit_price,
                       tax_rate, amount
                FROM {spec.items_table}
                WHERE {spec.item_fk} = :document_id
                ORDER BY position, id
            """),
            {"document_id": document_id},
        ).mappings()
        items = []
        for row in rows:
            item = dict(row)
            item["quantity"] = to_decimal(item["quantity"])
            item["unit_price"] = _money(item["unit_price"])
            item["tax_rate"] = to_decimal(item["tax_rate"])
            item["amount"] = _money(item["amount"])
            items.append(item)
        return items

    def _invoice_balances(
        self, tenant_id: int, invoice_ids: list[int]
    ) -> tuple[dict[int, Decimal], dict[int, Decimal]]:
        """Paid and credited sums per invoice."""
        if not invoice_ids:
            return {}, {}

        def sums(table: str) -> dict[int, Decimal]:
            rows = self.db.execute(
                text(f"""
                    SELECT invoice_id, SUM(amount) AS amount
                    FROM {table}
                    WHERE tenant_id = :tenant_id
                      AND invoice_id IN :invoice_ids
                      AND is_deleted = FALSE
                    GROUP BY invoice_id
                """).bindparams(bindparam("invoice_ids", expanding=True)),
                {"tenant_id": tenant_id, "invoice_ids": invoice_ids},
            )
            return {int(invoice_id): _money(amount) for invoice_id, amount in rows}

        return sums("payments"), sums("credit_notes")

    def _shape(
        self,
        spec: DocumentKind,
        row: Mapping[str, Any],
        paid: Mapping[int, Decimal] | None = None,
        credited: Mapping[int, Decimal] | None = None,
    ) -> dict[str, Any]:
        doc = dict(row)
        doc["kind"] = spec.kind
        for name in _MONEY_FIELDS:
            doc[name] = _money(doc.get(name))
        doc["issue_date"] = _as_date(doc.get("issue_date"))
        doc["due_date"] = _as_date(doc.get("due_date"))

        if spec.kind == "invoice":
            doc["is_recurring"] = bool(doc.get("is_recurring"))
            doc["recurring_start_date"] = _as_date(doc.get("recurring_start_date"))
            paid_amount = (paid or {}).get(doc["id"], Decimal("0.00"))
            credited_amount = (credited or {}).get(doc["id"], Decimal("0.00"))
            doc["stored_status"] = doc["status"]
            doc["paid_amount"] = paid_amount
            doc["credited_amount"] = credited_amount
            doc["due_amount"] = doc["total"] - paid_amount - credited_amount
            doc["status"] = InvoiceStateMachine.derive_status(
                doc["stored_status"], doc["total"], paid_amount, credited_amount
            )
        return doc

    def _fetch_row(
        self, spec: DocumentKind, tenant_id: int, document_id: int
    ) -> Mapping[str, Any]:
        row = (
            self.db.execute(
                text(f"""
                    SELECT {self._columns(spec)}
                    FROM {spec.table}
                    WHERE id = :id AND tenant_id = :tenant_id AND is_deleted = FALSE
                """),
                {"id": document_id, "tenant_id": tenant_id},
            )
            .mappings()
            .first()
        )
        if row is None:
            raise NotFoundError(spec.label, document_id)
        return row

    def get_document(self, tenant_id: int, kind: str, document_id: int) -> dict[str, Any]:
        """Load a document with its items; invoice status is derived here.

        Raises:
            NotFoundError: Missing, soft-deleted, or owned by another tenant
        """
        spec = self._kind(kind)
        row = self._fetch_row(spec, tenant_id, document_id)
        paid, credited = (
            self._invoice_balances(tenant_id, [document_id]) if kind == "invoice" else ({}, {})
        )
        doc = self._shape(spec, row, paid, credited)
        doc["items"] = self._load_items(spec, document_id)
        return doc

    def list_documents(
        self,
        tenant_id: int,
        kind: str,
        status: str | None = None,
        client_id: int | None = None,
        search: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> DocumentPage:
        """List a tenant's documents, newest first.

        Invoice status filters apply to the derived status.
        """
        spec = self._kind(kind)
        limit = max(1, min(int(limit), 500))
        offset = max(0, int(offset))

        where = ["tenant_id = :tenant_id", "is_deleted = FALSE"]
        params: dict[str, Any] = {"tenant_id": tenant_id}
        status_filter = None
        if status:
            status_filter = normalize_status(kind, status)
            if status_filter is None:
                raise InvalidTransitionError(kind, None, status, machine_for(kind).values())
            if kind != "invoice":
                where.append("status = :status")
                params["status"] = status_filter
        if client_id is not None:
            where.append("client_id = :client_id")
            params["client_id"] = client_id
        if search:
            where.append(
                "(LOWER(number) LIKE :search OR LOWER(COALESCE(title, '')) LIKE :search)"
            )
            params["search"] = f"%{search.strip().lower()}%"

        rows = self.db.execute(
            text(f"""
                SELECT {self._columns(spec)}
                FROM {spec.table}
                WHERE {" AND ".join(where)}
                ORDER BY created_at DESC, id DESC
            """),
            params,
        ).mappings().all()

        paid: dict[int, Decimal] = {}
        credited: dict[int, Decimal] = {}
        if kind == "invoice":
            paid, credited = self._invoice_balances(tenant_id, [int(r["id"]) for r in rows])
        docs = [self._shape(spec, row, paid, credited) for row in rows]
        if status_filter is not None and kind == "invoice":
            docs = [d for d in docs if d["status"] == status_filter]

        return DocumentPage(
            items=docs[offset:offset + limit],
            total=len(docs),
            limit=limit,
            offset=offset,
        )

    # -- writes ------------------------------------------------------------

    def _write_items(
        self, spec: DocumentKind, document_id: int, items: Iterable[LineItem], replace: bool
    ) -> None:
        if replace:
            self.db.execute(
                text(f"DELETE FROM {spec.items_table} WHERE {spec.item_fk} = :document_id"),
                {"document_id": document_id},
            )
        sql = text(f"""
            INSERT INTO {spec.items_table} (
                {spec.item_fk}, position, name, description, quantity, unit,
                unit_price, tax_rate, amount
            )
            VALUES (
                :document_id, :position, :name, :description, :quantity, :unit,
                :unit_price, :tax_rate, :amount
            )
        """)
        for position, item in enumerate(items):
            self.db.execute(
                sql, {"document_id": document_id, "position": position, **_item_params(item)}
            )

    def _insert_document(
        self,
        spec: DocumentKind,
        tenant_id: int,
        actor: Actor,
        header: dict[str, Any],
        items: list[LineItem],
        after_insert: Callable[[int, str], None] | None = None,
    ) -> int:
        """Insert header and items under a freshly allocated number.

        A unique-number collision rolls back and retries with the next
        candidate; once candidates run out a full timestamp number is used.
        """
        columns = ["tenant_id", "number", "created_by", *header]

        sql = text(f"""
            INSERT INTO {spec.table} ({", ".join(columns)})
            VALUES ({", ".join(f":{c}" for c in columns)})
            RETURNING id
        """)

        def attempt(number: str) -> int:
            with atomic(self.db):
                document_id = self.db.execute(
                    sql,
                    {
                        "tenant_id": tenant_id,
                        "number": number,
                        "created_by": actor.user_id,
                        **header,
                    },
                ).scalar_one()
                self._write_items(spec, document_id, items, replace=False)
                self.activity.record(
                    tenant_id=tenant_id,
                    actor=actor,
                    module=spec.module,
                    module_id=document_id,
                    action="created",
                    description=f"{spec.label} {number} created",
                )
                if after_insert is not None:
                    after_insert(document_id, number)
            return document_id

        taken: set[str] = set()
        for _ in range(self.numbers.config.max_attempts):
            number = self.numbers.next_number(spec.kind, tenant_id, skip=taken)
            try:
                return attempt(number)
            except IntegrityError:
                if not self.numbers.exists(spec.kind, tenant_id, number):
                    raise
                logger.warning("%s number %s collided, retrying", spec.label, number)
                taken.add(number)

        return attempt(self.numbers.fallback_number(spec.kind, digits=13))

    def _resolve_initial_status(self, kind: str, raw: str | None) -> str:
        machine = machine_for(kind)
        if raw is None or raw == "":
            return machine.STATUSES.DRAFT.value
        status = normalize_status(kind, raw)
        if status is None:
            raise InvalidTransitionError(kind, None, raw, machine.values())
        allowed = INITIAL_STATUSES[kind]
        if status not in allowed:
            raise InvalidTransitionError(
                kind, None, status, sorted(allowed), reason="not allowed at creation"
            )
        return status

    def create_document(
        self,
        tenant_id: int,
        actor: Actor,
        kind: str,
        draft: DocumentDraft,
        extra: Mapping[str, Any] | None = None,
    ) -> DocumentResult:
        """Create a document with its items and a fresh number.

        Args:
            tenant_id: Owning tenant
            actor: User performing the creation
            kind: "contract", "invoice" or "estimate"
            draft: Header fields, items and optional manual totals
            extra: Additional invoice columns (estimate link, recurrence)

        Raises:
            ValidationError: Unknown kind, bad status, or invalid amounts
        """
        spec = self._kind(kind)
        status = self._resolve_initial_status(kind, draft.status)
        discount_type = normalize_discount_type(draft.discount_type)
        discount = _money(draft.discount)
        if draft.manual_total is not None and draft.manual_sub_total is None:
            raise ValidationError("manual_total requires manual_sub_total")

        if draft.manual_sub_total is not None:
            totals = manual_totals(
                draft.manual_sub_total, discount, discount_type, draft.manual_total
            )
        else:
            totals = compute_totals(draft.items, discount, discount_type)

        issue_date = draft.issue_date or date.today()
        header: dict[str, Any] = {
            "title": draft.title,
            "client_id": draft.client_id,
            "client_email": draft.client_email,
            "project_id": draft.project_id,
            "status": status,
            "issue_date": _iso(issue_date),
            "due_date": _iso(draft.due_date),
            "discount": str(discount),
            "discount_type": discount_type,
            "note": draft.note,
            **totals.to_params(),
        }
        if extra:
            header.update(extra)

        document_id = self._insert_document(spec, tenant_id, actor, header, list(draft.items))
        logger.info("Created %s %s for tenant %s", kind, document_id, tenant_id)
        return DocumentResult(document=self.get_document(tenant_id, kind, document_id))

    def _recompute(
        self,
        spec: DocumentKind,
        document_id: int,
        current: Mapping[str, Any],
        patch: DocumentPatch,
    ) -> DocumentTotals | None:
        """Totals after a patch, or None when nothing affecting totals changed."""
        discount = _money(patch.discount) if patch.discount is not None else current["discount"]
        discount_type = normalize_discount_type(
            patch.discount_type if patch.discount_type is not None else current["discount_type"]
        )

        if patch.items is not None:
            return compute_totals(patch.items, discount, discount_type)
        if patch.manual_sub_total is not None:
            return manual_totals(
                patch.manual_sub_total, discount, discount_type, patch.manual_total
            )
        if patch.discount is None and patch.discount_type is None:
            return None

        stored = self._load_items(spec, document_id)
        if stored:
            return compute_totals(
                [LineItem.from_mapping(i) for i in stored], discount, discount_type
            )
        # Manual-total document: keep the stored sub-total
        return manual_totals(current["sub_total"], discount, discount_type)

    def update_document(
        self,
        tenant_id: int,
        actor: Actor,
        kind: str,
        document_id: int,
        patch: DocumentPatch,
    ) -> DocumentResult:
        """Apply a partial update.

        New items replace the stored ones and totals are recomputed. A
        discount-only change recomputes from the stored items (or the stored
        sub-total when the document has none).

        Raises:
            NotFoundError: Unknown document
            ValidationError: Empty patch or disallowed status change
        """
        spec = self._kind(kind)
        if patch.is_empty():
            raise ValidationError("No fields to update")
        if patch.manual_total is not None and patch.manual_sub_total is None:
            raise ValidationError("manual_total requires manual_sub_total")
        current = self._shape(spec, self._fetch_row(spec, tenant_id, document_id))

        sets: dict[str, Any] = {}
        for name in ("title", "client_id", "client_email", "project_id", "note"):
            value = getattr(patch, name)
            if value is not None:
                sets[name] = value
        if patch.issue_date is not None:
            sets["issue_date"] = _iso(patch.issue_date)
        if patch.due_date is not None:
            sets["due_date"] = _iso(patch.due_date)
        if patch.discount is not None:
            sets["discount"] = str(_money(patch.discount))
        if patch.discount_type is not None:
            sets["discount_type"] = normalize_discount_type(patch.discount_type)

        stored_status = current.get("stored_status", current["status"])
        new_status = None
        if patch.status is not None:
            new_status = self._validate_status_change(kind, stored_status, patch.status)
            if new_status != stored_status:
                sets["status"] = new_status

        totals = self._recompute(spec, document_id, current, patch)
        if totals is not None:
            sets.update(totals.to_params())

        with atomic(self.db):
            if sets:
                assignments = ", ".join(f"{name} = :{name}" for name in sets)
                self.db.execute(
                    text(f"""
                        UPDATE {spec.table}
                        SET {assignments}, updated_at = CURRENT_TIMESTAMP
                        WHERE id = :id AND tenant_id = :tenant_id
                    """),
                    {**sets, "id": document_id, "tenant_id": tenant_id},
                )
            if patch.items is not None:
                self._write_items(spec, document_id, patch.items, replace=True)
            self.activity.record(
                tenant_id=tenant_id,
                actor=actor,
                module=spec.module,
                module_id=document_id,
                action="updated",
                description=f"{spec.label} {current['number']} updated",
            )

        warnings: list[str] = []
        document = self.get_document(tenant_id, kind, document_id)
        if "status" in sets:
            warnings.extend(self._after_status_change(kind, document))
        return DocumentResult(document=document, warnings=warnings)

    def _validate_status_change(self, kind: str, stored_status: str, raw: str) -> str:
        machine = machine_for(kind)
        status = normalize_status(kind, raw)
        if status is None:
            raise InvalidTransitionError(kind, None, raw, machine.values())
        if status == stored_status:
            return status
        machine.validate_transition(stored_status, status)
        return status

    def change_status(
        self,
        tenant_id: int,
        actor: Actor,
        kind: str,
        document_id: int,
        status: str,
    ) -> DocumentResult:
        """Move a document to a new status.

        Contract acceptance or rejection notifies the client after the status
        is committed; a failed notification is returned as a warning.

        Raises:
            ValidationError: Status outside the kind's vocabulary or not
                reachable from the current status (lists permitted states)
        """
        spec = self._kind(kind)
        row = self._fetch_row(spec, tenant_id, document_id)
        stored_status = row["status"]
        new_status = self._validate_status_change(kind, stored_status, status)
        if new_status == stored_status:
            return DocumentResult(document=self.get_document(tenant_id, kind, document_id))

        with atomic(self.db):
            self._set_status(spec, tenant_id, document_id, new_status)
            self.activity.record(
                tenant_id=tenant_id,
                actor=actor,
                module=spec.module,
                module_id=document_id,
                action="status_changed",
                description=f"{spec.label} {row['number']} {stored_status} -> {new_status}",
            )
        logger.info("%s %s status %s -> %s", spec.label, document_id, stored_status, new_status)

        document = self.get_document(tenant_id, kind, document_id)
        return DocumentResult(document=document, warnings=self._after_status_change(kind, document))

    def _set_status(
        self, spec: DocumentKind, tenant_id: int, document_id: int, status: str
    ) -> None:
        self.db.execute(
            text(f"""
                UPDATE {spec.table}
                SET status = :status, updated_at = CURRENT_TIMESTAMP
                WHERE id = :id AND tenant_id = :tenant_id
            """),
            {"status": status, "id": document_id, "tenant_id": tenant_id},
        )

    def _after_status_change(self, kind: str, document: Mapping[str, Any]) -> list[str]:
        """Side effects of an already committed status change."""
        if kind != "contract" or not ContractStateMachine.requires_notification(document["status"]):
            return []
        recipient = document.get("client_email")
        if not recipient:
            return [f"No recipient for contract {document['number']} notification"]
        event = f"contract_{document['status'].lower()}"
        try:
            self._notify(event, document, recipient)
        except DependencyError as e:
            logger.warning("Contract %s notification failed: %s", document["id"], e.message)
            return [e.message]
        return []

    def _notify(
        self, event: str, document: Mapping[str, Any], recipient: str
    ) -> NotificationResult:
        """Dispatch a notification, raising DependencyError on any failure."""
        payload = {
            "id": document["id"],
            "number": document["number"],
            "title": document.get("title"),
            "status": document["status"],
            "total": document["total"],
        }
        try:
            result = self.notifier.send_document_notification(event, payload, recipient)
        except Exception as e:
            raise DependencyError(f"Failed to send {event} notification: {e}") from e
        if not result.success:
            raise DependencyError(
                f"Failed to send {event} notification: {result.error or 'unknown error'}"
            )
        return result

    def send_document(
        self,
        tenant_id: int,
        actor: Actor,
        kind: str,
        document_id: int,
        recipient: str | None = None,
    ) -> DocumentResult:
        """Email a document to its client.

        On success a Draft advances (contract/estimate to Sent, invoice to
        Unpaid) and sent_at is stamped. On failure nothing changes and the
        error is returned as a warning.

        Raises:
            ValidationError: No recipient given or stored
        """
        spec = self._kind(kind)
        document = self.get_document(tenant_id, kind, document_id)
        to = (recipient or document.get("client_email") or "").strip()
        if not to:
            raise ValidationError(f"{spec.label} {document['number']} has no recipient email")

        try:
            self._notify(f"{kind}_sent", document, to)
        except DependencyError as e:
            logger.warning("%s %s send failed: %s", spec.label, document_id, e.message)
            return DocumentResult(document=document, warnings=[e.message])

        stored_status = document.get("stored_status", document["status"])
        machine = machine_for(kind)
        with atomic(self.db):
            if stored_status == machine.STATUSES.DRAFT.value:
                self._set_status(spec, tenant_id, document_id, machine.SENT_STATUS)
            self.db.execute(
                text(f"""
                    UPDATE {spec.table}
                    SET sent_at = CURRENT_TIMESTAMP, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND tenant_id = :tenant_id
                """),
                {"id": document_id, "tenant_id": tenant_id},
            )
            self.activity.record(
                tenant_id=tenant_id,
                actor=actor,
                module=spec.module,
                module_id=document_id,
                action="sent",
                description=f"{spec.label} {document['number']} sent to {to}",
            )
        return DocumentResult(document=self.get_document(tenant_id, kind, document_id))

    def delete_document(self, tenant_id: int, actor: Actor, kind: str, document_id: int) -> None:
        """Soft-delete a document. Its number stays reserved."""
        spec = self._kind(kind)
        row = self._fetch_row(spec, tenant_id, document_id)
        with atomic(self.db):
            self.db.execute(
                text(f"""
                    UPDATE {spec.table}
                    SET is_deleted = TRUE, updated_at = CURRENT_TIMESTAMP
                    WHERE id = :id AND tenant_id = :tenant_id
                """),
                {"id": document_id, "tenant_id": tenant_id},
            )
            self.activity.record(
                tenant_id=tenant_id,
                actor=actor,
                module=spec.module,
                module_id=document_id,
                action="deleted",
                description=f"{spec.label} {row['number']} deleted",
            )

    # -- estimate conversion and recurrence ----------------------------------

    def convert_estimate_to_invoice(
        self,
        tenant_id: int,
        actor: Actor,
        estimate_id: int,
        items: list[LineItem] | None = None,
        issue_date: date | None = None,
        due_date: date | None = None,
    ) -> DocumentResult:
        """Create an issued invoice from an estimate and accept the estimate.

        Supplied items replace the estimate's stored items for the invoice.
        Invoice creation, the estimate link and the estimate's move to
        Accepted happen in one transaction.

        Raises:
            NotFoundError: Unknown estimate
            ValidationError: Estimate not convertible, or no items resolvable
        """
        estimate_spec = self._kind("estimate")
        estimate = self.get_document(tenant_id, "estimate", estimate_id)
        if not EstimateStateMachine.can_convert(estimate["status"]):
            raise InvalidTransitionError(
                "estimate",
                estimate["status"],
                EstimateStatus.ACCEPTED.value,
                sorted(EstimateStateMachine.CONVERTIBLE),
                reason="only Draft, Sent or Accepted estimates can be converted",
            )

        resolved = list(items) if items else [LineItem.from_mapping(i) for i in estimate["items"]]
        if not resolved:
            raise ValidationError("At least one item is required to convert an estimate")

        totals = compute_totals(resolved, estimate["discount"], estimate["discount_type"])
        invoice_issue = issue_date or date.today()
        invoice_due = due_date or estimate["due_date"] or invoice_issue + timedelta(
            days=DEFAULT_DUE_DAYS
        )
        header: dict[str, Any] = {
            "title": estimate["title"],
            "client_id": estimate["client_id"],
            "client_email": estimate["client_email"],
            "project_id": estimate["project_id"],
            "status": InvoiceStatus.UNPAID.value,
            "issue_date": _iso(invoice_issue),
            "due_date": _iso(invoice_due),
            "discount": str(estimate["discount"]),
            "discount_type": estimate["discount_type"],
            "note": estimate["note"],
            "estimate_id": estimate_id,
            **totals.to_params(),
        }

        def accept_estimate(invoice_id: int, number: str) -> None:
            self._set_status(estimate_spec, tenant_id, estimate_id, EstimateStatus.ACCEPTED.value)
            self.activity.record(
                tenant_id=tenant_id,
                actor=actor,
                module=estimate_spec.module,
                module_id=estimate_id,
                action="converted",
                description=f"Estimate {estimate['number']} converted to invoice {number}",
            )

        invoice_id = self._insert_document(
            self._kind("invoice"), tenant_id, actor, header, resolved, after_insert=accept_estimate
        )
        logger.info("Converted estimate %s to invoice %s", estimate_id, invoice_id)
        return DocumentResult(document=self.get_document(tenant_id, "invoice", invoice_id))

    def create_recurring_invoices(
        self,
        tenant_id: int,
        actor: Actor,
        draft: DocumentDraft,
        billing_frequency: str,
        start_date: date,
        count: int,
    ) -> list[DocumentResult]:
        """Create `count` issued invoices spaced by the billing frequency.

        Invoice i is issued start + i periods and due 30, 90 or 365 days
        later for Monthly, Quarterly or Yearly billing.

        Raises:
            ValidationError: Unknown frequency, count below 1, or no items
        """
        frequency = normalize_billing_frequency(billing_frequency)
        if frequency is None:
            raise ValidationError(
                f"Invalid billing frequency '{billing_frequency}'. "
                f"Must be one of: {', '.join(RECURRENCE_MONTHS)}"
            )
        if count < 1:
            raise ValidationError("Recurring invoice count must be at least 1")
        if not draft.items:
            raise ValidationError("At least one item is required for recurring invoices")

        results = []
        for i in range(count):
            issue = _add_months(start_date, i * RECURRENCE_MONTHS[frequency])
            invoice_draft = DocumentDraft(
                title=draft.title,
                client_id=draft.client_id,
                client_email=draft.client_email,
                project_id=draft.project_id,
                issue_date=issue,
                due_date=issue + timedelta(days=RECURRENCE_DUE_DAYS[frequency]),
                discount=draft.discount,
                discount_type=draft.discount_type,
                note=draft.note,
                status=InvoiceStatus.UNPAID.value,
                items=list(draft.items),
            )
            results.append(
                self.create_document(
                    tenant_id,
                    actor,
                    "invoice",
                    invoice_draft,
                    extra={
                        "is_recurring": True,
                        "billing_frequency": frequency,
                        "recurring_start_date": _iso(start_date),
                        "recurring_total_count": count,
                    },
                )
            )
        logger.info("Created %d %s recurring invoices for tenant %s", count, frequency, tenant_id)
        return results
