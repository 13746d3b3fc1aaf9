"""Financial document models: contracts, invoices, estimates and their items."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from crm_engine.models.base import Base, Money, TimestampMixin


class FinancialDocumentMixin(TimestampMixin):
    """Columns shared by contracts, invoices and estimates."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    number: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str | None] = mapped_column(String(255), nullable=True)
    client_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    client_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    project_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    status: Mapped[str] = mapped_column(
        String(30), nullable=False, server_default=text("'Draft'")
    )
    issue_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    discount: Mapped[Decimal] = mapped_column(Money, nullable=False, server_default=text("0"))
    discount_type: Mapped[str] = mapped_column(
        String(10), nullable=False, server_default=text("'percent'")
    )
    sub_total: Mapped[Decimal] = mapped_column(Money, nullable=False, server_default=text("0"))
    discount_amount: Mapped[Decimal] = mapped_column(
        Money, nullable=False, server_default=text("0")
    )
    tax_amount: Mapped[Decimal] = mapped_column(Money, nullable=False, server_default=text("0"))
    total: Mapped[Decimal] = mapped_column(Money, nullable=False, server_default=text("0"))
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_by: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )


class LineItemMixin:
    """Columns shared by document item tables."""

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, server_default=text("0"))
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    quantity: Mapped[Decimal] = mapped_column(
        Numeric(14, 4), nullable=False, server_default=text("1")
    )
    unit: Mapped[str] = mapped_column(String(10), nullable=False, server_default=text("'Pcs'"))
    unit_price: Mapped[Decimal] = mapped_column(Money, nullable=False, server_default=text("0"))
    tax_rate: Mapped[Decimal] = mapped_column(
        Numeric(7, 3), nullable=False, server_default=text("0")
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False, server_default=text("0"))


class Contract(Base, FinancialDocumentMixin):
    """Client contract."""

    __tablename__ = "contracts"
    __table_args__ = (UniqueConstraint("tenant_id", "number", name="uq_contracts_tenant_number"),)


class ContractItem(Base, LineItemMixin):
    """Contract line item."""

    __tablename__ = "contract_items"

    contract_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("contracts.id", ondelete="CASCADE"), nullable=False, index=True
    )


class Estimate(Base, FinancialDocumentMixin):
    """Estimate (quote). Numbers are unique across all tenants."""

    __tablename__ = "estimates"
    __table_args__ = (UniqueConstraint("number", name="uq_estimates_number"),)


class EstimateItem(Base, LineItemMixin):
    """Estimate line item."""

    __tablename__ = "estimate_items"

    estimate_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("estimates.id", ondelete="CASCADE"), nullable=False, index=True
    )


class Invoice(Base, FinancialDocumentMixin):
    """Invoice. Stored status is Draft or Unpaid; the rest is derived."""

    __tablename__ = "invoices"
    __table_args__ = (UniqueConstraint("tenant_id", "number", name="uq_invoices_tenant_number"),)

    estimate_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("estimates.id"), nullable=True
    )
    is_recurring: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
    billing_frequency: Mapped[str | None] = mapped_column(String(20), nullable=True)
    recurring_start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    recurring_total_count: Mapped[int | None] = mapped_column(Integer, nullable=True)


class InvoiceItem(Base, LineItemMixin):
    """Invoice line item."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )


class Payment(Base):
    """Payment against an invoice (written by the payments subsystem)."""

    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    invoice_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("invoices.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )


class CreditNote(Base):
    """Credit note issued against an invoice."""

    __tablename__ = "credit_notes"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    tenant_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    invoice_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("invoices.id"), nullable=False, index=True
    )
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    is_deleted: Mapped[bool] = mapped_column(
        Boolean, nullable=False, server_default=text("false")
    )
