"""Pytest fixtures for CRM engine tests."""

from __future__ import annotations

from collections.abc import Generator
from decimal import Decimal
from typing import Any, Mapping

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from crm_engine.calculators import LineItem
from crm_engine.context import Actor
from crm_engine.models import Base
from crm_engine.services.document_service import DocumentDraft, DocumentService
from crm_engine.services.module_registry import DEFAULT_MODULES, load_catalog
from crm_engine.services.notifications import NotificationResult
from crm_engine.services.role_service import RoleService

# In-memory SQLite shared across connections; schema created per test
TEST_DATABASE_URL = "sqlite://"

TENANT_ID = 7
OTHER_TENANT_ID = 8


class RecordingDispatcher:
    """Notification dispatcher that records calls and can be told to fail."""

    def __init__(self) -> None:
        self.sent: list[tuple[str, dict[str, Any], str]] = []
        self.fail_with: str | None = None
        self.raise_error: Exception | None = None

    def send_document_notification(
        self, kind: str, document: Mapping[str, Any], recipient: str
    ) -> NotificationResult:
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail_with is not None:
            return NotificationResult(success=False, error=self.fail_with)
        self.sent.append((kind, dict(document), recipient))
        return NotificationResult(success=True, message_id=f"msg-{len(self.sent)}")


@pytest.fixture
def engine():
    """Create test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        echo=False,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)

    yield engine

    engine.dispose()


@pytest.fixture
def session(engine) -> Generator[Session, None, None]:
    """Create a database session for each test."""
    factory = sessionmaker(engine, expire_on_commit=False, autoflush=False)
    with factory() as session:
        yield session


@pytest.fixture
def catalog(session: Session):
    """Load the shipped module catalog."""
    load_catalog(session, DEFAULT_MODULES)
    session.commit()
    return DEFAULT_MODULES


@pytest.fixture
def make_user(session: Session):
    """Factory inserting a user and returning its id."""

    def _make(name: str, tenant_id: int = TENANT_ID, email: str | None = None) -> int:
        user_id = session.execute(
            text("""
                INSERT INTO users (tenant_id, name, email, is_deleted)
                VALUES (:tenant_id, :name, :email, FALSE)
                RETURNING id
            """),
            {"tenant_id": tenant_id, "name": name, "email": email},
        ).scalar_one()
        session.commit()
        return user_id

    return _make


@pytest.fixture
def actor(make_user) -> Actor:
    """An acting user in the default tenant."""
    return Actor(user_id=make_user("Alice Admin", email="alice@example.com"))


@pytest.fixture
def roles(session: Session, catalog) -> RoleService:
    """Role service over a loaded catalog."""
    return RoleService(session)


@pytest.fixture
def notifier() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def documents(session: Session, notifier: RecordingDispatcher) -> DocumentService:
    """Document service with a recording notifier."""
    return DocumentService(session, notifier=notifier)


@pytest.fixture
def record_payment(session: Session):
    """Record a payment as the payments subsystem would."""

    def _record(invoice_id: int, amount: str, table: str = "payments") -> None:
        session.execute(
            text(f"""
                INSERT INTO {table} (tenant_id, invoice_id, amount, is_deleted)
                VALUES (:tenant_id, :invoice_id, :amount, FALSE)
            """),
            {"tenant_id": TENANT_ID, "invoice_id": invoice_id, "amount": amount},
        )
        session.commit()

    return _record


@pytest.fixture
def record_credit_note(record_payment):
    """Record a credit note against an invoice."""

    def _record(invoice_id: int, amount: str) -> None:
        record_payment(invoice_id, amount, table="credit_notes")

    return _record


def sample_items() -> list[LineItem]:
    """Two items: 2 x 50 at 10% tax (110.00) and 1 x 40 (40.00)."""
    return [
        LineItem(
            name="Design",
            quantity=Decimal("2"),
            unit_price=Decimal("50"),
            tax_rate=Decimal("10"),
        ),
        LineItem(name="Hosting", quantity=Decimal("1"), unit_price=Decimal("40")),
    ]


def sample_draft(**overrides: Any) -> DocumentDraft:
    """Draft document for the default client."""
    values: dict[str, Any] = {
        "title": "Website build",
        "client_id": 101,
        "client_email": "client@example.com",
        "project_id": 55,
        "items": sample_items(),
    }
    values.update(overrides)
    return DocumentDraft(**values)
