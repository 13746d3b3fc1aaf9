"""Tests for document numbering."""

import pytest

from conftest import OTHER_TENANT_ID, TENANT_ID, sample_draft
from crm_engine.config import NumberingConfig
from crm_engine.services.document_service import DocumentService
from crm_engine.services.numbering import DocumentNumberGenerator


@pytest.fixture
def numbers(session):
    return DocumentNumberGenerator(session)


class TestFormatting:
    """Test rendering and parsing of numbers."""

    def test_zero_padded(self, numbers):
        assert numbers.format("invoice", 1) == "INV#001"
        assert numbers.format("contract", 42) == "CONT#042"
        assert numbers.format("estimate", 1234) == "EST#1234"

    def test_dash_separator(self, session):
        numbers = DocumentNumberGenerator(session, NumberingConfig(separator="-"))

        assert numbers.format("invoice", 7) == "INV-007"
        assert numbers.parse("invoice", "INV-007") == 7
        assert numbers.parse("invoice", "INV#007") is None

    def test_parse_rejects_foreign_numbers(self, numbers):
        assert numbers.parse("invoice", "INV#12a") is None
        assert numbers.parse("invoice", "EST#001") is None
        assert numbers.parse("invoice", "") is None

    def test_invalid_config(self):
        with pytest.raises(ValueError):
            NumberingConfig(separator="/")
        with pytest.raises(ValueError):
            NumberingConfig(prefixes={"invoice": "INV"})

    def test_unknown_kind(self, numbers):
        with pytest.raises(ValueError):
            numbers.next_number("proposal", TENANT_ID)


class TestNextNumber:
    """Test sequence allocation against stored documents."""

    def test_first_number(self, numbers):
        assert numbers.next_number("invoice", TENANT_ID) == "INV#001"

    def test_increments_past_highest(self, numbers, documents, actor):
        for _ in range(3):
            documents.create_document(TENANT_ID, actor, "invoice", sample_draft())

        assert numbers.next_number("invoice", TENANT_ID) == "INV#004"

    def test_deleted_documents_keep_their_number(self, numbers, documents, actor):
        created = documents.create_document(TENANT_ID, actor, "contract", sample_draft())
        documents.delete_document(TENANT_ID, actor, "contract", created.document["id"])

        assert numbers.next_number("contract", TENANT_ID) == "CONT#002"

    def test_contracts_scoped_per_tenant(self, documents, actor):
        first = documents.create_document(TENANT_ID, actor, "contract", sample_draft())
        other = documents.create_document(OTHER_TENANT_ID, actor, "contract", sample_draft())

        assert first.document["number"] == "CONT#001"
        assert other.document["number"] == "CONT#001"

    def test_estimates_are_global(self, documents, actor):
        first = documents.create_document(TENANT_ID, actor, "estimate", sample_draft())
        other = documents.create_document(OTHER_TENANT_ID, actor, "estimate", sample_draft())

        assert first.document["number"] == "EST#001"
        assert other.document["number"] == "EST#002"

    def test_skip_known_taken(self, numbers):
        assert numbers.next_number("invoice", TENANT_ID, skip={"INV#001", "INV#002"}) == "INV#003"

    def test_fallback_after_max_attempts(self, session):
        numbers = DocumentNumberGenerator(session, NumberingConfig(max_attempts=2))

        number = numbers.next_number("invoice", TENANT_ID, skip={"INV#001", "INV#002"})

        assert number.startswith("INV#")
        assert len(number) == len("INV#") + 6
        assert number[4:].isdigit()


class TestInsertCollisions:
    """Test creation under number races."""

    def test_stale_candidate_retries(self, documents, actor, monkeypatch):
        """Test a candidate taken by a concurrent writer is retried, not raised."""
        documents.create_document(TENANT_ID, actor, "invoice", sample_draft())
        original = documents.numbers.next_number
        stale = ["INV#001"]

        def racing(kind, tenant_id, skip=()):
            if stale:
                return stale.pop()
            return original(kind, tenant_id, skip)

        monkeypatch.setattr(documents.numbers, "next_number", racing)

        second = documents.create_document(TENANT_ID, actor, "invoice", sample_draft())

        assert second.document["number"] == "INV#002"

    def test_concurrent_creations_get_distinct_numbers(self, documents, actor, monkeypatch):
        """Test writers that all read the same highest sequence end up distinct."""
        original = documents.numbers.next_number

        def always_stale(kind, tenant_id, skip=()):
            if "INV#001" not in skip:
                return "INV#001"
            return original(kind, tenant_id, skip)

        monkeypatch.setattr(documents.numbers, "next_number", always_stale)

        numbers = [
            documents.create_document(TENANT_ID, actor, "invoice", sample_draft()).document[
                "number"
            ]
            for _ in range(4)
        ]

        assert len(set(numbers)) == 4
        assert numbers[0] == "INV#001"

    def test_exhausted_candidates_use_long_fallback(self, session, notifier, actor, monkeypatch):
        documents = DocumentService(
            session, notifier=notifier, numbering=NumberingConfig(max_attempts=1)
        )
        documents.create_document(TENANT_ID, actor, "invoice", sample_draft())
        monkeypatch.setattr(
            documents.numbers, "next_number", lambda kind, tenant_id, skip=(): "INV#001"
        )

        created = documents.create_document(TENANT_ID, actor, "invoice", sample_draft())

        number = created.document["number"]
        assert number.startswith("INV#")
        assert len(number[4:]) == 13
