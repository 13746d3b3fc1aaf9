"""Document status state machines with transition validation."""

from __future__ import annotations

from decimal import Decimal
from enum import Enum

from crm_engine.errors import InvalidTransitionError


class ContractStatus(str, Enum):
    """Contract status values."""

    DRAFT = "Draft"
    SENT = "Sent"
    ACCEPTED = "Accepted"
    REJECTED = "Rejected"
    EXPIRED = "Expired"


class InvoiceStatus(str, Enum):
    """Invoice status values.

    Only DRAFT and UNPAID are stored; the others are derived from payments
    and credit notes on read.
    """

    DRAFT = "Draft"
    UNPAID = "Unpaid"
    PARTIALLY_PAID = "Partially Paid"
    FULLY_PAID = "Fully Paid"
    CREDITED = "Credited"


class EstimateStatus(str, Enum):
    """Estimate status values."""

    DRAFT = "Draft"
    SENT = "Sent"
    ACCEPTED = "Accepted"
    DECLINED = "Declined"
    EXPIRED = "Expired"


class DocumentStateMachine:
    """Base state machine for a financial document kind.

    Subclasses define STATUSES and VALID_TRANSITIONS.
    """

    DOCUMENT_TYPE: str = ""
    STATUSES: type[Enum]
    VALID_TRANSITIONS: dict[str, list[str]] = {}
    # Status a Draft advances to once the document has been sent
    SENT_STATUS: str = ""

    @classmethod
    def values(cls) -> list[str]:
        """All status values of this document kind."""
        return [s.value for s in cls.STATUSES]

    @classmethod
    def can_transition(cls, from_status: str, to_status: str) -> bool:
        """Check if a transition is valid."""
        allowed = cls.VALID_TRANSITIONS.get(from_status, [])
        return to_status in allowed

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Validate a transition, raising InvalidTransitionError if invalid."""
        if to_status not in cls.values():
            raise InvalidTransitionError(cls.DOCUMENT_TYPE, None, to_status, cls.values())
        if not cls.can_transition(from_status, to_status):
            raise InvalidTransitionError(
                cls.DOCUMENT_TYPE,
                from_status,
                to_status,
                cls.get_next_statuses(from_status),
            )

    @classmethod
    def get_next_statuses(cls, current_status: str) -> list[str]:
        """Get list of valid next statuses from current status."""
        return list(cls.VALID_TRANSITIONS.get(current_status, []))

    @classmethod
    def is_terminal(cls, status: str) -> bool:
        """Check if no transitions leave this status."""
        return not cls.VALID_TRANSITIONS.get(status)


class ContractStateMachine(DocumentStateMachine):
    """State machine for contracts.

    Allowed transitions:
    - Draft → Sent
    - Sent → Accepted
    - Sent → Rejected
    - Draft|Sent → Expired
    """

    DOCUMENT_TYPE = "contract"
    STATUSES = ContractStatus
    SENT_STATUS = ContractStatus.SENT.value

    VALID_TRANSITIONS: dict[str, list[str]] = {
        ContractStatus.DRAFT.value: [
            ContractStatus.SENT.value,
            ContractStatus.EXPIRED.value,
        ],
        ContractStatus.SENT.value: [
            ContractStatus.ACCEPTED.value,
            ContractStatus.REJECTED.value,
            ContractStatus.EXPIRED.value,
        ],
        ContractStatus.ACCEPTED.value: [],  # Terminal state
        ContractStatus.REJECTED.value: [],  # Terminal state
        ContractStatus.EXPIRED.value: [],  # Terminal state
    }

    # Entering these triggers a client notification after commit
    NOTIFY_ON = {ContractStatus.ACCEPTED.value, ContractStatus.REJECTED.value}

    @classmethod
    def requires_notification(cls, status: str) -> bool:
        """Check if entering this status notifies the client."""
        return status in cls.NOTIFY_ON


class InvoiceStateMachine(DocumentStateMachine):
    """State machine for invoices.

    The only manual transition is Draft → Unpaid (issuing). Partially Paid,
    Fully Paid and Credited are derived from payments and credit notes and
    can never be requested.
    """

    DOCUMENT_TYPE = "invoice"
    STATUSES = InvoiceStatus
    SENT_STATUS = InvoiceStatus.UNPAID.value

    VALID_TRANSITIONS: dict[str, list[str]] = {
        InvoiceStatus.DRAFT.value: [InvoiceStatus.UNPAID.value],
        InvoiceStatus.UNPAID.value: [],
    }

    DERIVED = {
        InvoiceStatus.PARTIALLY_PAID.value,
        InvoiceStatus.FULLY_PAID.value,
        InvoiceStatus.CREDITED.value,
    }

    @classmethod
    def validate_transition(cls, from_status: str, to_status: str) -> None:
        """Reject derived statuses before the transition table is consulted."""
        if to_status in cls.DERIVED:
            raise InvalidTransitionError(
                cls.DOCUMENT_TYPE,
                from_status,
                to_status,
                cls.get_next_statuses(from_status),
                reason="status is derived from payments and credit notes",
            )
        super().validate_transition(from_status, to_status)

    @classmethod
    def derive_status(
        cls,
        stored_status: str,
        total: Decimal,
        paid: Decimal,
        credited: Decimal,
    ) -> str:
        """Compute the status shown for an invoice.

        Draft short-circuits. Otherwise a positive credit-note total wins,
        then the paid amount decides between Unpaid, Partially Paid and
        Fully Paid.
        """
        if stored_status == InvoiceStatus.DRAFT.value:
            return InvoiceStatus.DRAFT.value
        if credited > 0:
            return InvoiceStatus.CREDITED.value
        if paid == 0:
            return InvoiceStatus.UNPAID.value
        if paid >= total:
            return InvoiceStatus.FULLY_PAID.value
        return InvoiceStatus.PARTIALLY_PAID.value


class EstimateStateMachine(DocumentStateMachine):
    """State machine for estimates.

    Allowed transitions:
    - Draft → Sent
    - Sent → Accepted | Declined | Expired

    Conversion to an invoice is allowed from Draft, Sent or Accepted and
    always leaves the estimate Accepted.
    """

    DOCUMENT_TYPE = "estimate"
    STATUSES = EstimateStatus
    SENT_STATUS = EstimateStatus.SENT.value

    VALID_TRANSITIONS: dict[str, list[str]] = {
        EstimateStatus.DRAFT.value: [EstimateStatus.SENT.value],
        EstimateStatus.SENT.value: [
            EstimateStatus.ACCEPTED.value,
            EstimateStatus.DECLINED.value,
            EstimateStatus.EXPIRED.value,
        ],
        EstimateStatus.ACCEPTED.value: [],
        EstimateStatus.DECLINED.value: [],
        EstimateStatus.EXPIRED.value: [],
    }

    CONVERTIBLE = {
        EstimateStatus.DRAFT.value,
        EstimateStatus.SENT.value,
        EstimateStatus.ACCEPTED.value,
    }

    @classmethod
    def can_convert(cls, status: str) -> bool:
        """Check if an estimate in this status can become an invoice."""
        return status in cls.CONVERTIBLE


_MACHINES: dict[str, type[DocumentStateMachine]] = {
    "contract": ContractStateMachine,
    "invoice": InvoiceStateMachine,
    "estimate": EstimateStateMachine,
}


def machine_for(kind: str) -> type[DocumentStateMachine]:
    """Return the state machine for a document kind (KeyError if unknown)."""
    return _MACHINES[kind]


def derive_invoice_status(
    stored_status: str, total: Decimal, paid: Decimal, credited: Decimal
) -> str:
    """Shortcut for InvoiceStateMachine.derive_status."""
    return InvoiceStateMachine.derive_status(stored_status, total, paid, credited)
