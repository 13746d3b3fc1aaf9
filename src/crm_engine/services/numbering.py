"""Human-readable document numbers (CONT#001, INV#001, EST#001)."""

from __future__ import annotations

import logging
import time
from collections.abc import Collection
from dataclasses import dataclass

from sqlalchemy import text
from sqlalchemy.orm import Session

from crm_engine.config import NumberingConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NumberScope:
    """Where a document kind's numbers live and how far they are unique."""

    table: str
    tenant_scoped: bool


# Estimate numbers are unique across all tenants
NUMBER_SCOPES: dict[str, NumberScope] = {
    "contract": NumberScope("contracts", tenant_scoped=True),
    "invoice": NumberScope("invoices", tenant_scoped=True),
    "estimate": NumberScope("estimates", tenant_scoped=False),
}


class DocumentNumberGenerator:
    """Allocates the next free number for a document kind.

    Next number is the highest existing sequence (soft-deleted rows
    included) plus one. Taken candidates are skipped up to
    config.max_attempts, after which a timestamp-derived suffix is used.
    The unique constraint remains the final arbiter: callers retry the
    insert on collision.
    """

    def __init__(self, db: Session, config: NumberingConfig | None = None):
        self.db = db
        self.config = config or NumberingConfig()

    def _scope(self, kind: str) -> NumberScope:
        try:
            return NUMBER_SCOPES[kind]
        except KeyError:
            raise ValueError(f"Unknown document kind: {kind}") from None

    def format(self, kind: str, sequence: int) -> str:
        """Render a sequence as e.g. INV#007."""
        return f"{self.config.prefix_for(kind)}{sequence:0{self.config.pad_width}d}"

    def parse(self, kind: str, number: str) -> int | None:
        """Return the numeric sequence of a number, or None if it does not match."""
        prefix = self.config.prefix_for(kind)
        if not number or not number.startswith(prefix):
            return None
        suffix = number[len(prefix):]
        return int(suffix) if suffix.isdigit() else None

    def highest_sequence(self, kind: str, tenant_id: int) -> int:
        """Highest sequence in use for the kind's scope, 0 if none."""
        scope = self._scope(kind)
        sql = f"SELECT number FROM {scope.table} WHERE number LIKE :pattern"
        params: dict[str, object] = {"pattern": f"{self.config.prefix_for(kind)}%"}
        if scope.tenant_scoped:
            sql += " AND tenant_id = :tenant_id"
            params["tenant_id"] = tenant_id

        highest = 0
        for (number,) in self.db.execute(text(sql), params):
            sequence = self.parse(kind, number)
            if sequence is not None and sequence > highest:
                highest = sequence
        return highest

    def exists(self, kind: str, tenant_id: int, number: str) -> bool:
        """Check whether a number is already taken (deleted rows count)."""
        scope = self._scope(kind)
        sql = f"SELECT 1 FROM {scope.table} WHERE number = :number"
        params: dict[str, object] = {"number": number}
        if scope.tenant_scoped:
            sql += " AND tenant_id = :tenant_id"
            params["tenant_id"] = tenant_id
        return self.db.execute(text(sql), params).first() is not None

    def fallback_number(self, kind: str, digits: int = 6) -> str:
        """Timestamp-derived number used once sequential candidates run out."""
        millis = str(int(time.time() * 1000))
        return f"{self.config.prefix_for(kind)}{millis[-digits:]}"

    def next_number(self, kind: str, tenant_id: int, skip: Collection[str] = ()) -> str:
        """Allocate the next candidate number for a document kind.

        Args:
            kind: "contract", "invoice" or "estimate"
            tenant_id: Tenant scope (ignored for estimates)
            skip: Numbers known to be taken, e.g. after an insert collision
        """
        sequence = self.highest_sequence(kind, tenant_id) + 1
        for _ in range(self.config.max_attempts):
            candidate = self.format(kind, sequence)
            if candidate not in skip and not self.exists(kind, tenant_id, candidate):
                return candidate
            sequence += 1

        number = self.fallback_number(kind)
        logger.warning(
            "No free %s number after %d attempts, using fallback %s",
            kind,
            self.config.max_attempts,
            number,
        )
        return number
