"""Type definitions for the financial totals pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from crm_engine.enums import BillingFrequency, DiscountType, Unit
from crm_engine.errors import ValidationError
from crm_engine.normalizers import normalize_unit

__all__ = [
    "BillingFrequency",
    "DiscountType",
    "DocumentTotals",
    "LineItem",
    "Unit",
    "to_decimal",
]


def to_decimal(value: Any, default: Decimal = Decimal("0")) -> Decimal:
    """Coerce a stored or client-supplied number to Decimal.

    Floats go through str() so 0.1 stays 0.1.
    """
    if value is None or value == "":
        return default
    try:
        result = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError) as e:
        raise ValidationError(f"Invalid numeric value: {value!r}") from e
    if not result.is_finite():
        raise ValidationError(f"Invalid numeric value: {value!r}")
    return result


@dataclass(frozen=True)
class LineItem:
    """One billable row within a financial document.

    `amount` is the client-supplied line amount; None (or zero) means it is
    derived from quantity, unit price and tax rate.
    """

    name: str
    quantity: Decimal = Decimal("1")
    unit_price: Decimal = Decimal("0")
    tax_rate: Decimal = Decimal("0")  # Percent, e.g. 10 for 10%
    unit: Unit = Unit.PCS
    amount: Decimal | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        """Validate non-negative quantities."""
        for attr in ("quantity", "unit_price", "tax_rate"):
            if getattr(self, attr) < 0:
                raise ValidationError(f"Line item {attr} must be >= 0")

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> LineItem:
        """Build a line item from a stored row or a plain dict."""
        amount = data.get("amount")
        return cls(
            name=data.get("name") or data.get("description") or "Item",
            quantity=to_decimal(data.get("quantity"), Decimal("1")),
            unit_price=to_decimal(data.get("unit_price")),
            tax_rate=to_decimal(data.get("tax_rate")),
            unit=Unit(normalize_unit(data.get("unit"))),
            amount=None if amount is None else to_decimal(amount),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class DocumentTotals:
    """Derived financial fields of a document."""

    sub_total: Decimal = Decimal("0.00")
    discount_amount: Decimal = Decimal("0.00")
    tax_amount: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")

    def to_params(self) -> dict[str, str]:
        """Return SQL bind parameters (money as strings)."""
        return {
            "sub_total": str(self.sub_total),
            "discount_amount": str(self.discount_amount),
            "tax_amount": str(self.tax_amount),
            "total": str(self.total),
        }
