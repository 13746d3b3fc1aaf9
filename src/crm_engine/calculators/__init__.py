"""Financial calculators."""

from crm_engine.calculators.totals import (
    compute_totals,
    manual_totals,
    resolve_item_amount,
    round_to_cents,
)
from crm_engine.calculators.types import (
    BillingFrequency,
    DiscountType,
    DocumentTotals,
    LineItem,
    Unit,
)

__all__ = [
    "compute_totals",
    "manual_totals",
    "resolve_item_amount",
    "round_to_cents",
    "BillingFrequency",
    "DiscountType",
    "DocumentTotals",
    "LineItem",
    "Unit",
]
