"""Financial totals for contracts, invoices and estimates."""

from __future__ import annotations

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from crm_engine.calculators.types import DocumentTotals, LineItem, to_decimal
from crm_engine.enums import DiscountType
from crm_engine.normalizers import normalize_discount_type

OUTPUT_PRECISION = Decimal("0.01")  # 2 decimal places for persistence
HUNDRED = Decimal("100")


def round_to_cents(amount: Decimal) -> Decimal:
    """Round amount to 2 decimal places (cents)."""
    return amount.quantize(OUTPUT_PRECISION, rounding=ROUND_HALF_UP)


def derive_item_amount(item: LineItem) -> Decimal:
    """quantity * unit_price * (1 + tax_rate/100), unrounded."""
    return item.quantity * item.unit_price * (1 + item.tax_rate / HUNDRED)


def resolve_item_amount(item: LineItem) -> Decimal:
    """Return the line amount, preferring the client-supplied value.

    A supplied amount of exactly zero is treated as absent.
    """
    if item.amount is not None and item.amount != 0:
        return round_to_cents(item.amount)
    return round_to_cents(derive_item_amount(item))


def discount_amount_for(
    sub_total: Decimal, discount: Decimal | int | str | None, discount_type: str
) -> Decimal:
    """Compute the discount for a sub-total."""
    value = to_decimal(discount)
    if normalize_discount_type(discount_type) == DiscountType.PERCENT.value:
        return round_to_cents(sub_total * value / HUNDRED)
    return round_to_cents(value)


def compute_totals(
    items: Iterable[LineItem],
    discount: Decimal | int | str | None = None,
    discount_type: str = DiscountType.PERCENT.value,
) -> DocumentTotals:
    """Compute sub-total, discount, tax and total from line items.

    Tax is folded into each line amount, so the document-level tax is always
    zero. The total is not floored: a fixed discount larger than the
    sub-total yields a negative total.
    """
    sub_total = sum((resolve_item_amount(item) for item in items), Decimal("0"))
    sub_total = round_to_cents(sub_total)
    discount_amount = discount_amount_for(sub_total, discount, discount_type)
    tax_amount = Decimal("0.00")
    total = sub_total - discount_amount + tax_amount

    return DocumentTotals(
        sub_total=sub_total,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total=round_to_cents(total),
    )


def manual_totals(
    sub_total: Decimal | int | str,
    discount: Decimal | int | str | None = None,
    discount_type: str = DiscountType.PERCENT.value,
    total: Decimal | int | str | None = None,
) -> DocumentTotals:
    """Totals from a caller-supplied sub-total, bypassing line items.

    When `total` is given it is stored as-is; otherwise it is the sub-total
    less the discount.
    """
    base = round_to_cents(to_decimal(sub_total))
    discount_amount = discount_amount_for(base, discount, discount_type)
    tax_amount = Decimal("0.00")
    final_total = (
        round_to_cents(to_decimal(total))
        if total is not None
        else round_to_cents(base - discount_amount + tax_amount)
    )

    return DocumentTotals(
        sub_total=base,
        discount_amount=discount_amount,
        tax_amount=tax_amount,
        total=final_total,
    )
