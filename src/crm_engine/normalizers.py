"""Normalizers mapping free-form client input onto fixed vocabularies.

Every function here is total: any input maps to a valid value (or None
where the vocabulary allows it) and nothing raises.
"""

from __future__ import annotations

from enum import Enum

from crm_engine.enums import BillingFrequency, DiscountType, Unit

_VALID_UNITS = {u.value for u in Unit}
_VALID_FREQUENCIES = {f.value for f in BillingFrequency}

# Checked in order; first substring hit wins
_UNIT_KEYWORDS: tuple[tuple[tuple[str, ...], Unit], ...] = (
    (("pc", "piece"), Unit.PCS),
    (("kg", "kilogram"), Unit.KG),
    (("hour",), Unit.HOURS),
    (("day",), Unit.DAYS),
)

_FREQUENCY_ALIASES: dict[str, BillingFrequency] = {
    "monthly": BillingFrequency.MONTHLY,
    "month": BillingFrequency.MONTHLY,
    "quarterly": BillingFrequency.QUARTERLY,
    "quarter": BillingFrequency.QUARTERLY,
    "yearly": BillingFrequency.YEARLY,
    "year": BillingFrequency.YEARLY,
}

_FIXED_DISCOUNT_ALIASES = {"fixed", "amount"}


def _clean(raw: object) -> str:
    if raw is None:
        return ""
    if isinstance(raw, Enum):
        raw = raw.value
    return str(raw).strip()


def normalize_unit(raw: object) -> str:
    """Map a unit to Pcs, Kg, Hours or Days (default Pcs)."""
    text = _clean(raw)
    if text in _VALID_UNITS:
        return text

    lowered = text.lower()
    for keywords, unit in _UNIT_KEYWORDS:
        if any(k in lowered for k in keywords):
            return unit.value
    return Unit.PCS.value


def normalize_billing_frequency(raw: object) -> str | None:
    """Map a frequency to Monthly, Quarterly or Yearly.

    Daily and Weekly are valid UI values elsewhere but not storable, so they
    map to None like any other unknown value.
    """
    text = _clean(raw)
    if text in _VALID_FREQUENCIES:
        return text

    match = _FREQUENCY_ALIASES.get(text.lower())
    return match.value if match else None


def normalize_discount_type(raw: object) -> str:
    """Map a discount type to 'fixed' or 'percent'."""
    if _clean(raw).lower() in _FIXED_DISCOUNT_ALIASES:
        return DiscountType.FIXED.value
    return DiscountType.PERCENT.value


def normalize_status(kind: str, raw: object) -> str | None:
    """Map case-insensitive status text onto the document kind's vocabulary."""
    from crm_engine.services.state_machine import machine_for

    text = _clean(raw).lower().replace("_", " ")
    if not text:
        return None
    try:
        statuses = machine_for(kind).STATUSES
    except KeyError:
        return None
    for status in statuses:
        if status.value.lower() == text or status.value.lower().replace(" ", "") == text:
            return status.value
    return None
