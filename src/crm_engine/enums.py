"""Fixed vocabularies shared by normalizers and calculators."""

from enum import Enum


class Unit(str, Enum):
    """Line item units."""

    PCS = "Pcs"
    KG = "Kg"
    HOURS = "Hours"
    DAYS = "Days"


class DiscountType(str, Enum):
    """Document-level discount types."""

    PERCENT = "percent"
    FIXED = "fixed"


class BillingFrequency(str, Enum):
    """Recurring invoice frequencies accepted by storage."""

    MONTHLY = "Monthly"
    QUARTERLY = "Quarterly"
    YEARLY = "Yearly"


class ActorType(str, Enum):
    """Audience a module applies to."""

    ADMIN = "ADMIN"
    EMPLOYEE = "EMPLOYEE"
    CLIENT = "CLIENT"
    ALL = "ALL"
