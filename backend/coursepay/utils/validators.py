"""
Validators - Rule-based checks for purchase requests and money handling.
"""
import math
import re
from decimal import Decimal, ROUND_HALF_UP

EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")

# Content ids are embedded in the payment reference, so keep them to safe characters
CONTENT_ID_PATTERN = re.compile(r"^[A-Za-z0-9-]{1,64}$")

MAX_AMOUNT = Decimal("9999999999.99")


def validate_email(email: str | None) -> bool:
    """Validate a customer email: local@domain.tld."""
    if not email:
        return False
    return bool(EMAIL_PATTERN.match(email.strip()))


def validate_content_id(content_id: str | None) -> bool:
    """Validate a content id: 1-64 letters, digits or hyphens (UUIDs, slugs)."""
    if not content_id:
        return False
    return bool(CONTENT_ID_PATTERN.match(content_id))


def validate_amount(amount) -> tuple[bool, str]:
    """Validate a purchase amount in major units.
    Must be finite, positive, at most two decimal places and within storage range.
    """
    if isinstance(amount, float) and not math.isfinite(amount):
        return False, "Amount must be a finite number"
    try:
        value = Decimal(str(amount))
    except ArithmeticError:
        return False, "Amount must be a number"
    if value <= 0:
        return False, "Amount must be greater than zero"
    if value > MAX_AMOUNT:
        return False, "Amount is too large"
    if value != value.quantize(Decimal("0.01")):
        return False, "Amount must have at most two decimal places"
    return True, "Valid"


def to_minor_units(amount) -> int:
    """Convert a major-unit amount to the gateway's minor units (cents/kobo)."""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
