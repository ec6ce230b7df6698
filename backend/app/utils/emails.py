"""Email address normalization and validation."""

from typing import Optional

from email_validator import EmailNotValidError, validate_email

from app.core.errors import ValidationError


def normalize_email(value: Optional[str]) -> str:
    """Lowercase and trim an address; directory lookups compare this form only."""
    return (value or "").strip().lower()


def validate_email_address(value: Optional[str]) -> str:
    """Return the normalized address, or raise ``ValidationError`` if it is not one."""
    email = normalize_email(value)
    try:
        validate_email(email, check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError("A valid email address is required", details={"email": email}) from exc
    return email
