"""Shared payload helpers for the workflow blueprints and services.

normalize_email:   email_validator syntax check, lower-cased result
parse_email_list:  list of emails with size bounds and de-duplication
parse_bool:        JSON booleans and multipart "true"/"false" strings
clean_text:        strip, return None when empty
"""

from email_validator import EmailNotValidError, validate_email

from app.core.exceptions import ValidationError


_TRUE = {"true", "1", "yes", "on"}
_FALSE = {"false", "0", "no", "off"}


def normalize_email(value, field="email"):
    """Validate the syntax of an email address and return it lower-cased.

    Raises ValidationError on bad input. Deliverability (DNS) is not checked.
    """
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required", details={field: "required"})
    try:
        info = validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValidationError(f"{field} is not a valid email address", details={field: str(exc)}) from None
    return info.normalized.lower()


def parse_email_list(values, field, *, min_items=1, max_items=None):
    """Validate a list of emails, keeping first-seen order and dropping duplicates."""
    if not isinstance(values, (list, tuple)):
        raise ValidationError(f"{field} must be a list", details={field: "must be a list"})
    emails = list(dict.fromkeys(normalize_email(v, field) for v in values))
    if len(emails) < min_items:
        raise ValidationError(
            f"At least {min_items} entries are required in {field}",
            details={field: f"min {min_items}"},
        )
    if max_items is not None and len(emails) > max_items:
        raise ValidationError(
            f"At most {max_items} entries are allowed in {field}",
            details={field: f"max {max_items}"},
        )
    return emails


def parse_bool(value, field):
    """Accept real booleans plus the string forms multipart forms send."""
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE:
            return True
        if lowered in _FALSE:
            return False
    raise ValidationError(f"{field} must be a boolean", details={field: "must be true or false"})


def clean_text(value):
    """Return stripped text, or None for missing/blank values."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def require_text(value, field, message=None):
    text = clean_text(value)
    if text is None:
        raise ValidationError(message or f"{field} is required", details={field: "required"})
    return text
