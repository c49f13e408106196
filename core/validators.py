"""
Input validation utilities for the lost & found API.
"""
from typing import Iterable, Optional

from core.exceptions import ValidationError
import config


def normalize_email(email: str) -> str:
    """Trim and lowercase an email address for storage and lookups."""
    return (email or "").strip().lower()


def email_domain(email: str) -> Optional[str]:
    """
    Return the lowercase domain part of an email address.

    Args:
        email: Email address

    Returns:
        Domain (e.g. "lpu.edu.ph") or None if the address has no "@"
    """
    email = normalize_email(email)
    if "@" not in email:
        return None
    domain = email.rsplit("@", 1)[1]
    return domain or None


def domain_in(email: str, domains: Iterable[str]) -> bool:
    domain = email_domain(email)
    return domain is not None and domain in set(domains)


def is_admin_email(email: str) -> bool:
    """Administrators are identified by the office email domain."""
    return domain_in(email, config.ADMIN_EMAIL_DOMAINS)


def is_user_email(email: str) -> bool:
    return domain_in(email, config.USER_EMAIL_DOMAINS)


def is_allowed_registration_email(email: str) -> bool:
    """Registration is open to every configured end-user and admin domain."""
    return is_user_email(email) or is_admin_email(email)


def clean_text(value: Optional[str], max_length: int = 255, field: str = "Value") -> Optional[str]:
    """
    Strip surrounding whitespace and enforce a maximum length.

    Returns None for empty input so optional columns stay NULL.

    Raises:
        ValidationError: If the stripped value is longer than max_length
    """
    if value is None:
        return None
    value = value.strip()
    if not value:
        return None
    if len(value) > max_length:
        raise ValidationError(f"{field} is too long (maximum {max_length} characters)")
    return value


def require_text(value: Optional[str], field: str, max_length: int = 255) -> str:
    """
    Like clean_text but for mandatory fields.

    Raises:
        ValidationError: If the value is missing or blank
    """
    cleaned = clean_text(value, max_length=max_length, field=field)
    if cleaned is None:
        raise ValidationError(f"{field} is required")
    return cleaned
