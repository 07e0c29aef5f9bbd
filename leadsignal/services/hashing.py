import hashlib
import re
from typing import Optional

from leadsignal.core.constants import CONSUMER_EMAIL_DOMAINS
from leadsignal.schemas.common import EmailType

_PHONE_STRIP = re.compile(r"[^\d+]")


def _sha256(value: str) -> str:
    return hashlib.sha256(value.encode("utf-8")).hexdigest()


def normalize_email(email: str) -> str:
    return email.strip().lower()


def normalize_phone(phone: str) -> str:
    """Keep only digits and ``+`` so formatting never changes the hash."""
    return _PHONE_STRIP.sub("", phone)


def hash_email(email: Optional[str]) -> Optional[str]:
    """SHA-256 hex digest of the normalized address (the Meta/Google match key)."""
    if not email:
        return None
    return _sha256(normalize_email(email))


def hash_phone(phone: Optional[str]) -> Optional[str]:
    if not phone:
        return None
    normalized = normalize_phone(phone)
    if not normalized:
        return None
    return _sha256(normalized)


def email_domain(email: Optional[str]) -> Optional[str]:
    if not email or "@" not in email:
        return None
    return normalize_email(email).rsplit("@", 1)[1]


def is_consumer_email(email: Optional[str]) -> bool:
    domain = email_domain(email)
    return domain is not None and domain in CONSUMER_EMAIL_DOMAINS


def get_email_type(email: Optional[str]) -> Optional[EmailType]:
    """Classify an address as business or consumer; ``None`` without an email."""
    if email_domain(email) is None:
        return None
    return EmailType.consumer if is_consumer_email(email) else EmailType.business
