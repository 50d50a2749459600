"""Contact address helpers.

A contact is either an email address or a phone number. Both OTP stores
key records by the normalized form returned here.
"""

from typing import Literal

ContactChannel = Literal["email", "phone"]


def normalize_contact(contact: str) -> str:
    """Strip whitespace; lower-case email addresses.

    Phone numbers keep their formatting apart from surrounding whitespace.
    """
    value = contact.strip()
    if "@" in value:
        return value.lower()
    return value


def infer_channel(contact: str) -> ContactChannel:
    """Email when the contact contains '@', phone otherwise."""
    return "email" if "@" in contact else "phone"


def mask_contact(contact: str) -> str:
    """Mask a contact for log lines: ``a***@e***.com`` / ``+63***89``."""
    if not contact:
        return ""
    if "@" in contact:
        local, domain = contact.split("@", 1)
        dot = domain.rfind(".")
        tld = domain[dot:] if dot > 0 else ""
        return f"{local[:1]}***@{domain[:1]}***{tld}"
    if len(contact) <= 4:
        return "***"
    return f"{contact[:3]}***{contact[-2:]}"
