"""Static sender-domain classification used as a categorization feature."""

from __future__ import annotations

from enum import Enum


class SenderDomainType(str, Enum):
    PERSONAL = "personal"
    NEWSLETTER = "newsletter"
    SOCIAL = "social"
    BUSINESS = "business"
    UNKNOWN = "unknown"


# Checked in order. Entries with a dot match the domain or its subdomains,
# bare brand names match as substrings. Unknown domains default to business.
DOMAIN_TABLE: tuple[tuple[SenderDomainType, tuple[str, ...]], ...] = (
    (
        SenderDomainType.PERSONAL,
        ("gmail.com", "googlemail.com", "hotmail.com", "outlook.com", "live.com",
         "yahoo.com", "icloud.com", "me.com", "proton.me", "protonmail.com"),
    ),
    (
        SenderDomainType.NEWSLETTER,
        ("substack", "medium.com", "mailchimp", "beehiiv", "buttondown"),
    ),
    (
        SenderDomainType.SOCIAL,
        ("linkedin", "facebook", "facebookmail", "instagram", "twitter", "x.com", "reddit"),
    ),
)


def sender_domain(sender_email: str | None) -> str | None:
    if not sender_email or "@" not in sender_email:
        return None
    domain = sender_email.rsplit("@", 1)[1].strip().lower()
    return domain or None


def _matches(domain: str, needle: str) -> bool:
    if "." in needle:
        return domain == needle or domain.endswith("." + needle)
    return needle in domain


def classify_sender_domain(sender_email: str | None) -> SenderDomainType:
    """Derive the sender's domain type from its email address."""

    domain = sender_domain(sender_email)
    if domain is None:
        return SenderDomainType.UNKNOWN

    for domain_type, needles in DOMAIN_TABLE:
        if any(_matches(domain, needle) for needle in needles):
            return domain_type
    return SenderDomainType.BUSINESS
