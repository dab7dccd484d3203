"""
Brand Detection
Maps the recipient mailbox of an incoming email to one of the company's brands

Pure functions over an injected BrandRules table, so detection can be tested
without network or storage.

Examples:
    >>> detect_brand("support@boxhub.com", DEFAULT_BRAND_RULES)
    'Boxhub'
    >>> detect_brand("sales@unknown.org", BrandRules(patterns=()))
    'General'
"""
import re
from dataclasses import dataclass, field
from typing import Optional, Pattern, Sequence, Tuple

from email.utils import getaddresses

FALLBACK_BRAND = "General"


@dataclass(frozen=True)
class BrandRules:
    """
    generic_mailboxes: local parts whose domain names the brand
    patterns: ordered (regex, brand) pairs tried against the full address
    """
    generic_mailboxes: Tuple[str, ...] = ("support", "info", "hello")
    patterns: Tuple[Tuple[Pattern, str], ...] = field(default_factory=tuple)
    fallback: str = FALLBACK_BRAND

    @classmethod
    def from_pairs(cls, pairs: Sequence[Tuple[str, str]], **kwargs) -> "BrandRules":
        return cls(patterns=tuple((re.compile(regex, re.IGNORECASE), brand) for regex, brand in pairs), **kwargs)


DEFAULT_BRAND_RULES = BrandRules.from_pairs([
    (r"@(?:[\w-]+\.)*containers?-?direct\.", "Container Direct"),
    (r"@(?:[\w-]+\.)*boxtrade\.", "BoxTrade"),
    (r"@(?:[\w-]+\.)*cargobox\.", "CargoBox"),
    (r"@(?:[\w-]+\.)*storagecontainers?\.", "Storage Containers"),
])


def extract_address(header_value: Optional[str]) -> str:
    """'Jane <jane@x.com>' -> 'jane@x.com' (first address, lowercased)."""
    if not header_value:
        return ""
    addresses = [addr for _name, addr in getaddresses([header_value]) if addr]
    return addresses[0].lower() if addresses else header_value.strip().lower()


def detect_brand(to_address: Optional[str], rules: BrandRules) -> str:
    """
    Derive the brand from the address an email was sent to.

    Generic mailboxes (support@, info@, hello@) take the brand from their
    domain; otherwise the first matching pattern wins.
    """
    address = extract_address(to_address)
    if "@" not in address:
        return rules.fallback

    local, domain = address.split("@", 1)
    if local in rules.generic_mailboxes:
        return domain.split(".")[0].capitalize()

    for pattern, brand in rules.patterns:
        if pattern.search(address):
            return brand

    return rules.fallback
