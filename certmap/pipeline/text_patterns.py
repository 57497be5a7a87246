"""
Shared text patterns for links and wallet addresses.
"""

import re

URL_RE = re.compile(r"https?://[^\s)]+", re.IGNORECASE)

# Embedded in free text: the 40 hex digits must not run on into more hex
ADDRESS_IN_TEXT_RE = re.compile(r"\b0x[a-fA-F0-9]{40}(?![a-fA-F0-9])")
STRICT_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")


def clean_url(url: str) -> str:
    """Drop one trailing slash and upgrade plain http to https."""
    if url.endswith("/"):
        url = url[:-1]
    if url[:7].lower() == "http://":
        url = "https://" + url[7:]
    return url


def find_urls(text: str) -> list[str]:
    """Every http(s) URL in text, cleaned, first occurrence wins."""
    found: list[str] = []
    for match in URL_RE.findall(text or ""):
        url = clean_url(match)
        if url and url not in found:
            found.append(url)
    return found


def is_strict_address(value: str) -> bool:
    return bool(STRICT_ADDRESS_RE.match(value))
