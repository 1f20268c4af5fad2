"""Target URL validation and sanitization."""

from urllib.parse import unquote_plus, urlsplit, urlunsplit

import validators

__all__ = ["ALLOWED_SCHEMES", "MAX_URL_LENGTH", "TRACKING_PARAMS", "is_valid_target", "sanitize_target"]

ALLOWED_SCHEMES = frozenset({"http", "https"})
MAX_URL_LENGTH = 2048

TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "msclkid",
    }
)


def is_valid_target(url: object) -> bool:
    """Absolute URL with an http or https scheme, within the length limit."""
    if not isinstance(url, str) or not url or len(url) > MAX_URL_LENGTH:
        return False
    try:
        scheme = urlsplit(url).scheme
    except ValueError:
        return False
    if scheme.lower() not in ALLOWED_SCHEMES:
        return False
    return bool(validators.url(url))


def sanitize_target(url: str) -> str:
    """Drop known tracking query parameters; every other segment is kept byte for byte."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.query:
        return url
    segments = parts.query.split("&")
    kept = [s for s in segments if unquote_plus(s.partition("=")[0]).lower() not in TRACKING_PARAMS]
    if len(kept) == len(segments):
        return url
    return urlunsplit((parts.scheme, parts.netloc, parts.path, "&".join(kept), parts.fragment))
