"""URL normalization and source classification.

Both functions are pure: no network access, no shared state.
"""

import re
from enum import Enum
from typing import List, Tuple
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from services.shared.errors import InvalidUrlError

ALLOWED_SCHEMES = {"http", "https"}
DEFAULT_PORTS = {"http": 80, "https": 443}

TRACKING_PARAMS = {
    "fbclid",
    "gclid",
    "dclid",
    "msclkid",
    "yclid",
    "mc_cid",
    "mc_eid",
    "igshid",
    "ref_src",
    "ref_url",
    "_hsenc",
    "_hsmi",
}
TRACKING_PREFIXES = ("utm_",)


class SourceType(str, Enum):
    """Coarse classification of where a capture came from."""
    WEB = "web"
    PDF = "pdf"
    TWITTER = "twitter"
    INSTAGRAM = "instagram"
    LINKEDIN = "linkedin"
    PINTEREST = "pinterest"


# Ordered; first match wins.
PLATFORM_DOMAINS: List[Tuple[str, SourceType]] = [
    ("twitter.com", SourceType.TWITTER),
    ("x.com", SourceType.TWITTER),
    ("instagram.com", SourceType.INSTAGRAM),
    ("linkedin.com", SourceType.LINKEDIN),
    ("pinterest.com", SourceType.PINTEREST),
    ("pin.it", SourceType.PINTEREST),
]

ARXIV_ABSTRACT_PATTERN = re.compile(r"arxiv\.org/abs/", re.IGNORECASE)


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in TRACKING_PARAMS or lowered.startswith(TRACKING_PREFIXES)


def normalize(raw_url: str) -> str:
    """Normalize a user-submitted URL.

    Validates that the URL is an absolute HTTP(S) URL, lower-cases scheme and
    host, drops default ports, the fragment and tracking query parameters.

    Args:
        raw_url: URL as submitted by the user

    Returns:
        Normalized URL string

    Raises:
        InvalidUrlError: If the URL is empty, relative, not HTTP(S) or has no host
    """
    if not isinstance(raw_url, str) or not raw_url.strip():
        raise InvalidUrlError(str(raw_url), "URL is empty")

    candidate = raw_url.strip()
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(candidate, str(e))

    scheme = parts.scheme.lower()
    if not scheme:
        raise InvalidUrlError(candidate, "URL must be absolute")
    if scheme not in ALLOWED_SCHEMES:
        raise InvalidUrlError(candidate, f"scheme '{scheme}' is not supported")

    host = (parts.hostname or "").lower()
    if not host:
        raise InvalidUrlError(candidate, "URL has no host")

    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"
    if parts.username:
        userinfo = parts.username
        if parts.password:
            userinfo += f":{parts.password}"
        netloc = f"{userinfo}@{netloc}"

    path = parts.path or "/"

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parts.query, keep_blank_values=True)
        if not _is_tracking_param(key)
    ]
    query = urlencode(query_pairs, doseq=True)

    return urlunsplit((scheme, netloc, path, query, ""))


def _host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def is_document_url(url: str) -> bool:
    """Check whether a URL points at a PDF document or an arXiv abstract page."""
    lowered = url.lower()
    path = urlsplit(lowered).path
    return (
        path.endswith(".pdf")
        or "/pdf/" in path
        or "type=pdf" in lowered
        or "format=pdf" in lowered
        or bool(ARXIV_ABSTRACT_PATTERN.search(lowered))
    )


def classify(normalized_url: str) -> SourceType:
    """Map a normalized URL to exactly one source type."""
    host = (urlsplit(normalized_url).hostname or "").lower()
    for domain, source_type in PLATFORM_DOMAINS:
        if _host_matches(host, domain):
            return source_type
    if is_document_url(normalized_url):
        return SourceType.PDF
    return SourceType.WEB
