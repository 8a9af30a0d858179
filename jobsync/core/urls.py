from __future__ import annotations

import hashlib
import re
from urllib.parse import parse_qsl, urlencode, urljoin, urlparse, urlunparse

TRACKING_KEYS = {"ref", "fbclid", "gclid"}
_WHITESPACE_RE = re.compile(r"\s+")


def content_hash(*parts: str | None) -> str:
    normalized = "\x1f".join(_WHITESPACE_RE.sub(" ", (part or "")).strip().lower() for part in parts)
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def is_http_url(value: str | None) -> bool:
    if not value:
        return False
    parsed = urlparse(value.strip())
    return parsed.scheme.lower() in {"http", "https"} and bool(parsed.netloc)


def normalize_url(raw_url: str) -> str:
    parsed = urlparse(raw_url.strip())

    scheme = parsed.scheme.lower()
    netloc = parsed.netloc.lower()
    if ":" in netloc:
        host, port = netloc.rsplit(":", maxsplit=1)
        if (scheme == "http" and port == "80") or (scheme == "https" and port == "443"):
            netloc = host

    path = parsed.path or "/"
    if path != "/" and path.endswith("/"):
        path = path[:-1]

    query_pairs = [
        (key, value)
        for key, value in parse_qsl(parsed.query, keep_blank_values=True)
        if not _is_tracking_param(key.lower())
    ]
    query = urlencode(query_pairs, doseq=True)
    return urlunparse((scheme, netloc, path, "", query, ""))


def resolve_apply_url(raw_url: str | None, *, base_url: str | None = None, fallback: str | None = None) -> str | None:
    """Return an absolute, tracking-free apply URL, or ``fallback`` when upstream gave nothing usable."""
    candidate = (raw_url or "").strip()
    if candidate and base_url and not is_http_url(candidate):
        candidate = urljoin(base_url, candidate)
    if is_http_url(candidate):
        return normalize_url(candidate)
    if fallback and is_http_url(fallback):
        return normalize_url(fallback)
    return None


def _is_tracking_param(key: str) -> bool:
    return key.startswith("utm_") or key in TRACKING_KEYS
