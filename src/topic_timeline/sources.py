from __future__ import annotations

import re
from typing import Any, List, Optional
from urllib.parse import urlsplit, urlunsplit

import idna


_EMBEDDED_URL_RE = re.compile(r"(https?://[^\s<>\"']+)", re.IGNORECASE)
_ALLOWED_SCHEMES = {"http", "https"}


def _normalize_host(host: str) -> Optional[str]:
    host = host.strip().lower().rstrip(".")
    if not host:
        return None
    if host.isascii():
        return host
    # Unicode hosts are stored as punycode so the same site always compares equal
    try:
        return idna.encode(host, uts46=True).decode("ascii")
    except idna.IDNAError:
        return None


def normalize_url(candidate: str) -> Optional[str]:
    """
    Parse *candidate* as an absolute http(s) URL and return its normalized form,
    or None when it is not one.

    Normalization only touches the scheme, the host and an empty path:
      "HTTPS://Example.COM"  -> "https://example.com/"
      "https://example.com/a?b=1#c" is kept as is
    """
    if not candidate or any(ch.isspace() for ch in candidate):
        return None
    try:
        parts = urlsplit(candidate)
        port = parts.port
    except ValueError:
        return None

    scheme = (parts.scheme or "").lower()
    if scheme not in _ALLOWED_SCHEMES:
        return None
    if not parts.hostname:
        return None

    host = _normalize_host(parts.hostname)
    if not host:
        return None

    netloc = f"[{host}]" if ":" in host else host
    if parts.username:
        userinfo = parts.username + (f":{parts.password}" if parts.password else "")
        netloc = f"{userinfo}@{netloc}"
    if port is not None and not (scheme == "http" and port == 80) and not (scheme == "https" and port == 443):
        netloc = f"{netloc}:{port}"

    path = parts.path or "/"
    return urlunsplit((scheme, netloc, path, parts.query, parts.fragment))


def validate_source(raw: Any) -> Optional[str]:
    if not isinstance(raw, str):
        return None
    s = raw.strip()
    if not s:
        return None

    direct = normalize_url(s)
    if direct:
        return direct

    m = _EMBEDDED_URL_RE.search(s)
    if m:
        return normalize_url(m.group(1))
    return None


def validate_sources(raw_sources: Any) -> List[str]:
    """
    Keep only what reduces to an absolute http(s) URL.

    Each element is trimmed and parsed directly; failing that, the first
    http(s)://... substring is rescued from the surrounding prose. Anything else
    is dropped. Non-list input gives [].
    """
    if not isinstance(raw_sources, (list, tuple)):
        return []
    out: List[str] = []
    for raw in raw_sources:
        url = validate_source(raw)
        if url is not None:
            out.append(url)
    return out
