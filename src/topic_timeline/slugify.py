from __future__ import annotations

import re
import secrets
import string

_SLUG_ALPHABET = string.ascii_lowercase + string.digits
# nanoid's URL-safe alphabet
_ID_ALPHABET = string.ascii_letters + string.digits + "_-"

_SLUG_RE = re.compile(r"^[a-z0-9-]+-[a-z0-9]{8}$", re.IGNORECASE)


def _random(alphabet: str, size: int) -> str:
    return "".join(secrets.choice(alphabet) for _ in range(size))


def generate_slug(topic: str) -> str:
    """
    "Bitcoin Price!" -> "bitcoin-price-x7k2m9qa"

    The base is capped at 50 chars; the 8-char suffix keeps two timelines on the
    same topic apart.
    """
    base = topic.lower().strip()
    base = re.sub(r"[^\w\s-]", "", base)
    base = re.sub(r"\s+", "-", base)
    base = re.sub(r"-+", "-", base)[:50]
    return f"{base}-{_random(_SLUG_ALPHABET, 8)}"


def is_valid_slug(slug: str) -> bool:
    return bool(_SLUG_RE.match(slug or ""))


def new_id(size: int = 21) -> str:
    return _random(_ID_ALPHABET, size)
