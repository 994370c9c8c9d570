"""Stripping of untrusted text before it is stored or broadcast."""

from __future__ import annotations

import re
from functools import lru_cache

_TAG_RE = re.compile(r"<[^>]*>?")
_QUOTE_RE = re.compile(r"[\"'`]")


@lru_cache(maxsize=32)
def _disallowed_re(allowed: str) -> re.Pattern[str]:
    return re.compile(f"[^{allowed}]", re.IGNORECASE)


def sanitize(value, allowed: str | None = None) -> str:
    """Remove markup and quotes from ``value``.

    ``allowed`` is the body of a regex character class (``"A-Za-z0-9_-"``).
    When given, every character outside that class is dropped as well.
    """
    try:
        if not value:
            return ""
        s = str(value)
    except Exception:
        return ""

    s = _TAG_RE.sub("", s)
    s = _QUOTE_RE.sub("", s)
    if allowed:
        s = _disallowed_re(allowed).sub("", s)
    return s
