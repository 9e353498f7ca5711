"""Canonical form of raw query text."""
from __future__ import annotations

import re

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query(raw: object) -> str:
    """Trim, lowercase and collapse internal whitespace to single spaces."""
    if not isinstance(raw, str):
        return ""
    return _WHITESPACE_RE.sub(" ", raw.strip()).lower()


__all__ = ["normalize_query"]
