"""Errors raised by the search core."""
from __future__ import annotations


class SearchError(Exception):
    """A search could not produce any result."""


class CorpusUnavailableError(SearchError):
    """The knowledge-base corpus could not be read."""


class SearchCancelledError(SearchError):
    """The caller cancelled the search or its deadline passed."""


class IndexCorruptedError(Exception):
    """The persisted index file exists but cannot be used."""


__all__ = [
    "SearchError",
    "CorpusUnavailableError",
    "SearchCancelledError",
    "IndexCorruptedError",
]
