"""Splitting queries and documents into search tokens."""
from __future__ import annotations

import logging
import re
from concurrent.futures import Executor

from application.services.cancellation import CancellationToken, ProviderTimeout, call_with_timeout
from domain.errors import SearchCancelledError
from domain.interfaces import ChatProvider

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 2

ENGLISH_STOP_WORDS = frozenset(
    {
        "the", "a", "an", "is", "are", "was", "were", "in", "on", "at",
        "to", "for", "of", "with", "how", "what", "where", "when",
    }
)
CHINESE_STOP_WORDS = frozenset({"的", "了", "是", "在", "和", "与", "怎么", "如何", "什么", "一个"})

_CJK_CHARS = "\u3400-\u4dbf\u4e00-\u9fff\uf900-\ufaff"
_CJK_RE = re.compile(f"[{_CJK_CHARS}]")
_CJK_RUN_RE = re.compile(f"[{_CJK_CHARS}]+")
_CJK_PUNCTUATION_RE = re.compile(r"[，。！？、；：（）《》“”‘’]")
_PUNCTUATION_RE = re.compile(r"[^\w\s-]")
_SEPARATOR_RE = re.compile(r"[\s_-]+")
_CAMEL_RE = re.compile(r"([a-z0-9])([A-Z])")
_ACRONYM_RE = re.compile(r"([A-Z]+)([A-Z][a-z])")
_REPLY_SPLIT_RE = re.compile(r"[，,、;；\s]+")

_KEYWORD_PROMPT = (
    "Extract 4-8 core search keywords from the query below.\n"
    "If the query is not in English, give the keywords in the original language "
    "and add their English translations or synonyms.\n"
    "Return only the keywords separated by commas, without explanations.\n\n"
    "Query: {query}"
)


def contains_cjk(text: str) -> bool:
    return bool(_CJK_RE.search(text or ""))


def _split_words(text: str) -> list[str]:
    text = _CJK_PUNCTUATION_RE.sub(" ", text)
    text = _PUNCTUATION_RE.sub(" ", text)
    return [part for part in _SEPARATOR_RE.split(text) if part]


def _split_camel(word: str) -> list[str]:
    expanded = _CAMEL_RE.sub(r"\1 \2", word)
    expanded = _ACRONYM_RE.sub(r"\1 \2", expanded)
    return expanded.split()


def _expand_cjk(word: str) -> list[str]:
    """Split a word at script boundaries and add bigrams of CJK runs."""
    if not contains_cjk(word):
        return [word]
    pieces: list[str] = []
    last = 0
    for match in _CJK_RUN_RE.finditer(word):
        if match.start() > last:
            pieces.append(word[last : match.start()])
        run = match.group()
        pieces.append(run)
        if len(run) > 2:
            pieces.extend(run[i : i + 2] for i in range(len(run) - 1))
        last = match.end()
    if last < len(word):
        pieces.append(word[last:])
    return pieces


def tokenize_query(normalized: str) -> tuple[str, ...]:
    """Ordered, deduplicated tokens of an already normalized query."""
    if not normalized:
        return ()
    stop_words = ENGLISH_STOP_WORDS | CHINESE_STOP_WORDS if contains_cjk(normalized) else ENGLISH_STOP_WORDS
    tokens: list[str] = []
    for word in _split_words(normalized):
        for piece in _expand_cjk(word):
            if len(piece) < MIN_TOKEN_LENGTH or piece in stop_words:
                continue
            tokens.append(piece)
    unique = tuple(dict.fromkeys(tokens))
    return unique or (normalized,)


def tokenize_document(text: str) -> list[str]:
    """Tokens of a document body, repeated as often as they occur."""
    if not text:
        return []
    tokens: list[str] = []
    for word in _split_words(text):
        parts = _split_camel(word)
        candidates = [part.lower() for part in parts]
        if len(parts) > 1:
            candidates.append(word.lower())
        for candidate in candidates:
            tokens.extend(piece for piece in _expand_cjk(candidate) if len(piece) >= MIN_TOKEN_LENGTH)
    return tokens


class KeywordSplitter:
    """Local tokenization, optionally widened by an LLM keyword extractor."""

    def __init__(
        self,
        extractor: ChatProvider | None = None,
        *,
        executor: Executor | None = None,
        timeout_seconds: float = 5.0,
        min_length: int = 16,
        max_extra_tokens: int = 10,
    ) -> None:
        if extractor is not None and executor is None:
            raise ValueError("An executor is required when a keyword extractor is configured.")
        self._extractor = extractor
        self._executor = executor
        self._timeout = timeout_seconds
        self._min_length = min_length
        self._max_extra_tokens = max_extra_tokens

    def split(self, normalized: str, token: CancellationToken | None = None) -> tuple[str, ...]:
        tokens = tokenize_query(normalized)
        if self._extractor is None or len(normalized) < self._min_length:
            return tokens
        extra = self._extract(normalized, token)
        if not extra:
            return tokens
        return tuple(dict.fromkeys([*tokens, *extra]))

    def _extract(self, normalized: str, token: CancellationToken | None) -> list[str]:
        assert self._extractor is not None and self._executor is not None
        prompt = _KEYWORD_PROMPT.format(query=normalized)
        try:
            reply = call_with_timeout(
                self._executor,
                self._extractor.chat,
                prompt,
                timeout=self._timeout,
                token=token,
            )
        except SearchCancelledError:
            raise
        except ProviderTimeout:
            logger.warning("Keyword extraction timed out after %.2fs, using local tokens.", self._timeout)
            return []
        except Exception as exc:  # noqa: BLE001 - any provider failure degrades
            logger.warning("Keyword extraction failed, using local tokens: %s", exc)
            return []
        return self._parse_reply(reply)

    def _parse_reply(self, reply: object) -> list[str]:
        keywords: list[str] = []
        for raw in _REPLY_SPLIT_RE.split(str(reply or "")):
            keyword = raw.strip(" \"'.-*").lower()
            if len(keyword) < MIN_TOKEN_LENGTH or keyword in keywords:
                continue
            keywords.append(keyword)
        return keywords[: self._max_extra_tokens]


__all__ = [
    "ENGLISH_STOP_WORDS",
    "CHINESE_STOP_WORDS",
    "KeywordSplitter",
    "contains_cjk",
    "tokenize_document",
    "tokenize_query",
]
