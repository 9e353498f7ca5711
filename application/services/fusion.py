"""Fusion of keyword and semantic candidates into one ranked list."""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Iterable

from domain.entities import Document, ScoreBreakdown, ScoredCandidate, ScoreWeights

_SECONDS_PER_DAY = 86_400.0


@dataclass(frozen=True, slots=True)
class KeywordHit:
    document: Document
    bm25: float
    matched_tokens: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class SemanticHit:
    document: Document
    similarity: float


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class FusionEngine:
    """Merges candidates by document id and orders them by composite score.

    ``composite = w_bm25 * bm25 / max(bm25) + w_semantic * semantic
    + w_freshness * exp(-age_days / decay) + w_popularity * popularity``.
    Ties are broken by the number of matched query tokens, then by id.
    """

    def __init__(
        self,
        *,
        popularity_cap: int = 1000,
        freshness_decay_days: float = 30.0,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._popularity_norm = math.log(max(popularity_cap, 1) + 1)
        self._decay_days = freshness_decay_days
        self._clock = clock

    def freshness(self, document: Document, now: datetime | None = None) -> float:
        if document.updated_at is None:
            return 0.0
        updated_at = document.updated_at
        if updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        current = now or self._clock()
        age_days = max((current - updated_at).total_seconds() / _SECONDS_PER_DAY, 0.0)
        return math.exp(-age_days / self._decay_days)

    def popularity(self, document: Document) -> float:
        usage = max(document.usage_count, 0)
        return min(math.log(usage + 1) / self._popularity_norm, 1.0)

    def fuse(
        self,
        keyword_hits: Iterable[KeywordHit],
        semantic_hits: Iterable[SemanticHit],
        *,
        weights: ScoreWeights,
        limit: int | None = None,
    ) -> list[ScoredCandidate]:
        merged: dict[str, dict] = {}
        for hit in keyword_hits:
            entry = merged.setdefault(hit.document.id, {"document": hit.document, "bm25": 0.0, "semantic": 0.0, "tokens": []})
            entry["bm25"] += hit.bm25
            entry["tokens"].extend(token for token in hit.matched_tokens if token not in entry["tokens"])
        for hit in semantic_hits:
            entry = merged.setdefault(hit.document.id, {"document": hit.document, "bm25": 0.0, "semantic": 0.0, "tokens": []})
            entry["semantic"] = max(entry["semantic"], hit.similarity)

        max_bm25 = max((entry["bm25"] for entry in merged.values()), default=0.0)
        now = self._clock()
        candidates: list[ScoredCandidate] = []
        for entry in merged.values():
            document: Document = entry["document"]
            scores = ScoreBreakdown(
                bm25=entry["bm25"],
                semantic=entry["semantic"],
                freshness=self.freshness(document, now),
                popularity=self.popularity(document),
            )
            normalized_bm25 = scores.bm25 / max_bm25 if max_bm25 > 0 else 0.0
            composite = (
                weights.bm25 * normalized_bm25
                + weights.semantic * scores.semantic
                + weights.freshness * scores.freshness
                + weights.popularity * scores.popularity
            )
            candidates.append(
                ScoredCandidate(
                    document=document,
                    scores=scores,
                    composite_score=composite,
                    match_count=len(entry["tokens"]),
                    matched_tokens=tuple(entry["tokens"]),
                )
            )

        candidates.sort(key=self.sort_key)
        if limit is not None:
            return candidates[:limit]
        return candidates

    @staticmethod
    def sort_key(candidate: ScoredCandidate) -> tuple[float, int, str]:
        return (-round(candidate.composite_score, 9), -candidate.match_count, candidate.document.id)


__all__ = ["FusionEngine", "KeywordHit", "SemanticHit"]
