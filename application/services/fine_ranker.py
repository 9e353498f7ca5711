"""Optional second ranking pass over the head of the fused list."""
from __future__ import annotations

import logging
from typing import Mapping, Sequence

from domain.entities import Query, RankingContext, RankingFeatures, ScoredCandidate
from domain.interfaces import RankingModel

logger = logging.getLogger(__name__)


class FeatureExtractor:
    """Builds :class:`RankingFeatures` for a candidate."""

    def extract(self, query: Query, candidate: ScoredCandidate, context: RankingContext) -> RankingFeatures:
        document = candidate.document
        return RankingFeatures(
            bm25=candidate.scores.bm25,
            semantic=candidate.scores.semantic,
            query_length=len(query.normalized),
            title_length=len(document.title),
            content_length=len(document.content),
            freshness=candidate.scores.freshness,
            popularity=candidate.scores.popularity,
            language_match=int(_same(context.language, document.language)),
            category_match=int(_same(context.category, document.category)),
        )


def _same(expected: str | None, actual: str | None) -> bool:
    return bool(expected) and bool(actual) and expected.lower() == actual.lower()


class NoOpRankingModel(RankingModel):
    """Scores every candidate equally, which keeps the fused order."""

    def predict(self, features: Sequence[RankingFeatures]) -> list[float]:  # pragma: no cover - trivial
        return [0.0] * len(features)


class LinearRankingModel(RankingModel):
    """Weighted sum of features, e.g. weights fitted offline on click logs."""

    DEFAULT_WEIGHTS: Mapping[str, float] = {
        "bm25": 0.35,
        "semantic": 0.35,
        "freshness": 0.1,
        "popularity": 0.1,
        "language_match": 0.05,
        "category_match": 0.05,
    }

    def __init__(self, weights: Mapping[str, float] | None = None, bias: float = 0.0) -> None:
        self._weights = dict(weights or self.DEFAULT_WEIGHTS)
        self._bias = bias

    def predict(self, features: Sequence[RankingFeatures]) -> list[float]:
        return [
            self._bias + sum(weight * float(getattr(item, name, 0.0)) for name, weight in self._weights.items())
            for item in features
        ]


class FineRanker:
    """Re-scores the top ``top_n`` candidates with a pluggable model.

    Without a model the input order is returned unchanged. A model that
    fails or returns the wrong number of scores is ignored.
    """

    def __init__(
        self,
        model: RankingModel | None = None,
        *,
        top_n: int = 40,
        feature_extractor: FeatureExtractor | None = None,
    ) -> None:
        self._model = model
        self._top_n = max(top_n, 1)
        self._features = feature_extractor or FeatureExtractor()

    @property
    def top_n(self) -> int:
        return self._top_n

    @property
    def enabled(self) -> bool:
        return self._model is not None

    def rerank(
        self,
        query: Query,
        candidates: Sequence[ScoredCandidate],
        context: RankingContext | None = None,
    ) -> list[ScoredCandidate]:
        if self._model is None or not candidates:
            return list(candidates)
        head = list(candidates[: self._top_n])
        tail = list(candidates[self._top_n :])
        features = [self._features.extract(query, candidate, context or RankingContext()) for candidate in head]
        try:
            predicted = list(self._model.predict(features))
        except Exception as exc:  # noqa: BLE001 - the fused order stays valid without the model
            logger.warning("Fine ranking model failed, keeping fused order: %s", exc)
            return list(candidates)
        if len(predicted) != len(head):
            logger.warning(
                "Fine ranking model returned %d scores for %d candidates, keeping fused order.",
                len(predicted),
                len(head),
            )
            return list(candidates)

        for candidate, score in zip(head, predicted):
            candidate.fine_score = float(score)
        order = sorted(range(len(head)), key=lambda position: (-head[position].fine_score, position))
        return [head[position] for position in order] + tail


__all__ = ["FeatureExtractor", "FineRanker", "LinearRankingModel", "NoOpRankingModel"]
