"""Эмбеддер сниппетов и рецептов на базе sentence-transformers."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Sequence

from sentence_transformers import SentenceTransformer

from domain.interfaces import Embedder

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sentence-transformers/paraphrase-multilingual-MiniLM-L12-v2"


@dataclass(slots=True)
class SentenceTransformersConfig:
    model_name: str = DEFAULT_MODEL
    device: str = "cpu"
    batch_size: int = 16
    max_chars: int = 4000
    query_prefix: str | None = None
    passage_prefix: str | None = None


class SentenceTransformersEmbedder(Embedder):
    """Многоязычная модель: запросы на китайском и английском попадают в одно пространство.

    Модель загружается при первом обращении, чтобы CLI-команды без
    семантики не платили за загрузку весов.
    """

    def __init__(self, config: SentenceTransformersConfig | None = None) -> None:
        self._config = config or SentenceTransformersConfig()
        self._model: SentenceTransformer | None = None
        self._lock = threading.Lock()

    @property
    def model_id(self) -> str:
        return self._config.model_name

    def _get_model(self) -> SentenceTransformer:
        if self._model is None:
            with self._lock:
                if self._model is None:
                    logger.info("Загрузка модели sentence-transformers: %s", self._config.model_name)
                    self._model = SentenceTransformer(self._config.model_name, device=self._config.device)
        return self._model

    def _encode(self, texts: list[str], batch_size: int) -> list[list[float]]:
        embeddings = self._get_model().encode(
            texts,
            batch_size=batch_size,
            normalize_embeddings=True,
            show_progress_bar=False,
        )
        return embeddings.tolist()

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        prepared = [f"{self._config.passage_prefix or ''}{text[: self._config.max_chars]}" for text in texts]
        logger.debug("Кодирование %d документов моделью %s", len(prepared), self._config.model_name)
        return self._encode(prepared, self._config.batch_size)

    def embed_query(self, text: str) -> list[float]:
        if not text.strip():
            return []
        return self._encode([f"{self._config.query_prefix or ''}{text}"], 1)[0]


__all__ = ["DEFAULT_MODEL", "SentenceTransformersConfig", "SentenceTransformersEmbedder"]
