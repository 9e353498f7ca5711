"""Embeddings from Ollama or an OpenAI-compatible HTTP endpoint."""
from __future__ import annotations

import logging
from typing import Sequence

import requests

from domain.interfaces import Embedder
from infrastructure.query.llm_keyword_extractor import LLMProviderConfig

logger = logging.getLogger(__name__)


class HttpEmbedder(Embedder):
    """Calls the provider's embedding API; HTTP errors propagate to the caller."""

    def __init__(self, config: LLMProviderConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self._session = session or requests.Session()

    @property
    def model_id(self) -> str:
        return f"{self._config.provider}:{self._config.embedding_model}"

    def embed_texts(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        if self._config.provider == "openai":
            return self._openai(list(texts))
        return [self._ollama(text) for text in texts]

    def embed_query(self, text: str) -> list[float]:
        if not text.strip():
            return []
        if self._config.provider == "openai":
            return self._openai([text])[0]
        return self._ollama(text)

    def _ollama(self, text: str) -> list[float]:
        response = self._session.post(
            f"{self._config.ollama_url}/api/embeddings",
            json={"model": self._config.embedding_model, "prompt": text},
            timeout=self._config.request_timeout,
        )
        response.raise_for_status()
        return [float(value) for value in response.json().get("embedding") or []]

    def _openai(self, texts: list[str]) -> list[list[float]]:
        response = self._session.post(
            f"{self._config.openai_url}/embeddings",
            headers={"Authorization": f"Bearer {self._config.api_key()}"},
            json={"model": self._config.embedding_model, "input": texts},
            timeout=self._config.request_timeout,
        )
        response.raise_for_status()
        data = sorted(response.json().get("data") or [], key=lambda item: item.get("index", 0))
        if len(data) != len(texts):
            logger.warning("Embedding endpoint returned %d vectors for %d texts.", len(data), len(texts))
        return [[float(value) for value in item.get("embedding") or []] for item in data]


__all__ = ["HttpEmbedder"]
