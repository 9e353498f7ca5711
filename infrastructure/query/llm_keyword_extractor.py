"""LLM chat providers used to extract search keywords from long queries."""
from __future__ import annotations

import logging
import os
from dataclasses import dataclass

import requests

from domain.interfaces import ChatProvider

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class LLMProviderConfig:
    provider: str = "ollama"
    model: str = "llama3.1"
    embedding_model: str = "nomic-embed-text"
    request_timeout: float = 30.0
    ollama_url: str = "http://localhost:11434"
    openai_api_key: str | None = None
    openai_url: str = "https://api.openai.com/v1"

    @classmethod
    def from_env(cls, provider: str) -> "LLMProviderConfig":
        """Read ``ASD_LLM_*`` overrides on top of the defaults for ``provider``."""
        defaults = cls(provider=provider)
        if provider == "openai":
            defaults.model = "gpt-4o-mini"
            defaults.embedding_model = "text-embedding-3-small"
        return cls(
            provider=provider,
            model=os.getenv("ASD_LLM_MODEL", defaults.model),
            embedding_model=os.getenv("ASD_LLM_EMBEDDING_MODEL", defaults.embedding_model),
            request_timeout=float(os.getenv("ASD_LLM_TIMEOUT", defaults.request_timeout)),
            ollama_url=os.getenv("ASD_OLLAMA_URL", defaults.ollama_url).rstrip("/"),
            openai_api_key=os.getenv("OPENAI_API_KEY"),
            openai_url=os.getenv("ASD_OPENAI_URL", defaults.openai_url).rstrip("/"),
        )

    def api_key(self) -> str:
        api_key = self.openai_api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise RuntimeError("Missing OpenAI API key.")
        return api_key


class LLMKeywordExtractor(ChatProvider):
    """Sends one prompt to Ollama or an OpenAI-compatible chat endpoint.

    Errors propagate; the keyword splitter treats them as "no extra keywords".
    """

    def __init__(self, config: LLMProviderConfig, session: requests.Session | None = None) -> None:
        self._config = config
        self._session = session or requests.Session()

    def chat(self, prompt: str) -> str:
        if self._config.provider == "openai":
            return self._call_openai(prompt)
        return self._call_ollama(prompt)

    def _call_ollama(self, prompt: str) -> str:
        response = self._session.post(
            f"{self._config.ollama_url}/api/generate",
            json={"model": self._config.model, "prompt": prompt, "stream": False},
            timeout=self._config.request_timeout,
        )
        response.raise_for_status()
        payload = response.json()
        return payload.get("response", "")

    def _call_openai(self, prompt: str) -> str:
        response = self._session.post(
            f"{self._config.openai_url}/chat/completions",
            headers={"Authorization": f"Bearer {self._config.api_key()}"},
            json={
                "model": self._config.model,
                "messages": [
                    {"role": "system", "content": "You extract search keywords for a code snippet library."},
                    {"role": "user", "content": prompt},
                ],
                "temperature": 0,
            },
            timeout=self._config.request_timeout,
        )
        response.raise_for_status()
        payload = response.json()
        logger.debug("OpenAI keyword extraction used model %s.", payload.get("model", self._config.model))
        return payload["choices"][0]["message"]["content"]


__all__ = ["LLMKeywordExtractor", "LLMProviderConfig"]
