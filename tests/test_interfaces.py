"""Тесты HTTP API и командной строки поверх in-memory сервиса."""
from __future__ import annotations

import importlib.util
import io
import unittest
from contextlib import redirect_stdout
from datetime import datetime, timezone

from application.use_cases.search import SearchService
from domain.entities import Document, DocumentType
from infrastructure.repositories.in_memory_document_repository import InMemoryDocumentRepository
from infrastructure.storage.json_index_repository import InMemoryIndexRepository
from ui.cli import build_parser, run

DOCUMENTS = [
    Document(
        id="a",
        title="Retry helper",
        content="Retry network requests",
        type=DocumentType.SNIPPET,
        trigger="@retry",
        updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        usage_count=10,
    ),
    Document(id="b", title="Date formatter", content="Format dates", category="ui"),
]


def make_service() -> SearchService:
    return SearchService(InMemoryDocumentRepository(DOCUMENTS), InMemoryIndexRepository())


@unittest.skipIf(importlib.util.find_spec("httpx") is None, "httpx не установлен.")
class TestSearchApi(unittest.TestCase):
    def setUp(self) -> None:
        from fastapi.testclient import TestClient  # noqa: PLC0415

        from ui.api.main import create_app, get_search_service  # noqa: PLC0415

        self.service = make_service()
        self.addCleanup(self.service.close)
        app = create_app()
        app.dependency_overrides[get_search_service] = lambda: self.service
        self.client = TestClient(app)

    def test_search_returns_result_shape(self) -> None:
        response = self.client.get("/search", params={"q": "retry"})

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["query"], "retry")
        self.assertEqual(len(payload["results"]), 1)
        result = payload["results"][0]
        self.assertEqual(result["title"], "Retry helper")
        self.assertEqual(result["type"], "snippet")
        self.assertEqual(result["trigger"], "@retry")
        self.assertIn("compositeScore", result)

    def test_filters_and_limit(self) -> None:
        response = self.client.get("/search", params={"q": "", "category": "ui", "limit": 5})

        self.assertEqual([item["title"] for item in response.json()["results"]], ["Date formatter"])

    def test_invalid_weights_are_rejected(self) -> None:
        response = self.client.get("/search", params={"q": "retry", "weights": "[1, 2]"})

        self.assertEqual(response.status_code, 422)

    def test_rebuild_reports_generation(self) -> None:
        response = self.client.post("/index/rebuild")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["documents"], 2)
        self.assertEqual(self.client.get("/stats").json()["index"]["documents"], 2)


class TestCli(unittest.TestCase):
    def setUp(self) -> None:
        self.service = make_service()
        self.addCleanup(self.service.close)

    def invoke(self, *argv: str) -> str:
        args = build_parser().parse_args(list(argv))
        buffer = io.StringIO()
        with redirect_stdout(buffer):
            exit_code = run(args, self.service)
        self.assertEqual(exit_code, 0)
        return buffer.getvalue()

    def test_search_prints_ranked_lines(self) -> None:
        output = self.invoke("search", "retry")

        self.assertIn("1. (snippet) Retry helper @retry", output)

    def test_search_json_output(self) -> None:
        output = self.invoke("search", "--json", "--no-ranking", "retry")

        self.assertIn('"title": "Retry helper"', output)
        self.assertNotIn("compositeScore", output)

    def test_build_index_and_stats(self) -> None:
        self.assertIn("2", self.invoke("build-index"))
        self.assertIn('"documents": 2', self.invoke("stats"))

    def test_no_results_message(self) -> None:
        self.assertIn("Ничего не найдено", self.invoke("search", "kubernetes"))


if __name__ == "__main__":
    unittest.main()
