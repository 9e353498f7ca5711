"""Тесты построения и хранения инвертированного индекса."""
from __future__ import annotations

import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from application.services.inverted_index import IndexStore, build_inverted_index
from application.use_cases.search import SearchService
from domain.entities import Document, DocumentType
from infrastructure.repositories.in_memory_document_repository import InMemoryDocumentRepository
from infrastructure.storage.json_index_repository import InMemoryIndexRepository, JsonIndexRepository

DOCUMENTS = [
    Document(
        id="a",
        title="Retry helper",
        content="Retry network requests",
        type=DocumentType.SNIPPET,
        trigger="@retry",
        updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
        usage_count=3,
    ),
    Document(id="b", title="Network reachability", content="Check network status"),
]


class TestBuildInvertedIndex(unittest.TestCase):
    def test_postings_and_document_frequency(self) -> None:
        index = build_inverted_index(DOCUMENTS, created_at=1)

        self.assertEqual(index.postings["retry"], frozenset({"a"}))
        self.assertEqual(index.document_frequency("network"), 2)
        self.assertEqual(index.document_frequency("missing"), 0)
        self.assertEqual(index.lookup(("retry", "network")), {"a": ["retry", "network"], "b": ["network"]})

    def test_duplicate_ids_are_skipped(self) -> None:
        with self.assertLogs("application.services.inverted_index", level="WARNING"):
            index = build_inverted_index([DOCUMENTS[0], DOCUMENTS[0]], created_at=1)

        self.assertEqual(index.size, 1)


class TestJsonIndexRepository(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.dir = Path(tmp.name)
        self.path = self.dir / "index.json"
        self.repository = JsonIndexRepository(self.path)

    def test_missing_file_loads_as_none(self) -> None:
        self.assertIsNone(self.repository.load())
        self.assertIsNone(self.repository.stamp())

    def test_saved_index_is_loaded_back(self) -> None:
        index = build_inverted_index(DOCUMENTS, created_at=1700000000000)
        self.repository.save(index)

        loaded = self.repository.load()

        self.assertIsNotNone(loaded)
        self.assertEqual(loaded.created_at, 1700000000000)
        self.assertEqual(loaded.documents, index.documents)
        self.assertEqual(dict(loaded.postings), dict(index.postings))
        self.assertEqual(list(self.dir.iterdir()), [self.path])

    def test_file_uses_camel_case_layout(self) -> None:
        self.repository.save(build_inverted_index(DOCUMENTS, created_at=5))

        payload = json.loads(self.path.read_text(encoding="utf-8"))

        self.assertEqual(payload["createdAt"], 5)
        self.assertEqual(payload["invertedIndex"]["retry"], {"docIds": ["a"]})
        self.assertEqual(payload["documents"][0]["usageCount"], 3)
        self.assertEqual(payload["documents"][0]["updatedAt"], 1767225600000)

    def test_malformed_json_is_treated_as_missing(self) -> None:
        self.path.write_text("{not json", encoding="utf-8")

        with self.assertLogs("infrastructure.storage.json_index_repository", level="WARNING"):
            self.assertIsNone(self.repository.load())

    def test_posting_with_unknown_document_is_treated_as_missing(self) -> None:
        self.repository.save(build_inverted_index(DOCUMENTS, created_at=5))
        payload = json.loads(self.path.read_text(encoding="utf-8"))
        payload["invertedIndex"]["ghost"] = {"docIds": ["zzz"]}
        self.path.write_text(json.dumps(payload), encoding="utf-8")

        with self.assertLogs("infrastructure.storage.json_index_repository", level="WARNING"):
            self.assertIsNone(self.repository.load())

    def write_with_document_field(self, name: str, raw_value: str) -> None:
        self.repository.save(build_inverted_index(DOCUMENTS, created_at=5))
        text = self.path.read_text(encoding="utf-8")
        payload = json.loads(text)
        payload["documents"][0][name] = "__placeholder__"
        self.path.write_text(json.dumps(payload).replace('"__placeholder__"', raw_value), encoding="utf-8")

    def test_infinite_usage_count_is_treated_as_missing(self) -> None:
        self.write_with_document_field("usageCount", "Infinity")

        with self.assertLogs("infrastructure.storage.json_index_repository", level="WARNING"):
            self.assertIsNone(self.repository.load())

    def test_out_of_range_timestamp_is_treated_as_missing(self) -> None:
        self.write_with_document_field("updatedAt", "1e20")

        with self.assertLogs("infrastructure.storage.json_index_repository", level="WARNING"):
            self.assertIsNone(self.repository.load())

    def test_search_survives_corrupted_numbers(self) -> None:
        self.write_with_document_field("usageCount", "Infinity")
        service = SearchService(InMemoryDocumentRepository(DOCUMENTS), self.repository)
        self.addCleanup(service.close)

        with self.assertLogs("infrastructure.storage.json_index_repository", level="WARNING"):
            results = service.search("retry")

        self.assertEqual([result.id for result in results], ["a"])
        self.assertIsNone(service.stats()["index"])

    def test_wrong_shape_is_treated_as_missing(self) -> None:
        self.path.write_text(json.dumps({"documents": {}, "createdAt": "now"}), encoding="utf-8")

        with self.assertLogs("infrastructure.storage.json_index_repository", level="WARNING"):
            self.assertIsNone(self.repository.load())


class TestIndexStore(unittest.TestCase):
    def test_replace_swaps_generation(self) -> None:
        store = IndexStore(InMemoryIndexRepository())
        self.assertIsNone(store.current())

        store.replace(build_inverted_index(DOCUMENTS[:1], created_at=1))
        first = store.current()
        store.replace(build_inverted_index(DOCUMENTS, created_at=2))
        second = store.current()

        self.assertEqual(first.generation, 1)
        self.assertEqual(first.index.size, 1)
        self.assertEqual(second.generation, 2)
        self.assertIn("b", second.documents_by_id)

    def test_reloads_when_file_changes(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            repository = JsonIndexRepository(Path(tmp) / "index.json")
            store = IndexStore(repository)
            repository.save(build_inverted_index(DOCUMENTS[:1], created_at=1))
            self.assertEqual(store.current().generation, 1)

            JsonIndexRepository(Path(tmp) / "index.json").save(build_inverted_index(DOCUMENTS, created_at=2))

            self.assertEqual(store.current().generation, 2)

    def test_snapshot_bm25_uses_persisted_frequencies(self) -> None:
        store = IndexStore(InMemoryIndexRepository())
        snapshot = store.replace(build_inverted_index(DOCUMENTS, created_at=1))

        scores = snapshot.bm25.scores(["retry"], ["a", "b"])

        self.assertGreater(scores["a"], 0.0)
        self.assertEqual(scores["b"], 0.0)


if __name__ == "__main__":
    unittest.main()
