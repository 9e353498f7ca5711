import json
import tempfile
import unittest
from datetime import datetime, timezone
from pathlib import Path

from domain.entities import Document, DocumentType
from infrastructure.repositories.in_memory_document_repository import InMemoryDocumentRepository
from infrastructure.repositories.project_corpus import (
    ProjectCorpusRepository,
    extract_first_code_block,
    parse_frontmatter,
    recipe_usage_count,
)
from infrastructure.repositories.sqlite_document_repository import SqliteDocumentRepository

RECIPE = """---
title: Retry with backoff
trigger: retry
category: network
language: swift
---
# Retry

Use exponential backoff.

```swift
func retry() {}
```
"""


class TestSqliteDocumentRepository(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.repository = SqliteDocumentRepository(Path(tmp.name) / "kb.db")

    def test_add_and_get_round_trip(self) -> None:
        document = Document(
            id="a",
            title="Retry helper",
            content="Retry network requests",
            code="retry()",
            type=DocumentType.SNIPPET,
            trigger="@retry",
            language="swift",
            category="network",
            updated_at=datetime(2026, 1, 1, tzinfo=timezone.utc),
            usage_count=4,
            name="RetryHelper",
        )
        self.repository.add(document)

        self.assertEqual(self.repository.get("a"), document)
        self.assertIsNone(self.repository.get("missing"))
        self.assertEqual(self.repository.list(), [document])

    def test_record_usage_increments_counter(self) -> None:
        self.repository.add(Document(id="a", title="Retry helper"))
        self.repository.record_usage("a")
        self.repository.record_usage("a", increment=2)

        self.assertEqual(self.repository.get("a").usage_count, 3)

    def test_empty_id_is_rejected(self) -> None:
        with self.assertRaises(ValueError):
            self.repository.add(Document(id="", title="nameless"))


class TestInMemoryDocumentRepository(unittest.TestCase):
    def test_add_overwrites_and_remove_deletes(self) -> None:
        repository = InMemoryDocumentRepository([Document(id="a", title="old")])
        repository.add(Document(id="a", title="new"))
        repository.add(Document(id="b", title="other"))
        repository.remove("b")

        self.assertEqual([document.title for document in repository.list()], ["new"])


class TestMarkdownHelpers(unittest.TestCase):
    def test_frontmatter_is_parsed(self) -> None:
        meta = parse_frontmatter(RECIPE)

        self.assertEqual(meta["title"], "Retry with backoff")
        self.assertEqual(meta["trigger"], "retry")

    def test_first_code_block_is_extracted(self) -> None:
        self.assertEqual(extract_first_code_block(RECIPE), "func retry() {}")

    def test_without_code_block_body_is_used(self) -> None:
        self.assertEqual(extract_first_code_block("---\ntitle: x\n---\nplain text"), "plain text")
        self.assertEqual(extract_first_code_block(""), "")


class TestProjectCorpusRepository(unittest.TestCase):
    def setUp(self) -> None:
        tmp = tempfile.TemporaryDirectory()
        self.addCleanup(tmp.cleanup)
        self.root = Path(tmp.name)

    def write_spec(self, payload) -> None:
        (self.root / "AutoSnippetRoot.boxspec.json").write_text(json.dumps(payload), encoding="utf-8")

    def test_reads_snippets_and_recipes(self) -> None:
        self.write_spec(
            {
                "list": [
                    {"title": "Retry helper", "completion": "@retry", "summary": "Retry calls", "body": ["retry()", "done()"]},
                ]
            }
        )
        recipe_dir = self.root / "recipes" / "network"
        recipe_dir.mkdir(parents=True)
        (recipe_dir / "retry.md").write_text(RECIPE, encoding="utf-8")
        hidden = self.root / "recipes" / ".drafts"
        hidden.mkdir()
        (hidden / "draft.md").write_text("draft", encoding="utf-8")

        documents = {document.id: document for document in ProjectCorpusRepository(self.root).list()}

        self.assertEqual(set(documents), {"snippet:@retry", "recipe:network/retry.md"})
        snippet = documents["snippet:@retry"]
        self.assertEqual(snippet.type, DocumentType.SNIPPET)
        self.assertEqual(snippet.code, "retry()\ndone()")
        self.assertEqual(snippet.trigger, "@retry")
        self.assertIn("Retry calls", snippet.content)
        recipe = documents["recipe:network/retry.md"]
        self.assertEqual(recipe.title, "Retry with backoff")
        self.assertEqual(recipe.trigger, "@retry")
        self.assertEqual(recipe.category, "network")
        self.assertEqual(recipe.code, "func retry() {}")
        self.assertEqual(recipe.name, "network/retry.md")
        self.assertIsNotNone(recipe.updated_at)

    def test_custom_recipes_dir_from_spec(self) -> None:
        self.write_spec({"list": [], "recipes": {"dir": "docs/recipes"}})
        recipe_dir = self.root / "docs" / "recipes"
        recipe_dir.mkdir(parents=True)
        (recipe_dir / "cache.md").write_text("# Cache\nplain", encoding="utf-8")

        documents = ProjectCorpusRepository(self.root).list()

        self.assertEqual([document.title for document in documents], ["cache"])

    def write_recipe(self) -> None:
        recipe_dir = self.root / "recipes" / "network"
        recipe_dir.mkdir(parents=True)
        (recipe_dir / "retry.md").write_text(RECIPE, encoding="utf-8")

    def write_stats(self, text: str) -> None:
        stats_dir = self.root / ".autosnippet"
        stats_dir.mkdir()
        (stats_dir / "recipe-stats.json").write_text(text, encoding="utf-8")

    def test_recipe_usage_comes_from_stats_file(self) -> None:
        self.write_recipe()
        self.write_stats(
            json.dumps(
                {
                    "schemaVersion": 1,
                    "byFile": {"retry.md": {"guardUsageCount": 1, "humanUsageCount": 2, "aiUsageCount": 3}},
                }
            )
        )

        (recipe,) = ProjectCorpusRepository(self.root).list()

        self.assertEqual(recipe.usage_count, 8)

    def test_unsupported_stats_schema_is_ignored(self) -> None:
        self.write_recipe()
        self.write_stats(json.dumps({"schemaVersion": 2, "byFile": {"retry.md": {"humanUsageCount": 5}}}))

        (recipe,) = ProjectCorpusRepository(self.root).list()

        self.assertEqual(recipe.usage_count, 0)

    def test_broken_stats_file_is_ignored(self) -> None:
        self.write_recipe()
        self.write_stats("{broken")

        with self.assertLogs("infrastructure.repositories.project_corpus", level="WARNING"):
            (recipe,) = ProjectCorpusRepository(self.root).list()

        self.assertEqual(recipe.usage_count, 0)

    def test_usage_entry_with_bad_values_counts_as_zero(self) -> None:
        self.assertEqual(recipe_usage_count({"guardUsageCount": "many", "humanUsageCount": float("inf")}), 0)
        self.assertEqual(recipe_usage_count(None), 0)

    def test_malformed_spec_is_read_as_empty(self) -> None:
        (self.root / "AutoSnippetRoot.boxspec.json").write_text("{broken", encoding="utf-8")

        with self.assertLogs("infrastructure.repositories.project_corpus", level="WARNING"):
            self.assertEqual(ProjectCorpusRepository(self.root).list(), [])

    def test_missing_root_raises(self) -> None:
        with self.assertRaises(FileNotFoundError):
            ProjectCorpusRepository(self.root / "missing").list()


if __name__ == "__main__":
    unittest.main()
