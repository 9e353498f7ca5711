"""Read-only corpus built from a project's snippet spec and recipe markdown files."""
from __future__ import annotations

import json
import logging
import math
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from domain.entities import Document, DocumentType
from domain.interfaces import DocumentRepository

logger = logging.getLogger(__name__)

ROOT_SPEC_NAME = "AutoSnippetRoot.boxspec.json"
DEFAULT_RECIPES_DIR = "recipes"
MAX_CODE_FALLBACK = 8000
RECIPE_STATS_PATH = Path(".autosnippet") / "recipe-stats.json"
RECIPE_STATS_SCHEMA_VERSION = 1

_FRONTMATTER_RE = re.compile(r"^---[\s\S]*?---\s*\n?")
_FRONTMATTER_BODY_RE = re.compile(r"^---\r?\n([\s\S]*?)\r?\n---")
_FENCED_CODE_RE = re.compile(r"```[\w]*\r?\n([\s\S]*?)```")


def parse_frontmatter(text: str) -> dict[str, str]:
    """``key: value`` pairs from a leading ``---`` block."""
    match = _FRONTMATTER_BODY_RE.match(text or "")
    if not match:
        return {}
    values: dict[str, str] = {}
    for line in match.group(1).splitlines():
        key, sep, value = line.partition(":")
        if not sep or not key.strip():
            continue
        values[key.strip().lower()] = value.strip().strip("\"'")
    return values


def extract_first_code_block(text: str) -> str:
    """First fenced code block, or the leading part of the body without frontmatter."""
    if not text:
        return ""
    stripped = _FRONTMATTER_RE.sub("", text, count=1).strip()
    match = _FENCED_CODE_RE.search(stripped)
    if match and match.group(1):
        return match.group(1).strip()
    return stripped[:MAX_CODE_FALLBACK]


def trigger_from_frontmatter(meta: dict[str, str]) -> str | None:
    trigger = meta.get("trigger", "").strip()
    if not trigger:
        return None
    return trigger if trigger.startswith("@") else f"@{trigger}"


def _count(value: Any) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or not math.isfinite(value):
        return 0
    return max(int(value), 0)


def recipe_usage_count(entry: Any) -> int:
    """``guard + 2 * human + ai`` usages from one ``recipe-stats.json`` entry."""
    if not isinstance(entry, Mapping):
        return 0
    return _count(entry.get("guardUsageCount")) + 2 * _count(entry.get("humanUsageCount")) + _count(entry.get("aiUsageCount"))


class ProjectCorpusRepository(DocumentRepository):
    """Snippets from ``AutoSnippetRoot.boxspec.json`` plus recipes from ``recipes/**/*.md``.

    Recipe usage counts come from ``.autosnippet/recipe-stats.json`` keyed by
    file name.

    The project files are the source of truth, so ``add`` is not supported.
    A missing or malformed spec file is read as an empty snippet list.
    """

    def __init__(self, project_root: str | Path) -> None:
        self._root = Path(project_root)

    def add(self, document: Document) -> None:
        raise NotImplementedError("Project corpus is read-only; edit the project files instead.")

    def get(self, document_id: str) -> Document | None:
        for document in self.list():
            if document.id == document_id:
                return document
        return None

    def list(self) -> list[Document]:
        if not self._root.is_dir():
            raise FileNotFoundError(f"Project root {self._root} does not exist")
        spec = self._read_root_spec()
        documents = self._snippets(spec)
        documents.extend(self._recipes(self._recipes_dir(spec), self._read_recipe_stats()))
        return documents

    def _read_recipe_stats(self) -> dict[str, Any]:
        """``byFile`` section of ``.autosnippet/recipe-stats.json``, empty when unusable."""
        path = self._root / RECIPE_STATS_PATH
        if not path.exists():
            return {}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Cannot read recipe stats %s, ignoring usage counts: %s", path, exc)
            return {}
        if not isinstance(data, dict) or data.get("schemaVersion") != RECIPE_STATS_SCHEMA_VERSION:
            logger.debug("Recipe stats %s have an unsupported schema, ignoring them.", path)
            return {}
        by_file = data.get("byFile")
        return by_file if isinstance(by_file, dict) else {}

    def _read_root_spec(self) -> dict[str, Any]:
        path = self._root / ROOT_SPEC_NAME
        if not path.exists():
            return {"list": []}
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Cannot read %s, treating it as empty: %s", path, exc)
            return {"list": []}
        return data if isinstance(data, dict) else {"list": []}

    def _recipes_dir(self, spec: dict[str, Any]) -> Path:
        for key in ("recipes", "skills"):
            section = spec.get(key)
            if isinstance(section, dict) and section.get("dir"):
                return self._root / str(section["dir"])
        return self._root / DEFAULT_RECIPES_DIR

    def _snippets(self, spec: dict[str, Any]) -> list[Document]:
        spec_path = self._root / ROOT_SPEC_NAME
        updated_at = _mtime(spec_path) if spec_path.exists() else None
        documents: list[Document] = []
        for position, item in enumerate(spec.get("list") or []):
            if not isinstance(item, dict):
                continue
            completion = str(item.get("completion") or "")
            name = str(item.get("title") or completion or "snippet")
            raw = item.get("body", item.get("code"))
            code = "\n".join(str(line) for line in raw) if isinstance(raw, list) else str(raw or "")
            summary = str(item.get("summary") or "")
            identifier = item.get("identifier") or completion or str(position)
            documents.append(
                Document(
                    id=f"snippet:{identifier}",
                    title=f"{name} ({completion})" if completion else name,
                    content="\n".join(part for part in (summary, code) if part),
                    code=code,
                    type=DocumentType.SNIPPET,
                    trigger=completion or None,
                    language=item.get("language") or None,
                    category=item.get("category") or None,
                    updated_at=updated_at,
                    usage_count=_count(item.get("usageCount")),
                    name=name,
                )
            )
        return documents

    def _recipes(self, recipes_dir: Path, stats: Mapping[str, Any]) -> list[Document]:
        if not recipes_dir.is_dir():
            return []
        documents: list[Document] = []
        for path in sorted(recipes_dir.rglob("*")):
            relative = path.relative_to(recipes_dir)
            if not path.is_file() or path.suffix.lower() != ".md":
                continue
            if any(part.startswith(".") for part in relative.parts[:-1]):
                continue
            try:
                text = path.read_text(encoding="utf-8")
            except (OSError, UnicodeDecodeError) as exc:
                logger.warning("Skipping unreadable recipe %s: %s", path, exc)
                continue
            meta = parse_frontmatter(text)
            rel = relative.as_posix()
            documents.append(
                Document(
                    id=f"recipe:{rel}",
                    title=meta.get("title") or rel[: -len(path.suffix)],
                    content=text,
                    code=extract_first_code_block(text),
                    type=DocumentType.RECIPE,
                    trigger=trigger_from_frontmatter(meta),
                    language=meta.get("language") or None,
                    category=meta.get("category") or None,
                    updated_at=_mtime(path),
                    usage_count=recipe_usage_count(stats.get(path.name)),
                    name=rel,
                )
            )
        return documents


def _mtime(path: Path) -> datetime:
    return datetime.fromtimestamp(path.stat().st_mtime, tz=timezone.utc)


__all__ = [
    "ProjectCorpusRepository",
    "extract_first_code_block",
    "parse_frontmatter",
    "recipe_usage_count",
    "trigger_from_frontmatter",
]
