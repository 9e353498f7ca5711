"""SQLite-репозиторий сниппетов и рецептов."""
from __future__ import annotations

import sqlite3
from datetime import datetime, timezone
from pathlib import Path

from domain.entities import Document, DocumentType
from domain.interfaces import DocumentRepository

_COLUMNS = "id, type, title, content, code, trigger_word, language, category, name, updated_at, usage_count"


class SqliteDocumentRepository(DocumentRepository):
    """Хранит базу знаний в лёгкой SQLite-базе вместе со счётчиком использований."""

    def __init__(self, db_path: str | Path = "autosnippet.db") -> None:
        self._db_path = Path(db_path)
        self._ensure_schema()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(self._db_path)

    def _ensure_schema(self) -> None:
        if self._db_path.parent != Path("."):
            self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS schema_version (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    version INTEGER NOT NULL
                )
                """
            )
            conn.execute("INSERT OR IGNORE INTO schema_version (id, version) VALUES (1, 1)")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS documents (
                    id TEXT PRIMARY KEY,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    content TEXT,
                    code TEXT,
                    trigger_word TEXT,
                    language TEXT,
                    category TEXT,
                    name TEXT,
                    updated_at TEXT,
                    usage_count INTEGER NOT NULL DEFAULT 0
                )
                """
            )
            self._ensure_columns(conn)

    @staticmethod
    def _ensure_columns(conn: sqlite3.Connection) -> None:
        columns = {row[1] for row in conn.execute("PRAGMA table_info(documents)").fetchall()}
        required = {
            "trigger_word": "TEXT",
            "language": "TEXT",
            "category": "TEXT",
            "name": "TEXT",
            "usage_count": "INTEGER NOT NULL DEFAULT 0",
        }
        for name, column_type in required.items():
            if name not in columns:
                conn.execute(f"ALTER TABLE documents ADD COLUMN {name} {column_type}")

    def add(self, document: Document) -> None:
        if not document.id:
            raise ValueError("Document id must not be empty")
        with self._connect() as conn:
            conn.execute(
                f"REPLACE INTO documents ({_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (
                    document.id,
                    document.type.value,
                    document.title,
                    document.content,
                    document.code,
                    document.trigger,
                    document.language,
                    document.category,
                    document.name,
                    document.updated_at.isoformat() if document.updated_at else None,
                    max(document.usage_count, 0),
                ),
            )

    def record_usage(self, document_id: str, increment: int = 1) -> None:
        """Увеличить счётчик использований (влияет на popularity)."""
        with self._connect() as conn:
            conn.execute(
                "UPDATE documents SET usage_count = usage_count + ? WHERE id = ?",
                (increment, document_id),
            )

    def list(self) -> list[Document]:
        with self._connect() as conn:
            rows = conn.execute(f"SELECT {_COLUMNS} FROM documents ORDER BY id").fetchall()
        return [self._row_to_document(row) for row in rows]

    def get(self, document_id: str) -> Document | None:
        with self._connect() as conn:
            row = conn.execute(f"SELECT {_COLUMNS} FROM documents WHERE id = ?", (document_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_document(row)

    @staticmethod
    def _row_to_document(row: tuple) -> Document:
        updated_at = datetime.fromisoformat(row[9]) if row[9] else None
        if updated_at is not None and updated_at.tzinfo is None:
            updated_at = updated_at.replace(tzinfo=timezone.utc)
        return Document(
            id=row[0],
            type=DocumentType(row[1]),
            title=row[2] or "",
            content=row[3] or "",
            code=row[4] or "",
            trigger=row[5],
            language=row[6],
            category=row[7],
            name=row[8] or "",
            updated_at=updated_at,
            usage_count=int(row[10] or 0),
        )


__all__ = ["SqliteDocumentRepository"]
