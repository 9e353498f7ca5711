from infrastructure.repositories.in_memory_document_repository import InMemoryDocumentRepository
from infrastructure.repositories.project_corpus import ProjectCorpusRepository
from infrastructure.repositories.sqlite_document_repository import SqliteDocumentRepository

__all__ = [
    "InMemoryDocumentRepository",
    "ProjectCorpusRepository",
    "SqliteDocumentRepository",
]
