"""Командная строка: поиск, перестройка индекса и статистика."""
from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import Sequence

from application.use_cases.search import SearchService
from domain.entities import DocumentType, RankingContext, SearchFilter, SearchOptions
from domain.errors import SearchError
from infrastructure.config import ContainerConfig, build_default_container, build_search_service
from ui.logging_utils import setup_logging

logger = logging.getLogger(__name__)


def _add_container_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--corpus", choices=["sqlite", "project"], help="Источник базы знаний")
    parser.add_argument("--project-root", help="Корень проекта с AutoSnippetRoot.boxspec.json")
    parser.add_argument("--db-path", help="Путь к SQLite базе сниппетов")
    parser.add_argument("--index-path", help="Путь к JSON файлу индекса")
    parser.add_argument(
        "--embedder",
        choices=["none", "hash", "sentence-transformers", "ollama", "openai"],
        help="Провайдер эмбеддингов для семантического поиска",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="asd-search", description=__doc__)
    parser.add_argument("--log-level", help="Уровень логирования (по умолчанию ASD_LOG_LEVEL или INFO)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    search = subparsers.add_parser("search", help="Найти сниппеты и рецепты")
    _add_container_arguments(search)
    search.add_argument("query", nargs="?", default="", help="Текст запроса (пустой = все документы)")
    search.add_argument("-n", "--limit", type=int, help="Максимум результатов")
    search.add_argument("--semantic", action=argparse.BooleanOptionalAction, default=None)
    search.add_argument("--ranking", action=argparse.BooleanOptionalAction, default=None)
    search.add_argument("--fine-ranking", action=argparse.BooleanOptionalAction, default=None)
    search.add_argument("--cache", action=argparse.BooleanOptionalAction, default=None)
    search.add_argument("--use-index", action=argparse.BooleanOptionalAction, default=None)
    search.add_argument("--rebuild-index", action="store_true", help="Перестроить индекс перед поиском")
    search.add_argument("--type", choices=[item.value for item in DocumentType])
    search.add_argument("--category")
    search.add_argument("--language")
    search.add_argument("--json", action="store_true", help="Вывести результаты в JSON")

    build = subparsers.add_parser("build-index", help="Перестроить поисковый индекс")
    _add_container_arguments(build)

    stats = subparsers.add_parser("stats", help="Статистика индекса и кэша")
    _add_container_arguments(stats)
    return parser


def _container_config(args: argparse.Namespace) -> ContainerConfig:
    cfg = ContainerConfig.from_env()
    overrides = {
        "corpus": args.corpus,
        "project_root": args.project_root,
        "db_path": args.db_path,
        "index_path": args.index_path,
        "embedder": args.embedder,
    }
    for name, value in overrides.items():
        if value is not None:
            setattr(cfg, name, value)
    return cfg


def _options(args: argparse.Namespace) -> SearchOptions:
    return SearchOptions(
        semantic=args.semantic,
        ranking=args.ranking,
        fine_ranking=args.fine_ranking,
        limit=args.limit,
        filter=SearchFilter(
            type=DocumentType(args.type) if args.type else None,
            category=args.category,
            language=args.language,
        ),
        cache=args.cache,
        use_index=args.use_index,
        rebuild_index=args.rebuild_index,
        context=RankingContext(language=args.language, category=args.category),
    )


def _print_results(results: list, as_json: bool) -> None:
    if as_json:
        print(json.dumps([result.to_dict() for result in results], ensure_ascii=False, indent=2))
        return
    if not results:
        print("Ничего не найдено.")
        return
    for position, result in enumerate(results, start=1):
        score = f" [{result.composite_score:.3f}]" if result.composite_score is not None else ""
        trigger = f" {result.trigger}" if result.trigger else ""
        print(f"{position}. ({result.type.value}) {result.title}{trigger}{score}")


def run(args: argparse.Namespace, service: SearchService) -> int:
    if args.command == "search":
        results = service.search(args.query, _options(args))
        _print_results(results, args.json)
    elif args.command == "build-index":
        snapshot = service.build_index()
        print(f"Индекс {snapshot.generation}: {snapshot.index.size} документов, {len(snapshot.index.postings)} токенов")
    elif args.command == "stats":
        print(json.dumps(service.stats(), ensure_ascii=False, indent=2))
    return 0


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)
    service = build_search_service(build_default_container(_container_config(args)))
    try:
        return run(args, service)
    except SearchError as exc:
        logger.error("%s", exc)
        print(f"Ошибка: {exc}", file=sys.stderr)
        return 1
    finally:
        service.close()


if __name__ == "__main__":
    sys.exit(main())
