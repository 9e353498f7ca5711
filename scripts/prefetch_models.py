"""Скачать embedding-модель в локальную директорию для offline-режима (ASD_MODELS_DIR)."""
from __future__ import annotations

import argparse
from pathlib import Path

from sentence_transformers import SentenceTransformer

from infrastructure.embedding.sentence_transformers_embedder import DEFAULT_MODEL


def prefetch_embedding_model(model_name: str, output_dir: Path) -> Path:
    model = SentenceTransformer(model_name)
    target_dir = output_dir / model_name
    target_dir.parent.mkdir(parents=True, exist_ok=True)
    model.save(str(target_dir))
    return target_dir


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument(
        "--output-dir",
        default="models",
        help="Директория для сохранения локальных моделей (по умолчанию: models)",
    )
    parser.add_argument(
        "--embedding-model",
        action="append",
        dest="embedding_models",
        help=f"ID embedding-модели из Hugging Face (по умолчанию: {DEFAULT_MODEL}). Можно передавать несколько раз.",
    )
    return parser.parse_args()


def main() -> None:
    args = parse_args()
    output_dir = Path(args.output_dir).expanduser()
    print(f"Сохраняем модели в: {output_dir}")
    for model_name in args.embedding_models or (DEFAULT_MODEL,):
        saved_path = prefetch_embedding_model(model_name, output_dir)
        print(f"embedding: {model_name} -> {saved_path}")
    print(f"Используйте ASD_MODELS_DIR={output_dir} и ASD_EMBEDDER=sentence-transformers")


if __name__ == "__main__":
    main()
