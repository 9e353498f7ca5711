"""Утилиты для настройки логирования поиска."""
from __future__ import annotations

import logging
import os
from pathlib import Path

DEFAULT_LOG_FILE = "autosnippet-search.log"


def setup_logging(level: str | None = None, log_file: str | None = None) -> None:
    """Настроить логирование в файл и консоль (один раз на процесс).

    Уровень и файл берутся из аргументов, затем из ``ASD_LOG_LEVEL`` и
    ``ASD_LOG_FILE``. Пустой ``ASD_LOG_FILE`` отключает запись в файл.
    """
    root_logger = logging.getLogger()
    if root_logger.handlers:
        return

    level_name = (level or os.getenv("ASD_LOG_LEVEL", "INFO")).upper()
    resolved_level = getattr(logging, level_name, logging.INFO)
    log_file = log_file if log_file is not None else os.getenv("ASD_LOG_FILE", DEFAULT_LOG_FILE)

    formatter = logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(formatter)
    root_logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    root_logger.setLevel(resolved_level)


__all__ = ["DEFAULT_LOG_FILE", "setup_logging"]
