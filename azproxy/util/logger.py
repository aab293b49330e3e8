"""Process-wide ``azproxy`` logger: stderr plus a rotating file under ``settings.log_dir``."""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from azproxy.config.settings import settings


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_FILE_NAME = "azproxy.log"


def _normalize_level(raw: str) -> int:
    level = logging.getLevelName(str(raw or "INFO").strip().upper())
    # getLevelName 对未知名称返回字符串
    return level if isinstance(level, int) else logging.INFO


def _file_handler(log_dir: Path, level: int, formatter: logging.Formatter) -> logging.Handler | None:
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            log_dir / LOG_FILE_NAME,
            maxBytes=settings.log_file_max_bytes,
            backupCount=settings.log_file_backup_count,
            encoding="utf-8",
        )
    except OSError as exc:
        # 只读文件系统（如容器内）下仅输出到 stderr
        logging.getLogger("azproxy.bootstrap").debug("file logging disabled dir=%s error=%s", log_dir, exc)
        return None
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def _build_logger() -> logging.Logger:
    configured_logger = logging.getLogger("azproxy")
    if configured_logger.handlers:
        return configured_logger

    level = _normalize_level(settings.log_level)
    configured_logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    stream_handler = logging.StreamHandler()
    stream_handler.setLevel(level)
    stream_handler.setFormatter(formatter)
    configured_logger.addHandler(stream_handler)

    if settings.log_dir:
        file_handler = _file_handler(Path(settings.log_dir), level, formatter)
        if file_handler is not None:
            configured_logger.addHandler(file_handler)

    configured_logger.propagate = False
    return configured_logger


logger = _build_logger()
