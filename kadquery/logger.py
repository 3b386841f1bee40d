"""
Система логирования для kadquery
"""

import logging
import sys
from pathlib import Path
from typing import Optional

import structlog


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[Path] = None,
) -> structlog.BoundLogger:
    """
    Настройка системы логирования

    Логи пишутся в stderr (или в файл), stdout остается за результатами запросов.

    Args:
        log_level: Уровень логирования (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Путь к файлу логов (опционально)

    Returns:
        Настроенный логгер
    """
    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    log_stream = open(log_file, "a", encoding="utf-8") if log_file else sys.stderr

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.JSONRenderer() if log_file else structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=log_stream),
        cache_logger_on_first_use=False,
    )

    # Стандартный logging для сторонних библиотек
    logging.basicConfig(
        format="%(message)s",
        stream=log_stream,
        level=level,
    )

    return structlog.get_logger()


def get_logger(name: Optional[str] = None) -> structlog.BoundLogger:
    """
    Получение логгера для модуля

    Args:
        name: Имя модуля (опционально)

    Returns:
        Логгер
    """
    logger = structlog.get_logger()
    if name:
        logger = logger.bind(module=name)
    return logger
