"""
Logging setup for crawler workers and the API process.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from .config import LoggingConfig


CONTEXT_FIELDS = ('crawl_id', 'url', 'worker_id')


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with any crawl context fields set on the record."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                log_entry[field] = value

        return json.dumps(log_entry, ensure_ascii=False)


class CrawlerLogAdapter(logging.LoggerAdapter):
    """Logger adapter that adds crawl context (crawl id, URL) to every record."""

    def __init__(self, logger: logging.Logger, extra: Optional[Dict[str, Any]] = None):
        super().__init__(logger, extra or {})

    def process(self, msg: str, kwargs: Dict[str, Any]) -> tuple:
        extra = dict(self.extra)
        extra.update(kwargs.get('extra', {}))
        kwargs['extra'] = extra
        crawl_id = extra.get('crawl_id')
        if crawl_id:
            msg = f"[{crawl_id}] {msg}"
        return msg, kwargs


class PerformanceFilter(logging.Filter):
    """Drops records from chatty loggers such as the aiohttp access log."""

    def __init__(self, suppress_modules: Iterable[str] = ('aiohttp.access', 'urllib3.connectionpool')):
        super().__init__()
        self.suppress_modules = tuple(suppress_modules)

    def filter(self, record: logging.LogRecord) -> bool:
        return not record.name.startswith(self.suppress_modules)


QUIET_LOGGERS = ('aiohttp', 'redis', 'asyncio', 'urllib3')


def _rotating_handler(path: Path, level: int, max_mb: int, backups: int,
                      formatter: logging.Formatter) -> logging.Handler:
    handler = logging.handlers.RotatingFileHandler(
        path, maxBytes=max_mb * 1024 * 1024, backupCount=backups, encoding='utf-8'
    )
    handler.setLevel(level)
    handler.setFormatter(formatter)
    return handler


def setup_logging(config: LoggingConfig, enable_performance_filtering: bool = True) -> logging.Logger:
    """
    Route all records to stdout, a rotating log file and a separate errors.log.

    Args:
        config: The ``logging`` section of the configuration
        enable_performance_filtering: Drop access-log noise from stdout and the main file

    Returns:
        Configured root logger
    """
    log_file = Path(config.file)
    log_file.parent.mkdir(parents=True, exist_ok=True)
    error_log_file = log_file.parent / 'errors.log'

    formatter = JSONFormatter() if config.json else logging.Formatter(config.format)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    handlers = [
        console_handler,
        _rotating_handler(log_file, logging.DEBUG, 50, 5, formatter),
        _rotating_handler(error_log_file, logging.ERROR, 10, 3, formatter),
    ]
    if enable_performance_filtering:
        for handler in handlers[:2]:
            handler.addFilter(PerformanceFilter())

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, config.level.upper()))
    root_logger.handlers.clear()
    for handler in handlers:
        root_logger.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging to {log_file} (errors also to {error_log_file})")
    return root_logger


def get_crawler_logger(name: str, **extra_context) -> CrawlerLogAdapter:
    """Logger whose records carry ``extra_context`` (crawl_id, url, ...)."""
    return CrawlerLogAdapter(logging.getLogger(name), extra_context)
