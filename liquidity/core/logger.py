"""
Structured Logging
==================
Event-style JSON logging shared by every component.

    logger = get_logger(__name__)
    logger.info("engine_scheduler.tier_started", {"tier": 0, "engines": [...]})

Each call produces one JSON line carrying ``event_type`` and ``data``.
Loggers are cached per name so handlers are attached exactly once.
"""

import json
import logging
import os
import sys
import threading
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, Optional

if TYPE_CHECKING:
    from ..infrastructure.config.settings import LoggingSettings

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

_loggers: Dict[str, 'StructuredLogger'] = {}
_loggers_lock = threading.RLock()


def _jsonable(obj: Any) -> Any:
    """Fallback conversion for values json cannot encode natively."""
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    if hasattr(obj, 'value') and hasattr(obj, 'name'):  # Enum
        return obj.value
    if hasattr(obj, 'model_dump'):  # pydantic model
        return obj.model_dump(mode='json')
    if hasattr(obj, 'item'):  # numpy scalar
        return obj.item()
    if hasattr(obj, 'tolist'):  # numpy array
        return obj.tolist()
    return repr(obj)


class JsonFormatter(logging.Formatter):
    """Renders a record whose ``msg`` is an event payload dict as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
        }
        if isinstance(record.msg, dict):
            entry.update({str(k): v for k, v in record.msg.items()})
        else:
            entry["message"] = record.getMessage()

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=_jsonable)


def _formatter(structured: bool) -> logging.Formatter:
    return JsonFormatter() if structured else logging.Formatter(PLAIN_FORMAT)


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger taking ``(event_type, data)`` pairs.

    Handlers come from LoggingSettings: stdout when ``console_enabled``, a
    rotating ``<log_dir>/<name>.jsonl`` file when ``file_enabled``.
    """

    def __init__(self, name: str, config: "LoggingSettings"):
        self.name = name
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, str(config.level.value).upper(), logging.INFO))
        self.logger.propagate = False

        if config.console_enabled:
            self._attach_console(config.structured_logging)
        if config.file_enabled:
            self._attach_file(Path(config.log_dir) / f"{name}.jsonl", config)

    def _attach_console(self, structured: bool) -> None:
        if any(getattr(h, 'stream', None) is sys.stdout for h in self.logger.handlers):
            return
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(_formatter(structured))
        self.logger.addHandler(handler)

    def _attach_file(self, path: Path, config: "LoggingSettings") -> None:
        target = os.path.abspath(path)
        if any(isinstance(h, RotatingFileHandler) and h.baseFilename == target for h in self.logger.handlers):
            return

        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            target,
            maxBytes=config.max_file_size_mb * 1024 * 1024,
            backupCount=config.backup_count,
            encoding='utf-8'
        )
        handler.setFormatter(_formatter(config.structured_logging))
        self.logger.addHandler(handler)

    def _emit(self, level: int, event_type: str, data: Optional[Dict[str, Any]], exc_info: bool = False) -> None:
        if self.logger.isEnabledFor(level):
            self.logger.log(level, {"event_type": event_type, "data": data or {}}, exc_info=exc_info)

    def debug(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.DEBUG, event_type, data)

    def info(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.INFO, event_type, data)

    def warning(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
        self._emit(logging.WARNING, event_type, data)

    def error(self, event_type: str, data: Optional[Dict[str, Any]] = None, exc_info: bool = False) -> None:
        """Log an error event; ``exc_info=True`` attaches the active traceback."""
        self._emit(logging.ERROR, event_type, data, exc_info=exc_info)


def get_logger(name: str, config: Optional["LoggingSettings"] = None) -> StructuredLogger:
    """
    Cached StructuredLogger for ``name``.

    The first call builds it from ``config`` or, when omitted, from
    LoggingSettings read from the environment (``LOG_*``).
    """
    with _loggers_lock:
        logger = _loggers.get(name)
        if logger is None:
            if config is None:
                from ..infrastructure.config.settings import LoggingSettings
                config = LoggingSettings()
            logger = StructuredLogger(name, config)
            _loggers[name] = logger
        return logger


def reset_logger_cache() -> None:
    """Forget cached loggers so the next get_logger() call reapplies settings."""
    with _loggers_lock:
        for logger in _loggers.values():
            for handler in list(logger.logger.handlers):
                logger.logger.removeHandler(handler)
                handler.close()
        _loggers.clear()
