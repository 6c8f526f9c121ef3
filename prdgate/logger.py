"""
JSON-lines diagnostic logging for prdgate.

Records go to stderr and/or a project log file (.prd/logs/prdgate.log).
Stdout is reserved for command output so that `--json` reports stay
machine-readable.

Handlers are fail-open: a broken log destination never aborts a command.
"""
import json
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, Optional


LEVELS = {
    "debug": 10,
    "info": 20,
    "warning": 30,
    "error": 40,
}

DEFAULT_LOG_FILE = Path(".prd") / "logs" / "prdgate.log"


class Handler:
    """Base handler for emitting log records."""

    def emit(self, record: dict) -> None:
        raise NotImplementedError


class StderrHandler(Handler):
    """Writes one JSON record per line to a stream (stderr by default)."""

    def __init__(self, stream=None):
        self.stream = stream or sys.stderr

    def emit(self, record: dict) -> None:
        try:
            self.stream.write(json.dumps(record, default=str) + "\n")
            self.stream.flush()
        except (OSError, ValueError, TypeError):
            pass


class FileHandler(Handler):
    """Appends JSON records to a log file, creating parent directories lazily."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def emit(self, record: dict) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(json.dumps(record, default=str) + "\n")
        except (OSError, ValueError, TypeError):
            pass


class JsonLogger:
    """Small structured logger with bound context fields."""

    def __init__(
        self,
        level: str = "warning",
        handlers: Optional[Iterable[Handler]] = None,
        context: Optional[dict] = None,
    ) -> None:
        self.level_name = level.lower()
        self.level = LEVELS.get(self.level_name, LEVELS["warning"])
        self.handlers = list(handlers) if handlers else []
        self.context = context or {}

    def bind(self, **context: object) -> "JsonLogger":
        """Return a child logger carrying extra context (None values dropped)."""
        merged = dict(self.context)
        merged.update({k: v for k, v in context.items() if v is not None})
        return JsonLogger(self.level_name, self.handlers, merged)

    def debug(self, message: str, **fields: object) -> None:
        self._log("debug", message, fields)

    def info(self, message: str, **fields: object) -> None:
        self._log("info", message, fields)

    def warning(self, message: str, **fields: object) -> None:
        self._log("warning", message, fields)

    def error(self, message: str, **fields: object) -> None:
        self._log("error", message, fields)

    def _log(self, level: str, message: str, fields: dict) -> None:
        if LEVELS.get(level, 0) < self.level:
            return

        record = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": level,
            "message": message,
            **self.context,
        }
        record.update({k: v for k, v in fields.items() if v is not None})

        for handler in self.handlers:
            try:
                handler.emit(record)
            except Exception:
                # A third-party handler must not break the command either
                continue


def _build_handlers(logging_config: dict, project_dir: Optional[str]) -> list[Handler]:
    destinations = logging_config.get("destinations", ["file"])
    if isinstance(destinations, str):
        destinations = [destinations]

    handlers: list[Handler] = []
    for destination in destinations:
        dest = (destination or "").lower()
        if dest == "stderr":
            handlers.append(StderrHandler())
        elif dest == "file":
            file_path = logging_config.get("file")
            if file_path is None:
                if project_dir is None:
                    continue
                file_path = Path(project_dir) / DEFAULT_LOG_FILE
            handlers.append(FileHandler(Path(file_path)))

    return handlers


def get_logger(logging_config: Optional[dict] = None,
               project_dir: Optional[str] = None,
               base_context: Optional[dict] = None) -> JsonLogger:
    """
    Build a JsonLogger from the `logging` configuration section.

    Args:
        logging_config: Dict with optional keys level, destinations, file
        project_dir: Project root used for the default log file location
        base_context: Fields included in every record

    Returns:
        Configured logger (with no handlers when nothing is configured)
    """
    cfg = logging_config or {}
    return JsonLogger(
        level=cfg.get("level", "warning"),
        handlers=_build_handlers(cfg, project_dir),
        context=base_context or {},
    )
