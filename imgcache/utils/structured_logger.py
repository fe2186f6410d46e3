"""
Structured logging for cleanup job events.

Every event goes to the regular `logging` tree as a `[event] key=value` line
and, when a log directory is configured, to a JSON-lines file next to the job
database.
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Any


class JsonLinesFormatter(logging.Formatter):
    """Renders records carrying `event` and `context` attributes as JSON."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "event": getattr(record, "event", record.getMessage()),
            **getattr(record, "context", {}),
        }
        return json.dumps(entry, default=str)


class StructuredLogger:
    """
    Logger that outputs both human-readable and machine-parseable logs.

    Usage:
        logger = StructuredLogger("imgcache.jobs", log_dir=Path("logs"))
        logger.info("job_succeeded", job_id=3, removed=120)
    """

    def __init__(
        self,
        name: str,
        log_dir: Path | None = None,
        enable_json: bool = True,
        enable_console: bool = True,
    ):
        """
        Args:
            name: Name of the console logger.
            log_dir: Directory for JSON log files (None disables them).
            enable_json: Write JSON lines when a log directory is given.
            enable_console: Forward events to the console logger.
        """
        self.name = name
        self.enable_console = enable_console
        self._logger = logging.getLogger(name)
        self._session_context: dict[str, Any] = {
            "session_id": f"{int(time.time())}_{id(self)}",
        }

        self._json_handler: logging.FileHandler | None = None
        self._json_logger: logging.Logger | None = None
        if enable_json and log_dir is not None:
            log_dir.mkdir(parents=True, exist_ok=True)
            self.json_log_path = (
                log_dir / f"imgcache_{datetime.now().strftime('%Y%m%d_%H%M%S')}.jsonl"
            )
            self._json_handler = logging.FileHandler(
                self.json_log_path, encoding="utf-8"
            )
            self._json_handler.setFormatter(JsonLinesFormatter())
            self._json_logger = logging.getLogger(f"{name}.json.{id(self)}")
            self._json_logger.propagate = False
            self._json_logger.setLevel(logging.DEBUG)
            self._json_logger.addHandler(self._json_handler)

    def _log(self, level: int, event: str, **context) -> None:
        if self.enable_console:
            fields = " ".join(f"{key}={value}" for key, value in context.items())
            self._logger.log(level, f"[{event}] {fields}".rstrip())
        if self._json_logger is not None:
            self._json_logger.log(
                level,
                event,
                extra={
                    "event": event,
                    "context": {**self._session_context, **context},
                },
            )

    def debug(self, event: str, **context) -> None:
        self._log(logging.DEBUG, event, **context)

    def info(self, event: str, **context) -> None:
        self._log(logging.INFO, event, **context)

    def warning(self, event: str, **context) -> None:
        self._log(logging.WARNING, event, **context)

    def close(self) -> None:
        """Detaches and closes the JSON log file."""
        if self._json_handler is not None:
            self._json_logger.removeHandler(self._json_handler)
            self._json_handler.close()
            self._json_handler = None
            self._json_logger = None


class JobLogger:
    """Specialized logger for cleanup job events."""

    def __init__(self, logger: StructuredLogger):
        self.logger = logger

    def job_enqueued(self, job_id: int, kind: str, directory: str, next_due: float):
        self.logger.info(
            "job_enqueued",
            job_id=job_id,
            kind=kind,
            directory=directory,
            due_in_s=round(max(0.0, next_due - time.time()), 1),
        )

    def job_kept(self, job_id: int, directory: str):
        """Log a duplicate periodic registration that left the existing job alone."""
        self.logger.debug("job_registration_kept", job_id=job_id, directory=directory)

    def job_started(self, job_id: int, kind: str, attempt: int):
        self.logger.debug("job_started", job_id=job_id, kind=kind, attempt=attempt)

    def job_succeeded(self, job_id: int, removed: int, duration_s: float):
        self.logger.info(
            "job_succeeded",
            job_id=job_id,
            removed=removed,
            duration_s=round(duration_s, 3),
        )

    def job_failed(self, job_id: int, error: str | None, attempt: int, terminal: bool):
        self.logger.warning(
            "job_failed",
            job_id=job_id,
            error=error,
            attempt=attempt,
            terminal=terminal,
        )

    def job_rescheduled(self, job_id: int, delay_s: float):
        self.logger.debug("job_rescheduled", job_id=job_id, delay_s=round(delay_s, 1))


def create_job_logger(
    log_dir: Path | None = None, enable_json: bool = False
) -> tuple[StructuredLogger, JobLogger]:
    """
    Create the structured loggers used by the scheduler.

    Returns:
        Tuple of (base_logger, job_logger)
    """
    base = StructuredLogger("imgcache.jobs", log_dir=log_dir, enable_json=enable_json)
    return base, JobLogger(base)
