"""
Pipeline logging.

Structured JSONL logging with job context:

LOG FILE LOCATIONS:
  {storage_root}/<job-id>/logs/{stage}.jsonl

JSON SCHEMA:
  Required fields: timestamp, level, message, job_id, stage
  Optional fields: page, progress, engine, duration_seconds, error

USAGE:
  with create_logger('my-book', 'ocr', log_dir=job_dir / 'logs', context={'engine': 'tesseract'}) as logger:
      logger.info('Recognizing...', page=42)

Library modules use logging.getLogger(__name__); PipelineLogger is for the
per-job record the workflow and batch layers keep.
"""

import json
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional


CONTEXT_FIELDS = ("job_id", "stage", "page", "progress", "engine", "duration_seconds", "error")

# Keyword arguments handed straight to logging.Logger.log
PASSTHROUGH_KWARGS = ("exc_info", "stack_info", "stacklevel")


class FlushingFileHandler(logging.FileHandler):
    """FileHandler that flushes after every emit so the job log can be tailed."""
    def emit(self, record):
        super().emit(record)
        self.flush()


class JSONFormatter(logging.Formatter):
    """One JSON object per record; only CONTEXT_FIELDS are serialized."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.now().astimezone().isoformat(),
            "level": record.levelname,
            "message": record.getMessage(),
        }
        entry.update({
            name: getattr(record, name)
            for name in CONTEXT_FIELDS
            if hasattr(record, name)
        })
        if record.exc_info:
            entry.setdefault("error", self.formatException(record.exc_info))
        return json.dumps(entry, default=str)


class JobContextAdapter(logging.LoggerAdapter):
    """Merges the job's bound context under each call's own fields."""

    def process(self, msg, kwargs):
        kwargs["extra"] = {**self.extra, **kwargs.get("extra", {})}
        return msg, kwargs


class PipelineLogger:
    """
    Per-job, per-stage JSONL logger.

    Nothing touches the filesystem until the first record, so a stage that
    never logs leaves no empty file behind. close() detaches the handlers
    and unregisters the underlying logger; logging again afterwards reopens
    the same file in append mode.
    """

    def __init__(
        self,
        job_id: str,
        stage: str,
        log_dir: Path,
        console_output: bool = False,
        json_output: bool = True,
        level: str = "INFO",
        filename: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
    ):
        self.job_id = job_id
        self.stage = stage
        self.log_dir = Path(log_dir)
        self.console_output = console_output
        self.json_output = json_output
        self.level = level
        self.filename = filename or f"{stage}.jsonl"
        self.context = {"job_id": job_id, "stage": stage, **(context or {})}

        self.log_file: Optional[Path] = None
        self._adapter: Optional[JobContextAdapter] = None

    @property
    def logger_name(self) -> str:
        return f"folio.{self.job_id}.{self.stage}.{id(self)}"

    def _open(self) -> JobContextAdapter:
        if self._adapter is not None:
            return self._adapter

        base = logging.getLogger(self.logger_name)
        base.setLevel(getattr(logging, self.level.upper()))
        base.propagate = False

        if self.console_output:
            console = logging.StreamHandler(sys.stdout)
            console.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
            base.addHandler(console)

        if self.json_output:
            self.log_dir.mkdir(parents=True, exist_ok=True)
            self.log_file = self.log_dir / self.filename
            handler = FlushingFileHandler(self.log_file, mode="a", encoding="utf-8")
            handler.setFormatter(JSONFormatter())
            base.addHandler(handler)

        if not base.handlers:
            base.addHandler(logging.NullHandler())

        self._adapter = JobContextAdapter(base, self.context)
        return self._adapter

    @property
    def logger(self) -> logging.Logger:
        return self._open().logger

    @property
    def is_open(self) -> bool:
        return self._adapter is not None

    def bind(self, **fields):
        """Add fields to every later record (e.g. the engine once it is known)."""
        self.context.update(fields)

    def log(self, level: str, message: str, **fields):
        passthrough = {key: fields.pop(key) for key in PASSTHROUGH_KWARGS if key in fields}
        extra = {**fields.pop("extra", {}), **fields}
        self._open().log(getattr(logging, level.upper()), message, extra=extra, **passthrough)

    def debug(self, message: str, **fields):
        self.log("DEBUG", message, **fields)

    def info(self, message: str, **fields):
        self.log("INFO", message, **fields)

    def warning(self, message: str, **fields):
        self.log("WARNING", message, **fields)

    def error(self, message: str, **fields):
        self.log("ERROR", message, **fields)

    def close(self):
        if self._adapter is None:
            return

        base = self._adapter.logger
        for handler in base.handlers[:]:
            base.removeHandler(handler)
            handler.close()
        logging.Logger.manager.loggerDict.pop(base.name, None)
        self._adapter = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


def create_logger(job_id: str, stage: str, **kwargs) -> PipelineLogger:
    return PipelineLogger(job_id, stage, **kwargs)
