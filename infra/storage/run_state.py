"""
Resumable run state for page-export jobs.

One JSON file per job records how far the job got:

    {storage_root}/{sanitized job id}/run-state.json

States: in-progress -> completed | failed. A job that finds its own
in-progress (or failed) state on disk resumes after last_page; a completed
or unreadable state starts the job fresh.

Usage:
    manager = RunStateManager(storage_root, "The Histories")
    manager.start(total_pages=412, engine="tesseract")

    for page in pages_after(manager.resume_page):
        ...
        manager.record_page(page.page)

    manager.complete()

Every update is written atomically (temp file, fsync, replace) before the
call returns, so the file always reflects the last fully completed page.
"""

import json
import logging
import os
import re
import threading
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)

STATE_FILENAME = "run-state.json"
STATE_VERSION = "1.0"


class RunStateCorrupt(Exception):
    """The persisted run state exists but cannot be read."""

    def __init__(self, path: Path, reason: str):
        super().__init__(f"Run state at {path} is unreadable: {reason}")
        self.path = path
        self.reason = reason


class RunStatus(str, Enum):
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    FAILED = "failed"


def _now() -> str:
    return datetime.now().astimezone().isoformat()


class RunState(BaseModel):
    version: str = STATE_VERSION
    job_id: str
    status: RunStatus = RunStatus.IN_PROGRESS
    last_page: int = Field(0, ge=0, description="Last fully processed page (1-based)")
    total_pages: Optional[int] = Field(None, ge=0)
    exported_pages: int = Field(0, ge=0)
    failure_count: int = Field(0, ge=0, description="Pages whose recognition failed")
    start_time: str = Field(default_factory=_now)
    end_time: Optional[str] = None
    stop_reason: Optional[str] = None
    engine: Optional[str] = None
    lang: Optional[str] = None
    updated_at: str = Field(default_factory=_now)

    @property
    def is_terminal(self) -> bool:
        return self.status != RunStatus.IN_PROGRESS

    def elapsed_seconds(self) -> float:
        start = datetime.fromisoformat(self.start_time)
        end = datetime.fromisoformat(self.end_time) if self.end_time else datetime.now().astimezone()
        return max(0.0, (end - start).total_seconds())

    def stats(self) -> Dict[str, Any]:
        total_time = self.elapsed_seconds()
        return {
            "total_time": total_time,
            "avg_time_per_page": total_time / self.exported_pages if self.exported_pages else 0.0,
            "exported_pages": self.exported_pages,
            "failure_count": self.failure_count,
        }


def sanitize_job_id(name: str) -> str:
    """Turn a book title or job name into a safe directory name."""
    name = re.sub(r'[<>:"/\\|?*]', "-", name)
    name = re.sub(r"\s+", "_", name)
    name = re.sub(r"-+", "-", name)
    name = re.sub(r"^[-_]+|[-_]+$", "", name)
    return name[:200] or "untitled"


class RunStateManager:
    """
    Owns the run state of one job.

    Thread-safe: updates are serialized and persisted under one lock.
    """

    def __init__(self, storage_root: Path, job_id: str):
        self.storage_root = Path(storage_root)
        self.job_id = job_id
        self.job_dir = self.storage_root / sanitize_job_id(job_id)
        self.state_file = self.job_dir / STATE_FILENAME

        self._lock = threading.Lock()
        self._state: Optional[RunState] = None

    def load(self) -> Optional[RunState]:
        """
        Read the persisted state.

        Returns None when no state exists. Raises RunStateCorrupt when the
        file exists but is not a valid run state.
        """
        if not self.state_file.exists():
            return None

        try:
            with open(self.state_file, "r") as f:
                data = json.load(f)
            return RunState.model_validate(data)
        except (OSError, ValueError, ValidationError) as e:
            raise RunStateCorrupt(self.state_file, str(e)) from e

    def _load_or_none(self) -> Optional[RunState]:
        try:
            return self.load()
        except RunStateCorrupt as e:
            logger.warning(f"{e}; starting fresh")
            return None

    def can_resume(self) -> bool:
        state = self._load_or_none()
        return state is not None and state.status != RunStatus.COMPLETED and state.last_page > 0

    def start(
        self,
        total_pages: Optional[int] = None,
        engine: Optional[str] = None,
        lang: Optional[str] = None,
        resume: bool = True,
    ) -> RunState:
        """
        Begin (or resume) the job and persist the starting state.

        An in-progress or failed prior state is resumed from its last_page;
        anything else starts at page 0.
        """
        self._cleanup_temp_files()
        previous = self._load_or_none() if resume else None

        with self._lock:
            if previous is not None and previous.status != RunStatus.COMPLETED:
                updates = {
                    "status": RunStatus.IN_PROGRESS,
                    "end_time": None,
                    "stop_reason": None,
                }
                if total_pages is not None:
                    updates["total_pages"] = total_pages
                if engine is not None:
                    updates["engine"] = engine
                if lang is not None:
                    updates["lang"] = lang
                self._state = previous.model_copy(update=updates)
                logger.info(
                    f"Resuming {self.job_id} after page {previous.last_page} "
                    f"(was {previous.status.value})"
                )
            else:
                self._state = RunState(
                    job_id=self.job_id,
                    total_pages=total_pages,
                    engine=engine,
                    lang=lang,
                )
            self._save()
            return self._state

    @property
    def state(self) -> RunState:
        if self._state is None:
            raise RuntimeError(f"Run state for {self.job_id} not started; call start() first")
        return self._state

    @property
    def resume_page(self) -> int:
        """Pages up to and including this number are already done."""
        return self.state.last_page

    def record_page(self, page: int, exported: bool = True) -> RunState:
        """Checkpoint a fully processed page. Re-recording a done page is a no-op."""
        with self._lock:
            state = self._require_active()
            if page <= state.last_page:
                logger.debug(f"Page {page} already recorded (last_page={state.last_page})")
                return state

            self._state = state.model_copy(update={
                "last_page": page,
                "exported_pages": state.exported_pages + (1 if exported else 0),
            })
            self._save()
            return self._state

    def record_failure(self) -> RunState:
        with self._lock:
            state = self._require_active()
            self._state = state.model_copy(update={"failure_count": state.failure_count + 1})
            self._save()
            return self._state

    def complete(self) -> RunState:
        return self._finish(RunStatus.COMPLETED, None)

    def fail(self, reason: str) -> RunState:
        return self._finish(RunStatus.FAILED, reason)

    def _finish(self, status: RunStatus, reason: Optional[str]) -> RunState:
        with self._lock:
            state = self._require_active()
            self._state = state.model_copy(update={
                "status": status,
                "end_time": _now(),
                "stop_reason": reason,
            })
            self._save()
            logger.info(f"Run {self.job_id} {status.value} at page {state.last_page}")
            return self._state

    def _require_active(self) -> RunState:
        state = self.state
        if state.is_terminal:
            raise RuntimeError(f"Run {self.job_id} already {state.status.value}")
        return state

    def _save(self):
        """Atomic write (must be called with lock held)."""
        self._state = self._state.model_copy(update={"updated_at": _now()})
        self.job_dir.mkdir(parents=True, exist_ok=True)

        temp_file = self.state_file.with_suffix(".tmp")
        try:
            with open(temp_file, "w") as f:
                json.dump(self._state.model_dump(mode="json"), f, indent=2)
                f.flush()
                os.fsync(f.fileno())

            temp_file.replace(self.state_file)
        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            logger.error(f"Failed to save run state for {self.job_id}: {e}")
            raise RuntimeError(f"Run state save failed for {self.job_id}: {e}") from e

    def _cleanup_temp_files(self):
        """Remove an orphaned temp file left by a crash mid-write."""
        temp_file = self.state_file.with_suffix(".tmp")
        if temp_file.exists():
            temp_file.unlink()
