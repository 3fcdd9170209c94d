import json
import logging
import math
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from pathlib import Path
from typing import Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field
from rich.console import Console
from rich.progress import BarColumn, Progress, TaskProgressColumn, TextColumn, TimeRemainingColumn
from rich.text import Text

from infra.config.schemas import BatchConfig
from infra.logger import PipelineLogger

from .errors import RecognitionError, classify_error
from .resilience import ResilientBackend

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int, str], None]

# (path, text, failure): exactly one of text and failure is set
ResultCallback = Callable[[str, Optional[str], Optional["BatchFailure"]], None]

MISSING_FILE_ERROR = "File not found"


class BatchItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    text: str


class BatchFailure(BaseModel):
    model_config = ConfigDict(frozen=True)

    path: str
    error: str
    category: str = "unknown"


class BatchStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int = Field(..., ge=0, description="Distinct input paths, missing files included")
    successful: int = Field(..., ge=0)
    failed: int = Field(..., ge=0)
    total_time: float = Field(..., ge=0.0, description="Wall-clock seconds for the whole batch")
    avg_time_per_item: float = Field(..., ge=0.0, description="total_time / successful")


class BatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    results: List[BatchItem] = Field(default_factory=list)
    failures: List[BatchFailure] = Field(default_factory=list)
    stats: BatchStats

    def text_for(self, path) -> Optional[str]:
        key = str(path)
        for item in self.results:
            if item.path == key:
                return item.text
        return None

    def ordered(self, paths) -> List[Optional[str]]:
        """Texts in the caller's page order; None where the page failed."""
        by_path = {item.path: item.text for item in self.results}
        return [by_path.get(str(p)) for p in paths]

    def failure_for(self, path) -> Optional[BatchFailure]:
        key = str(path)
        for failure in self.failures:
            if failure.path == key:
                return failure
        return None


def log_failure(logs_dir: Path, page_num: Optional[int], image_path, error: str, category: str = "unknown"):
    logs_dir.mkdir(parents=True, exist_ok=True)
    failure_log = logs_dir / "ocr_failures.json"

    failure_entry = {
        "page_num": page_num,
        "image_path": str(image_path),
        "error": error,
        "category": category,
        "timestamp": time.strftime("%Y-%m-%d %H:%M:%S")
    }

    if failure_log.exists():
        with open(failure_log, 'r') as f:
            failures = json.load(f)
    else:
        failures = []

    failures.append(failure_entry)

    with open(failure_log, 'w') as f:
        json.dump(failures, f, indent=2)


def format_batch_summary(
    batch_name: str,
    completed: int,
    total: int,
    time_seconds: float,
    failed: int,
    unit: str = "pages",
    description_width: int = 45
) -> Text:
    text = Text()
    if failed:
        text.append("⚠️  ", style="yellow")
    else:
        text.append("✅ ", style="green")

    description = f"{batch_name}: {completed}/{total} {unit}"
    text.append(f"{description:<{description_width}}", style="")
    text.append(f" ({format_duration(time_seconds)})", style="dim")
    if failed:
        text.append(f" {failed} failed", style="red")
    return text


class BatchOrchestrator:
    """
    Recognize many page images with bounded concurrency.

    Missing files are failed up front without touching the backend. Each
    remaining image gets its own retry sequence from the ResilientBackend;
    a failed image is recorded and the rest of the batch carries on unless
    continue_on_error is False.
    """

    def __init__(
        self,
        backend: ResilientBackend,
        config: Optional[BatchConfig] = None,
        logger: Optional[PipelineLogger] = None,
        logs_dir: Optional[Path] = None,
        batch_name: Optional[str] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.config = config or BatchConfig()
        self.logger = logger
        self.logs_dir = Path(logs_dir) if logs_dir else None
        self.batch_name = batch_name or backend.display_name
        self._clock = clock

    def _log(self, level: str, message: str, **kwargs):
        if self.logger:
            getattr(self.logger, level)(message, **kwargs)
        else:
            getattr(logger, level)(message)

    def _record_failure(self, failures: Dict[str, BatchFailure], path: str, error: str, category: str) -> BatchFailure:
        failure = BatchFailure(path=path, error=error, category=category)
        failures[path] = failure
        self._log("error", f"OCR failed for {path}: {error}", error=error, engine=self.backend.engine)
        if self.logs_dir:
            log_failure(self.logs_dir, None, path, error, category)
        return failure

    def run(
        self,
        image_paths,
        on_progress: Optional[ProgressCallback] = None,
        on_result: Optional[ResultCallback] = None,
    ) -> BatchResult:
        """
        Recognize image_paths and return results in input order.

        on_result fires on the calling thread as each image settles (missing
        files first), so callers can checkpoint while the batch is running.
        Duplicate paths are recognized once and counted once.
        """
        start = self._clock()
        # Duplicates would race on the same result slot
        paths = list(dict.fromkeys(str(p) for p in image_paths))
        order = {p: i for i, p in enumerate(paths)}

        results: Dict[str, BatchItem] = {}
        failures: Dict[str, BatchFailure] = {}

        valid_paths = []
        for path in paths:
            if Path(path).is_file():
                valid_paths.append(path)
            else:
                failure = self._record_failure(failures, path, MISSING_FILE_ERROR, "invalid_input")
                if on_result:
                    on_result(path, None, failure)

        self._log(
            "info",
            f"Recognizing {len(valid_paths)} images with {self.backend.display_name} "
            f"(workers: {self.config.concurrency}, skipped missing: {len(failures)})",
            engine=self.backend.engine,
        )

        progress = Progress(
            TextColumn("   {task.description}"),
            BarColumn(bar_width=40),
            TaskProgressColumn(),
            TextColumn("•"),
            TimeRemainingColumn(),
            TextColumn("•"),
            TextColumn("{task.fields[suffix]}", justify="right"),
            transient=True,
            disable=self.config.silent,
        )

        completed = 0
        with progress:
            task_id = progress.add_task(self.batch_name, total=len(valid_paths), suffix="starting...")

            with ThreadPoolExecutor(max_workers=self.config.concurrency) as executor:
                futures = {
                    executor.submit(self.backend.recognize, path, self.config.max_retries): path
                    for path in valid_paths
                }

                for future in as_completed(futures):
                    path = futures[future]
                    try:
                        results[path] = BatchItem(path=path, text=future.result())
                    except Exception as e:
                        category = e.category if isinstance(e, RecognitionError) else classify_error(e)[0]
                        failure = self._record_failure(failures, path, str(e), category)

                        # The image that stops the batch is not reported as settled
                        if not self.config.continue_on_error:
                            for pending in futures:
                                pending.cancel()
                            raise
                        if on_result:
                            on_result(path, None, failure)
                    else:
                        if on_result:
                            on_result(path, results[path].text, None)

                    completed += 1
                    progress.update(
                        task_id,
                        completed=completed,
                        suffix=f"{len(results)}/{len(valid_paths)} ok • {len(failures)} failed",
                    )
                    if on_progress:
                        on_progress(completed, len(valid_paths), path)

        total_time = self._clock() - start
        successful = len(results)
        stats = BatchStats(
            total=len(paths),
            successful=successful,
            failed=len(failures),
            total_time=total_time,
            avg_time_per_item=total_time / successful if successful else 0.0,
        )

        if not self.config.silent:
            Console().print(format_batch_summary(
                batch_name=self.batch_name,
                completed=successful,
                total=len(paths),
                time_seconds=total_time,
                failed=len(failures),
            ))

        self._log(
            "info",
            f"{self.batch_name} complete: {successful}/{len(paths)} images, {len(failures)} failed",
            duration_seconds=total_time,
        )

        return BatchResult(
            results=sorted(results.values(), key=lambda item: order[item.path]),
            failures=sorted(failures.values(), key=lambda failure: order[failure.path]),
            stats=stats,
        )


def save_batch_results(result: BatchResult, output_dir) -> Path:
    """
    Write one <stem>.txt per recognized image, failures.log (when anything
    failed) and ocr-stats.json into output_dir.
    """
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)

    for item in result.results:
        (output_dir / f"{Path(item.path).stem}.txt").write_text(item.text, encoding="utf-8")

    if result.failures:
        lines = [f"{failure.path}: {failure.error}" for failure in result.failures]
        (output_dir / "failures.log").write_text("\n".join(lines), encoding="utf-8")

    with open(output_dir / "ocr-stats.json", "w") as f:
        json.dump(result.stats.model_dump(), f, indent=2)

    return output_dir


def estimate_remaining_time(completed: int, total: int, avg_time_per_item: float) -> float:
    return max(0, total - completed) * avg_time_per_item


def format_duration(seconds: float) -> str:
    seconds = int(math.floor(max(0.0, seconds)))
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)

    if hours > 0:
        return f"{hours}h {minutes}m {secs}s"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"


def throughput(items: int, seconds: float) -> float:
    """Items per second."""
    if seconds <= 0:
        return 0.0
    return items / seconds
