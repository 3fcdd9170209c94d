"""
Page export workflow: recognize captured pages and checkpoint each one.

    workflow = PageExportWorkflow(ResilientBackend(backend), RunStateManager(root, "my-book"))
    summary = workflow.run(pages)            # one page at a time, as captured
    summary = workflow.run_batch(pages)      # images already on disk, in parallel

Pages at or below the run state's last_page are skipped, so re-running a
job picks up where it stopped. A page whose recognition fails is kept with
empty text and listed in {job dir}/logs/ocr_failures.json; OCR trouble
never stops the export. Anything else marks the run failed and propagates.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from infra.config.schemas import BatchConfig
from infra.logger import PipelineLogger
from infra.ocr.batch_processor import BatchFailure, BatchOrchestrator, log_failure
from infra.ocr.errors import RecognitionError
from infra.ocr.resilience import ResilientBackend
from infra.ocr.schemas import ContentChunk, PageImage
from infra.storage.run_state import RunStateManager


@dataclass
class ExportSummary:
    chunks: List[ContentChunk] = field(default_factory=list)
    recognized: int = 0
    failed: int = 0
    skipped: int = 0
    failures: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def processed(self) -> int:
        return self.recognized + self.failed


class PageExportWorkflow:
    def __init__(
        self,
        backend: ResilientBackend,
        run_state: RunStateManager,
        logger: Optional[PipelineLogger] = None,
        batch_config: Optional[BatchConfig] = None,
        use_geometry: bool = True,
    ):
        self.backend = backend
        self.run_state = run_state
        self.logs_dir = run_state.job_dir / "logs"
        self._owns_logger = logger is None
        self.logger = logger or PipelineLogger(
            run_state.job_id, "ocr", log_dir=self.logs_dir, context={"engine": backend.engine}
        )
        self.batch_config = batch_config or BatchConfig()
        self.use_geometry = use_geometry

    def run(self, pages: Iterable[PageImage], total_pages: Optional[int] = None) -> ExportSummary:
        summary = ExportSummary()
        resume_page = self._start(total_pages)

        try:
            for page in pages:
                if page.page <= resume_page:
                    summary.skipped += 1
                    continue

                chunk = self._recognize(page, summary)
                summary.chunks.append(chunk)
                self.run_state.record_page(page.page)

            self._finish(summary)
        except Exception as e:
            self._abort(e)
            raise
        finally:
            self._close_logger()

        return summary

    def run_batch(self, pages: Iterable[PageImage], total_pages: Optional[int] = None) -> ExportSummary:
        summary = ExportSummary()
        resume_page = self._start(total_pages)

        pending = []
        for page in sorted(pages, key=lambda p: p.page):
            if page.page <= resume_page:
                summary.skipped += 1
            else:
                pending.append(page)

        # Results arrive in completion order; pages are checkpointed in page
        # order as soon as every earlier page has settled
        settled: Dict[str, Optional[BatchFailure]] = {}
        texts: Dict[str, str] = {}

        def on_result(path: str, text: Optional[str], failure: Optional[BatchFailure]):
            settled[path] = failure
            if text is not None:
                texts[path] = text
            self._checkpoint_batch(pending, settled, texts, summary)

        try:
            orchestrator = BatchOrchestrator(
                self.backend,
                self.batch_config,
                logger=self.logger,
                batch_name=f"{self.run_state.job_id} OCR",
            )
            orchestrator.run([page.path for page in pending], on_result=on_result)

            # Anything the orchestrator never reported is kept as a failed page
            for page in pending[len(summary.chunks):]:
                settled.setdefault(str(page.path), None)
            self._checkpoint_batch(pending, settled, texts, summary)

            self._finish(summary)
        except Exception as e:
            self._abort(e)
            raise
        finally:
            self._close_logger()

        return summary

    def _checkpoint_batch(
        self,
        pending: List[PageImage],
        settled: Dict[str, Optional[BatchFailure]],
        texts: Dict[str, str],
        summary: ExportSummary,
    ):
        """Checkpoint the longest run of settled pages that follows the last chunk."""
        while len(summary.chunks) < len(pending) and str(pending[len(summary.chunks)].path) in settled:
            page = pending[len(summary.chunks)]
            key = str(page.path)
            if key in texts:
                summary.recognized += 1
                chunk = ContentChunk.from_page(page, text=texts[key])
            else:
                failure = settled[key]
                error = failure.error if failure else "No result"
                category = failure.category if failure else "unknown"
                # Reported failures are already in the job log via the orchestrator
                self._record_failure(page, error, category, summary, log=failure is None)
                chunk = ContentChunk.from_page(page)

            summary.chunks.append(chunk)
            self.run_state.record_page(page.page)

    def _start(self, total_pages: Optional[int]) -> int:
        state = self.run_state.start(
            total_pages=total_pages,
            engine=self.backend.engine,
            lang=self.backend.lang,
        )
        if state.last_page:
            self.logger.info(f"Resuming after page {state.last_page}", page=state.last_page)
        return state.last_page

    def _recognize(self, page: PageImage, summary: ExportSummary) -> ContentChunk:
        start = time.monotonic()
        try:
            if self.use_geometry and self.backend.supports_geometry:
                result = self.backend.recognize_with_geometry(page.path)
                chunk = ContentChunk.from_page(page, text=result.text, words=result.words)
            else:
                chunk = ContentChunk.from_page(page, text=self.backend.recognize(page.path))
        except RecognitionError as e:
            self._record_failure(page, str(e), e.category, summary)
            return ContentChunk.from_page(page)

        summary.recognized += 1
        self.logger.info(
            f"Page {page.page}: {len(chunk.text)} chars",
            page=page.page,
            duration_seconds=round(time.monotonic() - start, 3),
        )
        return chunk

    def _record_failure(self, page: PageImage, error: str, category: str, summary: ExportSummary, log: bool = True):
        summary.failed += 1
        summary.failures.append({
            "page": page.page,
            "image_path": str(page.path),
            "error": error,
            "category": category,
        })
        if log:
            self.logger.error(
                f"Page {page.page}: OCR failed ({category}), continuing with empty text", page=page.page, error=error
            )
        log_failure(self.logs_dir, page.page, page.path, error, category)
        self.run_state.record_failure()

    def _finish(self, summary: ExportSummary):
        self.run_state.complete()
        self.logger.info(
            f"Export complete: {summary.recognized} recognized, {summary.failed} failed, "
            f"{summary.skipped} skipped"
        )

    def _abort(self, error: Exception):
        if self.run_state.state.is_terminal:
            return
        self.run_state.fail(f"{type(error).__name__}: {error}")
        self.logger.error(f"Export failed: {error}", error=str(error))

    def _close_logger(self):
        if self._owns_logger:
            self.logger.close()
