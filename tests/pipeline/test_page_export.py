"""
Tests for pipeline/page_export.py

Key behaviors to verify:
1. A failed page degrades to empty text and is logged; the export goes on
2. Restarting a job skips pages already checkpointed
3. Batch mode returns chunks in page order
4. Non-recognition errors mark the run failed and propagate
5. Batch mode checkpoints each page as soon as earlier pages are done
"""

import json
import time
from pathlib import Path

import pytest

from infra.config.schemas import BatchConfig, ResilienceConfig
from infra.logger import create_logger
from infra.ocr.errors import RecognitionFailed
from infra.ocr.resilience import ResilientBackend
from infra.ocr.schemas import PageImage
from infra.storage.run_state import RunStateManager, RunStatus
from pipeline.page_export import PageExportWorkflow


def resilient(backend):
    return ResilientBackend(backend, ResilienceConfig(max_retries=0), sleep=lambda s: None)


def pages_for(paths):
    return [PageImage.from_path(path, page=i + 1) for i, path in enumerate(paths)]


@pytest.fixture
def run_state(tmp_library):
    return RunStateManager(tmp_library, "moby-dick")


class TestSequentialExport:

    def test_recognizes_every_page(self, scripted_backend, run_state, page_images):
        summary = PageExportWorkflow(resilient(scripted_backend()), run_state).run(pages_for(page_images))

        assert summary.recognized == 3
        assert summary.failed == 0
        assert [c.text for c in summary.chunks] == [f"Text of {p.name}" for p in page_images]
        assert [c.index for c in summary.chunks] == [0, 1, 2]
        assert run_state.load().status == RunStatus.COMPLETED
        assert run_state.load().last_page == 3

    def test_failed_page_degrades_to_empty_text(self, scripted_backend, run_state, page_images):
        backend = scripted_backend(["first", RecognitionFailed("bad key", category="auth", fatal=True)])

        summary = PageExportWorkflow(resilient(backend), run_state).run(pages_for(page_images))

        assert [c.text for c in summary.chunks] == ["first", "", "Text of page_0003.png"]
        assert summary.failed == 1
        assert summary.failures[0]["page"] == 2
        assert summary.failures[0]["category"] == "auth"

        state = run_state.load()
        assert state.status == RunStatus.COMPLETED
        assert state.failure_count == 1

        entries = json.loads((run_state.job_dir / "logs" / "ocr_failures.json").read_text())
        assert entries[0]["page_num"] == 2
        assert entries[0]["image_path"] == str(page_images[1])

    def test_missing_image_degrades(self, scripted_backend, run_state, page_images, tmp_path):
        pages = pages_for([page_images[0], tmp_path / "missing.png"])

        class RealCheck(scripted_backend):
            def recognize(self, image_path):
                self._require_image(image_path)
                return super().recognize(image_path)

        summary = PageExportWorkflow(resilient(RealCheck()), run_state).run(pages)

        assert summary.failures[0]["category"] == "invalid_input"
        assert summary.chunks[1].text == ""

    def test_resume_skips_checkpointed_pages(self, scripted_backend, tmp_library, make_page_image):
        paths = [make_page_image(f"page_{i:04d}.png") for i in range(1, 11)]

        first = RunStateManager(tmp_library, "moby-dick")
        first.start(total_pages=10)
        for page in range(1, 8):
            first.record_page(page)

        backend = scripted_backend()
        second = RunStateManager(tmp_library, "moby-dick")
        summary = PageExportWorkflow(resilient(backend), second).run(pages_for(paths), total_pages=10)

        assert summary.skipped == 7
        assert [c.page for c in summary.chunks] == [8, 9, 10]
        assert backend.calls == [str(p) for p in paths[7:]]

    def test_geometry_used_when_supported(self, scripted_backend, run_state, page_images):
        backend = scripted_backend(markup='<word bbox="1 1 20 10">Hello</word><word bbox="25 1 50 10">World</word>', geometry=True)

        summary = PageExportWorkflow(resilient(backend), run_state).run(pages_for(page_images[:1]))

        chunk = summary.chunks[0]
        assert chunk.text == "Hello World"
        assert chunk.has_geometry

    def test_geometry_disabled(self, scripted_backend, run_state, page_images):
        backend = scripted_backend(markup='<word bbox="1 1 20 10">Hello</word>', geometry=True)

        summary = PageExportWorkflow(resilient(backend), run_state, use_geometry=False).run(pages_for(page_images[:1]))

        assert not summary.chunks[0].has_geometry
        assert summary.chunks[0].text == "Text of page_0001.png"

    def test_unexpected_error_fails_run(self, scripted_backend, run_state, page_images):
        def pages():
            yield from pages_for(page_images[:1])
            raise OSError("scanner disconnected")

        with pytest.raises(OSError):
            PageExportWorkflow(resilient(scripted_backend()), run_state).run(pages())

        state = run_state.load()
        assert state.status == RunStatus.FAILED
        assert "scanner disconnected" in state.stop_reason
        assert state.last_page == 1

    def test_writes_job_log(self, scripted_backend, run_state, page_images):
        PageExportWorkflow(resilient(scripted_backend()), run_state).run(pages_for(page_images[:1]))

        lines = (run_state.job_dir / "logs" / "ocr.jsonl").read_text().splitlines()
        entries = [json.loads(line) for line in lines]
        assert entries[0]["job_id"] == "moby-dick"
        assert any(e.get("page") == 1 for e in entries)


class TestBatchExport:

    def test_chunks_in_page_order(self, scripted_backend, run_state, make_page_image):
        paths = [make_page_image(f"page_{i:04d}.png") for i in range(1, 7)]
        pages = list(reversed(pages_for(paths)))

        summary = PageExportWorkflow(
            resilient(scripted_backend()), run_state, batch_config=BatchConfig(silent=True, concurrency=3)
        ).run_batch(pages)

        assert [c.page for c in summary.chunks] == [1, 2, 3, 4, 5, 6]
        assert summary.recognized == 6
        assert run_state.load().last_page == 6

    def test_batch_failure_degrades(self, scripted_backend, run_state, page_images, tmp_path):
        pages = pages_for([page_images[0], tmp_path / "gone.png", page_images[2]])

        summary = PageExportWorkflow(
            resilient(scripted_backend()), run_state, batch_config=BatchConfig(silent=True)
        ).run_batch(pages)

        assert [c.text for c in summary.chunks] == ["Text of page_0001.png", "", "Text of page_0003.png"]
        assert summary.failures[0]["error"] == "File not found"
        assert run_state.load().failure_count == 1

    def test_batch_resume(self, scripted_backend, tmp_library, page_images):
        first = RunStateManager(tmp_library, "moby-dick")
        first.start()
        first.record_page(2)

        backend = scripted_backend()
        summary = PageExportWorkflow(
            resilient(backend), RunStateManager(tmp_library, "moby-dick"), batch_config=BatchConfig(silent=True)
        ).run_batch(pages_for(page_images))

        assert summary.skipped == 2
        assert backend.calls == [str(page_images[2])]

    def test_batch_checkpoints_while_running(self, scripted_backend, run_state, make_page_image):
        paths = [make_page_image(f"page_{i:04d}.png") for i in range(1, 5)]
        on_disk = []

        def last_page_on_disk():
            return json.loads(run_state.state_file.read_text())["last_page"]

        class Watching(scripted_backend):
            def recognize(self, image_path):
                # The worker can pick up the next page before the caller has
                # handled the previous result, so give the checkpoint a moment
                previous = int(Path(image_path).stem.split("_")[1]) - 1
                deadline = time.monotonic() + 5.0
                while last_page_on_disk() < previous and time.monotonic() < deadline:
                    time.sleep(0.01)
                on_disk.append(last_page_on_disk())
                return super().recognize(image_path)

        PageExportWorkflow(
            resilient(Watching()), run_state, batch_config=BatchConfig(silent=True, concurrency=1)
        ).run_batch(pages_for(paths))

        # Each page sees every earlier page already checkpointed
        assert on_disk == [0, 1, 2, 3]

    def test_batch_crash_keeps_finished_pages(self, scripted_backend, run_state, page_images):
        backend = scripted_backend(["one", "two", RecognitionFailed("worker died", category="server")])

        with pytest.raises(RecognitionFailed):
            PageExportWorkflow(
                resilient(backend),
                run_state,
                batch_config=BatchConfig(silent=True, concurrency=1, continue_on_error=False),
            ).run_batch(pages_for(page_images))

        state = run_state.load()
        assert state.status == RunStatus.FAILED
        # The page that stopped the batch is redone on resume
        assert state.last_page == 2
        assert state.exported_pages == 2

    def test_batch_failure_logged_once(self, scripted_backend, run_state, page_images, tmp_path):
        missing = tmp_path / "gone.png"
        pages = pages_for([page_images[0], missing])

        PageExportWorkflow(
            resilient(scripted_backend()), run_state, batch_config=BatchConfig(silent=True)
        ).run_batch(pages)

        lines = (run_state.job_dir / "logs" / "ocr.jsonl").read_text().splitlines()
        errors = [json.loads(line) for line in lines if json.loads(line)["level"] == "ERROR"]
        assert len(errors) == 1
        assert str(missing) in errors[0]["message"]

        failures = json.loads((run_state.job_dir / "logs" / "ocr_failures.json").read_text())
        assert [f["page_num"] for f in failures] == [2]


class TestWorkflowLogger:

    def test_owned_logger_closed_after_run(self, scripted_backend, run_state, page_images):
        workflow = PageExportWorkflow(resilient(scripted_backend()), run_state)
        workflow.run(pages_for(page_images[:1]))

        assert not workflow.logger.is_open

    def test_owned_logger_closed_after_failed_batch(self, scripted_backend, run_state, page_images):
        backend = scripted_backend([RecognitionFailed("worker died", category="server")])
        workflow = PageExportWorkflow(
            resilient(backend), run_state, batch_config=BatchConfig(silent=True, continue_on_error=False)
        )

        with pytest.raises(RecognitionFailed):
            workflow.run_batch(pages_for(page_images[:1]))

        assert not workflow.logger.is_open

    def test_caller_logger_left_open(self, scripted_backend, run_state, page_images):
        with create_logger("moby-dick", "ocr", log_dir=run_state.job_dir / "logs") as logger:
            PageExportWorkflow(resilient(scripted_backend()), run_state, logger=logger).run(pages_for(page_images[:1]))
            assert logger.is_open

    def test_engine_on_every_record(self, scripted_backend, run_state, page_images):
        PageExportWorkflow(resilient(scripted_backend()), run_state).run(pages_for(page_images[:1]))

        lines = (run_state.job_dir / "logs" / "ocr.jsonl").read_text().splitlines()
        assert {json.loads(line)["engine"] for line in lines} == {"scripted"}
