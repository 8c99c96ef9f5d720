"""Tests for PipelineJobTracker and the tracking data types."""
from unittest.mock import MagicMock

import pytest

from reelforge.services.tracking.tracker import PipelineJobTracker
from reelforge.services.tracking.types import (
    PipelineProgress, PipelineStage, TrackerCallbacks, VideoJobStatus, translate_stage,
)


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def callbacks():
    return TrackerCallbacks(
        on_progress=MagicMock(), on_complete=MagicMock(),
        on_error=MagicMock(), on_video_ready=MagicMock(),
    )


@pytest.fixture
def tracker(clock, callbacks):
    t = PipelineJobTracker(clock=clock)
    t.observe("run1", callbacks, video_ids=["run1-v0", "run1-v1", "run1-v2"])
    return t


def _event(video_id, **fields):
    return {"id": video_id, "run_id": "run1", **fields}


# ═══════════════════════════════════════════════════════════════════════════════
# Types
# ═══════════════════════════════════════════════════════════════════════════════


class TestStageTranslation:
    @pytest.mark.parametrize("name,stage", [
        ("pending", PipelineStage.QUEUED),
        ("deconstruction", PipelineStage.ANALYZING),
        ("voice_generation", PipelineStage.VOICE),
        ("video_generation", PipelineStage.ASSEMBLING),
        ("ffmpeg_render", PipelineStage.RENDERING),
        ("export", PipelineStage.SUBTITLE_BURN),
        ("url_validation", PipelineStage.VALIDATE),
        ("done", PipelineStage.COMPLETED),
        ("error", PipelineStage.FAILED),
        ("Rendering", PipelineStage.RENDERING),
        ("upload", PipelineStage.UPLOAD),
    ])
    def test_known_names(self, name, stage):
        assert translate_stage(name) is stage

    def test_unknown_name(self):
        assert translate_stage("teleporting") is None
        assert translate_stage(None) is None

    def test_stage_order(self):
        assert PipelineStage.QUEUED.order < PipelineStage.RENDERING.order < PipelineStage.COMPLETED.order


class TestPipelineProgress:
    def _statuses(self, *stages):
        return {f"v{i}": VideoJobStatus(id=f"v{i}", stage=s) for i, s in enumerate(stages)}

    def test_empty_run(self):
        progress = PipelineProgress.from_statuses("r", {})
        assert progress.overall_progress_pct == 0
        assert not progress.is_complete

    def test_validating_counts_half(self):
        progress = PipelineProgress.from_statuses(
            "r", self._statuses(PipelineStage.VALIDATE, PipelineStage.RENDERING),
        )
        assert progress.overall_progress_pct == 25
        assert progress.processing_jobs == 2

    def test_failed_jobs_complete_the_run(self):
        progress = PipelineProgress.from_statuses("r", self._statuses(
            PipelineStage.COMPLETED, PipelineStage.COMPLETED, PipelineStage.FAILED,
        ))
        assert progress.is_complete
        assert progress.has_errors
        assert progress.overall_progress_pct == 67

    def test_to_dict(self):
        d = PipelineProgress.from_statuses("r", self._statuses(PipelineStage.COMPLETED)).to_dict()
        assert d["overall_progress_pct"] == 100
        assert d["statuses"]["v0"]["stage"] == "completed"
        assert d["statuses"]["v0"]["stage_weight"] == 100


# ═══════════════════════════════════════════════════════════════════════════════
# Status events
# ═══════════════════════════════════════════════════════════════════════════════


class TestStatusEvents:
    def test_observe_starts_queued(self, tracker):
        progress = tracker.progress
        assert progress.total_jobs == 3
        assert progress.overall_progress_pct == 0
        assert tracker.get_status("run1-v0").stage is PipelineStage.QUEUED

    def test_stage_name_translated(self, tracker):
        assert tracker.apply_status_event(_event("run1-v0", status="running", stage_name="ffmpeg_render"))
        assert tracker.get_status("run1-v0").stage is PipelineStage.RENDERING

    def test_completion_fires_once_and_reaches_100(self, tracker, callbacks):
        for vid in ("run1-v0", "run1-v1", "run1-v2"):
            tracker.apply_status_event(_event(vid, status="completed", video_url=f"https://cdn.test/{vid}.mp4"))
        tracker.apply_status_event(_event("run1-v2", status="completed"))

        assert tracker.progress.overall_progress_pct == 100
        assert tracker.progress.is_complete
        callbacks.on_complete.assert_called_once()
        assert callbacks.on_complete.call_args.args[0].overall_progress_pct == 100
        assert callbacks.on_video_ready.call_count == 3

    def test_video_ready_needs_url(self, tracker, callbacks):
        tracker.apply_status_event(_event("run1-v0", status="completed"))
        callbacks.on_video_ready.assert_not_called()

    def test_failure_reports_error(self, tracker, callbacks):
        tracker.apply_status_event(_event("run1-v1", status="failed", error_message="encoder crashed"))
        status = tracker.get_status("run1-v1")
        assert status.stage is PipelineStage.FAILED
        assert status.error_code == "RENDER_FAILED"
        assert status.error_message == "encoder crashed"
        callbacks.on_error.assert_called_once_with(status)
        assert tracker.progress.has_errors

    def test_terminal_status_wins_over_stage_name(self, tracker):
        tracker.apply_status_event(_event("run1-v0", status="failed", stage_name="execute",
                                          error_code="RENDER_TIMEOUT"))
        assert tracker.get_status("run1-v0").stage is PipelineStage.FAILED
        assert tracker.get_status("run1-v0").error_code == "RENDER_TIMEOUT"

    def test_stale_event_ignored(self, tracker):
        tracker.apply_status_event(_event("run1-v0", stage_name="rendering"))
        assert not tracker.apply_status_event(_event("run1-v0", stage_name="analysis"))
        assert tracker.get_status("run1-v0").stage is PipelineStage.RENDERING

    def test_terminal_job_ignores_events(self, tracker):
        tracker.apply_status_event(_event("run1-v0", status="completed", video_url="https://cdn.test/a.mp4"))
        assert not tracker.apply_status_event(_event("run1-v0", status="running"))
        assert not tracker.apply_status_event(_event("run1-v0", status="failed"))
        assert tracker.get_status("run1-v0").stage is PipelineStage.COMPLETED

    def test_other_run_ignored(self, tracker):
        assert not tracker.apply_status_event({"id": "run1-v0", "run_id": "run2", "status": "completed"})
        assert tracker.get_status("run1-v0").stage is PipelineStage.QUEUED

    def test_missing_run_id_accepted(self, tracker):
        assert tracker.apply_status_event({"id": "run1-v0", "status": "processing"})
        assert tracker.get_status("run1-v0").stage is PipelineStage.RENDERING

    def test_unknown_job_registered(self, tracker):
        assert tracker.apply_status_event(_event("run1-v9", status="pending"))
        assert tracker.progress.total_jobs == 4

    def test_event_before_observe_ignored(self, clock):
        assert not PipelineJobTracker(clock=clock).apply_status_event(_event("a", status="done"))

    def test_engine_and_url_recorded(self, tracker):
        tracker.apply_status_event(_event("run1-v0", status="completed", video_url="https://cdn.test/v.mp4",
                                          engine_used="vps-ffmpeg"))
        status = tracker.get_status("run1-v0")
        assert status.video_url == "https://cdn.test/v.mp4"
        assert status.engine_used == "vps-ffmpeg"

    def test_callback_errors_are_contained(self, clock):
        broken = TrackerCallbacks(on_progress=MagicMock(side_effect=RuntimeError("ui gone")))
        tracker = PipelineJobTracker(clock=clock)
        tracker.observe("run1", broken, video_ids=["run1-v0"])
        assert tracker.apply_status_event(_event("run1-v0", status="completed"))


class TestTick:
    def test_tick_updates_elapsed_only(self, tracker, clock):
        tracker.apply_status_event(_event("run1-v2", status="completed"))
        before = tracker.get_status("run1-v0")
        clock.now += 5
        tracker.tick()

        after = tracker.get_status("run1-v0")
        assert after.elapsed_seconds == 5
        assert after.stage is before.stage
        assert after.updated_at == before.updated_at
        assert tracker.get_status("run1-v2").elapsed_seconds == 0

    def test_ticker_thread_starts_and_stops(self, clock):
        tracker = PipelineJobTracker(clock=clock, tick_interval=0.01)
        tracker.observe("run1", video_ids=["a"])
        tracker.start()
        tracker.start()
        tracker.stop()

    def test_ticker_restarts_after_stop(self, clock):
        tracker = PipelineJobTracker(clock=clock, tick_interval=0.01)
        tracker.observe("run1", video_ids=["a"])
        tracker.start()
        assert tracker.ticking
        tracker.stop()
        assert not tracker.ticking
        tracker.start()
        assert tracker.ticking
        tracker.stop(wait=False)
        assert not tracker.ticking


# ═══════════════════════════════════════════════════════════════════════════════
# Retry
# ═══════════════════════════════════════════════════════════════════════════════


class TestRetry:
    @pytest.fixture
    def redispatch(self):
        return MagicMock()

    @pytest.fixture
    def failed_tracker(self, clock, callbacks, redispatch):
        t = PipelineJobTracker(redispatch=redispatch, clock=clock)
        t.observe("run1", callbacks, video_ids=["run1-v0", "run1-v1", "run1-v2"])
        t.apply_status_event(_event("run1-v0", status="failed", error_code="PROVIDER_ERROR"))
        t.apply_status_event(_event("run1-v1", status="failed"))
        t.apply_status_event(_event("run1-v2", status="completed", video_url="https://cdn.test/2.mp4"))
        return t

    def test_retry_resets_only_target(self, failed_tracker, redispatch, clock):
        clock.now = 200.0
        assert failed_tracker.retry_job("run1-v0")

        target = failed_tracker.get_status("run1-v0")
        assert target.stage is PipelineStage.QUEUED
        assert target.retry_count == 1
        assert target.error_code is None
        assert target.started_at == 200.0
        assert failed_tracker.get_status("run1-v1").stage is PipelineStage.FAILED
        assert failed_tracker.get_status("run1-v2").stage is PipelineStage.COMPLETED
        redispatch.assert_called_once_with("run1-v0")
        assert not failed_tracker.progress.is_complete

    def test_completion_fires_again_after_retry(self, failed_tracker, callbacks):
        assert callbacks.on_complete.call_count == 1
        failed_tracker.retry_job("run1-v0")
        failed_tracker.apply_status_event(_event("run1-v0", status="completed"))
        assert callbacks.on_complete.call_count == 2

    def test_retry_non_failed_job(self, failed_tracker, redispatch):
        assert not failed_tracker.retry_job("run1-v2")
        assert not failed_tracker.retry_job("run1-v7")
        redispatch.assert_not_called()

    def test_paused_tracker_does_not_retry(self, failed_tracker, redispatch):
        failed_tracker.pause()
        assert failed_tracker.paused
        assert not failed_tracker.retry_job("run1-v0")
        assert failed_tracker.retry_all_failed() == 0
        redispatch.assert_not_called()

        failed_tracker.resume()
        assert failed_tracker.retry_job("run1-v0")

    def test_retry_all_failed(self, failed_tracker, redispatch):
        assert failed_tracker.retry_all_failed() == 2
        assert sorted(c.args[0] for c in redispatch.call_args_list) == ["run1-v0", "run1-v1"]
        assert failed_tracker.progress.failed_jobs == 0

    def test_redispatch_error_becomes_retry_failed(self, failed_tracker, redispatch, callbacks):
        redispatch.side_effect = KeyError("run1-v0")
        assert failed_tracker.retry_job("run1-v0")
        status = failed_tracker.get_status("run1-v0")
        assert status.stage is PipelineStage.FAILED
        assert status.error_code == "RETRY_FAILED"
        assert status.retry_count == 1

    def test_retry_count_never_decreases(self, failed_tracker):
        failed_tracker.retry_job("run1-v0")
        failed_tracker.apply_status_event(_event("run1-v0", status="running", retry_count=0))
        assert failed_tracker.get_status("run1-v0").retry_count == 1
