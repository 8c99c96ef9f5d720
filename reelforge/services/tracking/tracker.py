"""PipelineJobTracker — per-video job state and derived run progress.

Status updates arrive as raw job records from two sources (push events from
the change feed, and a polling fallback while the feed is down); both go
through :meth:`PipelineJobTracker.apply_status_event`.  Progress is
recomputed from scratch after every accepted change, and callbacks run
outside the lock.
"""
from __future__ import annotations

import threading
import time
from dataclasses import replace
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

from reelforge.services.shared.errors import make_error
from reelforge.services.shared.logging import get_logger
from reelforge.services.tracking.types import (
    PipelineProgress, PipelineStage, TrackerCallbacks, VideoJobStatus, translate_stage,
)

logger = get_logger("tracking.tracker")

Redispatch = Callable[[str], Any]


class PipelineJobTracker:
    """Tracks the video jobs of one run.

    Invariants:
    - Terminal jobs (completed / failed) ignore events; only
      :meth:`retry_job` moves a failed job back to queued.
    - An event that would move a job to an earlier stage is stale and ignored.
    - ``on_complete`` fires once per transition into the complete state.

    Usage::

        tracker = PipelineJobTracker(redispatch=orchestrator.dispatch_plan)
        tracker.observe(run_id, TrackerCallbacks(on_complete=notify), video_ids=ids)
        tracker.start()                       # elapsed-time ticker
        feed.subscribe(tracker.apply_status_event)
    """

    def __init__(
        self,
        redispatch: Optional[Redispatch] = None,
        clock: Callable[[], float] = time.time,
        tick_interval: float = 1.0,
    ):
        self._redispatch = redispatch
        self._clock = clock
        self._tick_interval = tick_interval
        self._lock = threading.Lock()
        self._run_id: Optional[str] = None
        self._callbacks = TrackerCallbacks()
        self._statuses: Dict[str, VideoJobStatus] = {}
        self._progress: Optional[PipelineProgress] = None
        self._was_complete = False
        self._paused = False
        self._stop = threading.Event()
        self._ticker: Optional[threading.Thread] = None

    # ── public: observation ───────────────────────────────────────────────────

    def observe(
        self,
        run_id: str,
        callbacks: Optional[TrackerCallbacks] = None,
        video_ids: Optional[Iterable[str]] = None,
    ) -> PipelineProgress:
        """Start observing ``run_id``; known video ids start out queued."""
        now = self._clock()
        with self._lock:
            self._run_id = run_id
            self._callbacks = callbacks or TrackerCallbacks()
            self._statuses = {
                vid: VideoJobStatus(id=vid, started_at=now, updated_at=now)
                for vid in (video_ids or [])
            }
            self._was_complete = False
            progress = self._recompute()
        logger.info("Observing run %s (%d job(s))", run_id, len(self._statuses))
        return progress

    @property
    def run_id(self) -> Optional[str]:
        return self._run_id

    @property
    def progress(self) -> Optional[PipelineProgress]:
        return self._progress

    @property
    def paused(self) -> bool:
        return self._paused

    def get_status(self, video_id: str) -> Optional[VideoJobStatus]:
        with self._lock:
            return self._statuses.get(video_id)

    def apply_status_event(self, raw: Dict[str, Any]) -> bool:
        """Apply one raw job record. Returns True when state changed.

        Recognized fields: ``id``, ``run_id``, ``status``, ``stage_name``,
        ``started_at``, ``error_code``, ``error_message``, ``video_url``,
        ``engine_used``, ``retry_count``.
        """
        video_id = raw.get("id")
        if not video_id or self._run_id is None:
            return False
        if raw.get("run_id") not in (None, "", self._run_id):
            return False

        with self._lock:
            current = self._statuses.get(video_id)
            if current is None:
                now = self._clock()
                current = VideoJobStatus(
                    id=video_id, started_at=raw.get("started_at") or now, updated_at=now,
                )
                self._statuses[video_id] = current
                registered = True
            else:
                registered = False

            updated = self._merge(current, raw)
            if updated is None:
                progress = self._recompute() if registered else None
                fired: List[Tuple[Callable, Any]] = []
                if progress is not None and self._callbacks.on_progress:
                    fired.append((self._callbacks.on_progress, progress))
            else:
                self._statuses[video_id] = updated
                progress = self._recompute()
                fired = self._collect_callbacks(current, updated, progress)

        self._fire(fired)
        return updated is not None or registered

    def tick(self) -> None:
        """Refresh ``elapsed_seconds`` of non-terminal jobs. Touches nothing else."""
        now = self._clock()
        with self._lock:
            changed = False
            for vid, status in self._statuses.items():
                if status.is_terminal:
                    continue
                elapsed = max(0, int(now - status.started_at))
                if elapsed != status.elapsed_seconds:
                    self._statuses[vid] = replace(status, elapsed_seconds=elapsed)
                    changed = True
            if changed:
                self._progress = PipelineProgress.from_statuses(self._run_id or "", self._statuses)

    def start(self) -> None:
        """Start the background elapsed-time ticker."""
        if self._ticker is not None and self._ticker.is_alive():
            return
        self._stop = threading.Event()
        self._ticker = threading.Thread(
            target=self._tick_loop, args=(self._stop,), name="tracker-tick", daemon=True,
        )
        self._ticker.start()

    def stop(self, wait: bool = True) -> None:
        """Stop the ticker. Safe to call from a tracker callback on any thread."""
        self._stop.set()
        ticker, self._ticker = self._ticker, None
        if wait and ticker is not None and ticker is not threading.current_thread():
            ticker.join(timeout=self._tick_interval * 2)

    @property
    def ticking(self) -> bool:
        return self._ticker is not None and self._ticker.is_alive()

    # ── public: retry ─────────────────────────────────────────────────────────

    def pause(self) -> None:
        """Stop dispatching new retries. Jobs already running are unaffected."""
        self._paused = True

    def resume(self) -> None:
        self._paused = False

    def retry_job(self, video_id: str) -> bool:
        """Reset one failed job to queued and re-dispatch it.

        Siblings are untouched.  Returns False when the job is unknown, not
        failed, or the tracker is paused.
        """
        if self._paused:
            logger.info("Tracker paused, not retrying %s", video_id)
            return False
        now = self._clock()
        with self._lock:
            status = self._statuses.get(video_id)
            if status is None or status.stage is not PipelineStage.FAILED:
                return False
            self._statuses[video_id] = replace(
                status,
                stage=PipelineStage.QUEUED,
                retry_count=status.retry_count + 1,
                error_code=None,
                error_message=None,
                started_at=now,
                updated_at=now,
                elapsed_seconds=0,
            )
            self._was_complete = False
            progress = self._recompute()
        self._fire([(self._callbacks.on_progress, progress)] if self._callbacks.on_progress else [])
        logger.info("Retrying %s (attempt %d)", video_id, status.retry_count + 1)

        if self._redispatch is None:
            return True
        try:
            self._redispatch(video_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Re-dispatch of %s failed: %s", video_id, exc)
            error = make_error("RETRY_FAILED", "retry", str(exc))
            self.apply_status_event({
                "id": video_id, "run_id": self._run_id, "status": "failed",
                "error_code": error.code, "error_message": error.message,
            })
        return True

    def retry_all_failed(self) -> int:
        """Retry every failed job, one after another. Returns the number retried."""
        with self._lock:
            failed_ids = [vid for vid, s in self._statuses.items() if s.stage is PipelineStage.FAILED]
        retried = 0
        for vid in failed_ids:
            if self._paused:
                break
            if self.retry_job(vid):
                retried += 1
        return retried

    # ── internal ──────────────────────────────────────────────────────────────

    def _merge(self, current: VideoJobStatus, raw: Dict[str, Any]) -> Optional[VideoJobStatus]:
        """Return the updated status, or None when the event must be ignored."""
        if current.is_terminal:
            return None

        status_stage = translate_stage(raw.get("status"))
        if status_stage is not None and status_stage.is_terminal:
            stage = status_stage
        else:
            stage = translate_stage(raw.get("stage_name")) or status_stage or current.stage

        if not stage.is_terminal and stage.order < current.stage.order:
            logger.debug("Stale event for %s: %s → %s ignored", current.id, current.stage.value, stage.value)
            return None

        changes: Dict[str, Any] = {"stage": stage, "updated_at": self._clock()}
        for key in ("video_url", "engine_used"):
            if raw.get(key):
                changes[key] = raw[key]
        if stage is PipelineStage.FAILED:
            changes["error_code"] = raw.get("error_code") or current.error_code or "RENDER_FAILED"
            changes["error_message"] = raw.get("error_message") or current.error_message
        if raw.get("retry_count") is not None:
            changes["retry_count"] = max(current.retry_count, int(raw["retry_count"]))
        return replace(current, **changes)

    def _recompute(self) -> PipelineProgress:
        # Caller holds the lock.
        self._progress = PipelineProgress.from_statuses(self._run_id or "", self._statuses)
        return self._progress

    def _collect_callbacks(
        self,
        before: VideoJobStatus,
        after: VideoJobStatus,
        progress: PipelineProgress,
    ) -> List[Tuple[Callable, Any]]:
        # Caller holds the lock.
        cb = self._callbacks
        fired: List[Tuple[Callable, Any]] = []
        if cb.on_progress:
            fired.append((cb.on_progress, progress))
        if after.stage is PipelineStage.COMPLETED and before.stage is not PipelineStage.COMPLETED:
            if cb.on_video_ready and after.video_url:
                fired.append((cb.on_video_ready, after))
        if after.stage is PipelineStage.FAILED and before.stage is not PipelineStage.FAILED:
            if cb.on_error:
                fired.append((cb.on_error, after))
        if progress.is_complete and not self._was_complete:
            self._was_complete = True
            if cb.on_complete:
                fired.append((cb.on_complete, progress))
        elif not progress.is_complete:
            self._was_complete = False
        return fired

    @staticmethod
    def _fire(fired: List[Tuple[Callable, Any]]) -> None:
        for callback, arg in fired:
            try:
                callback(arg)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Tracker callback %s failed: %s", getattr(callback, "__name__", callback), exc)

    def _tick_loop(self, stop: threading.Event) -> None:
        while not stop.wait(self._tick_interval):
            self.tick()
