"""Process-wide service wiring, built lazily from settings.

Routers and scripts get their collaborators here so there is exactly one
catalog, one orchestrator, one job store and one change feed per process.
"""
from __future__ import annotations

import threading
from dataclasses import dataclass, replace
from typing import Any, Callable, Dict, Iterable, List, Optional

from reelforge.services.engines.catalog import EngineCatalog
from reelforge.services.engines.cost_estimator import CostEstimator
from reelforge.services.engines.selector import EngineSelector
from reelforge.services.execution.adapters.cloud_api import CloudApiAdapter
from reelforge.services.execution.adapters.local_server import LocalServerAdapter
from reelforge.services.execution.orchestrator import ExecutionOrchestrator
from reelforge.services.scenes.narrative import NarrativeOptimizer
from reelforge.services.scenes.planner import ScenePlanner
from reelforge.services.shared.config import get_config
from reelforge.services.shared.logging import get_logger
from reelforge.services.tracking.feeds import ChangeFeed, JobEventSink, PollingFallback
from reelforge.services.tracking.store import JobStore
from reelforge.services.tracking.tracker import PipelineJobTracker
from reelforge.services.tracking.types import PipelineProgress, TrackerCallbacks

logger = get_logger("shared.runtime")

RENDER_SERVER_URL_ENV = "REELFORGE_RENDER_SERVER_URL"

_lock = threading.RLock()
_catalog: Optional[EngineCatalog] = None
_selector: Optional[EngineSelector] = None
_planner: Optional[ScenePlanner] = None
_local_adapter: Optional[LocalServerAdapter] = None
_local_adapter_built = False
_cloud_adapter: Optional[CloudApiAdapter] = None
_orchestrator: Optional[ExecutionOrchestrator] = None
_store: Optional[JobStore] = None
_feed: Optional[ChangeFeed] = None
_cost_estimator: Optional[CostEstimator] = None


def get_catalog() -> EngineCatalog:
    global _catalog
    with _lock:
        if _catalog is None:
            cfg = get_config()
            path = cfg.get_path("catalog.path") if cfg.get("catalog.path") else None
            _catalog = EngineCatalog.from_yaml(path)
        return _catalog


def get_selector() -> EngineSelector:
    global _selector
    with _lock:
        if _selector is None:
            _selector = EngineSelector(get_catalog())
        return _selector


def get_cost_estimator() -> CostEstimator:
    global _cost_estimator
    with _lock:
        if _cost_estimator is None:
            _cost_estimator = CostEstimator()
        return _cost_estimator


def get_planner() -> ScenePlanner:
    global _planner
    with _lock:
        if _planner is None:
            cfg = get_config()
            endpoint = cfg.get("narrative.endpoint_url") or ""
            optimizer = None
            if endpoint:
                key_env = cfg.get("narrative.api_key_env")
                optimizer = NarrativeOptimizer(
                    endpoint,
                    timeout=float(cfg.get("narrative.timeout_sec", 20.0)),
                    api_key=cfg.get_env(key_env) if key_env else None,
                )
            _planner = ScenePlanner(optimizer=optimizer)
        return _planner


def get_local_adapter() -> Optional[LocalServerAdapter]:
    """The render server adapter, or None when no base URL is configured."""
    global _local_adapter, _local_adapter_built
    with _lock:
        if not _local_adapter_built:
            cfg = get_config()
            base_url = cfg.get_env(RENDER_SERVER_URL_ENV) or cfg.get("render_server.base_url") or ""
            if base_url:
                _local_adapter = LocalServerAdapter(
                    base_url,
                    poll_interval=float(cfg.get("render_server.poll_interval_sec", 2.0)),
                    max_wait=float(cfg.get("render_server.max_wait_sec", 600.0)),
                    health_timeout=float(cfg.get("render_server.health_timeout_sec", 5.0)),
                    request_timeout=float(cfg.get("render_server.request_timeout_sec", 60.0)),
                )
            else:
                logger.warning("No render server configured; local-server engines are unavailable")
            _local_adapter_built = True
        return _local_adapter


def get_cloud_adapter() -> CloudApiAdapter:
    global _cloud_adapter
    with _lock:
        if _cloud_adapter is None:
            cfg = get_config()
            _cloud_adapter = CloudApiAdapter(
                cfg.get("providers", {}),
                timeout=float(cfg.get("render_server.request_timeout_sec", 60.0)),
                env=cfg.get_env,
            )
        return _cloud_adapter


def get_store() -> JobStore:
    global _store
    with _lock:
        if _store is None:
            _store = JobStore(str(get_config().get_path("paths.jobs_db")))
        return _store


def get_feed() -> ChangeFeed:
    global _feed
    with _lock:
        if _feed is None:
            _feed = ChangeFeed()
        return _feed


def get_orchestrator() -> ExecutionOrchestrator:
    global _orchestrator
    with _lock:
        if _orchestrator is None:
            cfg = get_config()
            _orchestrator = ExecutionOrchestrator(
                get_planner(),
                get_selector(),
                local_adapter=get_local_adapter(),
                cloud_adapter=get_cloud_adapter(),
                max_concurrency=int(cfg.get("orchestrator.max_concurrency", 3)),
                max_retained_runs=int(cfg.get("orchestrator.max_retained_runs", 100)),
                cost_estimator=get_cost_estimator(),
                job_listener=JobEventSink(get_store(), get_feed()),
            )
        return _orchestrator


# ── run tracking ──────────────────────────────────────────────────────────────


@dataclass
class _TrackedRun:
    """A run's tracker plus the live wiring that feeds it.

    The wiring (feed subscription, ticker, poller) only runs while the run has
    unfinished jobs; a completed run is parked and re-activated by a retry.
    """
    tracker: PipelineJobTracker
    poller: PollingFallback
    unsubscribe: Optional[Callable[[], None]] = None

    @property
    def active(self) -> bool:
        return self.unsubscribe is not None


_runs: Dict[str, _TrackedRun] = {}


def track_run(
    run_id: str,
    video_ids: Iterable[str],
    callbacks: Optional[TrackerCallbacks] = None,
) -> PipelineJobTracker:
    """Create (or return) the tracker of ``run_id``, wired to feed and store."""
    with _lock:
        if run_id in _runs:
            return _runs[run_id].tracker
        cfg = get_config()
        orchestrator = get_orchestrator()
        callbacks = callbacks or TrackerCallbacks()
        user_on_complete = callbacks.on_complete

        def on_complete(progress: PipelineProgress) -> None:
            try:
                if user_on_complete is not None:
                    user_on_complete(progress)
            finally:
                _park_run(run_id)

        def redispatch(video_id: str) -> Any:
            _activate_run(run_id)
            return orchestrator.dispatch_plan(video_id)

        tracker = PipelineJobTracker(
            redispatch=redispatch,
            tick_interval=float(cfg.get("tracker.tick_interval_sec", 1.0)),
        )
        tracker.observe(run_id, replace(callbacks, on_complete=on_complete), video_ids=list(video_ids))
        poller = PollingFallback(
            get_store(), get_feed(), tracker.apply_status_event, run_id,
            interval=float(cfg.get("tracker.poll_interval_sec", 3.0)),
        )
        _runs[run_id] = _TrackedRun(tracker=tracker, poller=poller)
        _activate_run(run_id)
        return tracker


def _activate_run(run_id: str) -> None:
    """Subscribe the run's tracker to the feed and start its background threads."""
    with _lock:
        run = _runs.get(run_id)
        if run is None or run.active:
            return
        run.unsubscribe = get_feed().subscribe(run.tracker.apply_status_event)
        run.tracker.start()
        run.poller.start()
    logger.debug("Run %s active", run_id)


def _park_run(run_id: str) -> None:
    """Detach a completed run from the feed and stop its threads."""
    with _lock:
        run = _runs.get(run_id)
        if run is None or not run.active:
            return
        run.unsubscribe()
        run.unsubscribe = None
        # No join: the poller thread may be the caller, or waiting on this lock.
        run.tracker.stop(wait=False)
        run.poller.stop(wait=False)
    logger.debug("Run %s complete, parked", run_id)


def is_run_active(run_id: str) -> bool:
    with _lock:
        run = _runs.get(run_id)
        return run is not None and run.active


def get_tracker(run_id: str) -> Optional[PipelineJobTracker]:
    with _lock:
        run = _runs.get(run_id)
        return run.tracker if run else None


def list_runs() -> List[str]:
    with _lock:
        return list(_runs)


def reset_runtime() -> None:
    """Stop background threads and drop every singleton (mainly for testing)."""
    global _catalog, _selector, _planner, _local_adapter, _local_adapter_built
    global _cloud_adapter, _orchestrator, _store, _feed, _cost_estimator
    with _lock:
        for run_id in list(_runs):
            _park_run(run_id)
        _runs.clear()
        _catalog = _selector = _planner = _local_adapter = None
        _cloud_adapter = _orchestrator = _store = _feed = _cost_estimator = None
        _local_adapter_built = False
