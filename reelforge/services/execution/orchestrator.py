"""ExecutionOrchestrator — turns one batch request into N rendered variations.

Pipeline for a batch:
    validate → health check → plan scenes + select engine → upload sources
    → dispatch N plans (bounded thread pool) → one EngineResult per plan

The render server is the only place video is encoded.  When it is not
healthy the whole batch fails fast with a single structured result and
nothing is dispatched.
"""
from __future__ import annotations

import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional, Tuple

from reelforge.services.engines.cost_estimator import CostEstimator
from reelforge.services.engines.selector import EngineSelector
from reelforge.services.engines.types import (
    BackendClass, EngineSpec, EngineUnavailable, Location, Tier,
)
from reelforge.services.execution.adapters.base import RenderAdapter
from reelforge.services.execution.adapters.local_server import (
    LocalServerAdapter, RenderServerError,
)
from reelforge.services.execution.types import (
    DEFAULT_ASPECT_RATIO, Backend, BatchRequest, EngineResult, ExecutionPlan,
    OutputType, ResultStatus, SourceAsset, derive_capabilities, dimensions_for,
)
from reelforge.services.execution.variation import vary_scene_list
from reelforge.services.scenes.planner import ScenePlanner
from reelforge.services.scenes.types import SceneList
from reelforge.services.shared.errors import ErrorInfo, make_error
from reelforge.services.shared.logging import get_logger

logger = get_logger("execution.orchestrator")

# (fraction in [0, 1], human-readable description of the current step)
ProgressCallback = Callable[[float, str], None]
JobListener = Callable[[Dict[str, Any]], None]

# Cloud failures that are worth one attempt on the local render server.
FALLBACK_CODES = {"PROVIDER_BLOCKED", "PROVIDER_UNAVAILABLE"}

PROGRESS_STARTED = 0.0
PROGRESS_HEALTHY = 0.1
PROGRESS_PLANNED = 0.2

# Runs whose plans stay available for retry; older runs are forgotten.
DEFAULT_MAX_RETAINED_RUNS = 100


def plan_id_for(run_id: str, variation_index: int) -> str:
    return f"{run_id}-v{variation_index}"


@dataclass
class _RunContext:
    """Per-batch state shared by the worker threads."""
    run_id: str
    batch: BatchRequest
    engine: EngineSpec
    scene_list: SceneList
    capabilities: List[str]
    uploaded: Dict[str, str] = field(default_factory=dict)
    lock: threading.Lock = field(default_factory=threading.Lock)


class _MonotonicProgress:
    """Forwards strictly increasing values to a progress callback."""

    def __init__(self, callback: Optional[ProgressCallback]):
        self._callback = callback
        self._last = -1.0
        self._lock = threading.Lock()

    def report(self, value: float, message: str) -> None:
        if self._callback is None:
            return
        with self._lock:
            value = min(1.0, value)
            if value <= self._last:
                return
            self._last = value
            try:
                self._callback(value, message)
            except Exception as exc:  # noqa: BLE001
                logger.warning("Progress callback failed at %.2f: %s", value, exc)


class ExecutionOrchestrator:
    """Plans, dispatches and collects render variations.

    Guarantees for :meth:`run`:
    - Never raises for render failures; every outcome is an EngineResult.
    - Batch-level failures (validation, health, routing, upload) return a
      single result with ``variation_index=None``.
    - Otherwise exactly ``variation_count`` results, in request order.

    Usage::

        orch = ExecutionOrchestrator(planner, selector, local_adapter=adapter)
        results = orch.run(batch, on_progress=lambda p, msg: print(f"{p:.0%} {msg}"))
    """

    def __init__(
        self,
        planner: ScenePlanner,
        selector: EngineSelector,
        local_adapter: Optional[LocalServerAdapter] = None,
        cloud_adapter: Optional[RenderAdapter] = None,
        max_concurrency: int = 3,
        cost_estimator: Optional[CostEstimator] = None,
        job_listener: Optional[JobListener] = None,
        clock: Callable[[], float] = time.time,
        max_retained_runs: int = DEFAULT_MAX_RETAINED_RUNS,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be >= 1, got {max_concurrency}")
        if max_retained_runs < 1:
            raise ValueError(f"max_retained_runs must be >= 1, got {max_retained_runs}")
        self._planner = planner
        self._selector = selector
        self._local = local_adapter
        self._cloud = cloud_adapter
        self._max_concurrency = max_concurrency
        self._cost = cost_estimator or CostEstimator()
        self._job_listener = job_listener
        self._clock = clock
        self._plans: Dict[str, Tuple[ExecutionPlan, _RunContext]] = {}
        self._run_plans: "OrderedDict[str, List[str]]" = OrderedDict()
        self._max_retained_runs = max_retained_runs
        self._plans_lock = threading.Lock()

    # ── public ────────────────────────────────────────────────────────────────

    def run(
        self,
        batch: BatchRequest,
        on_progress: Optional[ProgressCallback] = None,
    ) -> List[EngineResult]:
        """Render ``batch.variation_count`` variations of one brief.

        Args:
            batch: The batch request.
            on_progress: Optional callback receiving strictly increasing
                fractions from 0.0 to 1.0, each with a message describing
                the step just reached. Callback errors are logged, not raised.

        Returns:
            List of EngineResult (see class docstring for the shape).
        """
        run_id = batch.run_id or uuid.uuid4().hex[:12]
        progress = _MonotonicProgress(on_progress)
        progress.report(PROGRESS_STARTED, f"starting {batch.variation_count} variation(s)")

        error = self._validate(batch)
        if error is not None:
            return self._fail_batch(batch, run_id, error)

        if self._local is not None:
            health = self._local.check_health()
            if not health.ok:
                return self._fail_batch(batch, run_id, health.error or make_error("VPS_UNREACHABLE", "health"))
            progress.report(PROGRESS_HEALTHY, "render server healthy")
        else:
            progress.report(PROGRESS_HEALTHY, "no render server configured")

        prepared = self._prepare(batch, run_id)
        if isinstance(prepared, ErrorInfo):
            return self._fail_batch(batch, run_id, prepared)
        ctx = prepared

        if ctx.engine.is_local:
            try:
                self._resolve_sources(ctx)
            except RenderServerError as exc:
                return self._fail_batch(batch, run_id, exc.error)

        plans = [self._build_plan(ctx, i) for i in range(batch.variation_count)]
        self._retain(run_id, plans, ctx)
        progress.report(PROGRESS_PLANNED, f"planned {len(plans)} variation(s) on {ctx.engine.id}")
        logger.info(
            "Run %s: %d variation(s) on %s (%s), concurrency=%d",
            run_id, len(plans), ctx.engine.id, ctx.engine.location.value, self._max_concurrency,
        )

        results = self._dispatch_all(plans, ctx, progress)
        failed = sum(1 for r in results if not r.ok)
        logger.info("Run %s finished: %d ok, %d failed", run_id, len(results) - failed, failed)
        return results

    def preview(self, batch: BatchRequest) -> Dict[str, Any]:
        """Dry run: plan scenes, select an engine and estimate cost. No network."""
        run_id = batch.run_id or "preview"
        error = self._validate(batch)
        if error is not None:
            return {"ok": False, "error": error.to_dict()}
        prepared = self._prepare(batch, run_id)
        if isinstance(prepared, ErrorInfo):
            return {"ok": False, "error": prepared.to_dict()}
        duration = prepared.scene_list.total_ms / 1000.0
        return {
            "ok": True,
            "engine": prepared.engine.to_dict(),
            "scenes": prepared.scene_list.to_dict(),
            "estimated_cost_usd": self._cost.estimate_batch_cost(
                prepared.engine, duration, batch.variation_count,
            ),
            "plan_ids": [plan_id_for(run_id, i) for i in range(batch.variation_count)],
        }

    def get_plan(self, plan_id: str) -> Optional[ExecutionPlan]:
        with self._plans_lock:
            entry = self._plans.get(plan_id)
        return entry[0] if entry else None

    def dispatch_plan(self, plan_id: str) -> EngineResult:
        """Re-dispatch one retained plan (explicit retry of a failed job).

        Raises:
            KeyError: If the plan is unknown.
        """
        with self._plans_lock:
            entry = self._plans.get(plan_id)
        if entry is None:
            raise KeyError(f"Unknown plan: {plan_id!r}")
        plan, ctx = entry
        if plan.backend.location is Location.LOCAL_SERVER and self._local is not None:
            health = self._local.check_health()
            if not health.ok:
                result = self._failed(plan, health.error or make_error("VPS_UNREACHABLE", "health"))
                self._emit_result(plan, result)
                return result
        logger.info("Re-dispatching plan %s", plan_id)
        return self._dispatch_one(plan, ctx)

    # ── internal: batch preparation ───────────────────────────────────────────

    def _retain(self, run_id: str, plans: List[ExecutionPlan], ctx: _RunContext) -> None:
        """Keep a run's plans for retry, forgetting the oldest runs past the cap."""
        with self._plans_lock:
            for plan_id in self._run_plans.pop(run_id, []):
                self._plans.pop(plan_id, None)
            for plan in plans:
                self._plans[plan.plan_id] = (plan, ctx)
            self._run_plans[run_id] = [plan.plan_id for plan in plans]
            while len(self._run_plans) > self._max_retained_runs:
                old_run, plan_ids = self._run_plans.popitem(last=False)
                for plan_id in plan_ids:
                    self._plans.pop(plan_id, None)
                logger.debug("Forgot plans of run %s", old_run)

    @staticmethod
    def _validate(batch: BatchRequest) -> Optional[ErrorInfo]:
        if batch.variation_count < 1:
            return make_error("INVALID_REQUEST", "validate",
                              f"variation_count must be >= 1, got {batch.variation_count}")
        if not batch.sources:
            return make_error("NO_SOURCE_ASSET", "validate")
        if batch.brief.target_duration_sec < 1.0:
            return make_error("INVALID_REQUEST", "validate",
                              f"target duration must be >= 1s, got {batch.brief.target_duration_sec}")
        for ratio in batch.aspect_ratios or [DEFAULT_ASPECT_RATIO]:
            try:
                dimensions_for(ratio)
            except ValueError as exc:
                return make_error("INVALID_REQUEST", "validate", str(exc))
        try:
            BackendClass(batch.backend)
            if batch.tier not in (None, "ai-chooses"):
                Tier(batch.tier)
        except ValueError as exc:
            return make_error("INVALID_REQUEST", "validate", str(exc))
        return None

    def _prepare(self, batch: BatchRequest, run_id: str):
        """Plan scenes and select the engine. Returns a _RunContext or an ErrorInfo."""
        try:
            scene_list = self._planner.plan(batch.brief, seed=batch.seed)
        except ValueError as exc:
            return make_error("INVALID_REQUEST", "plan", str(exc))

        capabilities = list(batch.required_capabilities) if batch.required_capabilities is not None \
            else derive_capabilities(batch.sources)
        duration = scene_list.total_ms / 1000.0
        choice = self._selector.select(batch.tier, batch.backend, capabilities, duration)
        if isinstance(choice, EngineUnavailable):
            return make_error("NO_ELIGIBLE_ENGINE", "select", choice.reason)
        if choice.is_local and self._local is None:
            return make_error("VPS_NOT_CONFIGURED", "select")
        if not choice.is_local and self._cloud is None:
            return make_error("PROVIDER_UNAVAILABLE", "select", "No cloud adapter configured")
        return _RunContext(
            run_id=run_id, batch=batch, engine=choice,
            scene_list=scene_list, capabilities=capabilities,
        )

    def _resolve_sources(self, ctx: _RunContext) -> Tuple[SourceAsset, ...]:
        """Upload local source files once per run; return server-side sources.

        Raises:
            RenderServerError: When an upload fails.
        """
        resolved = []
        with ctx.lock:
            for src in ctx.batch.sources:
                if not src.is_local_file:
                    resolved.append(src)
                    continue
                if src.uri not in ctx.uploaded:
                    ctx.uploaded[src.uri] = self._local.upload(src.uri)
                resolved.append(replace(src, uri=ctx.uploaded[src.uri]))
        return tuple(resolved)

    def _build_plan(self, ctx: _RunContext, index: int) -> ExecutionPlan:
        batch = ctx.batch
        ratios = batch.aspect_ratios or [DEFAULT_ASPECT_RATIO]
        ratio = ratios[index % len(ratios)]
        width, height = dimensions_for(ratio)
        if ctx.engine.is_local:
            backend = Backend.local_server()
            sources = tuple(replace(s, uri=ctx.uploaded.get(s.uri, s.uri)) for s in batch.sources)
        else:
            backend = Backend.cloud_api(ctx.engine.provider)
            sources = tuple(batch.sources)
        plan_id = plan_id_for(ctx.run_id, index)
        return ExecutionPlan(
            plan_id=plan_id,
            run_id=ctx.run_id,
            variation_index=index,
            scene_list=vary_scene_list(ctx.scene_list, batch.seed, index),
            aspect_ratio=ratio,
            width=width,
            height=height,
            engine_id=ctx.engine.id,
            backend=backend,
            sources=sources,
            output_name=f"{plan_id}.mp4",
        )

    # ── internal: dispatch ────────────────────────────────────────────────────

    def _dispatch_all(
        self,
        plans: List[ExecutionPlan],
        ctx: _RunContext,
        progress: _MonotonicProgress,
    ) -> List[EngineResult]:
        results: List[Optional[EngineResult]] = [None] * len(plans)
        done = 0
        with ThreadPoolExecutor(max_workers=self._max_concurrency, thread_name_prefix="render") as pool:
            future_to_index = {
                pool.submit(self._dispatch_one, plan, ctx): i for i, plan in enumerate(plans)
            }
            for future in as_completed(future_to_index):
                i = future_to_index[future]
                try:
                    results[i] = future.result()
                except Exception as exc:  # noqa: BLE001
                    logger.exception("Variation %d crashed", i)
                    results[i] = self._failed(plans[i], make_error("GENERATION_FAILED", "dispatch", str(exc)))
                    self._emit_result(plans[i], results[i])
                done += 1
                progress.report(
                    PROGRESS_PLANNED + (1.0 - PROGRESS_PLANNED) * done / len(plans),
                    f"variation {i + 1}/{len(plans)} done: {'ok' if results[i].ok else 'failed'}",
                )
        return results

    def _dispatch_one(self, plan: ExecutionPlan, ctx: _RunContext) -> EngineResult:
        self._emit(plan, status="queued", stage_name="queued", progress=0)
        result = self._render(plan)

        if (
            not result.ok
            and plan.backend.location is Location.CLOUD_API
            and result.error is not None
            and result.error.code in FALLBACK_CODES
            and self._local is not None
        ):
            result = self._fallback(plan, ctx, result)

        self._emit_result(plan, result)
        return result

    def _render(self, plan: ExecutionPlan) -> EngineResult:
        adapter = self._adapter_for(plan.backend)
        if adapter is None:
            code = "VPS_NOT_CONFIGURED" if plan.backend.location is Location.LOCAL_SERVER else "PROVIDER_UNAVAILABLE"
            return self._failed(plan, make_error(code, "dispatch"))

        def on_status(state: Dict[str, Any]) -> None:
            self._emit(
                plan,
                status="running",
                stage_name=state.get("stage") or "rendering",
                progress=state.get("progress", 0),
            )

        result = adapter.render(plan, on_status=on_status)
        engine = self._engine_or_none(plan.engine_id)
        if result.ok and engine is not None:
            result.estimated_cost_usd = self._cost.estimate_variation_cost(engine, plan.duration_sec)
        return result

    def _fallback(self, plan: ExecutionPlan, ctx: _RunContext, primary: EngineResult) -> EngineResult:
        """Retry a blocked/unavailable cloud plan once on the local render server."""
        choice = self._selector.select(
            Tier.FREE, BackendClass.LOCAL_SERVER, ctx.capabilities, plan.duration_sec,
        )
        if isinstance(choice, EngineUnavailable):
            logger.info("No local engine for fallback of %s: %s", plan.plan_id, choice.reason)
            return primary
        try:
            sources = self._resolve_sources(ctx)
        except RenderServerError as exc:
            result = self._failed(plan, exc.error)
            result.logs = primary.logs + result.logs
            return result

        local_plan = replace(plan, engine_id=choice.id, backend=Backend.local_server(), sources=sources)
        with self._plans_lock:
            if plan.plan_id in self._plans:
                self._plans[plan.plan_id] = (local_plan, ctx)
        logger.info(
            "Plan %s: %s on %s, falling back to %s",
            plan.plan_id, primary.error.code, plan.backend.label, choice.id,
        )
        result = self._render(local_plan)
        result.fallback_used = True
        result.logs = primary.logs + [f"fallback after {primary.error.code}"] + result.logs
        return result

    def _adapter_for(self, backend: Backend) -> Optional[RenderAdapter]:
        if backend.location is Location.LOCAL_SERVER:
            return self._local
        if backend.location is Location.CLOUD_API:
            return self._cloud
        raise ValueError(f"Unknown backend location: {backend.location!r}")

    def _engine_or_none(self, engine_id: str) -> Optional[EngineSpec]:
        try:
            return self._selector.catalog.get(engine_id)
        except KeyError:
            return None

    # ── internal: results & events ────────────────────────────────────────────

    def _fail_batch(self, batch: BatchRequest, run_id: str, error: ErrorInfo) -> List[EngineResult]:
        logger.warning("Run %s failed before dispatch: %s (%s)", run_id, error.code, error.message)
        now = self._clock()
        for i in range(max(batch.variation_count, 0)):
            self._publish({
                "id": plan_id_for(run_id, i),
                "run_id": run_id,
                "project_id": batch.project_id,
                "status": "failed",
                "stage_name": error.stage,
                "progress": 0,
                "started_at": now,
                "error_code": error.code,
                "error_message": error.message,
            })
        return [EngineResult(status=ResultStatus.FAILED, error=error, variation_index=None)]

    @staticmethod
    def _failed(plan: ExecutionPlan, error: ErrorInfo) -> EngineResult:
        return EngineResult(
            status=ResultStatus.FAILED,
            error=error,
            plan_id=plan.plan_id,
            variation_index=plan.variation_index,
            engine_id=plan.engine_id,
            backend=plan.backend,
        )

    def _emit_result(self, plan: ExecutionPlan, result: EngineResult) -> None:
        if not result.ok:
            self._emit(
                plan, status="failed", stage_name=result.error.stage if result.error else "failed",
                progress=0,
                error_code=result.error.code if result.error else None,
                error_message=result.error.message if result.error else None,
                engine_used=result.engine_id,
            )
        elif result.output_type is OutputType.JOB_HANDLE:
            # Provider keeps working; its callbacks complete the job later.
            self._emit(plan, status="running", stage_name="rendering", progress=0,
                       engine_used=result.engine_id)
        else:
            self._emit(plan, status="completed", stage_name="completed", progress=100,
                       video_url=result.video_url, engine_used=result.engine_id)

    def _emit(self, plan: ExecutionPlan, **fields: Any) -> None:
        with self._plans_lock:
            entry = self._plans.get(plan.plan_id)
        project_id = entry[1].batch.project_id if entry else ""
        event = {"id": plan.plan_id, "run_id": plan.run_id, "project_id": project_id}
        if fields.get("status") == "queued":
            event["started_at"] = self._clock()
        event.update(fields)
        self._publish(event)

    def _publish(self, event: Dict[str, Any]) -> None:
        if self._job_listener is None:
            return
        try:
            self._job_listener(event)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Job listener failed for %s: %s", event.get("id"), exc)
