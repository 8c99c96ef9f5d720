"""Local render server adapter — FFmpeg rendering on the VPS over its JSON API.

Endpoints (relative to ``base_url``):
    GET  /health        → {ok, encoderStatus, encoderPath?, encoderVersion?, queueLength}
    POST /upload        → {ok, path, filename, size}
    POST /execute       → {success, outputPath?, error?, logs?}
                          or {jobId, status: "queued", statusUrl}
    GET  /job/{jobId}   → {status, progress, output?, error?, stage?}

Every response must be JSON.  An HTML page (typically a proxy error page) is
reported as INVALID_RESPONSE instead of being parsed.
"""
from __future__ import annotations

import os
import time
from typing import Any, Callable, Dict, List, Optional

import httpx

from reelforge.services.execution.adapters.base import (
    RenderAdapter, StatusCallback, payload_scenes,
)
from reelforge.services.execution.types import (
    Backend, EngineResult, ExecutionPlan, HealthStatus, OutputType, ResultStatus,
)
from reelforge.services.shared.errors import ErrorInfo, make_error
from reelforge.services.shared.logging import get_logger

logger = get_logger("execution.local_server")

_DONE_STATUSES = {"done", "completed", "complete", "success"}
_FAILED_STATUSES = {"failed", "error"}


class RenderServerError(Exception):
    """Raised by the non-render calls (upload, raw requests) with a structured error."""

    def __init__(self, error: ErrorInfo):
        super().__init__(f"{error.code}: {error.message}")
        self.error = error


class LocalServerAdapter(RenderAdapter):
    """Renders plans on the local render server.

    Long renders are queued by the server; the adapter then polls the job
    every ``poll_interval`` seconds until it finishes, fails, or
    ``max_wait`` seconds have passed (RENDER_TIMEOUT).

    Usage::

        adapter = LocalServerAdapter("http://vps:3001/api")
        health = adapter.check_health()
        if health.ok:
            result = adapter.render(plan)
    """

    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.Client] = None,
        poll_interval: float = 2.0,
        max_wait: float = 600.0,
        health_timeout: float = 5.0,
        request_timeout: float = 60.0,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._base_url = base_url.rstrip("/")
        self._client = client or httpx.Client(timeout=request_timeout)
        self._poll_interval = poll_interval
        self._max_wait = max_wait
        self._health_timeout = health_timeout
        self._sleep = sleep
        self._clock = clock

    def name(self) -> str:
        return "local-server"

    @property
    def base_url(self) -> str:
        return self._base_url

    # ── health ────────────────────────────────────────────────────────────────

    def check_health(self) -> HealthStatus:
        """Query ``GET /health``. Never raises."""
        try:
            data = self._request("GET", "/health", stage="health", timeout=self._health_timeout)
        except RenderServerError as exc:
            # Any failure to get a JSON health answer means the server is unusable.
            error = exc.error
            if error.code != "VPS_UNREACHABLE":
                error = make_error("VPS_UNREACHABLE", "health", f"{error.code}: {error.message}")
            logger.warning("Render server health check failed: %s", error.message)
            return HealthStatus(ok=False, error=error)

        encoder_ready = data.get("encoderStatus") == "ready"
        status = HealthStatus(
            ok=data.get("ok") is True,
            encoder_ready=encoder_ready,
            encoder_path=data.get("encoderPath"),
            encoder_version=data.get("encoderVersion"),
            queue_length=_queue_length(data.get("queueLength")),
        )
        if not status.ok:
            return HealthStatus(
                ok=False, encoder_ready=encoder_ready, queue_length=status.queue_length,
                error=make_error("VPS_UNREACHABLE", "health", data.get("error") or None),
            )
        if not encoder_ready:
            return HealthStatus(
                ok=False, encoder_ready=False, queue_length=status.queue_length,
                error=make_error("FFMPEG_UNAVAILABLE", "health"),
            )
        return status

    # ── upload ────────────────────────────────────────────────────────────────

    def upload(self, file_path: str) -> str:
        """Upload a local file; return the server-side path.

        Raises:
            RenderServerError: UPLOAD_FAILED (or a transport error code).
        """
        filename = os.path.basename(file_path)
        try:
            with open(file_path, "rb") as fh:
                data = self._request(
                    "POST", "/upload", stage="upload", files={"file": (filename, fh)},
                )
        except OSError as exc:
            raise RenderServerError(
                make_error("UPLOAD_FAILED", "upload", f"Cannot read {file_path}: {exc}")
            ) from exc
        if not data.get("ok") or not data.get("path"):
            error = data.get("error")
            message = error.get("message") if isinstance(error, dict) else error
            raise RenderServerError(make_error("UPLOAD_FAILED", "upload", message or None))
        logger.info("Uploaded %s → %s (%s bytes)", filename, data["path"], data.get("size", "?"))
        return data["path"]

    # ── render ────────────────────────────────────────────────────────────────

    def render(
        self,
        plan: ExecutionPlan,
        on_status: Optional[StatusCallback] = None,
    ) -> EngineResult:
        logs: List[str] = []
        payload = {
            "sourcePath": plan.primary_source.uri,
            "outputName": plan.output_name or f"{plan.plan_id}.mp4",
            "config": {
                "width": plan.width,
                "height": plan.height,
                "aspectRatio": plan.aspect_ratio,
                "engineId": plan.engine_id,
                "durationMs": plan.scene_list.total_ms,
            },
            "scenes": payload_scenes(plan),
        }
        try:
            data = self._request("POST", "/execute", stage="execute", json=payload)
        except RenderServerError as exc:
            return self._failed(plan, exc.error, logs)
        logs.extend(str(line) for line in data.get("logs") or [])

        job_id = data.get("jobId")
        if job_id:
            logs.append(f"queued job {job_id}")
            return self._wait_for_job(plan, str(job_id), logs, on_status)

        if data.get("success"):
            return self._succeeded(plan, data.get("outputPath") or data.get("outputUrl"), None, logs)
        return self._failed(
            plan, make_error("RENDER_FAILED", "execute", _error_message(data.get("error"))), logs,
        )

    # ── internal ──────────────────────────────────────────────────────────────

    def _wait_for_job(
        self,
        plan: ExecutionPlan,
        job_id: str,
        logs: List[str],
        on_status: Optional[StatusCallback],
    ) -> EngineResult:
        started = self._clock()
        last_stage = None
        while True:
            try:
                data = self._request("GET", f"/job/{job_id}", stage="poll")
            except RenderServerError as exc:
                return self._failed(plan, exc.error, logs, job_id)

            status = str(data.get("status", "")).lower()
            stage = data.get("stage")
            if stage and stage != last_stage:
                logs.append(f"stage {stage}")
                last_stage = stage

            if status in _DONE_STATUSES:
                return self._succeeded(plan, _output_url(data.get("output")), job_id, logs)
            if status in _FAILED_STATUSES:
                return self._failed(
                    plan, make_error("RENDER_FAILED", stage or "render", _error_message(data.get("error"))),
                    logs, job_id,
                )

            if on_status is not None:
                on_status({
                    "job_id": job_id,
                    "status": status or "queued",
                    "progress": data.get("progress", 0),
                    "stage": stage,
                })

            if self._clock() - started >= self._max_wait:
                logger.warning("Job %s exceeded %.0fs", job_id, self._max_wait)
                return self._failed(
                    plan,
                    make_error("RENDER_TIMEOUT", stage or "poll",
                               f"Job {job_id} did not finish within {self._max_wait:.0f}s"),
                    logs, job_id,
                )
            self._sleep(self._poll_interval)

    def _request(self, method: str, path: str, stage: str, **kwargs: Any) -> Dict[str, Any]:
        """Perform one request and return its JSON object body.

        Raises:
            RenderServerError: VPS_UNREACHABLE, RENDER_TIMEOUT, INVALID_RESPONSE
                or RENDER_FAILED (JSON body with a non-2xx status).
        """
        url = f"{self._base_url}{path}"
        try:
            resp = self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            code = "VPS_UNREACHABLE" if stage == "health" else "RENDER_TIMEOUT"
            raise RenderServerError(make_error(code, stage, f"{method} {path} timed out")) from exc
        except httpx.TransportError as exc:
            raise RenderServerError(
                make_error("VPS_UNREACHABLE", stage, f"{method} {path} failed: {exc}")
            ) from exc

        data = _json_body(resp)
        if data is None:
            raise RenderServerError(make_error(
                "INVALID_RESPONSE", stage,
                f"{method} {path} returned non-JSON content (HTTP {resp.status_code})",
            ))
        if resp.is_error:
            code = "UPLOAD_FAILED" if stage == "upload" else "RENDER_FAILED"
            message = _error_message(data.get("error")) or f"HTTP {resp.status_code}"
            raise RenderServerError(make_error(code, stage, message))
        return data

    def _succeeded(
        self, plan: ExecutionPlan, video_url: Optional[str], job_id: Optional[str], logs: List[str],
    ) -> EngineResult:
        return EngineResult(
            status=ResultStatus.SUCCESS,
            output_type=OutputType.VIDEO,
            video_url=video_url,
            job_id=job_id,
            logs=logs,
            plan_id=plan.plan_id,
            variation_index=plan.variation_index,
            engine_id=plan.engine_id,
            backend=Backend.local_server(),
        )

    def _failed(
        self, plan: ExecutionPlan, error: ErrorInfo, logs: List[str], job_id: Optional[str] = None,
    ) -> EngineResult:
        logger.warning("Plan %s failed: %s (%s)", plan.plan_id, error.code, error.message)
        return EngineResult(
            status=ResultStatus.FAILED,
            job_id=job_id,
            error=error,
            logs=logs,
            plan_id=plan.plan_id,
            variation_index=plan.variation_index,
            engine_id=plan.engine_id,
            backend=Backend.local_server(),
        )


def _json_body(resp: httpx.Response) -> Optional[Dict[str, Any]]:
    content_type = resp.headers.get("content-type", "")
    if "json" not in content_type:
        return None
    try:
        data = resp.json()
    except ValueError:
        return None
    return data if isinstance(data, dict) else None


def _error_message(error: Any) -> Optional[str]:
    if isinstance(error, dict):
        return error.get("message") or error.get("code")
    return str(error) if error else None


def _output_url(output: Any) -> Optional[str]:
    if isinstance(output, dict):
        return output.get("outputUrl") or output.get("outputPath")
    return str(output) if output else None


def _queue_length(value: Any) -> int:
    # Informational only: an unreadable count never fails the health check.
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        logger.debug("Ignoring non-numeric queueLength %r", value)
        return 0
