"""Cloud API adapter — one HTTP POST per provider, normalized per response family.

Providers answer in a handful of shapes.  Each family gets a small mapper
that pulls out either a finished video URL or an asynchronous job id:

    task        (kling, minimax, wan)     {data: {task_id}} / {output: {task_id}}
    generation  (luma, runway, sora)      {id, status, assets: {video}} / {output: [url]}
    operation   (veo)                     {name} / {response: {generatedVideos: [...]}}
    avatar      (omnihuman, heygen)       {data: {video_id, video_url?}}

Requires ``providers.<id>.endpoint`` in settings and the provider's API key in
the environment variable named by ``providers.<id>.api_key_env``.
"""
from __future__ import annotations

import os
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

import httpx

from reelforge.services.engines.types import ProviderId
from reelforge.services.execution.adapters.base import (
    RenderAdapter, StatusCallback, payload_scenes,
)
from reelforge.services.execution.types import (
    Backend, EngineResult, ExecutionPlan, OutputType, ResultStatus,
)
from reelforge.services.shared.errors import ErrorInfo, make_error
from reelforge.services.shared.logging import get_logger

logger = get_logger("execution.cloud_api")

_BLOCKED_STATUS_CODES = {403, 451}
_UNAVAILABLE_STATUS_CODES = {502, 503, 504}
_BLOCKED_MARKERS = ("blocked", "not available in your region", "region not supported")

# (video_url, job_id)
Extracted = Tuple[Optional[str], Optional[str]]


def _map_task(data: Dict[str, Any]) -> Extracted:
    inner = data.get("data") or data.get("output") or {}
    job_id = inner.get("task_id") or data.get("task_id")
    videos = (inner.get("task_result") or {}).get("videos") or []
    url = videos[0].get("url") if videos else inner.get("video_url")
    return url, job_id


def _map_generation(data: Dict[str, Any]) -> Extracted:
    url = None
    assets = data.get("assets")
    if isinstance(assets, dict):
        url = assets.get("video")
    output = data.get("output")
    if not url and isinstance(output, list) and output:
        url = output[0]
    return url or data.get("video_url"), data.get("id")


def _map_operation(data: Dict[str, Any]) -> Extracted:
    videos = (data.get("response") or {}).get("generatedVideos") or []
    url = videos[0].get("video", {}).get("uri") if videos else None
    return url, data.get("name")


def _map_avatar(data: Dict[str, Any]) -> Extracted:
    inner = data.get("data") or {}
    return inner.get("video_url") or data.get("video_url"), inner.get("video_id") or data.get("id")


_MAPPERS: Dict[ProviderId, Callable[[Dict[str, Any]], Extracted]] = {
    ProviderId.KLING: _map_task,
    ProviderId.MINIMAX: _map_task,
    ProviderId.WAN: _map_task,
    ProviderId.LUMA: _map_generation,
    ProviderId.RUNWAY: _map_generation,
    ProviderId.SORA: _map_generation,
    ProviderId.VEO: _map_operation,
    ProviderId.OMNIHUMAN: _map_avatar,
    ProviderId.HEYGEN: _map_avatar,
}


class CloudApiAdapter(RenderAdapter):
    """Submits plans to cloud video providers.

    Output is a video URL when the provider renders synchronously, a job
    handle when it queues the work, or a plan when the provider hands back a
    render plan for the local server to execute.

    Usage::

        adapter = CloudApiAdapter(config.get("providers"))
        result = adapter.render(plan)        # plan.backend == Backend.cloud_api(ProviderId.KLING)
    """

    def __init__(
        self,
        provider_configs: Optional[Mapping[str, Mapping[str, Any]]] = None,
        client: Optional[httpx.Client] = None,
        timeout: float = 60.0,
        env: Callable[[str], Optional[str]] = os.getenv,
    ):
        self._configs = dict(provider_configs or {})
        self._client = client or httpx.Client(timeout=timeout)
        self._env = env

    def name(self) -> str:
        return "cloud-api"

    def is_configured(self, provider: ProviderId) -> bool:
        """True when the provider has an endpoint and its API key is set."""
        return self._endpoint(provider) is not None and self._api_key(provider) is not None

    def render(
        self,
        plan: ExecutionPlan,
        on_status: Optional[StatusCallback] = None,
    ) -> EngineResult:
        provider = plan.backend.provider
        logs: List[str] = []
        if provider is None:
            return self._failed(plan, make_error("PROVIDER_UNAVAILABLE", "dispatch", "Plan has no provider"), logs)

        endpoint = self._endpoint(provider)
        api_key = self._api_key(provider)
        if endpoint is None or api_key is None:
            missing = "endpoint" if endpoint is None else "API key"
            return self._failed(
                plan,
                make_error("PROVIDER_UNAVAILABLE", "dispatch", f"{provider.value}: no {missing} configured"),
                logs,
            )

        logs.append(f"POST {provider.value} {plan.engine_id}")
        try:
            resp = self._client.post(endpoint, json=self._build_payload(plan), headers=self._headers(provider, api_key))
        except httpx.TimeoutException as exc:
            return self._failed(plan, make_error("RENDER_TIMEOUT", "submit", f"{provider.value} timed out: {exc}"), logs)
        except httpx.TransportError as exc:
            return self._failed(plan, make_error("PROVIDER_UNAVAILABLE", "submit", f"{provider.value}: {exc}"), logs)

        try:
            data = resp.json()
        except ValueError:
            data = None
        if not isinstance(data, dict):
            if resp.status_code in _BLOCKED_STATUS_CODES:
                return self._failed(plan, make_error("PROVIDER_BLOCKED", "submit"), logs)
            if resp.status_code in _UNAVAILABLE_STATUS_CODES:
                return self._failed(
                    plan,
                    make_error("PROVIDER_UNAVAILABLE", "submit", f"{provider.value} returned HTTP {resp.status_code}"),
                    logs,
                )
            return self._failed(
                plan,
                make_error("INVALID_RESPONSE", "submit", f"{provider.value} returned non-JSON (HTTP {resp.status_code})"),
                logs,
            )

        error = self._classify_error(provider, resp.status_code, data)
        if error is not None:
            return self._failed(plan, error, logs)

        if isinstance(data.get("plan"), dict):
            logs.append("provider returned a render plan")
            return self._succeeded(plan, OutputType.PLAN, None, data.get("id"), logs)

        try:
            url, job_id = _MAPPERS[provider](data)
        except (AttributeError, IndexError, TypeError) as exc:
            return self._failed(
                plan, make_error("INVALID_RESPONSE", "submit", f"{provider.value} response shape: {exc}"), logs,
            )
        if url:
            return self._succeeded(plan, OutputType.VIDEO, url, job_id, logs)
        if job_id:
            logs.append(f"provider job {job_id}")
            return self._succeeded(plan, OutputType.JOB_HANDLE, None, str(job_id), logs)
        return self._failed(
            plan, make_error("INVALID_RESPONSE", "submit", f"{provider.value} response has no video or job id"), logs,
        )

    # ── internal ──────────────────────────────────────────────────────────────

    def _endpoint(self, provider: ProviderId) -> Optional[str]:
        return (self._configs.get(provider.value) or {}).get("endpoint") or None

    def _api_key(self, provider: ProviderId) -> Optional[str]:
        env_name = (self._configs.get(provider.value) or {}).get("api_key_env")
        return (self._env(env_name) or None) if env_name else None

    @staticmethod
    def _headers(provider: ProviderId, api_key: str) -> Dict[str, str]:
        if provider is ProviderId.VEO:
            return {"x-goog-api-key": api_key}
        if provider is ProviderId.HEYGEN:
            return {"X-Api-Key": api_key}
        return {"Authorization": f"Bearer {api_key}"}

    @staticmethod
    def _build_payload(plan: ExecutionPlan) -> Dict[str, Any]:
        prompt = " | ".join(s.visual_prompt for s in plan.scene_list if s.visual_prompt)
        return {
            "model": plan.engine_id,
            "prompt": prompt,
            "image_url": plan.primary_source.uri,
            "duration": plan.duration_sec,
            "aspect_ratio": plan.aspect_ratio,
            "width": plan.width,
            "height": plan.height,
            "scenes": payload_scenes(plan),
        }

    @staticmethod
    def _classify_error(provider: ProviderId, status_code: int, data: Dict[str, Any]) -> Optional[ErrorInfo]:
        raw = data.get("error") or data.get("message")
        if isinstance(raw, dict):
            raw = raw.get("message") or raw.get("code")
        message = str(raw) if raw else ""
        failed_flag = data.get("success") is False or data.get("status") in ("failed", "error")
        if status_code < 400 and not failed_flag:
            return None

        lowered = message.lower()
        if status_code in _BLOCKED_STATUS_CODES or any(m in lowered for m in _BLOCKED_MARKERS):
            return make_error("PROVIDER_BLOCKED", "submit", message or None)
        if status_code in _UNAVAILABLE_STATUS_CODES:
            return make_error("PROVIDER_UNAVAILABLE", "submit", message or None)
        return make_error(
            "PROVIDER_ERROR", "submit", message or f"{provider.value} returned HTTP {status_code}",
        )

    def _succeeded(
        self, plan: ExecutionPlan, output_type: OutputType,
        video_url: Optional[str], job_id: Optional[str], logs: List[str],
    ) -> EngineResult:
        return EngineResult(
            status=ResultStatus.SUCCESS,
            output_type=output_type,
            video_url=video_url,
            job_id=job_id,
            logs=logs,
            plan_id=plan.plan_id,
            variation_index=plan.variation_index,
            engine_id=plan.engine_id,
            backend=plan.backend,
        )

    def _failed(self, plan: ExecutionPlan, error: ErrorInfo, logs: List[str]) -> EngineResult:
        logger.warning("Plan %s failed on %s: %s (%s)", plan.plan_id, plan.backend.label, error.code, error.message)
        return EngineResult(
            status=ResultStatus.FAILED,
            error=error,
            logs=logs,
            plan_id=plan.plan_id,
            variation_index=plan.variation_index,
            engine_id=plan.engine_id,
            backend=plan.backend,
        )
