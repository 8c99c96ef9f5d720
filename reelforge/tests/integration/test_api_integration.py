"""Integration tests for the ReelForge FastAPI backend.

Uses FastAPI TestClient to exercise every router end-to-end through the
ASGI stack.  Settings come from a temp settings.yaml; the render server and
cloud adapters are MagicMocks, so no network access happens.  Everything
else (planner, selector, orchestrator, job store, change feed, tracker) is
real.

Coverage targets:
  - All 4 routers (engines, render, jobs, system)
  - Batch render → job events → tracker progress → results
  - Retry, pause/resume and pushed provider events
  - WebSocket run progress endpoint
"""
from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from reelforge.main import app
from reelforge.routers import render as render_router
from reelforge.services.execution.types import (
    EngineResult, HealthStatus, OutputType, ResultStatus,
)
from reelforge.services.shared import runtime
from reelforge.services.shared.config import reset_config
from reelforge.services.shared.errors import make_error

REMOTE_SOURCE = {"uri": "https://cdn.test/product.jpg", "kind": "image"}


def _batch_body(**overrides):
    body = {
        "variation_count": 3,
        "sources": [REMOTE_SOURCE],
        "brief": {"target_duration_sec": 30, "category": "ugc-review", "market": "saudi"},
        "tier": "free",
        "backend": "local-server",
        "seed": 4,
    }
    body.update(overrides)
    return body


def _failing_on(indices):
    def render(plan, on_status=None):
        if plan.variation_index in indices:
            return EngineResult(
                status=ResultStatus.FAILED, error=make_error("RENDER_FAILED", "execute", "encoder crashed"),
                plan_id=plan.plan_id, variation_index=plan.variation_index,
                engine_id=plan.engine_id, backend=plan.backend,
            )
        return EngineResult(
            status=ResultStatus.SUCCESS, output_type=OutputType.VIDEO,
            video_url=f"https://cdn.test/{plan.plan_id}.mp4",
            plan_id=plan.plan_id, variation_index=plan.variation_index,
            engine_id=plan.engine_id, backend=plan.backend,
        )
    return render


# ─────────────────────────────────────────────────────────────────────────────
# Shared fixture
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def client(sample_settings, monkeypatch, mock_local_adapter, mock_cloud_adapter):
    """TestClient wired to temp settings and mocked render adapters."""
    monkeypatch.setenv("REELFORGE_SETTINGS", str(sample_settings))
    monkeypatch.delenv("REELFORGE_RENDER_SERVER_URL", raising=False)
    reset_config()
    runtime.reset_runtime()
    monkeypatch.setattr(runtime, "get_local_adapter", lambda: mock_local_adapter)
    monkeypatch.setattr(runtime, "get_cloud_adapter", lambda: mock_cloud_adapter)
    with TestClient(app) as c:
        yield c
    runtime.reset_runtime()
    reset_config()
    render_router._run_results.clear()


def _start_batch(client, **overrides):
    resp = client.post("/api/render/batch", json=_batch_body(**overrides))
    assert resp.status_code == 202, resp.text
    return resp.json()


# ═════════════════════════════════════════════════════════════════════════════
# System router  /api/system
# ═════════════════════════════════════════════════════════════════════════════


class TestSystemRouter:
    def test_health_check(self, client: TestClient):
        body = client.get("/api/system/health").json()
        assert body == {"status": "ok", "version": "1.0.0"}

    def test_render_server_healthy(self, client: TestClient, mock_local_adapter):
        mock_local_adapter.check_health.return_value = HealthStatus(
            ok=True, encoder_ready=True, encoder_version="6.1", queue_length=1,
        )
        body = client.get("/api/system/render-server").json()
        assert body["configured"] is True
        assert body["ok"] is True
        assert body["encoder_version"] == "6.1"
        assert body["base_url"] == "http://render.test/api"

    def test_render_server_down(self, client: TestClient, mock_local_adapter):
        mock_local_adapter.check_health.return_value = HealthStatus(
            ok=False, error=make_error("VPS_UNREACHABLE", "health"),
        )
        body = client.get("/api/system/render-server").json()
        assert body["ok"] is False
        assert body["error"]["code"] == "VPS_UNREACHABLE"

    def test_render_server_not_configured(self, client: TestClient, monkeypatch):
        monkeypatch.setattr(runtime, "get_local_adapter", lambda: None)
        body = client.get("/api/system/render-server").json()
        assert body["configured"] is False


# ═════════════════════════════════════════════════════════════════════════════
# Engines router  /api/engines
# ═════════════════════════════════════════════════════════════════════════════


class TestEnginesRouter:
    def test_list_engines(self, client: TestClient):
        body = client.get("/api/engines").json()
        assert body["total"] == 5
        assert body["engines"][0]["id"] == "vps-ffmpeg"

    def test_list_filtered_by_tier(self, client: TestClient):
        body = client.get("/api/engines", params={"tier": "low"}).json()
        assert {e["id"] for e in body["engines"]} == {"vps-ffmpeg", "kling-2.5"}

    def test_list_unknown_tier(self, client: TestClient):
        assert client.get("/api/engines", params={"tier": "gold"}).status_code == 422

    def test_get_engine(self, client: TestClient):
        body = client.get("/api/engines/sora-2-pro").json()
        assert body["tier"] == "premium"
        assert body["provider"] == "sora"

    def test_get_unknown_engine(self, client: TestClient):
        assert client.get("/api/engines/nope").status_code == 404

    def test_select_engine_with_alternatives(self, client: TestClient):
        body = client.post("/api/engines/select", json={
            "tier": "premium", "backend": "cloud-api",
            "capabilities": ["image-to-video"], "duration_seconds": 8,
            "include_alternatives": True,
        }).json()
        assert body["available"] is True
        assert body["engine"]["id"] == "sora-2-pro"
        assert body["estimated_cost_usd"] == pytest.approx(2.8)
        assert [e["id"] for e in body["alternatives"]] == ["runway-gen3", "kling-2.5"]

    def test_select_engine_unavailable(self, client: TestClient):
        body = client.post("/api/engines/select", json={
            "tier": "low", "backend": "cloud-api", "capabilities": ["avatar"], "duration_seconds": 5,
        }).json()
        assert body["available"] is False
        assert body["reason"]

    def test_select_bad_backend(self, client: TestClient):
        resp = client.post("/api/engines/select", json={"backend": "on-prem"})
        assert resp.status_code == 422


# ═════════════════════════════════════════════════════════════════════════════
# Render router  /api/render
# ═════════════════════════════════════════════════════════════════════════════


class TestRenderPlan:
    def test_plan_is_a_dry_run(self, client: TestClient, mock_local_adapter):
        body = client.post("/api/render/plan", json=_batch_body()).json()
        assert body["ok"] is True
        assert body["engine"]["id"] == "vps-ffmpeg"
        assert body["plan_ids"] == ["preview-v0", "preview-v1", "preview-v2"]
        assert [s["type"] for s in body["scenes"]["scenes"]] == ["hook", "problem", "solution", "benefits", "cta"]
        mock_local_adapter.render.assert_not_called()

    def test_plan_without_sources(self, client: TestClient):
        resp = client.post("/api/render/plan", json=_batch_body(sources=[]))
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "NO_SOURCE_ASSET"

    def test_plan_bad_pacing(self, client: TestClient):
        body = _batch_body()
        body["brief"]["pacing"] = "glacial"
        assert client.post("/api/render/plan", json=body).status_code == 422

    def test_plan_variation_count_validated(self, client: TestClient):
        assert client.post("/api/render/plan", json=_batch_body(variation_count=0)).status_code == 422


class TestRenderBatch:
    def test_batch_renders_all_variations(self, client: TestClient, mock_local_adapter):
        started = _start_batch(client)
        run_id = started["run_id"]
        assert started["status"] == "queued"
        assert started["job_ids"] == [f"{run_id}-v{i}" for i in range(3)]
        assert started["engine"]["id"] == "vps-ffmpeg"

        results = client.get(f"/api/render/{run_id}/results").json()
        assert results["finished"] is True
        assert [r["variation_index"] for r in results["results"]] == [0, 1, 2]
        assert all(r["status"] == "success" for r in results["results"])
        assert mock_local_adapter.render.call_count == 3

        progress = client.get(f"/api/jobs/{run_id}").json()
        assert progress["is_complete"] is True
        assert progress["overall_progress_pct"] == 100
        assert progress["completed_jobs"] == 3

    def test_batch_rejected_before_start(self, client: TestClient):
        resp = client.post("/api/render/batch", json=_batch_body(
            tier="low", backend="cloud-api", required_capabilities=["avatar"],
        ))
        assert resp.status_code == 422
        assert resp.json()["detail"]["code"] == "NO_ELIGIBLE_ENGINE"

    def test_unhealthy_server_fails_every_job(self, client: TestClient, mock_local_adapter):
        mock_local_adapter.check_health.return_value = HealthStatus(
            ok=False, error=make_error("VPS_UNREACHABLE", "health"),
        )
        run_id = _start_batch(client)["run_id"]

        results = client.get(f"/api/render/{run_id}/results").json()["results"]
        assert len(results) == 1
        assert results[0]["variation_index"] is None
        assert results[0]["error"]["code"] == "VPS_UNREACHABLE"
        mock_local_adapter.render.assert_not_called()

        progress = client.get(f"/api/jobs/{run_id}").json()
        assert progress["is_complete"] is True
        assert progress["failed_jobs"] == 3

    def test_unknown_run_results(self, client: TestClient):
        assert client.get("/api/render/nope/results").status_code == 404

    def test_only_recent_results_are_kept(self, client: TestClient, monkeypatch):
        monkeypatch.setattr(render_router, "MAX_KEPT_RESULTS", 2)
        run_ids = [_start_batch(client, variation_count=1)["run_id"] for _ in range(3)]
        assert list(render_router._run_results) == run_ids[1:]
        assert client.get(f"/api/render/{run_ids[0]}/results").json()["finished"] is False
        assert client.get(f"/api/render/{run_ids[2]}/results").json()["finished"] is True


# ═════════════════════════════════════════════════════════════════════════════
# Jobs router  /api/jobs
# ═════════════════════════════════════════════════════════════════════════════


class TestJobsRouter:
    def test_list_runs(self, client: TestClient):
        run_id = _start_batch(client)["run_id"]
        body = client.get("/api/jobs/").json()
        assert run_id in body["runs"]

    def test_unknown_run(self, client: TestClient):
        assert client.get("/api/jobs/nope").status_code == 404

    def test_retry_single_failed_job(self, client: TestClient, mock_local_adapter):
        mock_local_adapter.render.side_effect = _failing_on({1})
        run_id = _start_batch(client)["run_id"]
        progress = client.get(f"/api/jobs/{run_id}").json()
        assert progress["failed_jobs"] == 1
        assert progress["statuses"][f"{run_id}-v1"]["error_code"] == "RENDER_FAILED"

        mock_local_adapter.render.side_effect = _failing_on(set())
        resp = client.post(f"/api/jobs/{run_id}/retry/{run_id}-v1")
        assert resp.status_code == 202

        progress = client.get(f"/api/jobs/{run_id}").json()
        assert progress["failed_jobs"] == 0
        assert progress["completed_jobs"] == 3
        assert progress["statuses"][f"{run_id}-v1"]["retry_count"] == 1
        assert progress["statuses"][f"{run_id}-v0"]["retry_count"] == 0

    def test_retry_rejects_completed_and_unknown_jobs(self, client: TestClient):
        run_id = _start_batch(client)["run_id"]
        assert client.post(f"/api/jobs/{run_id}/retry/{run_id}-v0").status_code == 409
        assert client.post(f"/api/jobs/{run_id}/retry/{run_id}-v9").status_code == 404

    def test_retry_all_failed(self, client: TestClient, mock_local_adapter):
        mock_local_adapter.render.side_effect = _failing_on({0, 2})
        run_id = _start_batch(client)["run_id"]

        mock_local_adapter.render.side_effect = _failing_on(set())
        body = client.post(f"/api/jobs/{run_id}/retry-failed").json()
        assert body["retrying"] == 2
        assert client.get(f"/api/jobs/{run_id}").json()["completed_jobs"] == 3

    def test_pause_blocks_retry(self, client: TestClient, mock_local_adapter):
        mock_local_adapter.render.side_effect = _failing_on({0})
        run_id = _start_batch(client)["run_id"]

        assert client.post(f"/api/jobs/{run_id}/pause").json()["paused"] is True
        assert client.get(f"/api/jobs/{run_id}").json()["paused"] is True
        assert client.post(f"/api/jobs/{run_id}/retry/{run_id}-v0").status_code == 409
        assert client.post(f"/api/jobs/{run_id}/retry-failed").status_code == 409

        client.post(f"/api/jobs/{run_id}/resume")
        assert client.post(f"/api/jobs/{run_id}/retry/{run_id}-v0").status_code == 202

    def test_provider_callback_completes_job(self, client: TestClient, mock_cloud_adapter):
        def render(plan, on_status=None):
            return EngineResult(
                status=ResultStatus.SUCCESS, output_type=OutputType.JOB_HANDLE, job_id=f"task-{plan.plan_id}",
                plan_id=plan.plan_id, variation_index=plan.variation_index,
                engine_id=plan.engine_id, backend=plan.backend,
            )

        mock_cloud_adapter.render.side_effect = render
        started = _start_batch(
            client, variation_count=1, tier="premium", backend="cloud-api",
            brief={"target_duration_sec": 8},
        )
        run_id = started["run_id"]
        assert started["engine"]["id"] == "sora-2-pro"
        progress = client.get(f"/api/jobs/{run_id}").json()
        assert progress["is_complete"] is False
        assert progress["statuses"][f"{run_id}-v0"]["stage"] == "rendering"

        resp = client.post("/api/jobs/events", json={
            "id": f"{run_id}-v0", "run_id": run_id, "status": "completed",
            "video_url": "https://sora.test/out.mp4",
        })
        assert resp.status_code == 202

        progress = client.get(f"/api/jobs/{run_id}").json()
        assert progress["is_complete"] is True
        assert progress["statuses"][f"{run_id}-v0"]["video_url"] == "https://sora.test/out.mp4"


# ═════════════════════════════════════════════════════════════════════════════
# WebSocket  /api/jobs/ws/{run_id}
# ═════════════════════════════════════════════════════════════════════════════


class TestRunProgressWebSocket:
    def test_finished_run_sends_final_snapshot(self, client: TestClient):
        run_id = _start_batch(client)["run_id"]
        with client.websocket_connect(f"/api/jobs/ws/{run_id}") as ws:
            data = ws.receive_json()
        assert data["run_id"] == run_id
        assert data["is_complete"] is True
        assert data["overall_progress_pct"] == 100

    def test_unknown_run(self, client: TestClient):
        with client.websocket_connect("/api/jobs/ws/nope") as ws:
            data = ws.receive_json()
        assert data["is_complete"] is True
        assert "not found" in data["error"]
