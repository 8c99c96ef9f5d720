"""Shared test fixtures for ReelForge."""
import shutil
import tempfile
from pathlib import Path
from typing import Callable, Generator
from unittest.mock import MagicMock

import httpx
import pytest
import yaml

from reelforge.services.engines.catalog import EngineCatalog
from reelforge.services.engines.types import EngineSpec, Location, ProviderId, Tier
from reelforge.services.execution.types import (
    Backend, EngineResult, HealthStatus, OutputType, ResultStatus,
)
from reelforge.services.scenes.types import ContentBrief


@pytest.fixture(scope="session")
def project_root() -> Path:
    return Path(__file__).parent.parent.parent


@pytest.fixture
def tmp_dir() -> Generator[Path, None, None]:
    d = Path(tempfile.mkdtemp())
    yield d
    shutil.rmtree(d, ignore_errors=True)


# ─────────────────────────────────────────────────────────────────────────────
# Catalog fixtures
# ─────────────────────────────────────────────────────────────────────────────

SAMPLE_ENGINES = [
    {
        "id": "vps-ffmpeg", "name": "Render Server FFmpeg", "tier": "free",
        "location": "local-server",
        "capabilities": ["trim", "merge", "text-overlay", "image-to-video"],
        "cost_per_second": 0.0, "max_duration_seconds": 300, "priority": 100,
    },
    {
        "id": "kling-2.5", "name": "Kling 2.5", "tier": "low", "location": "cloud-api",
        "provider": "kling", "capabilities": ["text-to-video", "image-to-video"],
        "cost_per_second": 0.03, "max_duration_seconds": 10, "priority": 75,
    },
    {
        "id": "runway-gen3", "name": "Runway Gen-3", "tier": "medium", "location": "cloud-api",
        "provider": "runway", "capabilities": ["image-to-video", "video-to-video"],
        "cost_per_second": 0.12, "max_duration_seconds": 10, "priority": 85,
    },
    {
        "id": "sora-2-pro", "name": "OpenAI Sora 2 Pro", "tier": "premium", "location": "cloud-api",
        "provider": "sora", "capabilities": ["image-to-video", "cinematic"],
        "cost_per_second": 0.35, "max_duration_seconds": 60, "priority": 100,
    },
    {
        "id": "heygen", "name": "HeyGen", "tier": "premium", "location": "cloud-api",
        "provider": "heygen", "capabilities": ["avatar"],
        "cost_per_second": 0.25, "max_duration_seconds": 120, "priority": 88,
    },
]


@pytest.fixture
def sample_catalog(tmp_dir: Path) -> Path:
    """Write a small engines.yaml to a temp dir and return its path."""
    path = tmp_dir / "engines.yaml"
    path.write_text(yaml.dump({"engines": SAMPLE_ENGINES}))
    return path


@pytest.fixture
def catalog(sample_catalog: Path) -> EngineCatalog:
    return EngineCatalog.from_yaml(sample_catalog)


@pytest.fixture
def sample_settings(tmp_dir: Path, sample_catalog: Path) -> Path:
    """Write a minimal settings.yaml to a temp dir and return its path."""
    settings = {
        "logging": {"level": "DEBUG", "file": str(tmp_dir / "test.log")},
        "paths": {"jobs_db": str(tmp_dir / "jobs.db")},
        "catalog": {"path": str(sample_catalog)},
        "render_server": {
            "base_url": "http://render.test/api",
            "health_timeout_sec": 1.0,
            "request_timeout_sec": 5.0,
            "poll_interval_sec": 0.01,
            "max_wait_sec": 5.0,
        },
        "orchestrator": {"max_concurrency": 2, "default_aspect_ratios": ["9:16"], "default_seed": 3},
        "tracker": {"poll_interval_sec": 0.05, "tick_interval_sec": 0.05},
        "narrative": {"endpoint_url": "", "timeout_sec": 1.0, "api_key_env": "NARRATIVE_API_KEY"},
        "providers": {
            "kling": {"endpoint": "https://kling.test/v1/videos", "api_key_env": "KLING_API_KEY"},
            "sora": {"endpoint": "https://sora.test/v1/videos", "api_key_env": "OPENAI_API_KEY"},
        },
    }
    cfg_path = tmp_dir / "settings.yaml"
    cfg_path.write_text(yaml.dump(settings))
    return cfg_path


def make_spec(
    engine_id: str,
    tier: Tier = Tier.FREE,
    location: Location = Location.LOCAL_SERVER,
    capabilities=("image-to-video",),
    cost_per_second: float = 0.0,
    max_duration_seconds: float = 60.0,
    priority: int = 50,
    provider: ProviderId = None,
) -> EngineSpec:
    if location is Location.CLOUD_API and provider is None:
        provider = ProviderId.KLING
    return EngineSpec(
        id=engine_id, name=engine_id, tier=tier, location=location,
        capabilities=frozenset(capabilities), cost_per_second=cost_per_second,
        max_duration_seconds=max_duration_seconds, priority=priority, provider=provider,
    )


@pytest.fixture
def engine_factory() -> Callable[..., EngineSpec]:
    """``engine_factory("id", tier=Tier.LOW, ...)`` builds an EngineSpec."""
    return make_spec


# ─────────────────────────────────────────────────────────────────────────────
# Brief / HTTP fixtures
# ─────────────────────────────────────────────────────────────────────────────


@pytest.fixture
def brief() -> ContentBrief:
    return ContentBrief(target_duration_sec=30, category="ugc-review", market="saudi")


@pytest.fixture
def mock_http() -> Callable[[Callable[[httpx.Request], httpx.Response]], httpx.Client]:
    """Build an httpx.Client whose requests are answered by ``handler``."""
    def factory(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.Client:
        return httpx.Client(transport=httpx.MockTransport(handler))
    return factory


# ─────────────────────────────────────────────────────────────────────────────
# Render adapter mocks
# ─────────────────────────────────────────────────────────────────────────────


def ok_result(plan, video_url: str = None) -> EngineResult:
    return EngineResult(
        status=ResultStatus.SUCCESS,
        output_type=OutputType.VIDEO,
        video_url=video_url or f"https://cdn.test/{plan.plan_id}.mp4",
        plan_id=plan.plan_id,
        variation_index=plan.variation_index,
        engine_id=plan.engine_id,
        backend=plan.backend,
    )


@pytest.fixture
def mock_local_adapter():
    """A healthy local-server adapter whose renders always succeed.

    ``render`` records each plan it receives; ``upload`` echoes a server path.
    """
    adapter = MagicMock()
    adapter.name.return_value = "local-server"
    adapter.base_url = "http://render.test/api"
    adapter.check_health.return_value = HealthStatus(ok=True, encoder_ready=True)
    adapter.upload.side_effect = lambda path: f"/srv/uploads/{Path(path).name}"
    adapter.render.side_effect = lambda plan, on_status=None: ok_result(plan)
    return adapter


@pytest.fixture
def mock_cloud_adapter():
    adapter = MagicMock()
    adapter.name.return_value = "cloud-api"
    adapter.render.side_effect = lambda plan, on_status=None: ok_result(plan)
    return adapter


@pytest.fixture
def local_backend() -> Backend:
    return Backend.local_server()
