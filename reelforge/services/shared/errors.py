"""Structured error taxonomy shared by the orchestrator, adapters and tracker.

Nothing in the render path lets an unstructured exception escape to a caller:
adapters and the orchestrator convert every failure into an :class:`ErrorInfo`
carried on an ``EngineResult``.  The registry below fixes, per error code,
its category, whether a per-variation retry makes sense, and a short hint
shown next to the failed item.
"""
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class ErrorCategory(str, Enum):
    VALIDATION = "validation"          # bad input, never retried
    INFRASTRUCTURE = "infrastructure"  # health / encoder / routing, fail fast
    EXECUTION = "execution"            # one variation failed, retryable
    TIMEOUT = "timeout"                # poll loop exceeded its bound


@dataclass(frozen=True)
class ErrorDefinition:
    category: ErrorCategory
    message: str
    retryable: bool
    user_action: str = ""


ERROR_DEFINITIONS: Dict[str, ErrorDefinition] = {
    # ── validation ────────────────────────────────────────────────────────────
    "INVALID_REQUEST": ErrorDefinition(
        ErrorCategory.VALIDATION, "Batch request is invalid", False,
        "Check variation count, aspect ratios and duration",
    ),
    "NO_SOURCE_ASSET": ErrorDefinition(
        ErrorCategory.VALIDATION, "No source file or URL provided", False,
        "Provide at least one source image or video",
    ),
    "NO_ELIGIBLE_ENGINE": ErrorDefinition(
        ErrorCategory.VALIDATION, "No rendering engine matches the request", False,
        "Raise the tier, shorten the video or choose another backend",
    ),
    # ── infrastructure ────────────────────────────────────────────────────────
    "VPS_UNREACHABLE": ErrorDefinition(
        ErrorCategory.INFRASTRUCTURE, "Render server is not reachable", False,
        "Check that the render server is running and /health answers with JSON",
    ),
    "VPS_NOT_CONFIGURED": ErrorDefinition(
        ErrorCategory.INFRASTRUCTURE, "No render server is configured", False,
        "Set render_server.base_url or REELFORGE_RENDER_SERVER_URL",
    ),
    "FFMPEG_UNAVAILABLE": ErrorDefinition(
        ErrorCategory.INFRASTRUCTURE, "Encoder is not available on the render server", False,
        "Install FFmpeg on the render server and restart it",
    ),
    "INVALID_RESPONSE": ErrorDefinition(
        ErrorCategory.INFRASTRUCTURE, "Backend returned a non-JSON response", False,
        "Check the reverse proxy routing for the render API",
    ),
    "UPLOAD_FAILED": ErrorDefinition(
        ErrorCategory.INFRASTRUCTURE, "Source upload to the render server failed", False,
        "Retry the upload; check disk space on the render server",
    ),
    # ── execution ─────────────────────────────────────────────────────────────
    "RENDER_FAILED": ErrorDefinition(
        ErrorCategory.EXECUTION, "Render job failed", True,
        "Retry this variation",
    ),
    "PROVIDER_BLOCKED": ErrorDefinition(
        ErrorCategory.EXECUTION, "Cloud provider blocked the request", True,
        "Retry later or render on the local server",
    ),
    "PROVIDER_UNAVAILABLE": ErrorDefinition(
        ErrorCategory.EXECUTION, "Cloud provider is unavailable", True,
        "Configure the provider API key or render on the local server",
    ),
    "PROVIDER_ERROR": ErrorDefinition(
        ErrorCategory.EXECUTION, "Cloud provider returned an error", True,
        "Retry this variation",
    ),
    "GENERATION_FAILED": ErrorDefinition(
        ErrorCategory.EXECUTION, "Variation generation failed unexpectedly", True,
        "Retry this variation",
    ),
    "RETRY_FAILED": ErrorDefinition(
        ErrorCategory.EXECUTION, "Retry could not be dispatched", True,
        "Retry again once the render backend is healthy",
    ),
    # ── timeout ───────────────────────────────────────────────────────────────
    "RENDER_TIMEOUT": ErrorDefinition(
        ErrorCategory.TIMEOUT, "Render job did not finish in time", True,
        "Retry this variation; the render queue may be saturated",
    ),
}


@dataclass(frozen=True)
class ErrorInfo:
    """A structured error: never an HTML page, never a bare exception."""
    code: str
    message: str
    stage: str
    retryable: bool
    category: ErrorCategory

    def to_dict(self) -> Dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "stage": self.stage,
            "retryable": self.retryable,
            "category": self.category.value,
        }


def make_error(code: str, stage: str, message: Optional[str] = None) -> ErrorInfo:
    """Build an :class:`ErrorInfo` from the registry.

    Unknown codes are treated as retryable execution failures.
    """
    definition = ERROR_DEFINITIONS.get(code)
    if definition is None:
        return ErrorInfo(
            code=code,
            message=message or code,
            stage=stage,
            retryable=True,
            category=ErrorCategory.EXECUTION,
        )
    return ErrorInfo(
        code=code,
        message=message or definition.message,
        stage=stage,
        retryable=definition.retryable,
        category=definition.category,
    )


def user_action_for(code: str) -> str:
    """Return the user-facing hint for ``code`` (empty if unknown)."""
    definition = ERROR_DEFINITIONS.get(code)
    return definition.user_action if definition else ""
