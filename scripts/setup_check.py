#!/usr/bin/env python3
"""ReelForge environment setup checker.

Validates that the required packages, configuration, render server and
provider API keys are in place before running ReelForge for the first time.

Usage:
    python scripts/setup_check.py            # full check
    python scripts/setup_check.py --server   # render server only
    python scripts/setup_check.py --quick    # skip the render server check
"""
from __future__ import annotations

import argparse
import importlib
import os
import shutil
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Tuple

# ── Paths ─────────────────────────────────────────────────────────────────────
REPO_ROOT = Path(__file__).parent.parent
CONFIG_DIR = REPO_ROOT / "reelforge" / "config"
SETTINGS_YAML = CONFIG_DIR / "settings.yaml"
ENGINES_YAML = CONFIG_DIR / "engines.yaml"

# ── ANSI colours ──────────────────────────────────────────────────────────────
GREEN  = "\033[92m"
YELLOW = "\033[93m"
RED    = "\033[91m"
BLUE   = "\033[94m"
RESET  = "\033[0m"
BOLD   = "\033[1m"


def ok(msg: str) -> str:
    return f"  {GREEN}✓{RESET}  {msg}"


def warn(msg: str) -> str:
    return f"  {YELLOW}⚠{RESET}  {msg}"


def err(msg: str) -> str:
    return f"  {RED}✗{RESET}  {msg}"


def section(title: str) -> None:
    print(f"\n{BOLD}{BLUE}━━ {title} ━━{RESET}")


# ── Result accumulator ────────────────────────────────────────────────────────
@dataclass
class CheckResult:
    passed: int = 0
    warned: int = 0
    failed: int = 0
    messages: List[Tuple[str, str]] = field(default_factory=list)

    def add(self, level: str, msg: str) -> None:
        self.messages.append((level, msg))
        if level == "ok":
            self.passed += 1
        elif level == "warn":
            self.warned += 1
        else:
            self.failed += 1

    def print_summary(self) -> None:
        section("Summary")
        for level, msg in self.messages:
            if level == "ok":
                print(ok(msg))
            elif level == "warn":
                print(warn(msg))
            else:
                print(err(msg))

        print()
        total = self.passed + self.warned + self.failed
        print(f"  {GREEN}{self.passed}{RESET} passed  "
              f"{YELLOW}{self.warned}{RESET} warnings  "
              f"{RED}{self.failed}{RESET} failed  "
              f"({total} checks)")

    @property
    def exit_code(self) -> int:
        return 0 if self.failed == 0 else 1


def _mask(value: str) -> str:
    return value[:4] + "..." + value[-4:] if len(value) > 8 else "****"


# ── Individual checks ─────────────────────────────────────────────────────────


def check_python_version(result: CheckResult) -> None:
    section("Python")
    major, minor = sys.version_info[:2]
    ver = f"{major}.{minor}"
    if (major, minor) >= (3, 10):
        print(ok(f"Python {ver}"))
        result.add("ok", f"Python {ver}")
    else:
        print(err(f"Python {ver}: need 3.10+"))
        result.add("fail", f"Python {ver}: need 3.10+")


def check_system_dependencies(result: CheckResult) -> None:
    section("System dependencies")

    # Rendering happens on the render server; a local ffmpeg only matters
    # when this machine is the server.
    path = shutil.which("ffmpeg")
    if path:
        print(ok(f"ffmpeg: {path}"))
        result.add("ok", "ffmpeg found")
    else:
        print(warn("ffmpeg not found (only needed when this host runs the render server)"))
        result.add("warn", "ffmpeg missing locally")


def check_python_packages(result: CheckResult) -> None:
    section("Python packages")

    required = ["fastapi", "uvicorn", "pydantic", "yaml", "dotenv", "httpx", "pytest"]
    for pkg in required:
        try:
            importlib.import_module(pkg)
            print(ok(f"{pkg}"))
            result.add("ok", f"Package: {pkg}")
        except ImportError:
            print(err(f"{pkg} not installed"))
            result.add("fail", f"Package missing: {pkg}")


def check_config_files(result: CheckResult) -> None:
    section("Configuration files")

    configs = {
        "settings.yaml": SETTINGS_YAML,
        "engines.yaml":  ENGINES_YAML,
    }
    for name, path in configs.items():
        if path.exists():
            print(ok(f"{name}"))
            result.add("ok", f"Config: {name}")
        else:
            print(err(f"{name}: not found at {path}"))
            result.add("fail", f"Config missing: {name}")

    override = os.environ.get("REELFORGE_SETTINGS")
    if override:
        print(ok(f"REELFORGE_SETTINGS overrides settings: {override}"))


def check_engine_catalog(result: CheckResult) -> None:
    section("Engine catalog")
    try:
        from reelforge.services.engines.catalog import CatalogError, EngineCatalog
    except ImportError as e:
        print(err(f"reelforge package not importable: {e}"))
        result.add("fail", "reelforge not importable")
        return

    try:
        catalog = EngineCatalog.from_yaml(ENGINES_YAML)
    except (OSError, CatalogError) as e:
        print(err(f"engines.yaml invalid: {e}"))
        result.add("fail", "Engine catalog failed to load")
        return

    engines = catalog.list()
    by_location: dict = {}
    for spec in engines:
        by_location.setdefault(spec.location.value, []).append(spec.id)
    print(ok(f"Catalog loaded: {len(engines)} engine(s)"))
    for location, ids in sorted(by_location.items()):
        print(f"         {location}: {', '.join(ids)}")
    result.add("ok", f"Engine catalog: {len(engines)} entries")


def check_render_server(result: CheckResult) -> None:
    section("Render server")
    try:
        from reelforge.services.shared import runtime
    except ImportError as e:
        print(err(f"reelforge package not importable: {e}"))
        result.add("fail", "reelforge not importable")
        return

    adapter = runtime.get_local_adapter()
    if adapter is None:
        print(warn("No render server configured (set REELFORGE_RENDER_SERVER_URL)"))
        result.add("warn", "Render server not configured")
        return

    health = adapter.check_health()
    if health.ok:
        version = health.encoder_version or "unknown version"
        print(ok(f"{adapter.base_url}: encoder ready ({version}), queue {health.queue_length}"))
        result.add("ok", "Render server healthy")
    else:
        code = health.error.code if health.error else "VPS_UNREACHABLE"
        detail = health.error.message if health.error else ""
        print(err(f"{adapter.base_url}: {code} {detail}".rstrip()))
        result.add("fail", f"Render server unhealthy: {code}")


def check_api_keys(result: CheckResult) -> None:
    section("Provider API keys")
    try:
        from reelforge.services.shared.config import get_config
        providers = get_config().get("providers", {}) or {}
    except (ImportError, OSError, ValueError) as e:
        print(err(f"Cannot read provider settings: {e}"))
        result.add("fail", "Provider settings unreadable")
        return

    for name, entry in sorted(providers.items()):
        var = (entry or {}).get("api_key_env")
        if not var:
            continue
        val = os.environ.get(var, "")
        if val:
            print(ok(f"{var}: {_mask(val)}  ({name})"))
            result.add("ok", f"{var} set")
        else:
            print(f"  {RESET}○  {var}: not set ({name} engines unavailable)")
            result.add("ok", f"{var} not set (optional)")


def check_directories(result: CheckResult) -> None:
    section("Data directories")

    dirs = {
        "data": REPO_ROOT / "data",
        "logs": REPO_ROOT / "logs",
    }
    for name, path in dirs.items():
        if path.exists():
            print(ok(f"{name}: {path}"))
            result.add("ok", f"Dir: {name}")
        else:
            path.mkdir(parents=True, exist_ok=True)
            print(ok(f"{name}: created {path}"))
            result.add("ok", f"Dir created: {name}")


# ── Main ──────────────────────────────────────────────────────────────────────


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="ReelForge environment setup checker"
    )
    parser.add_argument("--server", action="store_true", help="Check the render server only")
    parser.add_argument("--quick", action="store_true", help="Skip the render server check")
    return parser.parse_args()


def main() -> int:
    args = parse_args()
    result = CheckResult()

    print(f"\n{BOLD}ReelForge Setup Checker{RESET}")
    print(f"Repo root: {REPO_ROOT}")

    if args.server:
        check_render_server(result)
    else:
        check_python_version(result)
        check_system_dependencies(result)
        check_python_packages(result)
        check_config_files(result)
        check_engine_catalog(result)
        if not args.quick:
            check_render_server(result)
        check_api_keys(result)
        check_directories(result)

    result.print_summary()
    print()

    if result.failed == 0 and result.warned == 0:
        print(f"{GREEN}{BOLD}✓ All checks passed. ReelForge is ready!{RESET}\n")
    elif result.failed == 0:
        print(f"{YELLOW}{BOLD}⚠ Setup complete with warnings. ReelForge will run "
              f"but some engines may be unavailable.{RESET}\n")
    else:
        print(f"{RED}{BOLD}✗ {result.failed} check(s) failed. Resolve errors before "
              f"running ReelForge.{RESET}\n")

    return result.exit_code


if __name__ == "__main__":
    sys.exit(main())
