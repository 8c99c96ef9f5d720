"""Configuration manager for ReelForge.

Dot-notation access into ``settings.yaml`` plus a .env priority chain:
  1. User-level ~/.reelforge/.env  (lowest priority)
  2. Repository .env               (overrides user-level)
  3. Environment variables         (highest priority)
"""
from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

import yaml
from dotenv import load_dotenv

_config_instance: Optional["Config"] = None

DEFAULT_SETTINGS_PATH = Path(__file__).parent.parent.parent / "config" / "settings.yaml"


class Config:
    """Settings with dot-notation access and env override."""

    def __init__(self, config_path: str):
        path = Path(config_path)
        if not path.exists():
            raise FileNotFoundError(f"Config file not found: {config_path}")
        with open(path) as f:
            self._data: dict = yaml.safe_load(f)
        if not isinstance(self._data, dict):
            raise ValueError(f"Config file must be a YAML mapping, got: {type(self._data)}")
        self._path = path
        self._load_env()

    # ── private ──────────────────────────────────────────────────────────────

    def _load_env(self) -> None:
        """Load .env files in priority order (user → repository)."""
        user_env = Path.home() / ".reelforge" / ".env"
        local_env = Path(__file__).parent.parent.parent.parent / ".env"
        if user_env.exists():
            load_dotenv(user_env, override=False)
        if local_env.exists():
            load_dotenv(local_env, override=True)

    # ── public ───────────────────────────────────────────────────────────────

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str, default: Any = None) -> Any:
        """Dot-notation access into the YAML tree.

        Example::

            config.get("render_server.poll_interval_sec")   # 2.0
            config.get("providers.runway.endpoint")         # "https://..."
            config.get("missing.key", "fallback")           # "fallback"
        """
        keys = key.split(".")
        val: Any = self._data
        for k in keys:
            if isinstance(val, dict) and k in val:
                val = val[k]
            else:
                return default
        return val

    def get_path(self, key: str) -> Path:
        """Return a config value as a Path object.

        Relative paths are resolved against the directory holding the
        settings file.

        Raises KeyError if the key does not exist.
        """
        val = self.get(key)
        if val is None:
            raise KeyError(f"Config key not found: {key}")
        path = Path(str(val))
        if not path.is_absolute():
            path = self._path.parent / path
        return path

    def get_env(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return an environment variable value."""
        return os.environ.get(name, default)


# ── module-level singleton ────────────────────────────────────────────────────


def get_config(config_path: Optional[str] = None) -> Config:
    """Return the singleton Config instance.

    On first call ``config_path`` defaults to the ``REELFORGE_SETTINGS``
    environment variable, then to the bundled ``config/settings.yaml``.
    Later calls return the existing instance.
    """
    global _config_instance
    if _config_instance is None:
        if config_path is None:
            config_path = os.environ.get("REELFORGE_SETTINGS", str(DEFAULT_SETTINGS_PATH))
        _config_instance = Config(config_path)
    return _config_instance


def reset_config() -> None:
    """Clear the singleton (mainly for testing)."""
    global _config_instance
    _config_instance = None
