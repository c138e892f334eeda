from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# Environment variable names
ENV_HOME = "CHAGEE_HOME"
ENV_LOG_LEVEL = "CHAGEE_LOG_LEVEL"
ENV_LOG_JSON = "CHAGEE_LOG_JSON"
ENV_KEYCHAIN_TIMEOUT = "CHAGEE_KEYCHAIN_TIMEOUT"

DEFAULT_HOME_DIRNAME = ".chagee-cli"
DEFAULT_LOG_LEVEL = "WARNING"
DEFAULT_KEYCHAIN_TIMEOUT = 5.0


def _getenv(name: str, default: Optional[str] = None) -> Optional[str]:
    v = os.environ.get(name)
    return v if v not in (None, "") else default


@dataclass(frozen=True)
class StoragePaths:
    """Files under the storage root (default `~/.chagee-cli`)."""

    root: Path

    @property
    def session_file(self) -> Path:
        return self.root / "session.json"

    @property
    def token_file(self) -> Path:
        return self.root / "tokens.json"

    @property
    def region_file(self) -> Path:
        return self.root / "regions.json"

    @classmethod
    def from_env(cls) -> "StoragePaths":
        configured = _getenv(ENV_HOME)
        root = Path(configured).expanduser() if configured else Path.home() / DEFAULT_HOME_DIRNAME
        return cls(root=root)


def log_level() -> str:
    return (_getenv(ENV_LOG_LEVEL, DEFAULT_LOG_LEVEL) or DEFAULT_LOG_LEVEL).upper()


def log_json() -> bool:
    return (_getenv(ENV_LOG_JSON, "") or "").lower() in ("1", "true", "yes", "on")


def keychain_timeout() -> float:
    raw = _getenv(ENV_KEYCHAIN_TIMEOUT)
    if raw is None:
        return DEFAULT_KEYCHAIN_TIMEOUT
    try:
        value = float(raw)
    except ValueError:
        return DEFAULT_KEYCHAIN_TIMEOUT
    return value if value > 0 else DEFAULT_KEYCHAIN_TIMEOUT


__all__ = [
    "ENV_HOME",
    "StoragePaths",
    "keychain_timeout",
    "log_json",
    "log_level",
]
