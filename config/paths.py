# config/paths.py
"""
Centralized path management for the audio inspector.

- Single source of truth for data, logs and session event locations
- Honors AUDIOINSPECTOR_DATA_ROOT and AUDIOINSPECTOR_LOGS_ROOT (matching the SDK)
- Sensible OS defaults when env vars are not provided
- Prefer SDK config if available (sdk.config.SDK_CONFIG.paths)
"""

from __future__ import annotations

import errno
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Optional


# ---------- OS defaults (used only if env vars not set) ----------

def _platform_default_base() -> Path:
    """
    - Windows: %LOCALAPPDATA%/AudioInspector
    - macOS:   ~/Library/Application Support/AudioInspector
    - Linux:   ~/.local/share/audioinspector
    """
    if sys.platform.startswith("win"):
        base = os.getenv("LOCALAPPDATA") or os.getenv("APPDATA") or str(Path.home() / "AppData" / "Local")
        return Path(base) / "AudioInspector"
    elif sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / "AudioInspector"
    else:
        return Path(os.getenv("XDG_DATA_HOME", Path.home() / ".local" / "share")) / "audioinspector"


def _env_or_default_data_root() -> Path:
    return Path(os.getenv("AUDIOINSPECTOR_DATA_ROOT", _platform_default_base() / "data"))


def _env_or_default_logs_root() -> Path:
    return Path(os.getenv("AUDIOINSPECTOR_LOGS_ROOT", _platform_default_base() / "logs"))


def _detect_repo_root(start: Optional[Path] = None) -> Path:
    """Walk upwards to the first directory holding .git or pyproject.toml."""
    start = (start or Path(__file__)).resolve()
    cur = start.parent
    markers = {".git", "pyproject.toml"}
    for _ in range(8):
        if any((cur / m).exists() for m in markers):
            return cur
        if cur.parent == cur:
            break
        cur = cur.parent
    return Path(__file__).resolve().parents[1]


@dataclass(frozen=True)
class Paths:
    """Most callers should obtain a singleton instance via get_paths()."""
    repo_root: Path
    data_root: Path
    logs_root: Path

    # ----- factories -----

    @staticmethod
    def from_env_and_repo(repo_root: Optional[Path] = None) -> "Paths":
        return Paths(_detect_repo_root(repo_root), _env_or_default_data_root(), _env_or_default_logs_root())

    @staticmethod
    def from_sdk_if_available() -> "Paths":
        try:
            from sdk.config import SDK_CONFIG
        except ImportError:
            return Paths.from_env_and_repo()
        return Paths(
            _detect_repo_root(),
            Path(SDK_CONFIG.paths.data_root),
            Path(SDK_CONFIG.paths.logs_root),
        )

    # ----- layout helpers -----

    @property
    def sessions_root(self) -> Path:
        return self.data_root / "raw" / "sessions"

    @property
    def capability_table(self) -> Path:
        return self.repo_root / "config" / "capabilities.json"

    def session_dir(self, name: str) -> Path:
        return self.sessions_root / name

    def session_events_path(self, name: str) -> Path:
        return self.session_dir(name) / "events.jsonl"

    def logs_area(self, area: str) -> Path:
        return self.logs_root / area

    # ----- setup / validation -----

    def ensure_all(self) -> None:
        for p in [self.data_root, self.logs_root, self.sessions_root]:
            p.mkdir(parents=True, exist_ok=True)

    def verify_writeable(self) -> None:
        """Raise OSError if data or logs roots are not writeable."""
        for p in [self.data_root, self.logs_root]:
            try:
                p.mkdir(parents=True, exist_ok=True)
                test = p / ".write_test"
                test.write_text("ok", encoding="utf-8")
                test.unlink(missing_ok=True)
            except OSError as e:
                raise OSError(errno.EACCES, f"Not writeable: {p}") from e


# ---------- Singleton access ----------

_paths_singleton: Optional[Paths] = None


def get_paths(force_refresh: bool = False) -> Paths:
    global _paths_singleton
    if force_refresh or _paths_singleton is None:
        _paths_singleton = Paths.from_sdk_if_available()
        _paths_singleton.ensure_all()
    return _paths_singleton


def ensure_session_io(name: str) -> Path:
    """Create the session directory and return its events file path."""
    paths = get_paths()
    paths.session_dir(name).mkdir(parents=True, exist_ok=True)
    return paths.session_events_path(name)
