from __future__ import annotations
import logging
from pathlib import Path
from typing import Any, Optional

from config.paths import get_paths
from core.events import EventSink
from core.instance_registry import InstanceRegistry
from hooks.capabilities import load_capability_table
from hooks.installer import HookInstaller
from inspection.session_manager import PipelineInspector
from .config import SDK_CONFIG, AppConfig
from .ids import new_ulid
from .registry import REGISTRY, Registry

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_logger = logging.getLogger(__name__)


def configure_logging(level: str | int | None = None) -> None:
    level = level if level is not None else SDK_CONFIG.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


def build_inspector(
    host: Any = None,
    sink: Optional[EventSink] = None,
    config: Optional[AppConfig] = None,
    *,
    session_id: Optional[str] = None,
) -> PipelineInspector:
    """Load the capability table, hook ``host`` and return an idle inspector.

    Table errors raise :class:`~hooks.capabilities.CapabilityTableError`
    here, before anything in the host has been touched.
    """
    cfg = config or SDK_CONFIG
    table = load_capability_table(cfg.capability_table)
    registry = InstanceRegistry()
    installer = HookInstaller(registry, table)
    inspector = PipelineInspector(
        registry, sink, config=cfg, installer=installer, session_id=session_id or new_ulid()
    )
    if host is not None:
        installer.install_early(host)
    return inspector


class Session:
    """An inspector whose events land in ``<sessions>/<name>/events.jsonl``."""
    def __init__(self, host: Any, name: str | None = None, config: Optional[AppConfig] = None,
                 plugins: Optional[Registry] = None):
        self.session_id = new_ulid()
        self.name = name or self.session_id
        self.session_dir: Path = get_paths().session_dir(self.name)
        self.session_dir.mkdir(parents=True, exist_ok=True)
        self.writer = (plugins or REGISTRY).create("writer.events")
        self.writer.open(self.session_dir / "events.jsonl")
        self.inspector = build_inspector(host, self.writer.write, config, session_id=self.session_id)
    def start(self):
        self.inspector.enable()
        _logger.info("session %s writing to %s", self.name, self.session_dir)
    def reset(self, kind: str = "soft"):
        return self.inspector.reset_session(kind, self.session_id)
    def stop(self):
        self.inspector.disable()
        self.writer.close()
