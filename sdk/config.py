from __future__ import annotations
from pydantic import BaseModel, Field
from pathlib import Path
from typing import Optional
import os

class Paths(BaseModel):
    repo_root: Path = Field(default_factory=lambda: Path(__file__).resolve().parents[1])
    data_root: Path = Field(default_factory=lambda: Path(os.getenv('AUDIOINSPECTOR_DATA_ROOT', 'data')))
    logs_root: Path = Field(default_factory=lambda: Path(os.getenv('AUDIOINSPECTOR_LOGS_ROOT', 'logs')))

def _default_capability_table() -> Path:
    bundled = Path(__file__).resolve().parents[1] / "config" / "capabilities.json"
    return Path(os.getenv('AUDIOINSPECTOR_CAPABILITIES', bundled))

class AppConfig(BaseModel):
    paths: Paths = Field(default_factory=Paths)
    capability_table: Path = Field(default_factory=_default_capability_table)
    log_level: str = Field(default_factory=lambda: os.getenv('AUDIOINSPECTOR_LOG_LEVEL', 'INFO'))
    # bounded buffers
    deferred_max_items: int = 256
    deferred_ttl_ms: Optional[int] = None
    signal_buffer_size: int = 16
    stats_poll_interval_ms: int = 1000
    plugins: dict = Field(default_factory=lambda: {
        "writer.events": "plugins.writers.jsonl.impl:JsonlEventWriter"
    })

SDK_CONFIG = AppConfig()
