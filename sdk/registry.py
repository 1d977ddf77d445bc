from __future__ import annotations
import logging
from importlib import import_module
from typing import Any, Mapping

_logger = logging.getLogger(__name__)

class Registry:
    """Plugin keys (``writer.events``) mapped to ``module:attr`` import targets."""
    def __init__(self, plugins: Mapping[str, str] | None = None):
        self._map: dict[str, str] = dict(plugins or {})
    def register(self, key: str, target: str) -> None:
        self._map[key] = target
    def target(self, key: str) -> str:
        return self._map.get(key, key)
    def resolve(self, key: str) -> Any:
        mod_path, _, obj = self.target(key).partition(":")
        mod = import_module(mod_path)
        return getattr(mod, obj) if obj else mod
    def create(self, key: str, *args, **kwargs):
        cls = self.resolve(key)
        _logger.debug("creating plugin %s -> %s", key, self.target(key))
        return cls(*args, **kwargs)
    def keys(self) -> list[str]:
        return sorted(self._map)

def _default_registry() -> Registry:
    from .config import SDK_CONFIG
    return Registry(SDK_CONFIG.plugins)

REGISTRY = _default_registry()
