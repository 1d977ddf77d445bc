"""Versioned catalogue of hookable host capabilities.

The table is data: adding a capability means adding a row to
``config/capabilities.json``, provided the named extractor exists.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, ValidationError

from core.instance_registry import FamilySpec


class CapabilityTableError(ValueError):
    """Raised when the capability table cannot be loaded or is inconsistent."""


class FamilyConfig(BaseModel):
    id_prefix: str
    terminal_attr: Optional[str] = None
    terminal_values: List[Any] = Field(default_factory=list)


class InstanceHook(BaseModel):
    """Per-instance attribute wrapped right after construction, e.g. ``port.postMessage``."""

    path: str
    extractor: str
    kind: Literal["method", "async_method"] = "method"


class Capability(BaseModel):
    target: str
    kind: Literal["constructor", "method", "async_method"]
    family: str
    extractor: str = "basic"
    owner: Optional[str] = None
    owner_family: Optional[str] = None
    track: bool = True
    aliases: List[str] = Field(default_factory=list)
    instance_hooks: List[InstanceHook] = Field(default_factory=list)

    @property
    def is_constructor(self) -> bool:
        return self.kind == "constructor"

    @property
    def owner_mode(self) -> str:
        if self.owner:
            return self.owner
        return "none" if self.is_constructor else "self"

    @property
    def routed_family(self) -> str:
        return self.owner_family or self.family

    def targets(self) -> List[str]:
        return [self.target, *self.aliases]


class CapabilityTable(BaseModel):
    version: str
    families: Dict[str, FamilyConfig] = Field(default_factory=dict)
    capabilities: List[Capability] = Field(default_factory=list)

    def family_specs(self) -> List[FamilySpec]:
        return [
            FamilySpec(
                name=name,
                id_prefix=cfg.id_prefix,
                terminal_attr=cfg.terminal_attr,
                terminal_values=tuple(cfg.terminal_values),
            )
            for name, cfg in self.families.items()
        ]

    def constructor_for(self, family: str) -> Optional[Capability]:
        for cap in self.capabilities:
            if cap.is_constructor and cap.family == family:
                return cap
        return None

    def validate_extractors(self, known: Any) -> None:
        missing = sorted(
            {c.extractor for c in self.capabilities if c.extractor not in known}
            | {h.extractor for c in self.capabilities for h in c.instance_hooks if h.extractor not in known}
        )
        if missing:
            raise CapabilityTableError(f"unknown extractor(s) in capability table: {', '.join(missing)}")
        undeclared = sorted(
            {c.family for c in self.capabilities} | {c.routed_family for c in self.capabilities}
        )
        undeclared = [f for f in undeclared if f not in self.families]
        if undeclared:
            raise CapabilityTableError(f"capability families missing from table: {', '.join(undeclared)}")


def load_capability_table(path: Path) -> CapabilityTable:
    try:
        raw = json.loads(Path(path).read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as exc:
        raise CapabilityTableError(f"cannot read capability table {path}: {exc}") from exc
    try:
        return CapabilityTable.model_validate(raw)
    except ValidationError as exc:
        raise CapabilityTableError(f"invalid capability table {path}: {exc}") from exc


__all__ = [
    "Capability",
    "CapabilityTable",
    "CapabilityTableError",
    "FamilyConfig",
    "InstanceHook",
    "load_capability_table",
]
