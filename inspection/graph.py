"""Derive a processor tree from raw ``connect()`` edges.

The builder walks from every stream-originating source towards the sinks
with two visited sets: a per-path set that detects feedback loops, and a
global claimed set so that a node reached by two branches is rendered once,
under whichever branch got there first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterable, List, Optional, Sequence

from core.models import Connection, ProcessingSummary, ProcessorRecord

ROOT_SOURCE_TYPES = frozenset({"MediaStreamAudioSource"})

TERMINAL_KINDS: Dict[str, str] = {
    "AudioDestination": "speakers",
    "MediaStreamAudioDestination": "encoder",
}

# processor record type -> (connection type, category, label)
NODE_DISPLAY: Dict[str, tuple] = {
    "mediaStreamSource": ("MediaStreamAudioSource", "source", "Microphone"),
    "mediaElementSource": ("MediaElementAudioSource", "source", "Media Player"),
    "bufferSource": ("AudioBufferSource", "source", "Audio Buffer"),
    "oscillator": ("Oscillator", "source", "Tone Generator"),
    "gain": ("Gain", "effect", "Volume"),
    "biquadFilter": ("BiquadFilter", "effect", "Filter"),
    "dynamicsCompressor": ("DynamicsCompressor", "effect", "Compressor"),
    "convolver": ("Convolver", "effect", "Reverb"),
    "delay": ("Delay", "effect", "Delay"),
    "waveShaper": ("WaveShaper", "effect", "Distortion"),
    "stereoPanner": ("StereoPanner", "effect", "Panner"),
    "panner": ("Panner", "effect", "3D Panner"),
    "iirFilter": ("IIRFilter", "effect", "IIR Filter"),
    "analyser": ("Analyser", "analysis", "Analyzer"),
    "channelSplitter": ("ChannelSplitter", "channel", "Splitter"),
    "channelMerger": ("ChannelMerger", "channel", "Merger"),
    "audioWorkletNode": ("AudioWorklet", "processor", "Processor"),
    "scriptProcessor": ("ScriptProcessor", "processor", "Processor"),
    "mediaStreamDestination": ("MediaStreamAudioDestination", "destination", "Stream Output"),
}

EFFECT_TYPES = tuple(t for t, (_, category, _) in NODE_DISPLAY.items() if category == "effect")


@dataclass
class ProcessorTreeNode:
    """A rendered node: a processor, a terminal sink, a root source, or a synthetic fan-out."""

    kind: str
    node_id: Optional[str] = None
    node_type: Optional[str] = None
    processor: Optional[ProcessorRecord] = None
    terminal: Optional[str] = None
    children: List["ProcessorTreeNode"] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {"kind": self.kind, "node_id": self.node_id, "node_type": self.node_type}
        if self.processor is not None:
            out["processor"] = self.processor.model_dump()
        if self.terminal is not None:
            out["terminal"] = self.terminal
        out["children"] = [c.to_dict() for c in self.children]
        return out

    def walk(self) -> Iterable["ProcessorTreeNode"]:
        yield self
        for child in self.children:
            yield from child.walk()


class _TreeBuilder:
    def __init__(self, connections: Sequence[Connection], processors: Sequence[ProcessorRecord]) -> None:
        self.records: Dict[str, ProcessorRecord] = {p.node_id: p for p in processors if p.node_id}
        self.adjacency: Dict[str, List[str]] = {}
        self.types: Dict[str, str] = {}
        self.roots: List[str] = []
        self.claimed: set = set()

        seen = set()
        for conn in connections:
            if not conn.source_id or not conn.dest_id or conn.is_param_edge:
                continue
            key = (conn.source_id, conn.dest_id)
            if key in seen:
                continue
            seen.add(key)
            self.adjacency.setdefault(conn.source_id, []).append(conn.dest_id)
            if conn.source_type:
                self.types.setdefault(conn.source_id, conn.source_type)
            if conn.dest_type:
                self.types.setdefault(conn.dest_id, conn.dest_type)
            if conn.source_type in ROOT_SOURCE_TYPES and conn.source_id not in self.roots:
                self.roots.append(conn.source_id)

    def build(self) -> Optional[ProcessorTreeNode]:
        trees = []
        for root in self.roots:
            node = self._visit(root, frozenset())
            if node is not None:
                trees.append(node)
        return _collapse(trees)

    def _visit(self, node_id: str, path: FrozenSet[str]) -> Optional[ProcessorTreeNode]:
        if node_id in path or node_id in self.claimed:
            return None
        self.claimed.add(node_id)
        node = self._render(node_id, path)
        if node is None:
            # nothing rendered here; a later branch may still reach this node
            self.claimed.discard(node_id)
        return node

    def _render(self, node_id: str, path: FrozenSet[str]) -> Optional[ProcessorTreeNode]:
        node_type = self.types.get(node_id)

        terminal = TERMINAL_KINDS.get(node_type or "")
        if terminal is not None:
            return ProcessorTreeNode(kind="terminal", node_id=node_id, node_type=node_type, terminal=terminal)

        here = path | {node_id}
        neighbours = self.adjacency.get(node_id, [])
        children: List[ProcessorTreeNode] = []
        forward = 0
        for nxt in neighbours:
            if nxt in here:
                continue  # feedback
            forward += 1
            child = self._visit(nxt, here)
            if child is not None:
                children.append(child)

        record = self.records.get(node_id)
        if node_type in ROOT_SOURCE_TYPES:
            return ProcessorTreeNode(
                kind="source", node_id=node_id, node_type=node_type, processor=record, children=children
            )
        if record is None:
            # unknown node: never rendered, its branches move up
            return _collapse(children)
        if neighbours and not forward:
            return None
        return ProcessorTreeNode(
            kind="processor", node_id=node_id, node_type=node_type, processor=record, children=children
        )


def _collapse(nodes: List[ProcessorTreeNode]) -> Optional[ProcessorTreeNode]:
    if not nodes:
        return None
    if len(nodes) == 1:
        return nodes[0]
    return ProcessorTreeNode(kind="fanout", children=nodes)


def derive_processor_tree(
    connections: Sequence[Connection], processors: Sequence[ProcessorRecord]
) -> Optional[ProcessorTreeNode]:
    """Return the rooted processor tree for one context, or ``None`` without usable edges."""

    if not connections:
        return None
    return _TreeBuilder(connections, processors).build()


def flatten_processor_tree(tree: Optional[ProcessorTreeNode]) -> List[ProcessorRecord]:
    """Pre-order list of processor records, each node id at most once."""

    if tree is None:
        return []
    out: List[ProcessorRecord] = []
    seen = set()
    for node in tree.walk():
        if node.node_id is not None:
            if node.node_id in seen:
                continue
            seen.add(node.node_id)
        if node.kind == "processor" and node.processor is not None:
            out.append(node.processor)
    return out


def format_worklet_name(name: Optional[str]) -> str:
    if not name:
        return "processor"
    for suffix in ("-processor", "-encoder", "-worklet"):
        if name.endswith(suffix):
            return name[: -len(suffix)]
    return name


def _is_bypass_gain(record: ProcessorRecord) -> bool:
    value = record.params.get("gainValue")
    return value is None or abs(float(value) - 1.0) < 0.001


def extract_processing_info(processors: Sequence[ProcessorRecord]) -> ProcessingSummary:
    worklet = next((p for p in processors if p.type == "audioWorkletNode"), None)
    script = next((p for p in processors if p.type == "scriptProcessor"), None)
    if worklet is not None:
        processing: Optional[str] = f"Worklet({format_worklet_name(worklet.params.get('processorName'))})"
    elif script is not None:
        processing = "ScriptProcessor"
    else:
        processing = None

    effects: List[str] = []
    for record in processors:
        if record.type not in EFFECT_TYPES:
            continue
        if record.type == "gain" and _is_bypass_gain(record):
            continue
        label = NODE_DISPLAY[record.type][2]
        if label not in effects:
            effects.append(label)
    return ProcessingSummary(processing=processing, effects=effects, has_effects=bool(effects))


__all__ = [
    "NODE_DISPLAY",
    "ProcessorTreeNode",
    "ROOT_SOURCE_TYPES",
    "TERMINAL_KINDS",
    "derive_processor_tree",
    "extract_processing_info",
    "flatten_processor_tree",
    "format_worklet_name",
]
