"""Data model for tracked audio pipelines and encoder beliefs."""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from sdk.ids import now_ms


class ProcessorRecord(BaseModel):
    """One processing node created inside a context, keyed by ``node_id``."""

    type: str
    node_id: Optional[str] = None
    timestamp: int = Field(default_factory=now_ms)
    params: Dict[str, Any] = Field(default_factory=dict)


class PipelineState(BaseModel):
    """Mutable part of a context: what feeds it, where it goes, what sits in between."""

    input_source: Optional[str] = None
    destination_type: str = "speakers"
    processors: List[ProcessorRecord] = Field(default_factory=list)
    worklet_modules: List[str] = Field(default_factory=list)
    has_analyser: bool = False


class Context(BaseModel):
    """A tracked pipeline session.

    Static facts are captured once at creation; ``pipeline`` is rebuilt from
    intercepted calls and cleared on a hard session reset.
    """

    context_id: str
    created_ms: int = Field(default_factory=now_ms)
    sample_rate: Optional[float] = None
    channel_count: Optional[int] = None
    base_latency: Optional[float] = None
    output_latency: Optional[float] = None
    state: Optional[str] = None
    late_discovered: bool = False
    pipeline: PipelineState = Field(default_factory=PipelineState)

    def processor(self, node_id: str) -> Optional[ProcessorRecord]:
        for record in self.pipeline.processors:
            if record.node_id == node_id:
                return record
        return None

    def has_node(self, node_id: Optional[str]) -> bool:
        return node_id is not None and self.processor(node_id) is not None


class Connection(BaseModel):
    source_id: str
    dest_id: str
    source_type: Optional[str] = None
    dest_type: Optional[str] = None
    output_index: int = 0
    input_index: int = 0
    timestamp: int = Field(default_factory=now_ms)
    context_id: Optional[str] = None

    @property
    def is_param_edge(self) -> bool:
        return self.dest_id == "param" or (self.dest_type or "").startswith("AudioParam")


class EncoderSignal(BaseModel):
    """One detector's belief about the active encoding.

    Instances are immutable; the fusion engine swaps whole objects so that a
    reader of ``EncoderFusionEngine.current`` never observes a half-merged state.
    """

    model_config = ConfigDict(frozen=True)

    codec: str = "unknown"
    container: Optional[str] = None
    bitrate: int = 0
    channels: Optional[int] = None
    sample_rate: Optional[int] = None
    encoder: Optional[str] = None
    detection_method: str = "unknown"
    priority: int = 0

    application: Optional[str] = None
    frame_size: Optional[float] = None
    status: Optional[str] = None
    processor_name: Optional[str] = None
    worker_url: Optional[str] = None
    source: Optional[str] = None
    mime_type: Optional[str] = None

    measured_size: Optional[int] = None
    measured_duration: Optional[float] = None
    measured_bitrate: Optional[int] = None

    timestamp: int = Field(default_factory=now_ms)


class OrphanRecord(BaseModel):
    family: str
    reason: str
    record: Dict[str, Any] = Field(default_factory=dict)
    pending: bool = False


class RecorderInfo(BaseModel):
    recorder_id: str
    state: str = "inactive"
    mime_type: Optional[str] = None
    codec: Optional[str] = None
    container: Optional[str] = None
    audio_bits_per_second: Optional[int] = None
    total_bytes: int = 0
    chunks: int = 0
    duration_ms: float = 0.0


class TrackSettings(BaseModel):
    """What the host actually granted for the audio track, as opposed to what was asked."""

    sample_rate: Optional[int] = None
    sample_size: Optional[int] = None
    channel_count: Optional[int] = None
    latency: Optional[float] = None
    echo_cancellation: Optional[bool] = None
    auto_gain_control: Optional[bool] = None
    noise_suppression: Optional[bool] = None
    voice_isolation: Optional[bool] = None
    device_id: Optional[str] = None
    group_id: Optional[str] = None
    label: Optional[str] = None


class UserMediaInfo(BaseModel):
    stream_id: str
    audio: bool = True
    active: bool = True
    constraints: Dict[str, Any] = Field(default_factory=dict)
    settings: Optional[TrackSettings] = None


class RtpAudioStats(BaseModel):
    """One direction of an RTC audio stream, from a ``getStats`` report."""

    codec: Optional[str] = None
    payload_type: Optional[int] = None
    clock_rate: Optional[int] = None
    channels: Optional[int] = None
    opus_params: Optional[Dict[str, int]] = None
    bytes: int = 0
    packets: int = 0
    bitrate_kbps: Optional[int] = None
    packets_lost: Optional[int] = None
    jitter: Optional[float] = None
    audio_level: Optional[float] = None


class PeerConnectionInfo(BaseModel):
    connection_id: str
    state: Optional[str] = None
    ice_state: Optional[str] = None
    audio_codec: Optional[str] = None
    send: Optional[RtpAudioStats] = None
    recv: Optional[RtpAudioStats] = None
    rtt: Optional[float] = None
    stats_timestamp: Optional[int] = None


class ProcessingSummary(BaseModel):
    processing: Optional[str] = None
    effects: List[str] = Field(default_factory=list)
    has_effects: bool = False


__all__ = [
    "Connection",
    "Context",
    "EncoderSignal",
    "OrphanRecord",
    "PeerConnectionInfo",
    "PipelineState",
    "ProcessingSummary",
    "ProcessorRecord",
    "RecorderInfo",
    "RtpAudioStats",
    "TrackSettings",
    "UserMediaInfo",
]
