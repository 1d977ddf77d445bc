"""Extraction functions referenced by name from the capability table.

An extractor receives the intercepted call and returns a plain ``dict``
record, or ``None`` when the call carries nothing worth recording. It must
tolerate missing attributes and arguments: the host may be older or newer
than this catalogue.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from core.codecs import parse_fmtp, parse_sdp_audio
from core.instance_registry import IdentityMap
from inspection.encoder_patterns import classify_worker_message, classify_worklet_message
from sdk.ids import now_monotonic_ns, now_ms


@dataclass
class HookCall:
    target: str
    this: Any
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    result: Any = None
    identity: IdentityMap = field(default_factory=IdentityMap)
    owner_metadata: Dict[str, Any] = field(default_factory=dict)

    def arg(self, index: int, default: Any = None) -> Any:
        if len(self.args) > index and self.args[index] is not None:
            return self.args[index]
        return default

    @property
    def method(self) -> str:
        return self.target.rsplit(".", 1)[-1]


Extractor = Callable[[HookCall], Optional[Dict[str, Any]]]

EXTRACTORS: Dict[str, Extractor] = {}


def extractor(name: str) -> Callable[[Extractor], Extractor]:
    def deco(fn: Extractor) -> Extractor:
        EXTRACTORS[name] = fn
        return fn

    return deco


def attr(obj: Any, *path: str, default: Any = None) -> Any:
    """``getattr`` along ``path``; mappings are indexed instead."""

    cur = obj
    for part in path:
        if cur is None:
            return default
        if isinstance(cur, Mapping):
            cur = cur.get(part)
        else:
            cur = getattr(cur, part, None)
    return default if cur is None else cur


def node_type_name(node: Any) -> str:
    name = type(node).__name__
    return name[: -len("Node")] if name.endswith("Node") and name != "Node" else name


def is_audio_param(obj: Any) -> bool:
    return "AudioParam" in type(obj).__name__


# ----------------------------------------------------------------------
# Contexts and processors
# ----------------------------------------------------------------------
@extractor("basic")
def basic(call: HookCall) -> Dict[str, Any]:
    return {"type": call.method, "timestamp": now_ms()}


@extractor("audio_context")
def audio_context(call: HookCall) -> Dict[str, Any]:
    ctx = call.this
    return {
        "sample_rate": attr(ctx, "sampleRate"),
        "channel_count": attr(ctx, "destination", "maxChannelCount"),
        "base_latency": attr(ctx, "baseLatency"),
        "output_latency": attr(ctx, "outputLatency"),
        "state": attr(ctx, "state"),
    }


@extractor("context_state")
def context_state(call: HookCall) -> Dict[str, Any]:
    return {"type": "context_state", "state": attr(call.this, "state", default="closed"), "timestamp": now_ms()}


ParamGetter = Callable[[HookCall, Any], Any]

# extractor name -> (record type, {param: getter(call, node)})
PROCESSOR_EXTRACTORS: Dict[str, Tuple[str, Dict[str, ParamGetter]]] = {
    "script_processor": ("scriptProcessor", {
        "bufferSize": lambda c, n: c.arg(0, 4096),
        "inputChannels": lambda c, n: c.arg(1, 2),
        "outputChannels": lambda c, n: c.arg(2, 2),
    }),
    "analyser": ("analyser", {"fftSize": lambda c, n: attr(n, "fftSize")}),
    "media_stream_source": ("mediaStreamSource", {"streamId": lambda c, n: attr(c.arg(0), "id")}),
    "media_stream_destination": ("mediaStreamDestination", {}),
    "gain": ("gain", {"gainValue": lambda c, n: attr(n, "gain", "value", default=1)}),
    "biquad_filter": ("biquadFilter", {
        "filterType": lambda c, n: attr(n, "type", default="lowpass"),
        "frequency": lambda c, n: attr(n, "frequency", "value"),
    }),
    "dynamics_compressor": ("dynamicsCompressor", {
        "threshold": lambda c, n: attr(n, "threshold", "value"),
        "ratio": lambda c, n: attr(n, "ratio", "value"),
    }),
    "oscillator": ("oscillator", {"oscillatorType": lambda c, n: attr(n, "type", default="sine")}),
    "delay": ("delay", {"maxDelayTime": lambda c, n: c.arg(0, 1)}),
    "convolver": ("convolver", {"normalize": lambda c, n: attr(n, "normalize")}),
    "wave_shaper": ("waveShaper", {"oversample": lambda c, n: attr(n, "oversample", default="none")}),
    "panner": ("panner", {"panningModel": lambda c, n: attr(n, "panningModel", default="equalpower")}),
    "stereo_panner": ("stereoPanner", {"pan": lambda c, n: attr(n, "pan", "value")}),
    "iir_filter": ("iirFilter", {"order": lambda c, n: len(c.arg(0, ()))}),
}


def _processor_extractor(record_type: str, getters: Dict[str, ParamGetter]) -> Extractor:
    def extract(call: HookCall) -> Optional[Dict[str, Any]]:
        node = call.result
        if node is None:
            return None
        return {
            "type": record_type,
            "node_id": call.identity.id_for(node, "node"),
            "timestamp": now_ms(),
            "params": {k: get(call, node) for k, get in getters.items()},
        }

    return extract


for _name, (_record_type, _getters) in PROCESSOR_EXTRACTORS.items():
    EXTRACTORS[_name] = _processor_extractor(_record_type, _getters)


@extractor("connect")
def connect(call: HookCall) -> Optional[Dict[str, Any]]:
    source, dest = call.this, call.arg(0)
    if source is None or dest is None:
        return None
    if is_audio_param(dest):
        dest_id = "param"
        dest_type = f"AudioParam({attr(dest, 'name', default='param')})"
    else:
        dest_id = call.identity.id_for(dest, "node")
        dest_type = node_type_name(dest)
    return {
        "type": "connection",
        "source_id": call.identity.id_for(source, "node"),
        "dest_id": dest_id,
        "source_type": node_type_name(source),
        "dest_type": dest_type,
        "output_index": call.arg(1, 0),
        "input_index": call.arg(2, 0),
        "timestamp": now_ms(),
    }


@extractor("worklet_module")
def worklet_module(call: HookCall) -> Optional[Dict[str, Any]]:
    url = call.arg(0)
    if not url:
        return None
    return {"type": "worklet_module", "url": str(url), "owner_hint": call.this, "timestamp": now_ms()}


@extractor("worklet_node")
def worklet_node(call: HookCall) -> Dict[str, Any]:
    return {
        "type": "audioWorkletNode",
        "node_id": call.identity.id_for(call.this, "node"),
        "timestamp": now_ms(),
        "params": {"processorName": call.arg(1)},
        "owner_hint": call.arg(0),
    }


@extractor("worklet_port_message")
def worklet_port_message(call: HookCall) -> Optional[Dict[str, Any]]:
    params = call.owner_metadata.get("params") or {}
    return classify_worklet_message(call.arg(0), params.get("processorName"))


# ----------------------------------------------------------------------
# Workers
# ----------------------------------------------------------------------
@extractor("worker")
def worker(call: HookCall) -> Dict[str, Any]:
    url = call.arg(0) or attr(call.this, "url")
    return {"url": str(url) if url is not None else None}


@extractor("worker_message")
def worker_message(call: HookCall) -> Optional[Dict[str, Any]]:
    return classify_worker_message(call.arg(0), call.owner_metadata.get("url"))


# ----------------------------------------------------------------------
# Recording and capture
# ----------------------------------------------------------------------
@extractor("media_recorder")
def media_recorder(call: HookCall) -> Dict[str, Any]:
    rec = call.this
    options = call.arg(1, {})
    return {
        "mime_type": attr(rec, "mimeType") or attr(options, "mimeType"),
        "audio_bits_per_second": attr(rec, "audioBitsPerSecond") or attr(options, "audioBitsPerSecond"),
        "state": attr(rec, "state", default="inactive"),
        "stream_id": attr(call.arg(0) or attr(rec, "stream"), "id"),
    }


@extractor("recorder_state")
def recorder_state(call: HookCall) -> Dict[str, Any]:
    fallback = "recording" if call.method == "start" else "inactive"
    return {
        "type": "recorder_state",
        "method": call.method,
        "state": attr(call.this, "state", default=fallback),
        "timestamp": now_ms(),
    }


@extractor("audio_blob")
def audio_blob(call: HookCall) -> Optional[Dict[str, Any]]:
    mime = attr(call.this, "type") or attr(call.arg(1), "type") or ""
    size = attr(call.this, "size", default=0)
    if not str(mime).startswith("audio/") or not size:
        return None
    return {
        "type": "audio_blob",
        "size": int(size),
        "mime_type": str(mime),
        "timestamp": now_ms(),
        "monotonic_ns": now_monotonic_ns(),
    }


@extractor("user_media")
def user_media(call: HookCall) -> Optional[Dict[str, Any]]:
    constraints = call.arg(0, {})
    audio = attr(constraints, "audio")
    if not audio or call.result is None:
        return None
    return {
        "stream_id": attr(call.result, "id"),
        "audio": True,
        "constraints": dict(constraints) if isinstance(constraints, Mapping) else {},
        "settings": track_settings(call.result),
    }


_TRACK_SETTINGS = {
    "sample_rate": "sampleRate",
    "sample_size": "sampleSize",
    "channel_count": "channelCount",
    "latency": "latency",
    "echo_cancellation": "echoCancellation",
    "auto_gain_control": "autoGainControl",
    "noise_suppression": "noiseSuppression",
    "voice_isolation": "voiceIsolation",
    "device_id": "deviceId",
    "group_id": "groupId",
}


def track_settings(stream: Any) -> Optional[Dict[str, Any]]:
    """Settings of the first audio track of ``stream``, or ``None`` without one."""

    get_tracks = getattr(stream, "getAudioTracks", None)
    tracks = get_tracks() if callable(get_tracks) else []
    if not tracks:
        return None
    track = tracks[0]
    get_settings = getattr(track, "getSettings", None)
    raw = get_settings() if callable(get_settings) else {}
    settings = {key: attr(raw, name) for key, name in _TRACK_SETTINGS.items()}
    settings["label"] = attr(track, "label")
    return {k: v for k, v in settings.items() if v is not None}


@extractor("peer_connection")
def peer_connection(call: HookCall) -> Dict[str, Any]:
    return {"state": attr(call.this, "connectionState", default="new")}


@extractor("rtc_stats")
def rtc_stats(call: HookCall) -> Optional[Dict[str, Any]]:
    report = call.result
    if report is None:
        return None
    stats = report.values() if hasattr(report, "values") else report

    codecs: Dict[str, Any] = {}
    found: Dict[str, Any] = {}
    stamp = None
    for stat in stats:
        kind = attr(stat, "type")
        if stamp is None:
            stamp = attr(stat, "timestamp")
        if kind == "codec":
            codecs[attr(stat, "id")] = stat
        elif attr(stat, "kind") == "audio" and kind in ("outbound-rtp", "inbound-rtp", "remote-inbound-rtp"):
            found[kind] = stat

    outbound, inbound = found.get("outbound-rtp"), found.get("inbound-rtp")
    rtp = outbound or inbound
    record: Dict[str, Any] = {
        "type": "rtc_stats",
        "timestamp": int(attr(rtp, "timestamp", default=stamp if stamp is not None else now_ms())),
        "connection_state": attr(call.this, "connectionState"),
        "ice_state": attr(call.this, "iceConnectionState"),
        "send": None,
        "recv": None,
        "rtt": attr(found.get("remote-inbound-rtp"), "roundTripTime"),
    }
    if outbound is not None:
        record["send"] = {
            **_rtp_codec(codecs.get(attr(outbound, "codecId"))),
            "bytes": attr(outbound, "bytesSent", default=0),
            "packets": attr(outbound, "packetsSent", default=0),
            "audio_level": attr(outbound, "audioLevel"),
        }
    if inbound is not None:
        record["recv"] = {
            **_rtp_codec(codecs.get(attr(inbound, "codecId"))),
            "bytes": attr(inbound, "bytesReceived", default=0),
            "packets": attr(inbound, "packetsReceived", default=0),
            "packets_lost": attr(inbound, "packetsLost", default=0),
            "jitter": attr(inbound, "jitter", default=0.0),
            "audio_level": attr(inbound, "audioLevel"),
        }
    return record


def _rtp_codec(codec: Any) -> Dict[str, Any]:
    mime = attr(codec, "mimeType")
    is_opus = bool(mime) and "opus" in str(mime).lower()
    return {
        "codec": mime,
        "payload_type": attr(codec, "payloadType"),
        "clock_rate": attr(codec, "clockRate"),
        "channels": attr(codec, "channels"),
        "opus_params": parse_fmtp(attr(codec, "sdpFmtpLine")) if is_opus else None,
    }


@extractor("remote_description")
def remote_description(call: HookCall) -> Optional[Dict[str, Any]]:
    parsed = parse_sdp_audio(attr(call.arg(0), "sdp"))
    if parsed is None:
        return None
    return {"type": "rtc_codec", **parsed, "timestamp": now_ms()}


__all__ = ["EXTRACTORS", "HookCall", "attr", "extractor", "node_type_name"]
