"""Recognise encoder initialisation in worker and worklet messages.

Each detector returns plain ``dict`` records so they can sit in a registry
entry's pending list until an observer turns them into
:class:`~core.models.EncoderSignal` objects.
"""

from __future__ import annotations

from typing import Any, Dict, Mapping, Optional

from core.codecs import encoder_from_url, opus_application_name
from core.models import EncoderSignal

# detection-method tag -> priority; higher wins
PATTERN_PRIORITY: Dict[str, int] = {
    "rtc-handshake": 6,
    "audioworklet-config": 5,
    "audioworklet-init": 4,
    "audioworklet-deferred": 4,
    "direct": 4,
    "nested": 4,
    "worker-init": 3,
    "worker-audio-init": 3,
    "media-recorder": 3,
    "audio-blob": 2,
    "unknown": 1,
}

POST_HOC_TAG = "audio-blob"

ENCODE_COMMANDS = ("encode", "encodeAudio", "process")

DEFAULT_ENCODERS = {
    "opus": "opus-recorder",
    "mp3": "lamejs",
    "aac": "fdk-aac.js",
    "vorbis": "vorbis.js",
    "flac": "libflac.js",
}

_NAMED_CODECS = ("opus", "mp3", "aac", "vorbis", "flac")


def priority_of(tag: Optional[str]) -> int:
    return PATTERN_PRIORITY.get(tag or "unknown", PATTERN_PRIORITY["unknown"])


def _has(msg: Mapping[str, Any], *keys: str) -> bool:
    return any(msg.get(k) is not None for k in keys)


def detect_codec_type(msg: Mapping[str, Any]) -> str:
    codec = msg.get("codec")
    if isinstance(codec, str) and codec:
        return codec.lower()
    kind = msg.get("type")
    if isinstance(kind, str) and kind.lower() in _NAMED_CODECS:
        return kind.lower()

    if _has(msg, "encoderApplication"):
        return "opus"
    if _has(msg, "mp3BitRate", "mp3Mode", "lameConfig", "vbrQuality", "kbps"):
        return "mp3"
    if _has(msg, "aacProfile", "aacObjectType", "afterburner", "signallingMode"):
        return "aac"
    if _has(msg, "vorbisQuality", "vorbisMode"):
        return "vorbis"
    if _has(msg, "flacCompression", "flacBlockSize", "verifyEncoding"):
        return "flac"
    return "unknown"


def _container_from_hint(hint: str) -> Optional[str]:
    hint = hint.lower()
    for needle, container in (
        ("ogg", "ogg"),
        ("webm", "webm"),
        ("mp4", "mp4"),
        ("m4a", "mp4"),
        ("mp3", "mp3"),
        ("mpeg", "mp3"),
        ("lame", "mp3"),
        ("aac", "aac"),
        ("wav", "wav"),
        ("flac", "flac"),
    ):
        if needle in hint:
            return container
    return None


def detect_container(msg: Mapping[str, Any]) -> Optional[str]:
    if _has(msg, "streamPages", "maxFramesPerPage", "maxBuffersPerPage", "resampleQuality"):
        return "ogg"
    for key in ("mimeType", "encoderPath"):
        value = msg.get(key)
        if isinstance(value, str) and value:
            found = _container_from_hint(value)
            if found:
                return found
    if _has(msg, "webmDuration", "clusterTimecode"):
        return "webm"
    if _has(msg, "mp3BitRate", "mp3Mode", "lameConfig"):
        return "mp3"
    if _has(msg, "aacProfile", "aacObjectType"):
        return "aac"
    if _has(msg, "flacCompression", "flacBlockSize"):
        return "flac"
    if _has(msg, "wavFormat"):
        return "wav"
    return None


def detect_encoder_name(msg: Mapping[str, Any], codec: Optional[str] = None, hint: Optional[str] = None) -> Optional[str]:
    path = msg.get("encoderPath") or msg.get("wasmPath") or hint
    encoder, _ = encoder_from_url(path if isinstance(path, str) else None)
    if encoder:
        return encoder
    return DEFAULT_ENCODERS.get(codec or "")


def _signal(
    config: Mapping[str, Any],
    *,
    tag: str,
    source: str,
    sample_rate: Any,
    bitrate: Any,
    channels: Any,
    hint: Optional[str] = None,
) -> Dict[str, Any]:
    codec = detect_codec_type(config)
    application = config.get("encoderApplication", config.get("application"))
    return {
        "type": "encoder_signal",
        "signal": {
            "codec": codec,
            "container": detect_container(config),
            "encoder": detect_encoder_name(config, codec, hint),
            "sample_rate": _as_int(sample_rate),
            "bitrate": _as_int(bitrate) or 0,
            "channels": _as_int(channels),
            "application": opus_application_name(application) if application is not None else None,
            "frame_size": config.get("encoderFrameSize"),
            "detection_method": tag,
            "source": source,
            "status": "initialized",
        },
    }


def _as_int(value: Any) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def classify_worker_message(msg: Any, worker_url: Optional[str] = None) -> Optional[Dict[str, Any]]:
    """Classify a message posted to a worker.

    Returns an ``encoder_signal`` record for recognised init messages, an
    ``encode_command`` record for per-buffer encode calls, or ``None``.
    """

    if not isinstance(msg, Mapping):
        return None

    command = msg.get("command")
    nested = msg.get("message") if isinstance(msg.get("message"), Mapping) else {}

    if command == "init" and _has(msg, "encoderSampleRate", "sampleRate"):
        return _signal(
            msg,
            tag="direct",
            source="worker-postmessage",
            sample_rate=msg.get("encoderSampleRate") or msg.get("sampleRate"),
            bitrate=msg.get("encoderBitRate") or msg.get("bitRate") or msg.get("mp3BitRate"),
            channels=msg.get("numberOfChannels") or msg.get("channels") or 1,
            hint=worker_url,
        )

    if msg.get("type") == "message" and nested.get("command") == "encode-init" and isinstance(nested.get("config"), Mapping):
        config = nested["config"]
        return _signal(
            config,
            tag="nested",
            source="worker-postmessage",
            sample_rate=config.get("encoderSampleRate") or config.get("sampleRate"),
            bitrate=config.get("bitRate") or config.get("encoderBitRate") or config.get("mp3BitRate"),
            channels=config.get("numberOfChannels") or config.get("channels") or 1,
            hint=worker_url,
        )

    if msg.get("cmd") == "init" or command == "initialize":
        config = msg.get("config") if isinstance(msg.get("config"), Mapping) else msg
        if not _has(config, "sampleRate"):
            return None
        codec_fields = detect_codec_type(config) != "unknown"
        return _signal(
            config,
            tag="worker-init" if codec_fields else "worker-audio-init",
            source="worker-postmessage",
            sample_rate=config.get("sampleRate"),
            bitrate=config.get("bitRate") or (config["kbps"] * 1000 if isinstance(config.get("kbps"), int) else None),
            channels=config.get("channels") or config.get("numChannels"),
            hint=worker_url,
        )

    if command in ENCODE_COMMANDS or msg.get("cmd") in ENCODE_COMMANDS or nested.get("command") in ENCODE_COMMANDS:
        return {"type": "encode_command"}
    return None


def classify_worklet_message(msg: Any, processor_name: Optional[str]) -> Optional[Dict[str, Any]]:
    """Classify a message posted to an ``AudioWorkletNode`` port."""

    if not isinstance(msg, Mapping):
        return None

    config = msg.get("config") if isinstance(msg.get("config"), Mapping) else None
    if _has(msg, "encoderSampleRate", "encoderBitRate") or (config and _has(config, "sampleRate", "bitRate")):
        config = config or msg
        record = _signal(
            config,
            tag="audioworklet-config",
            source="audioworklet-port",
            sample_rate=config.get("encoderSampleRate") or config.get("sampleRate"),
            bitrate=config.get("encoderBitRate") or config.get("bitRate") or config.get("mp3BitRate"),
            channels=config.get("numberOfChannels") or config.get("channels") or 1,
            hint=processor_name,
        )
    elif (msg.get("type") == "init" or msg.get("init") is True) and _has(msg, "sampleRate", "rate"):
        _, codec = encoder_from_url(processor_name)
        record = _signal(
            {"codec": codec} if codec else {},
            tag="audioworklet-init",
            source="audioworklet-port",
            sample_rate=msg.get("sampleRate") or msg.get("rate"),
            bitrate=msg.get("bitRate") or msg.get("bitrate"),
            channels=msg.get("channels") or msg.get("channelCount") or 1,
            hint=processor_name,
        )
    elif msg.get("command") in ENCODE_COMMANDS or msg.get("type") in ENCODE_COMMANDS:
        return {"type": "encode_command"}
    else:
        return None

    record["signal"]["processor_name"] = processor_name
    return record


def detect_message_pattern(msg: Any, *, port: bool = False, hint: Optional[str] = None) -> Optional[str]:
    """Return the detection tag for a worker (or worklet-port) message.

    Per-buffer encode commands map to ``"encode"``; unrecognised messages to ``None``.
    """

    record = classify_worklet_message(msg, hint) if port else classify_worker_message(msg, hint)
    if record is None:
        return None
    if record["type"] == "encode_command":
        return "encode"
    return record["signal"]["detection_method"]


def signal_from_message(record: Mapping[str, Any], **extra: Any) -> Optional[EncoderSignal]:
    if record.get("type") != "encoder_signal":
        return None
    fields = dict(record.get("signal") or {})
    fields.update({k: v for k, v in extra.items() if v is not None})
    return EncoderSignal(**fields)


__all__ = [
    "PATTERN_PRIORITY",
    "POST_HOC_TAG",
    "classify_worker_message",
    "classify_worklet_message",
    "detect_codec_type",
    "detect_container",
    "detect_encoder_name",
    "detect_message_pattern",
    "priority_of",
    "signal_from_message",
]
