"""Codec string parsing: MIME types, SDP fmtp lines and encoder library hints."""

from __future__ import annotations

import re
from typing import Any, Dict, Optional, Tuple

DIRECT_CODECS = ("opus", "pcm", "aac", "mp3", "flac", "vorbis")

OPUS_APPLICATIONS = {2048: "VoIP", 2049: "Audio", 2051: "LowDelay"}

OPUS_FRAME_SIZES_MS = (2.5, 5, 10, 20, 40, 60)

# (substrings, encoder library, codec); first match wins
ENCODER_URL_HINTS: Tuple[Tuple[Tuple[str, ...], str, str], ...] = (
    (("lame", "mp3encoder"), "lamejs", "mp3"),
    (("opus",), "opus-recorder", "opus"),
    (("fdk", "aacencoder"), "fdk-aac.js", "aac"),
    (("vorbis", "oggencoder"), "vorbis.js", "vorbis"),
    (("flac",), "libflac.js", "flac"),
)

ENCODER_KEYWORDS = (
    "encoder", "opus", "ogg", "mp3", "aac", "vorbis", "flac",
    "lame", "wasm", "codec", "voice", "recorder",
)

_CODECS_PARAM = re.compile(r"codecs?=[\"']?([^\"',]+)", re.IGNORECASE)


def parse_mime_type(mime_type: Optional[str]) -> Dict[str, Optional[str]]:
    """Split ``audio/webm;codecs=opus`` into type, container and codec.

    A subtype that is itself a codec name (``audio/opus``) fills ``codec``
    and leaves ``container`` empty.
    """

    result: Dict[str, Optional[str]] = {"type": None, "container": None, "codec": None, "raw": mime_type}
    if not mime_type:
        return result

    type_container, _, codec_part = mime_type.partition(";")
    media_type, _, subtype = type_container.strip().partition("/")
    result["type"] = media_type.lower() or None
    subtype = subtype.strip().lower()
    if subtype:
        if subtype in DIRECT_CODECS:
            result["codec"] = subtype
        else:
            result["container"] = subtype

    match = _CODECS_PARAM.search(codec_part)
    if match:
        result["codec"] = match.group(1).strip().lower()
    return result


def parse_fmtp(line: Optional[str]) -> Dict[str, int]:
    """Parse ``minptime=10;useinbandfec=1`` into integer parameters."""

    params: Dict[str, int] = {}
    if not line:
        return params
    for pair in line.split(";"):
        key, sep, value = pair.strip().partition("=")
        if not sep or not key:
            continue
        try:
            params[key.lower()] = int(value)
        except ValueError:
            continue
    return params


def parse_sdp_audio(sdp: Optional[str]) -> Optional[Dict[str, Any]]:
    """Return the negotiated audio codec from an SDP blob, or ``None``.

    Only the first payload type of the first ``m=audio`` section is
    considered, since that is the one both peers settle on.
    """

    if not sdp:
        return None

    lines = [ln.strip() for ln in sdp.splitlines()]
    payload: Optional[str] = None
    in_audio = False
    rtpmap: Dict[str, str] = {}
    fmtp: Dict[str, str] = {}
    for ln in lines:
        if ln.startswith("m="):
            if in_audio:
                break
            parts = ln[2:].split()
            in_audio = bool(parts) and parts[0] == "audio"
            if in_audio and len(parts) > 3:
                payload = parts[3]
            continue
        if not in_audio:
            continue
        if ln.startswith("a=rtpmap:"):
            pt, _, desc = ln[len("a=rtpmap:"):].partition(" ")
            rtpmap[pt] = desc
        elif ln.startswith("a=fmtp:"):
            pt, _, desc = ln[len("a=fmtp:"):].partition(" ")
            fmtp[pt] = desc

    if payload is None or payload not in rtpmap:
        return None

    name, _, rest = rtpmap[payload].partition("/")
    clock, _, channels = rest.partition("/")
    params = parse_fmtp(fmtp.get(payload))
    return {
        "codec": name.lower(),
        "sample_rate": int(clock) if clock.isdigit() else None,
        "channels": int(channels) if channels.isdigit() else 1,
        "bitrate": params.get("maxaveragebitrate", 0),
        "fmtp": params,
    }


def opus_application_name(value: Any) -> Optional[str]:
    try:
        return OPUS_APPLICATIONS.get(int(value))
    except (TypeError, ValueError):
        return None


def encoder_from_url(url: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Guess ``(encoder_library, codec)`` from a worker or module URL."""

    if not url:
        return None, None
    lowered = url.lower()
    for needles, encoder, codec in ENCODER_URL_HINTS:
        if any(n in lowered for n in needles):
            return encoder, codec
    return None, None


def looks_like_encoder(name: Optional[str]) -> bool:
    if not name:
        return False
    lowered = name.lower()
    return any(k in lowered for k in ENCODER_KEYWORDS)


__all__ = [
    "DIRECT_CODECS",
    "OPUS_APPLICATIONS",
    "encoder_from_url",
    "looks_like_encoder",
    "opus_application_name",
    "parse_fmtp",
    "parse_mime_type",
    "parse_sdp_audio",
]
