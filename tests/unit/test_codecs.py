import pytest

from conftest import sdp_offer
from core.codecs import (
    encoder_from_url,
    looks_like_encoder,
    opus_application_name,
    parse_fmtp,
    parse_mime_type,
    parse_sdp_audio,
)


@pytest.mark.parametrize(
    "mime, container, codec",
    [
        ("audio/webm;codecs=opus", "webm", "opus"),
        ('audio/ogg; codecs="vorbis"', "ogg", "vorbis"),
        ("audio/opus", None, "opus"),
        ("audio/mp4", "mp4", None),
        ("AUDIO/WEBM;CODECS=OPUS", "webm", "opus"),
    ],
)
def test_parse_mime_type(mime, container, codec):
    parsed = parse_mime_type(mime)
    assert (parsed["container"], parsed["codec"]) == (container, codec)
    assert parsed["type"] == "audio"
    assert parsed["raw"] == mime


def test_parse_mime_type_empty():
    assert parse_mime_type(None) == {"type": None, "container": None, "codec": None, "raw": None}


def test_parse_fmtp_skips_garbage():
    assert parse_fmtp("minptime=10; useinbandfec=1;stereo;bad=x") == {"minptime": 10, "useinbandfec": 1}
    assert parse_fmtp(None) == {}


def test_parse_sdp_audio_uses_first_payload():
    parsed = parse_sdp_audio(sdp_offer())
    assert parsed["codec"] == "opus"
    assert (parsed["sample_rate"], parsed["channels"], parsed["bitrate"]) == (48000, 2, 32000)
    assert parsed["fmtp"]["useinbandfec"] == 1


def test_parse_sdp_audio_without_channel_count_or_audio():
    sdp = "v=0\r\nm=audio 9 RTP/AVP 0\r\na=rtpmap:0 PCMU/8000\r\n"
    parsed = parse_sdp_audio(sdp)
    assert (parsed["codec"], parsed["channels"], parsed["bitrate"]) == ("pcmu", 1, 0)

    assert parse_sdp_audio("v=0\r\nm=video 9 RTP/AVP 96\r\na=rtpmap:96 VP8/90000\r\n") is None
    assert parse_sdp_audio("") is None


def test_parse_sdp_audio_ignores_later_sections():
    sdp = sdp_offer() + "m=audio 9 RTP/AVP 8\r\na=rtpmap:8 PCMA/8000\r\n"
    assert parse_sdp_audio(sdp)["codec"] == "opus"


def test_opus_application_names():
    assert opus_application_name(2048) == "VoIP"
    assert opus_application_name("2051") == "LowDelay"
    assert opus_application_name(7) is None
    assert opus_application_name(None) is None


def test_encoder_from_url():
    assert encoder_from_url("/static/lame.min.js") == ("lamejs", "mp3")
    assert encoder_from_url("https://cdn/opus-recorder/encoderWorker.min.js") == ("opus-recorder", "opus")
    assert encoder_from_url("/worker.js") == (None, None)
    assert encoder_from_url(None) == (None, None)


def test_looks_like_encoder():
    assert looks_like_encoder("OpusEncoderProcessor")
    assert not looks_like_encoder("meter")
    assert not looks_like_encoder(None)
