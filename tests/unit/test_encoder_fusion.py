import itertools

import pytest

from core.models import EncoderSignal
from inspection.encoder_fusion import EncoderFusionEngine, measured_bitrate
from inspection.encoder_patterns import PATTERN_PRIORITY


def post_hoc(**kw):
    return EncoderSignal(detection_method="audio-blob", **kw)


def direct(**kw):
    kw.setdefault("codec", "opus")
    kw.setdefault("bitrate", 64000)
    return EncoderSignal(detection_method="direct", **kw)


def test_post_hoc_then_direct_is_fully_replaced():
    engine = EncoderFusionEngine()
    engine.offer(post_hoc(codec="unknown", bitrate=0))
    engine.offer(direct())

    current = engine.current
    assert (current.codec, current.bitrate) == ("opus", 64000)
    assert current.detection_method == "direct"
    assert current.priority == 4


def test_direct_then_post_hoc_only_supplements():
    engine = EncoderFusionEngine()
    engine.offer(direct())
    changed = engine.offer(post_hoc(codec="unknown", bitrate=0, measured_size=8000, measured_duration=1.0))

    current = engine.current
    assert changed
    assert (current.codec, current.bitrate, current.detection_method) == ("opus", 64000, "direct")
    assert current.measured_bitrate == 64000


def test_post_hoc_measurements_refresh_on_every_update():
    engine = EncoderFusionEngine()
    engine.offer(direct())
    engine.offer(post_hoc(measured_size=4000, measured_duration=1.0))
    engine.offer(post_hoc(measured_size=16000, measured_duration=2.0))

    assert engine.current.measured_size == 16000
    assert engine.current.measured_bitrate == 64000


def test_post_hoc_onto_empty_state_is_kept_as_is():
    engine = EncoderFusionEngine()
    engine.offer(post_hoc(codec="opus", container="webm", measured_size=1000, measured_duration=0.5))

    current = engine.current
    assert current.detection_method == "audio-blob"
    assert current.priority == PATTERN_PRIORITY["audio-blob"]
    assert current.measured_bitrate == 16000


def test_replacement_keeps_earlier_measurements():
    engine = EncoderFusionEngine()
    engine.offer(post_hoc(measured_size=8000, measured_duration=1.0))
    engine.offer(direct())
    assert engine.current.measured_bitrate == 64000


def test_lower_priority_only_fills_unset_fields():
    engine = EncoderFusionEngine()
    engine.offer(EncoderSignal(detection_method="audioworklet-config", codec="opus", bitrate=0))
    engine.offer(EncoderSignal(detection_method="worker-init", codec="mp3", bitrate=128000, channels=1))

    current = engine.current
    assert current.codec == "opus"
    assert current.bitrate == 128000
    assert current.channels == 1
    assert current.detection_method == "audioworklet-config"


def test_equal_priority_last_writer_wins():
    engine = EncoderFusionEngine()
    engine.offer(EncoderSignal(detection_method="direct", codec="opus", bitrate=32000))
    engine.offer(EncoderSignal(detection_method="nested", codec="mp3", bitrate=128000))
    assert (engine.current.codec, engine.current.bitrate) == ("mp3", 128000)


def test_higher_priority_replaces_wholesale():
    engine = EncoderFusionEngine()
    engine.offer(EncoderSignal(detection_method="worker-init", codec="mp3", bitrate=128000, encoder="lamejs"))
    engine.offer(EncoderSignal(detection_method="rtc-handshake", codec="opus", bitrate=0))
    current = engine.current
    assert current.codec == "opus"
    assert current.encoder is None
    assert current.bitrate == 0


def test_identical_offer_reports_no_change():
    engine = EncoderFusionEngine()
    signal = direct()
    assert engine.offer(signal)
    assert not engine.offer(signal)


def test_mark_encoding_leaves_identity_alone():
    engine = EncoderFusionEngine()
    assert not engine.mark_encoding()
    engine.offer(direct(status="initialized"))
    before = engine.current

    assert engine.mark_encoding()
    assert not engine.mark_encoding()
    assert engine.current.status == "encoding"
    assert engine.current.codec == before.codec
    assert before.status == "initialized"


def test_clear_forgets_belief():
    engine = EncoderFusionEngine()
    engine.offer(direct())
    engine.clear()
    assert engine.current is None


SIGNALS = [
    post_hoc(codec="unknown", measured_size=2000, measured_duration=0.5),
    EncoderSignal(detection_method="worker-init", codec="mp3", bitrate=128000),
    direct(),
    EncoderSignal(detection_method="audioworklet-config", codec="opus", bitrate=48000),
    EncoderSignal(detection_method="rtc-handshake", codec="opus", bitrate=32000),
]


@pytest.mark.parametrize("order", list(itertools.permutations(range(len(SIGNALS)), 3)))
def test_retained_priority_never_decreases(order):
    engine = EncoderFusionEngine()
    seen = []
    for idx in order:
        engine.offer(SIGNALS[idx])
        seen.append(engine.current.priority)
    assert seen == sorted(seen)


def test_measured_bitrate_guards():
    assert measured_bitrate(None, 1.0) is None
    assert measured_bitrate(1000, 0) is None
    assert measured_bitrate(1000, 2.0) == 4000
