# tests/unit/conftest.py
"""
Fake host used across the unit tests.

Hooks wrap classes in place, so every test builds its own set of classes
through make_host(); sharing them would leak wrappers between tests.
"""

import asyncio
import types
from typing import Any, Dict, List, Optional

import pytest

from core.instance_registry import InstanceRegistry
from hooks.capabilities import load_capability_table
from hooks.installer import HookInstaller
from sdk.config import SDK_CONFIG
from sdk.runtime import build_inspector


class AudioParam:
    def __init__(self, value: float = 1.0, name: str = "param"):
        self.value = value
        self.name = name


class AudioTrack:
    def __init__(self, label: str = "Built-in Microphone", **settings):
        self.kind = "audio"
        self.label = label
        self.settings = {"sampleRate": 48000, "channelCount": 1, "echoCancellation": True, **settings}

    def getSettings(self):
        return dict(self.settings)


class MediaStream:
    def __init__(self, stream_id: str = "mic-1", tracks=None):
        self.id = stream_id
        self.active = True
        self.tracks = [AudioTrack()] if tracks is None else list(tracks)

    def getAudioTracks(self):
        return [t for t in self.tracks if t.kind == "audio"]


def make_host() -> types.SimpleNamespace:
    class AudioNode:
        def __init__(self, context):
            self.context = context

        def connect(self, destination, output=0, input=0):
            return destination

    class GainNode(AudioNode):
        def __init__(self, context):
            super().__init__(context)
            self.gain = AudioParam(1.0, "gain")

    class BiquadFilterNode(AudioNode):
        def __init__(self, context):
            super().__init__(context)
            self.type = "lowpass"
            self.frequency = AudioParam(350.0, "frequency")

    class AnalyserNode(AudioNode):
        fftSize = 2048

    class ScriptProcessorNode(AudioNode):
        pass

    class MediaStreamAudioSourceNode(AudioNode):
        pass

    class MediaStreamAudioDestinationNode(AudioNode):
        pass

    class AudioDestinationNode(AudioNode):
        maxChannelCount = 2

    class MessagePort:
        def __init__(self):
            self.sent: List[Any] = []

        def postMessage(self, message):
            self.sent.append(message)

    class AudioWorklet:
        def __init__(self):
            self.modules: List[str] = []

        async def addModule(self, url):
            self.modules.append(url)

    class AudioWorkletNode(AudioNode):
        def __init__(self, context, name, options=None):
            super().__init__(context)
            self.port = MessagePort()

    class BaseAudioContext:
        def __init__(self, sampleRate=48000):
            self.sampleRate = sampleRate
            self.state = "running"
            self.baseLatency = 0.01
            self.outputLatency = 0.02
            self.destination = AudioDestinationNode(self)
            self.audioWorklet = AudioWorklet()

        def createGain(self):
            return GainNode(self)

        def createBiquadFilter(self):
            return BiquadFilterNode(self)

        def createAnalyser(self):
            return AnalyserNode(self)

        def createScriptProcessor(self, bufferSize=4096, inputs=2, outputs=2):
            return ScriptProcessorNode(self)

        def createMediaStreamSource(self, stream):
            return MediaStreamAudioSourceNode(self)

        def createMediaStreamDestination(self):
            return MediaStreamAudioDestinationNode(self)

    class AudioContext(BaseAudioContext):
        async def close(self):
            self.state = "closed"

    class Worker:
        def __init__(self, url):
            self.url = url
            self.terminated = False
            self.inbox: List[Any] = []

        def postMessage(self, message):
            self.inbox.append(message)

        def terminate(self):
            self.terminated = True

    class MediaDevices:
        def __init__(self):
            self.issued = 0

        async def getUserMedia(self, constraints):
            self.issued += 1
            return MediaStream(f"mic-{self.issued}")

    class MediaRecorder:
        def __init__(self, stream, options=None):
            options = options or {}
            self.stream = stream
            self.mimeType = options.get("mimeType", "")
            self.audioBitsPerSecond = options.get("audioBitsPerSecond")
            self.state = "inactive"

        def start(self, timeslice=None):
            self.state = "recording"

        def stop(self):
            self.state = "inactive"

    class Blob:
        def __init__(self, parts=(), options=None):
            self.size = sum(len(p) for p in parts)
            self.type = (options or {}).get("type", "")

    class RTCPeerConnection:
        def __init__(self, configuration=None):
            self.connectionState = "new"
            self.iceConnectionState = "new"
            self.report: Dict[str, Dict[str, Any]] = {}

        async def getStats(self):
            return dict(self.report)

        async def setRemoteDescription(self, description):
            self.remoteDescription = description

        def close(self):
            self.connectionState = "closed"

    host = types.SimpleNamespace(
        AudioNode=AudioNode,
        AudioParam=AudioParam,
        BaseAudioContext=BaseAudioContext,
        AudioContext=AudioContext,
        AudioWorklet=AudioWorklet,
        AudioWorkletNode=AudioWorkletNode,
        Worker=Worker,
        MediaDevices=MediaDevices,
        MediaRecorder=MediaRecorder,
        Blob=Blob,
        RTCPeerConnection=RTCPeerConnection,
    )
    host.mediaDevices = MediaDevices()
    return host


def run(coro):
    return asyncio.run(coro)


def of_kind(events: List[Any], kind: str) -> List[Any]:
    return [e for e in events if e.kind == kind]


def meta_states(events: List[Any], observer: Optional[str] = None) -> List[str]:
    return [
        e.payload["state"]
        for e in of_kind(events, "meta")
        if "state" in e.payload and (observer is None or e.payload.get("observer") == observer)
    ]


@pytest.fixture
def host():
    return make_host()


@pytest.fixture
def table():
    return load_capability_table(SDK_CONFIG.capability_table)


@pytest.fixture
def registry(table):
    reg = InstanceRegistry(table.family_specs())
    return reg


@pytest.fixture
def installer(registry, table):
    return HookInstaller(registry, table)


@pytest.fixture
def events():
    return []


@pytest.fixture
def inspector(host, events):
    return build_inspector(host, sink=events.append, session_id="sess-1")


def sdp_offer(codec: str = "opus", clock: int = 48000, channels: int = 2, fmtp: Dict[str, int] = None) -> str:
    fmtp = fmtp if fmtp is not None else {"minptime": 10, "useinbandfec": 1, "maxaveragebitrate": 32000}
    lines = [
        "v=0",
        "o=- 0 0 IN IP4 127.0.0.1",
        "s=-",
        "m=audio 9 UDP/TLS/RTP/SAVPF 111 0",
        f"a=rtpmap:111 {codec}/{clock}/{channels}",
        "a=fmtp:111 " + ";".join(f"{k}={v}" for k, v in fmtp.items()),
        "a=rtpmap:0 PCMU/8000",
    ]
    return "\r\n".join(lines) + "\r\n"
