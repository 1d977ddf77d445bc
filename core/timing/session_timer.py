from dataclasses import dataclass
from typing import Optional

from sdk.ids import now_monotonic_ns

NS_PER_MS = 1_000_000


@dataclass
class SessionTimer:
    """Monotonic wall of one recording session.

    ``elapsed_ms_at`` answers "how long had we been recording when this
    blob was created", so blobs replayed after the fact still get the
    duration they were produced at.
    """

    started_ns: int = 0
    stopped_ns: int = 0
    running: bool = False

    def start(self, at_ns: Optional[int] = None):
        self.started_ns = at_ns if at_ns is not None else now_monotonic_ns()
        self.stopped_ns = 0
        self.running = True

    def stop(self) -> float:
        if self.running:
            self.stopped_ns = now_monotonic_ns()
            self.running = False
        return self.elapsed_ms

    @property
    def started(self) -> bool:
        return self.started_ns != 0

    @property
    def elapsed_ms(self) -> float:
        return self.elapsed_ms_at(now_monotonic_ns())

    def elapsed_ms_at(self, at_ns: int) -> float:
        if not self.started:
            return 0.0
        end = at_ns if self.running else min(at_ns, self.stopped_ns)
        return max(0, end - self.started_ns) / NS_PER_MS
