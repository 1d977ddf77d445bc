from __future__ import annotations
import time, ulid
NS_PER_MS = 1_000_000
def now_monotonic_ns() -> int: return time.monotonic_ns()
def now_ms() -> int: return time.time_ns() // NS_PER_MS
def new_ulid() -> str: return str(ulid.new())
