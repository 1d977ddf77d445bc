import gc

from core.instance_registry import CALL, CONSTRUCT, FamilySpec, IdentityMap, InstanceRegistry


class Thing:
    def __init__(self, state="running"):
        self.state = state


def _registry():
    return InstanceRegistry([FamilySpec("audio_context", "ctx", "state", ("closed",))])


def test_identity_is_stable_per_instance():
    ids = IdentityMap()
    a, b = Thing(), Thing()
    assert ids.id_for(a, "ctx") == "ctx_1"
    assert ids.id_for(b, "ctx") == "ctx_2"
    assert ids.id_for(a, "ctx") == "ctx_1"
    assert ids.peek(b) == "ctx_2"
    assert ids.high_water_mark("ctx") == 2


def test_identity_counter_never_reuses_ids_after_collection():
    ids = IdentityMap()
    first = Thing()
    assert ids.id_for(first, "node") == "node_1"
    del first
    gc.collect()

    later = Thing()
    assert ids.id_for(later, "node") == "node_2"
    assert ids.high_water_mark("node") == 2


def test_identity_holds_non_weakrefable_objects():
    ids = IdentityMap()
    value = ("tuple", "cannot", "be", "weakly", "referenced")
    assert ids.id_for(value, "x") == ids.id_for(value, "x")


def test_register_is_idempotent_and_merges_metadata():
    reg = _registry()
    ctx = Thing()
    entry, created = reg.register("audio_context", ctx, {"sample_rate": 48000})
    again, created_again = reg.register("audio_context", ctx, {"state": "running"})

    assert created and not created_again
    assert again is entry
    assert entry.entry_id == "ctx_1"
    assert entry.metadata == {"sample_rate": 48000, "state": "running"}
    assert len(reg.get_all("audio_context")) == 1


def test_same_instance_keeps_id_after_being_cleared():
    reg = _registry()
    ctx = Thing()
    entry, _ = reg.register("audio_context", ctx)
    reg.clear_all("audio_context")

    back, created = reg.register("audio_context", ctx)
    assert created
    assert back.entry_id == entry.entry_id


def test_clear_closed_drops_terminal_entries():
    reg = _registry()
    live, closed = Thing(), Thing()
    reg.register("audio_context", live)
    reg.register("audio_context", closed)
    closed.state = "closed"

    assert reg.clear_closed("audio_context") == 1
    assert [e.instance for e in reg.get_all("audio_context")] == [live]


def test_collected_entries_without_pending_calls_are_pruned_on_register():
    reg = _registry()
    gone, busy = Thing(), Thing()
    reg.register("audio_context", gone)
    busy_entry, _ = reg.register("audio_context", busy)
    reg.append_pending(busy_entry, {"type": "processor"})
    del gone, busy
    gc.collect()

    keep = Thing()
    reg.register("audio_context", keep)

    entries = reg.get_all("audio_context")
    assert [e.entry_id for e in entries] == [busy_entry.entry_id, "ctx_3"]
    assert entries[0].instance is None


def test_pending_calls_drain_fifo_exactly_once():
    reg = _registry()
    entry, _ = reg.register("audio_context", Thing())
    for n in range(3):
        reg.append_pending(entry, {"type": "gain", "n": n})

    assert [r["n"] for r in reg.drain(entry)] == [0, 1, 2]
    assert reg.drain(entry) == []


def test_orphans_are_kept_per_family():
    reg = _registry()
    reg.append_orphan("audio_context", {"type": "connection"})
    assert reg.drain_orphans("audio_context") == [{"type": "connection"}]
    assert reg.drain_orphans("audio_context") == []
    assert reg.drain_orphans("worker") == []


def test_get_all_returns_a_snapshot():
    reg = _registry()
    reg.register("audio_context", Thing())
    snapshot = reg.get_all("audio_context")
    reg.register("audio_context", Thing())
    assert len(snapshot) == 1
    assert len(reg.get_all("audio_context")) == 2


def test_find_by_and_unknown_family():
    reg = _registry()
    ctx = Thing()
    ctx.audioWorklet = object()
    reg.register("audio_context", ctx)

    found = reg.find_by("audio_context", lambda e: e.instance.audioWorklet is ctx.audioWorklet)
    assert found is not None and found.instance is ctx
    assert reg.family("worker").id_prefix == "worker"


def test_handler_slots():
    reg = _registry()
    calls = []
    reg.set_handler("audio_context", CALL, lambda entry, record: calls.append(record))
    assert reg.handler("audio_context", CONSTRUCT) is None

    reg.handler("audio_context", CALL)(None, {"type": "gain"})
    reg.clear_handler("audio_context", CALL)
    assert calls == [{"type": "gain"}]
    assert reg.handler("audio_context", CALL) is None
