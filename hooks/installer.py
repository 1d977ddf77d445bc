"""Install interception on the host's capability table.

Hooks are installed once, as early as possible, and record into the
:class:`~core.instance_registry.InstanceRegistry` whether or not any observer
is listening yet. Every hook boundary is a catch barrier: the host call
always returns its original result, and a failing extractor or handler is
only logged.
"""

from __future__ import annotations

import contextlib
import functools
import inspect
import logging
import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

from core.instance_registry import CALL, CONSTRUCT, InstanceRegistry, RegistryEntry

from .capabilities import Capability, CapabilityTable, InstanceHook
from .extractors import EXTRACTORS, Extractor, HookCall

_logger = logging.getLogger(__name__)

HOOK_MARKER = "__audio_inspector_hook__"
INSTALL_FLAG = "__audio_inspector_installed__"

HookCallback = Callable[[Any, Tuple[Any, ...], Dict[str, Any]], None]

# serializes hook callbacks with the control verbs; host threads may call in concurrently
HOOK_LOCK = threading.RLock()


def _guarded(label: str, fn: Callable[..., Any], *args: Any) -> Any:
    try:
        return fn(*args)
    except Exception:
        _logger.exception("hook callback for %s failed", label)
        return None


def is_hooked(fn: Any) -> bool:
    return bool(getattr(fn, HOOK_MARKER, False))


def wrap_callable(original: Callable[..., Any], callback: HookCallback, label: str = "") -> Callable[..., Any]:
    """Return ``original`` with ``callback(result, args, kwargs)`` run after each call."""

    name = label or getattr(original, "__qualname__", repr(original))

    @functools.wraps(original)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        result = original(*args, **kwargs)
        with HOOK_LOCK:
            _guarded(name, callback, result, args, kwargs)
        return result

    setattr(wrapper, HOOK_MARKER, True)
    return wrapper


def wrap_async(original: Callable[..., Any], callback: HookCallback, label: str = "") -> Callable[..., Any]:
    """Async flavour of :func:`wrap_callable`; the callback runs once the awaited result is available."""

    name = label or getattr(original, "__qualname__", repr(original))

    @functools.wraps(original)
    async def wrapper(*args: Any, **kwargs: Any) -> Any:
        result = await original(*args, **kwargs)
        with HOOK_LOCK:
            _guarded(name, callback, result, args, kwargs)
        return result

    setattr(wrapper, HOOK_MARKER, True)
    return wrapper


class HookInstaller:
    """Wrap host constructors and methods listed in a :class:`CapabilityTable`."""

    def __init__(
        self,
        registry: InstanceRegistry,
        table: CapabilityTable,
        extractors: Optional[Dict[str, Extractor]] = None,
    ) -> None:
        self.registry = registry
        self.table = table
        self.extractors = extractors if extractors is not None else EXTRACTORS
        table.validate_extractors(self.extractors)
        for spec in table.family_specs():
            registry.configure_family(spec)

        self.installed = False
        self.hooked: List[str] = []
        self.missing: Dict[str, Capability] = {}
        self._warned: set = set()

    # ------------------------------------------------------------------
    # Installation
    # ------------------------------------------------------------------
    def install_early(self, host: Any) -> List[str]:
        """Hook every available capability once; later calls are no-ops."""

        if self.installed or getattr(host, INSTALL_FLAG, False):
            _logger.debug("hooks already installed on %r", host)
            return []

        hooked: List[str] = []
        for cap in self.table.capabilities:
            for target in cap.targets():
                if self._install_one(host, cap, target):
                    hooked.append(target)

        self.installed = True
        self.hooked.extend(hooked)
        with contextlib.suppress(AttributeError, TypeError):
            setattr(host, INSTALL_FLAG, True)
        _logger.info(
            "installed %d hooks (table %s); %d capabilities unavailable",
            len(hooked),
            self.table.version,
            len(self.missing),
        )
        return hooked

    def install_missing(self, host: Any) -> List[str]:
        """Retry capabilities that were absent at install time."""

        hooked = []
        for target, cap in list(self.missing.items()):
            if self._install_one(host, cap, target):
                hooked.append(target)
        self.hooked.extend(hooked)
        return hooked

    def _install_one(self, host: Any, cap: Capability, target: str) -> bool:
        container, name = self._resolve(host, target)
        if container is None or not hasattr(container, name):
            self._note_missing(cap, target)
            return False

        if cap.is_constructor:
            done = self._hook_constructor(container, name, cap, target)
        else:
            done = self._hook_method(container, name, cap, target)
        if done:
            self.missing.pop(target, None)
        return done

    @staticmethod
    def _resolve(host: Any, target: str) -> Tuple[Any, str]:
        *path, name = target.split(".")
        obj = host
        for part in path:
            obj = getattr(obj, part, None)
            if obj is None:
                return None, name
        return obj, name

    def _note_missing(self, cap: Capability, target: str) -> None:
        self.missing[target] = cap
        if target not in self._warned:
            self._warned.add(target)
            _logger.warning("capability %s not available in this host; skipping", target)

    def _hook_constructor(self, container: Any, name: str, cap: Capability, target: str) -> bool:
        ctor = getattr(container, name)
        if isinstance(ctor, type):
            own_init = ctor.__dict__.get("__init__")
            if own_init is not None and is_hooked(own_init):
                return False

            def on_init(_result: Any, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> None:
                self._on_construct(cap, target, args[0], args[1:], kwargs)

            ctor.__init__ = wrap_callable(ctor.__init__, on_init, label=target)
            return True

        if is_hooked(ctor):
            return False

        def on_factory(result: Any, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> None:
            self._on_construct(cap, target, result, args, kwargs)

        setattr(container, name, wrap_callable(ctor, on_factory, label=target))
        return True

    def _hook_method(self, container: Any, name: str, cap: Capability, target: str) -> bool:
        unbound = isinstance(container, type)
        if unbound:
            raw = inspect.getattr_static(container, name)
            if isinstance(raw, (staticmethod, classmethod)):
                self._note_missing(cap, target)
                return False
            original = raw
        else:
            original = getattr(container, name)
        if not callable(original):
            self._note_missing(cap, target)
            return False
        if is_hooked(original):
            return False

        def on_call(result: Any, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> None:
            if unbound:
                this, call_args = (args[0] if args else None), args[1:]
            else:
                this, call_args = container, args
            self._on_method(cap, target, this, call_args, kwargs, result)

        wrap = wrap_async if cap.kind == "async_method" else wrap_callable
        setattr(container, name, wrap(original, on_call, label=target))
        return True

    def _hook_instance(self, instance: Any, hook: InstanceHook, cap: Capability, entry: Optional[RegistryEntry]) -> None:
        target = f"{cap.target}#{hook.path}"
        container, name = self._resolve(instance, hook.path)
        original = getattr(container, name, None) if container is not None else None
        if original is None or not callable(original):
            self._note_missing(cap, target)
            return
        if is_hooked(original):
            return

        def on_call(result: Any, args: Tuple[Any, ...], kwargs: Dict[str, Any]) -> None:
            call = HookCall(
                target=target,
                this=container,
                args=args,
                kwargs=kwargs,
                result=result,
                identity=self.registry.identity,
                owner_metadata=entry.metadata if entry is not None else {},
            )
            record = self.extractors[hook.extractor](call)
            if record is not None:
                self._dispatch_call(cap.family, entry, record)

        wrap = wrap_async if hook.kind == "async_method" else wrap_callable
        with contextlib.suppress(AttributeError, TypeError):
            setattr(container, name, wrap(original, on_call, label=target))

    # ------------------------------------------------------------------
    # Interception callbacks
    # ------------------------------------------------------------------
    def _on_construct(
        self, cap: Capability, target: str, instance: Any, args: Tuple[Any, ...], kwargs: Dict[str, Any]
    ) -> None:
        if instance is None:
            return
        call = HookCall(
            target=target, this=instance, args=args, kwargs=kwargs, result=instance, identity=self.registry.identity
        )
        metadata = self.extractors[cap.extractor](call)
        if metadata is None:
            return

        stored = {k: v for k, v in metadata.items() if k != "owner_hint"}
        if cap.track:
            entry, created = self.registry.register(cap.family, instance, stored)
        else:
            entry, created = self.registry.transient_entry(cap.family, instance, stored), True
        if created:
            self._notify_construct(cap.family, entry)

        for hook in cap.instance_hooks:
            self._hook_instance(instance, hook, cap, entry if cap.track else None)

        if cap.owner_mode != "none":
            owner = self._resolve_owner(cap, instance, args, instance)
            self._dispatch_call(cap.routed_family, self._owner_entry(cap.routed_family, owner), dict(metadata))

    def _on_method(
        self,
        cap: Capability,
        target: str,
        this: Any,
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        result: Any,
    ) -> None:
        if cap.owner_mode == "result":
            self._on_construct(
                cap.model_copy(update={"owner": "none", "instance_hooks": []}), target, result, args, kwargs
            )
            return

        owner = self._resolve_owner(cap, this, args, result)
        entry = self._owner_entry(cap.routed_family, owner)
        call = HookCall(
            target=target,
            this=this,
            args=args,
            kwargs=kwargs,
            result=result,
            identity=self.registry.identity,
            owner_metadata=entry.metadata if entry is not None else {},
        )
        record = self.extractors[cap.extractor](call)
        if record is not None:
            self._dispatch_call(cap.routed_family, entry, record)

    def _resolve_owner(self, cap: Capability, this: Any, args: Tuple[Any, ...], result: Any) -> Any:
        mode = cap.owner_mode
        if mode == "self":
            return this
        if mode == "result":
            return result
        if mode.startswith("attr:"):
            return getattr(this, mode[len("attr:"):], None)
        if mode.startswith("arg:"):
            index = int(mode[len("arg:"):])
            return args[index] if len(args) > index else None
        if mode.startswith("lookup:"):
            key = mode[len("lookup:"):]
            found = self.registry.find_by(cap.routed_family, lambda e: getattr(e.instance, key, None) is this)
            return found.instance if found is not None else None
        return None

    def _owner_entry(self, family: str, owner: Any) -> Optional[RegistryEntry]:
        """Find the owner's entry, registering it as late-discovered if needed."""

        if owner is None:
            return None
        entry = self.registry.find(family, owner)
        if entry is not None:
            return entry

        ctor = self.table.constructor_for(family)
        metadata: Dict[str, Any] = {}
        if ctor is not None:
            call = HookCall(target=ctor.target, this=owner, result=owner, identity=self.registry.identity)
            metadata = _guarded(ctor.target, self.extractors[ctor.extractor], call) or {}
        entry, created = self.registry.register(family, owner, metadata, late=True)
        if created:
            _logger.debug("late-discovered %s in %s", entry.entry_id, family)
            self._notify_construct(family, entry)
        return entry

    def _notify_construct(self, family: str, entry: RegistryEntry) -> None:
        handler = self.registry.handler(family, CONSTRUCT)
        if handler is not None:
            _guarded(f"{family} construct handler", handler, entry)

    def _dispatch_call(self, family: str, entry: Optional[RegistryEntry], record: Dict[str, Any]) -> None:
        handler = self.registry.handler(family, CALL)
        if handler is not None:
            _guarded(f"{family} call handler", handler, entry, record)
        elif entry is not None:
            self.registry.append_pending(entry, record)
        else:
            self.registry.append_orphan(family, record)


__all__ = ["HOOK_MARKER", "HookInstaller", "is_hooked", "wrap_async", "wrap_callable"]
