# flowguard/context.py
"""Explicit engine context: everything the entry points share across calls."""
from __future__ import annotations

import os
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generic, Hashable, Iterator, Optional, TypeVar, Union

from flowguard.catalog import ConfigValidator, NodeCatalog, SchemaConfigValidator, StaticNodeCatalog
from flowguard.catalog_defaults import default_catalog
from flowguard.model import Profile
from flowguard.utils.logger import get_logger
from flowguard.versioning.store import InMemoryVersionStore, VersionStore, WorkflowClient

log = get_logger("context")

DEFAULT_MAX_VERSIONS = 10

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class _KeyLock:
    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = threading.Lock()
        self.users = 0


class InstanceCache(Generic[K, V]):
    """
    Keyed cache of expensive instances (API clients).

    Lookups for the same key are serialized by a per-key lock, so two
    near-simultaneous `get_or_create` calls build at most one instance.
    Different keys never block each other beyond the short registry lock.
    """

    def __init__(self, on_evict: Optional[Callable[[K, V], None]] = None, max_size: Optional[int] = None):
        self._items: Dict[K, V] = {}
        self._key_locks: Dict[K, _KeyLock] = {}
        self._registry_lock = threading.Lock()
        self._on_evict = on_evict
        self._max_size = max_size

    @contextmanager
    def _locked(self, key: K) -> Iterator[None]:
        with self._registry_lock:
            entry = self._key_locks.get(key)
            if entry is None:
                entry = self._key_locks[key] = _KeyLock()
            entry.users += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._registry_lock:
                entry.users -= 1
                # keys without a cached value keep no lock once nobody waits on it
                if not entry.users and key not in self._items and self._key_locks.get(key) is entry:
                    del self._key_locks[key]

    def _drop_idle_lock_locked(self, key: K) -> None:
        entry = self._key_locks.get(key)
        if entry is not None and not entry.users:
            del self._key_locks[key]

    def get(self, key: K) -> Optional[V]:
        with self._registry_lock:
            return self._items.get(key)

    def get_or_create(self, key: K, factory: Callable[[], V]) -> V:
        with self._locked(key):
            with self._registry_lock:
                if key in self._items:
                    return self._items[key]
            value = factory()
            with self._registry_lock:
                self._items[key] = value
                overflow = self._overflow_locked(key)
            for old_key, old_value in overflow:
                self._notify(old_key, old_value)
            return value

    def _overflow_locked(self, keep: K):
        if self._max_size is None or len(self._items) <= self._max_size:
            return []
        evicted = []
        # dicts keep insertion order: evict oldest first
        for k in list(self._items):
            if len(self._items) <= self._max_size:
                break
            if k == keep:
                continue
            evicted.append((k, self._items.pop(k)))
            self._drop_idle_lock_locked(k)
        return evicted

    def evict(self, key: K) -> bool:
        with self._locked(key):
            with self._registry_lock:
                if key not in self._items:
                    return False
                value = self._items.pop(key)
        self._notify(key, value)
        return True

    def clear(self) -> int:
        with self._registry_lock:
            items = list(self._items.items())
            self._items.clear()
            for k in list(self._key_locks):
                self._drop_idle_lock_locked(k)
        for k, v in items:
            self._notify(k, v)
        return len(items)

    def _notify(self, key: K, value: V) -> None:
        if self._on_evict is None:
            return
        try:
            self._on_evict(key, value)
        except Exception:
            log.warning("eviction callback failed for %r", key, exc_info=True)

    def __len__(self) -> int:
        with self._registry_lock:
            return len(self._items)

    def __contains__(self, key: object) -> bool:
        with self._registry_lock:
            return key in self._items


@dataclass
class EngineContext:
    catalog: NodeCatalog = field(default_factory=default_catalog)
    config_validator: ConfigValidator = field(default_factory=SchemaConfigValidator)
    version_store: VersionStore = field(default_factory=InMemoryVersionStore)
    workflow_client: Optional[WorkflowClient] = None
    max_versions: int = DEFAULT_MAX_VERSIONS
    profile: Union[Profile, str] = Profile.RUNTIME
    clients: InstanceCache = field(default_factory=InstanceCache)

    def __post_init__(self):
        self.profile = Profile(self.profile)
        if self.max_versions < 1:
            raise ValueError("max_versions must be at least 1")

    @classmethod
    def from_env(cls, env: Optional[Dict[str, str]] = None, **overrides: Any) -> "EngineContext":
        """
        FLOWGUARD_PROFILE       default validation profile
        FLOWGUARD_MAX_VERSIONS  backups kept per workflow
        FLOWGUARD_CATALOG       JSON/YAML node catalog replacing the built-in one
        """
        env = os.environ if env is None else env
        kwargs: Dict[str, Any] = {}
        if env.get("FLOWGUARD_PROFILE"):
            kwargs["profile"] = Profile(env["FLOWGUARD_PROFILE"])
        if env.get("FLOWGUARD_MAX_VERSIONS"):
            kwargs["max_versions"] = int(env["FLOWGUARD_MAX_VERSIONS"])
        if env.get("FLOWGUARD_CATALOG"):
            kwargs["catalog"] = StaticNodeCatalog.from_file(env["FLOWGUARD_CATALOG"])
            log.info("loaded node catalog from %s (%d types)", env["FLOWGUARD_CATALOG"], len(kwargs["catalog"]))
        kwargs.update(overrides)
        return cls(**kwargs)

    def client_for(self, key: Hashable, factory: Callable[[], WorkflowClient]) -> WorkflowClient:
        """Cached remote client per instance key (e.g. base URL)."""
        return self.clients.get_or_create(key, factory)
