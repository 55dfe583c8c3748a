"""SharedContextStore -- in-process memory shared by a fleet's members.

Thread-safe key-value store partitioned by namespace, with an optional
per-entry time-to-live and JSON serialization.  Expired entries are invisible
to reads and are dropped by ``purge_expired``.
"""

from __future__ import annotations

import json
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

DEFAULT_NAMESPACE = "default"


@dataclass(frozen=True)
class ContextEntry:
    """One stored value with its write time and optional expiry."""

    key: str
    value: Any
    namespace: str = DEFAULT_NAMESPACE
    source: str = ""
    created_at: float = field(default_factory=time.time)
    expires_at: float | None = None

    def expired(self, now: float) -> bool:
        return self.expires_at is not None and now >= self.expires_at


class SharedContextStore:
    """Thread-safe namespaced context store.

    Parameters
    ----------
    default_ttl:
        Seconds an entry lives when ``put`` is not given a ``ttl``.
        ``None`` keeps entries until deleted.
    clock:
        Time source, ``time.time`` by default (tests inject a fake clock).
    """

    def __init__(
        self,
        default_ttl: float | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if default_ttl is not None and default_ttl <= 0:
            raise ValueError(f"default_ttl must be positive, got {default_ttl}")
        self._entries: dict[tuple[str, str], ContextEntry] = {}
        self._lock = threading.Lock()
        self._default_ttl = default_ttl
        self._clock = clock

    def put(
        self,
        key: str,
        value: Any,
        namespace: str = DEFAULT_NAMESPACE,
        ttl: float | None = None,
        source: str = "",
    ) -> ContextEntry:
        """Store *value* under ``(namespace, key)`` and return the entry."""
        ttl = ttl if ttl is not None else self._default_ttl
        now = self._clock()
        entry = ContextEntry(
            key=key,
            value=value,
            namespace=namespace,
            source=source,
            created_at=now,
            expires_at=now + ttl if ttl is not None else None,
        )
        with self._lock:
            self._entries[(namespace, key)] = entry
        return entry

    def get_entry(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> ContextEntry | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get((namespace, key))
            if entry is None or entry.expired(now):
                return None
            return entry

    def get(self, key: str, namespace: str = DEFAULT_NAMESPACE, default: Any = None) -> Any:
        """Return the live value under ``(namespace, key)`` or *default*."""
        entry = self.get_entry(key, namespace)
        return default if entry is None else entry.value

    def delete(self, key: str, namespace: str = DEFAULT_NAMESPACE) -> bool:
        """Remove an entry. Returns True if it existed."""
        with self._lock:
            return self._entries.pop((namespace, key), None) is not None

    def keys(self, namespace: str = DEFAULT_NAMESPACE) -> list[str]:
        """Return the live keys of *namespace*, in insertion order."""
        now = self._clock()
        with self._lock:
            return [
                key for (ns, key), entry in self._entries.items()
                if ns == namespace and not entry.expired(now)
            ]

    def namespaces(self) -> list[str]:
        with self._lock:
            return sorted({ns for ns, _ in self._entries})

    def purge_expired(self) -> int:
        """Drop every expired entry and return how many were removed."""
        now = self._clock()
        with self._lock:
            stale = [k for k, entry in self._entries.items() if entry.expired(now)]
            for k in stale:
                del self._entries[k]
        return len(stale)

    def clear(self, namespace: str | None = None) -> None:
        with self._lock:
            if namespace is None:
                self._entries.clear()
            else:
                for k in [k for k in self._entries if k[0] == namespace]:
                    del self._entries[k]

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, item: tuple[str, str]) -> bool:
        namespace, key = item
        return self.get_entry(key, namespace) is not None

    # -- serialization ---------------------------------------------------------

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """Serialize live entries as ``{namespace: {key: entry-dict}}``."""
        now = self._clock()
        out: dict[str, dict[str, Any]] = {}
        with self._lock:
            for (namespace, key), entry in self._entries.items():
                if entry.expired(now):
                    continue
                out.setdefault(namespace, {})[key] = {
                    "value": entry.value,
                    "source": entry.source,
                    "created_at": entry.created_at,
                    "expires_at": entry.expires_at,
                }
        return out

    @classmethod
    def from_dict(cls, data: dict[str, dict[str, Any]], **kwargs: Any) -> SharedContextStore:
        store = cls(**kwargs)
        for namespace, entries in data.items():
            for key, d in entries.items():
                store._entries[(namespace, key)] = ContextEntry(
                    key=key,
                    value=d.get("value"),
                    namespace=namespace,
                    source=d.get("source", ""),
                    created_at=d.get("created_at", 0.0),
                    expires_at=d.get("expires_at"),
                )
        return store

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    @classmethod
    def from_json(cls, json_str: str, **kwargs: Any) -> SharedContextStore:
        return cls.from_dict(json.loads(json_str), **kwargs)
