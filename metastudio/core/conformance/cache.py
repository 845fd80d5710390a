from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple

from metastudio.core.registry.events import MetadataChanged

CacheKey = Tuple[str, str, str]  # (tenant_id, concept_id, pack_id)


@dataclass
class CacheEntry:
    created_at: float
    result: Any


class ConformanceCache:
    """Bounded TTL cache of conformance snapshots.

    A ``metadata.changed`` event drops every entry of its tenant: quality
    uniqueness depends on the other concepts, not only the one that changed.
    """

    def __init__(self, max_entries: int = 1024, ttl_seconds: int = 300):
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._store: Dict[CacheKey, CacheEntry] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._store)

    def _evict_if_needed(self) -> None:
        if len(self._store) <= self.max_entries:
            return
        # evict oldest
        oldest_key = min(self._store.items(), key=lambda kv: kv[1].created_at)[0]
        self._store.pop(oldest_key, None)

    def _is_expired(self, entry: CacheEntry) -> bool:
        return (time.time() - entry.created_at) > self.ttl_seconds

    def get(self, key: CacheKey) -> Optional[Any]:
        with self._lock:
            entry = self._store.get(key)
            if not entry:
                self.misses += 1
                return None
            if self._is_expired(entry):
                self._store.pop(key, None)
                self.misses += 1
                return None
            self.hits += 1
            return entry.result

    def set(self, key: CacheKey, result: Any) -> None:
        with self._lock:
            self._store[key] = CacheEntry(created_at=time.time(), result=result)
            self._evict_if_needed()

    def invalidate_tenant(self, tenant_id: str) -> int:
        with self._lock:
            stale = [k for k in self._store if k[0] == tenant_id]
            for k in stale:
                self._store.pop(k, None)
        return len(stale)

    def on_metadata_changed(self, event: MetadataChanged) -> None:
        self.invalidate_tenant(event.tenant_id)
