from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Generator, Hashable, Iterator, List, Optional, Tuple, TypeVar

from metastudio.core.errors import ConflictError

log = logging.getLogger("metastudio.store")

T = TypeVar("T")

KeyFn = Callable[[Any], Hashable]


class UniqueConstraintError(Exception):
    """Raised by the store when an insert or update would break a unique index."""

    def __init__(self, table: str, key: Hashable):
        super().__init__(f"unique constraint violated on {table}: {key!r}")
        self.table = table
        self.key = key


class Table:
    """Flat id-keyed table with optional unique index.

    Rows are immutable models; updates replace the row object, so a shallow
    copy of the dicts is a complete snapshot.
    """

    def __init__(self, name: str, unique_key: Optional[KeyFn] = None):
        self.name = name
        self._unique_key = unique_key
        self._rows: Dict[str, Any] = {}
        self._index: Dict[Hashable, str] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, row_id: str) -> bool:
        return row_id in self._rows

    def get(self, row_id: str) -> Optional[Any]:
        return self._rows.get(row_id)

    def values(self) -> List[Any]:
        return list(self._rows.values())

    def __iter__(self) -> Iterator[Any]:
        return iter(list(self._rows.values()))

    def find_unique(self, key: Hashable) -> Optional[Any]:
        row_id = self._index.get(key)
        return self._rows.get(row_id) if row_id is not None else None

    def insert(self, row_id: str, row: Any) -> None:
        if row_id in self._rows:
            raise UniqueConstraintError(self.name, row_id)
        if self._unique_key is not None:
            key = self._unique_key(row)
            if key in self._index:
                raise UniqueConstraintError(self.name, key)
            self._index[key] = row_id
        self._rows[row_id] = row

    def replace(self, row_id: str, row: Any) -> None:
        old = self._rows[row_id]
        if self._unique_key is not None:
            old_key = self._unique_key(old)
            new_key = self._unique_key(row)
            if new_key != old_key:
                if new_key in self._index:
                    raise UniqueConstraintError(self.name, new_key)
                del self._index[old_key]
                self._index[new_key] = row_id
        self._rows[row_id] = row

    def delete(self, row_id: str) -> Optional[Any]:
        row = self._rows.pop(row_id, None)
        if row is not None and self._unique_key is not None:
            self._index.pop(self._unique_key(row), None)
        return row

    def snapshot(self) -> Tuple[Dict[str, Any], Dict[Hashable, str]]:
        return dict(self._rows), dict(self._index)

    def restore(self, snap: Tuple[Dict[str, Any], Dict[Hashable, str]]) -> None:
        self._rows, self._index = dict(snap[0]), dict(snap[1])


def _concept_key(c: Any) -> Hashable:
    return c.canonical_key


def _alias_key(a: Any) -> Hashable:
    return (a.concept_id, a.alias_value.lower(), a.source_system)


def _pack_key(p: Any) -> Hashable:
    return p.pack_id


def _rule_key(r: Any) -> Hashable:
    return r.rule_code


def _edge_key(e: Any) -> Hashable:
    return (e.source_id, e.target_id, e.edge_type)


@dataclass
class TenantPartition:
    tenant_id: str
    lock: threading.Lock = field(default_factory=threading.Lock)
    concepts: Table = field(default_factory=lambda: Table("concepts", _concept_key))
    aliases: Table = field(default_factory=lambda: Table("aliases", _alias_key))
    packs: Table = field(default_factory=lambda: Table("standard_packs", _pack_key))
    rules: Table = field(default_factory=lambda: Table("rules", _rule_key))
    entities: Table = field(default_factory=lambda: Table("lineage_entities"))
    edges: Table = field(default_factory=lambda: Table("lineage_edges", _edge_key))

    def tables(self) -> List[Table]:
        return [self.concepts, self.aliases, self.packs, self.rules, self.entities, self.edges]


class MetadataStore:
    """In-memory, tenant-partitioned storage.

    Each tenant owns an independent partition, so no query can reach another
    tenant's rows. Writes go through ``transaction``: the tenant lock is held,
    the partition is snapshotted, and any exception restores the snapshot.
    """

    def __init__(self) -> None:
        self._partitions: Dict[str, TenantPartition] = {}
        self._guard = threading.Lock()

    def partition(self, tenant_id: str) -> TenantPartition:
        p = self._partitions.get(tenant_id)
        if p is None:
            with self._guard:
                p = self._partitions.setdefault(tenant_id, TenantPartition(tenant_id=tenant_id))
        return p

    def tenants(self) -> List[str]:
        return sorted(self._partitions.keys())

    @contextmanager
    def transaction(self, tenant_id: str) -> Generator[TenantPartition, None, None]:
        p = self.partition(tenant_id)
        with p.lock:
            snaps = [(t, t.snapshot()) for t in p.tables()]
            try:
                yield p
            except BaseException:
                for t, snap in snaps:
                    t.restore(snap)
                log.debug("store.rollback tenant=%s", tenant_id)
                raise


def check_then_insert(
    attempt: Callable[[], T],
    *,
    on_conflict: Callable[[UniqueConstraintError], ConflictError],
    retries: int = 1,
) -> T:
    """Run an optimistic check-then-insert, letting the unique index arbitrate.

    ``attempt`` performs its own existence check (raising ``ConflictError``
    directly when it sees the row) and then inserts. A unique-index violation
    means a concurrent writer won the race: retry once, then surface a
    ``ConflictError``.
    """
    for i in range(retries + 1):
        try:
            return attempt()
        except UniqueConstraintError as e:
            log.warning("store.unique_violation table=%s key=%r attempt=%s", e.table, e.key, i + 1)
            if i >= retries:
                raise on_conflict(e) from None
    raise AssertionError("unreachable")
