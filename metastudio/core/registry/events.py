from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Literal, Optional

log = logging.getLogger("metastudio.events")


ChangeType = Literal["CREATED", "UPDATED", "DEACTIVATED", "DELETED"]

METADATA_CHANGED = "metadata.changed"


def now_utc_iso() -> str:
    return datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True)
class MetadataChanged:
    tenant_id: str
    entity_id: str
    canonical_key: str
    change_type: ChangeType
    ts: str
    changed_fields: List[str] = field(default_factory=list)
    tier: Optional[int] = None
    standard_pack_id: Optional[str] = None

    event_type: str = METADATA_CHANGED

    @staticmethod
    def mk(
        tenant_id: str,
        entity_id: str,
        canonical_key: str,
        change_type: ChangeType,
        changed_fields: Optional[List[str]] = None,
        tier: Optional[int] = None,
        standard_pack_id: Optional[str] = None,
    ) -> "MetadataChanged":
        return MetadataChanged(
            tenant_id=tenant_id,
            entity_id=entity_id,
            canonical_key=canonical_key,
            change_type=change_type,
            ts=now_utc_iso(),
            changed_fields=sorted(changed_fields or []),
            tier=tier,
            standard_pack_id=standard_pack_id,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.event_type,
            "ts": self.ts,
            "tenant_id": self.tenant_id,
            "entity_id": self.entity_id,
            "canonical_key": self.canonical_key,
            "change_type": self.change_type,
            "changed_fields": list(self.changed_fields),
            "tier": self.tier,
            "standard_pack_id": self.standard_pack_id,
        }


Subscriber = Callable[[MetadataChanged], None]


class NotificationBus:
    """Synchronous in-process fan-out of ``metadata.changed`` notifications.

    Published after the write has committed. A failing subscriber is logged
    and skipped; it cannot undo the write or starve other subscribers.
    """

    def __init__(self) -> None:
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, fn: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(fn)

    def publish(self, event: MetadataChanged) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        log.info(
            "%s tenant=%s entity=%s change=%s fields=%s",
            event.event_type,
            event.tenant_id,
            event.entity_id,
            event.change_type,
            ",".join(event.changed_fields),
        )
        for fn in subscribers:
            try:
                fn(event)
            except Exception:
                log.exception("subscriber %s failed for %s", getattr(fn, "__name__", fn), event.event_type)
