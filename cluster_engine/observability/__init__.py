"""
Observability & Audit

RESPONSIBILITY: Append-only audit trail of every engine operation
ALLOWED INPUTS: Audit records from the engine facade
OUTPUTS: Filtered, read-only views of the trail

WHAT THIS COMPONENT MUST NOT DO:
================================
- Modify engine behavior or state
- Make decisions based on logged data
- Block other operations

Diagnostic text goes to the standard ``logging`` loggers of each
module; this trail keeps structured, queryable records of what changed.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Tuple

from ..contracts.base import Timestamp


class AuditEventType(Enum):
    """Explicit audit event types."""
    LIFECYCLE = "lifecycle"
    RELATIONSHIP = "relationship"
    PROPAGATION = "propagation"
    REPAIR = "repair"
    SNAPSHOT = "snapshot"
    REJECTED = "rejected"


@dataclass(frozen=True)
class AuditLogEntry:
    """Immutable audit log entry."""
    entry_id: str
    sequence: int
    event_type: AuditEventType
    timestamp: Timestamp
    action: str
    entity_id: Optional[str] = None
    entity_type: Optional[str] = None
    metadata: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    def metadata_value(self, key: str) -> Optional[str]:
        for k, v in self.metadata:
            if k == key:
                return v
        return None


@dataclass
class ObservabilityConfig:
    """Configuration for the audit trail."""
    enable_audit: bool = True
    max_entries: Optional[int] = 10_000  # None keeps everything


class AuditLog:
    """
    Append-only collector of audit entries.

    When ``max_entries`` is reached the oldest entries are dropped;
    sequence numbers keep increasing so gaps stay visible.
    """

    def __init__(
        self,
        config: Optional[ObservabilityConfig] = None,
        now: Optional[Callable[[], Timestamp]] = None
    ):
        self._config = config or ObservabilityConfig()
        self._now = now or Timestamp.now
        self._entries: List[AuditLogEntry] = []
        self._sequence: int = 0

    def record(
        self,
        event_type: AuditEventType,
        action: str,
        entity_id: Optional[str] = None,
        entity_type: Optional[str] = None,
        **metadata: object
    ) -> Optional[AuditLogEntry]:
        """Append an entry; returns None when auditing is disabled."""
        if not self._config.enable_audit:
            return None

        self._sequence += 1
        entry = AuditLogEntry(
            entry_id=f"audit_{self._sequence}",
            sequence=self._sequence,
            event_type=event_type,
            timestamp=self._now(),
            action=action,
            entity_id=entity_id,
            entity_type=entity_type,
            metadata=tuple((key, str(value)) for key, value in sorted(metadata.items()))
        )
        self._entries.append(entry)

        limit = self._config.max_entries
        if limit is not None and len(self._entries) > limit:
            del self._entries[: len(self._entries) - limit]
        return entry

    def get_entries(
        self,
        event_type: Optional[AuditEventType] = None,
        action: Optional[str] = None,
        entity_id: Optional[str] = None
    ) -> List[AuditLogEntry]:
        """Get entries, optionally filtered."""
        entries = self._entries

        if event_type:
            entries = [e for e in entries if e.event_type == event_type]
        if action:
            entries = [e for e in entries if e.action == action]
        if entity_id:
            entries = [e for e in entries if e.entity_id == entity_id]

        return list(entries)


__all__ = ["AuditEventType", "AuditLogEntry", "ObservabilityConfig", "AuditLog"]
