"""Append-only audit trail of store commands."""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from ..core.diagram import AuditEntry, TargetType, utc_now


class AuditTrail:
    """Ordered list of :class:`AuditEntry`.

    Unbounded unless ``limit`` is given, in which case the oldest entries
    are dropped first.
    """

    def __init__(self, limit: Optional[int] = None):
        self.limit = limit
        self._entries: List[AuditEntry] = []

    def append(
        self,
        action: str,
        target_type: TargetType,
        target_id: Optional[str] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> AuditEntry:
        entry = AuditEntry(
            action=action,
            target_type=target_type,
            target_id=target_id,
            payload=payload,
        )
        self._entries.append(entry)
        if self.limit is not None and len(self._entries) > self.limit:
            del self._entries[: len(self._entries) - self.limit]
        return entry

    @property
    def entries(self) -> List[AuditEntry]:
        return [entry.model_copy(deep=True) for entry in self._entries]

    def __len__(self) -> int:
        return len(self._entries)


def audit_log_to_json(entries: List[AuditEntry]) -> str:
    """Serialize entries as ``{"generatedAt", "count", "entries"}``."""
    document = {
        "generatedAt": utc_now(),
        "count": len(entries),
        "entries": [
            entry.model_dump(mode="json", by_alias=True, exclude_none=True)
            for entry in entries
        ],
    }
    return json.dumps(document, indent=2, ensure_ascii=False)
