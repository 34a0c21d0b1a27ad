"""Command/history store."""

from .audit import AuditTrail, audit_log_to_json
from .history import HistoryStack
from .store import COMMANDS, DiagramStore

__all__ = [
    "AuditTrail",
    "COMMANDS",
    "DiagramStore",
    "HistoryStack",
    "audit_log_to_json",
]
