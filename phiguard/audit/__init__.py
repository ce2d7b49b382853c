"""
phiguard Audit Module

- HMAC-signed, append-only JSON-lines ledger
- Query with encounter / event-type / date filters
- Batch integrity verification
"""

from phiguard.audit.events import AuditEventType
from phiguard.audit.ledger import AppendResult, AuditEntry, AuditLedger, IntegrityReport

__all__ = [
    "AppendResult",
    "AuditEntry",
    "AuditEventType",
    "AuditLedger",
    "IntegrityReport",
]
