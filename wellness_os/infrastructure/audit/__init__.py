"""
Decision audit infrastructure.

Every nudge, suppression, safety flag and MVD/streak transition is recorded
through a single AuditSink so the audit schema stays consistent.
"""

from wellness_os.infrastructure.audit.audit_sink import (
    DECISION_TYPES,
    AuditSink,
    PostgresAuditSink,
)

__all__ = ["AuditSink", "DECISION_TYPES", "PostgresAuditSink"]
