"""
Audit trail.

Append-only sink for evidence, hypotheses, actions and timeline entries,
queried afterwards for the post-mortem.
"""

from oodasre.audit.store import AuditStore

__all__ = ["AuditStore"]
