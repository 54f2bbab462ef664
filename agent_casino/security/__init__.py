"""Security audit logging for Agent Casino."""
from .audit import AuditLogger, AuditEventType, AuditSeverity

__all__ = ["AuditLogger", "AuditEventType", "AuditSeverity"]
