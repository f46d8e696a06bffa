"""Audit trail."""

from .audit_event import AuditEvent, AuditAction, AuditOutcome

__all__ = ["AuditEvent", "AuditAction", "AuditOutcome"]
