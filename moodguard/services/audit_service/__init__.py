"""Audit Service: tamper-evident trail of risk and escalation decisions."""

from .audit_logger import AuditAction, AuditEntity, AuditEntry, AuditLogger
from .audit_repository import AuditRepository, create_audit_logger_from_env

__all__ = [
    "AuditAction",
    "AuditEntity",
    "AuditEntry",
    "AuditLogger",
    "AuditRepository",
    "create_audit_logger_from_env",
]
