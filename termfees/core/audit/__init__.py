from termfees.core.audit.models import AuditLog
from termfees.core.audit.service import AuditAction, AuditService

__all__ = ["AuditLog", "AuditAction", "AuditService"]
