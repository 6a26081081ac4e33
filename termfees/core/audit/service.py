from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from termfees.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Audited actions of the fee engine."""

    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"

    PROMOTE_TERM = "term.promote"
    REGENERATE_BILL = "fee_bill.regenerate"
    BULK_STATUS_OVERRIDE = "fee_items.bulk_status"
    DELETE_FEE_TEMPLATE = "fee_template.delete"
    FEE_TEMPLATE_STATUS = "fee_template.status"
    INITIALIZE_ACADEMIC_YEAR = "academic_year.initialize"


class AuditService:
    """Writes audit entries inside the caller's transaction."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: int,
        performed_by: str | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry."""
        audit_log = AuditLog(
            action=str(action),
            performed_by=performed_by,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log

    async def list_for_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]:
        """Entries for one entity, newest first."""
        result = await self.db.execute(
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at.desc(), AuditLog.id.desc())
        )
        return list(result.scalars().all())
