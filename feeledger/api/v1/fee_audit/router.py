"""Fee audit router."""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feeledger.auth.dependencies import get_current_user
from feeledger.auth.rbac import check_permission
from feeledger.auth.schemas import CurrentUser
from feeledger.core.enums import AuditEntityType, AuditEvent
from feeledger.db.session import get_db

from .schemas import AuditLogFilters, FeeAuditLogPage
from . import service

router = APIRouter(prefix="/api/v1/fee-audit", tags=["fee-audit"])


@router.get(
    "",
    response_model=FeeAuditLogPage,
    dependencies=[Depends(check_permission("fees", "read"))],
)
async def list_audit_log(
    entity_type: Optional[AuditEntityType] = Query(None),
    entity_id: Optional[UUID] = Query(None),
    event: Optional[AuditEvent] = Query(None),
    member_id: Optional[UUID] = Query(None),
    from_date: Optional[datetime] = Query(None, alias="from"),
    to_date: Optional[datetime] = Query(None, alias="to"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    current_user: CurrentUser = Depends(get_current_user),
) -> FeeAuditLogPage:
    filters = AuditLogFilters(
        entity_type=entity_type,
        entity_id=entity_id,
        event=event,
        member_id=member_id,
        from_date=from_date,
        to_date=to_date,
    )
    return await service.list_audit_log(
        db, current_user.coaching_id, filters, page=page, limit=limit
    )
