"""Fee audit schemas."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from feeledger.core.enums import AuditEntityType, AuditEvent


class ChangeKind(str, Enum):
    added = "added"
    removed = "removed"
    changed = "changed"
    meta = "meta"


class AuditChange(BaseModel):
    """One row of a rendered audit diff."""

    field: str
    label: str
    change: ChangeKind
    old_value: Any = None
    new_value: Any = None
    old_display: Optional[str] = None
    new_display: Optional[str] = None


class FeeAuditLogResponse(BaseModel):
    id: UUID
    coaching_id: UUID
    entity_type: str
    entity_id: UUID
    member_id: Optional[UUID] = None
    fee_structure_id: Optional[UUID] = None
    event: str
    actor_type: str
    actor_id: Optional[UUID] = None
    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None
    meta: Optional[Dict[str, Any]] = None
    note: Optional[str] = None
    created_at: datetime
    changes: List[AuditChange] = Field(default_factory=list)

    class Config:
        from_attributes = True


class AuditLogFilters(BaseModel):
    entity_type: Optional[AuditEntityType] = None
    entity_id: Optional[UUID] = None
    event: Optional[AuditEvent] = None
    member_id: Optional[UUID] = None
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None


class FeeAuditLogPage(BaseModel):
    logs: List[FeeAuditLogResponse]
    total: int
    page: int
    limit: int
