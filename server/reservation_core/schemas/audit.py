"""Audit trail Pydantic schemas."""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from ..models.audit import AuditAction
from .common import ActorRole


class FieldChange(BaseModel):
    """One human-readable difference between two snapshots."""

    field: str = Field(..., description="Canonical field name")
    label: str = Field(..., description="Display label of the field")
    kind: Literal["changed", "added", "removed"] = Field("changed", description="Kind of change")
    name: Optional[str] = Field(None, description="Display name of the list item, for list fields")
    before: Optional[Any] = Field(None, description="Display value before")
    after: Optional[Any] = Field(None, description="Display value after")


class AuditActor(BaseModel):
    """Actor identity as recorded on the entry."""

    id: str
    name: str
    role: ActorRole | str


class AuditEntry(BaseModel):
    """Audit entry with its rendered changes."""

    id: int
    timestamp: datetime
    actor: AuditActor
    action: AuditAction
    entity_type: str
    entity_id: str
    summary: Optional[str] = None
    changes: List[FieldChange] = Field(default_factory=list)
    details: Dict[str, Any] = Field(
        default_factory=dict,
        description="Humanized full snapshot for CREATE/DELETE entries"
    )


class AuditEntryDetail(AuditEntry):
    """Single audit entry with raw snapshots."""

    before: Optional[Dict[str, Any]] = None
    after: Optional[Dict[str, Any]] = None


class AuditGroup(BaseModel):
    """Consecutive entries made by the same actor."""

    actor: AuditActor
    started_at: datetime
    ended_at: datetime
    entries: List[AuditEntry]


class AuditPage(BaseModel):
    """One page of actor groups."""

    groups: List[AuditGroup]
    page: int
    page_size: int
    total_groups: int
    total_entries: int
