"""Audit router: grouped, humanized audit trail for administrators."""

import logging
from typing import Optional

from fastapi import APIRouter, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock
from ..core.dependencies import ClockDependency, DatabaseSession, SuperAdminActor
from ..core.exceptions import NotFoundError
from ..models.audit import AuditAction
from ..schemas.audit import AuditEntryDetail, AuditPage
from ..schemas.common import Actor
from ..services.audit_service import AuditService
from .converters import convert_audit_entry, convert_audit_group

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/audit", tags=["audit"])

# Define dependencies to avoid B008 linting errors
DB_DEPENDENCY = DatabaseSession
ADMIN_DEPENDENCY = SuperAdminActor
CLOCK_DEPENDENCY = ClockDependency
ENTITY_QUERY = Query(None, description="Entity-type tag, e.g. Payment")
ENTITY_ID_QUERY = Query(None, description="Entity ID")
ACTOR_QUERY = Query(None, description="Actor ID or display name")
ROLE_QUERY = Query(None, description="Actor role")
ACTION_QUERY = Query(None, description="Audit action")
PAGE_QUERY = Query(1, ge=1, description="1-based page of actor groups")
PAGE_SIZE_QUERY = Query(None, ge=1, le=200, description="Actor groups per page")


@router.get("", response_model=AuditPage)
async def list_audit_entries(
    entity: Optional[str] = ENTITY_QUERY,
    entity_id: Optional[str] = ENTITY_ID_QUERY,
    actor: Optional[str] = ACTOR_QUERY,
    role: Optional[str] = ROLE_QUERY,
    action: Optional[AuditAction] = ACTION_QUERY,
    page: int = PAGE_QUERY,
    page_size: Optional[int] = PAGE_SIZE_QUERY,
    db: AsyncSession = DB_DEPENDENCY,
    admin: Actor = ADMIN_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """
    Audit trail, newest first, with consecutive entries by the same actor
    grouped together.

    Requires SUPERADMIN.
    """
    group_page, total_entries = await AuditService(db, clock).query_groups(
        page=page,
        page_size=page_size,
        entity_type=entity,
        entity_id=entity_id,
        actor=actor,
        role=role,
        action=action,
    )

    response_data = AuditPage(
        groups=[convert_audit_group(group) for group in group_page.groups],
        page=group_page.page,
        page_size=group_page.page_size,
        total_groups=group_page.total_groups,
        total_entries=total_entries,
    )

    logger.debug(
        "Audit trail queried",
        extra={
            "admin_id": admin.id,
            "entity": entity,
            "entity_id": entity_id,
            "page": page,
            "total_groups": group_page.total_groups,
        }
    )
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))


@router.get("/{entry_id}", response_model=AuditEntryDetail)
async def get_audit_entry(
    entry_id: int,
    db: AsyncSession = DB_DEPENDENCY,
    admin: Actor = ADMIN_DEPENDENCY,
    clock: Clock = CLOCK_DEPENDENCY,
) -> JSONResponse:
    """One entry with its raw snapshots, field changes and humanized details."""
    entry = await AuditService(db, clock).get_entry(entry_id)
    if entry is None:
        raise NotFoundError(resource_type="audit entry", resource_id=str(entry_id))

    response_data = convert_audit_entry(entry, detail=True)
    return JSONResponse(status_code=200, content=response_data.model_dump(mode="json"))
