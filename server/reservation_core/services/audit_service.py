"""Audit log store: append entries inside the caller's transaction and query them."""

import logging
from typing import Any, AsyncIterator, Optional

from sqlalchemy import Select, and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.clock import Clock, system_clock
from ..core.config import settings
from ..core.exceptions import AuditWriteFailure
from ..core.observability import metrics_collector
from ..models.audit import AuditAction, AuditEntry, EntityType
from ..schemas.common import Actor
from .audit_humanizer import GroupPage, group_by_actor, summarize

logger = logging.getLogger(__name__)

NEWEST_FIRST = (AuditEntry.timestamp.desc(), AuditEntry.id.desc())


async def commit_or_fail(db: AsyncSession, entity_type: EntityType | str, entity_id: Any) -> None:
    """
    Commit a transition together with its audit entries.

    Raises:
        AuditWriteFailure: If the commit fails; the session is rolled back so
            neither the state change nor its audit entries survive
    """
    try:
        await db.commit()
    except SQLAlchemyError as e:
        await db.rollback()
        logger.error(
            "Commit of audited transition failed",
            exc_info=True,
            extra={"entity_type": str(entity_type), "entity_id": str(entity_id)}
        )
        raise AuditWriteFailure(_tag(entity_type), str(entity_id), reason=str(e)) from e


def _tag(entity_type: EntityType | str) -> str:
    return entity_type.value if isinstance(entity_type, EntityType) else str(entity_type)


class AuditService:
    """Append-only store for audit entries."""

    def __init__(self, db: AsyncSession, clock: Clock = system_clock):
        self.db = db
        self.clock = clock

    async def record(
        self,
        actor: Actor,
        action: AuditAction,
        entity_type: EntityType | str,
        entity_id: Any,
        before: Optional[dict[str, Any]] = None,
        after: Optional[dict[str, Any]] = None,
        summary: Optional[str] = None,
    ) -> AuditEntry:
        """
        Append one entry in the current transaction.

        The entry is flushed immediately, together with any pending state
        change in the session, so a failing write surfaces before the caller
        commits.

        Args:
            actor: Who performed the transition
            action: Audit action
            entity_type: Entity-type tag of the snapshots
            entity_id: Id of the changed entity
            before: Snapshot before the transition
            after: Snapshot after the transition
            summary: Precomputed one-line description; derived from the
                snapshots when omitted

        Returns:
            AuditEntry: The flushed entry

        Raises:
            AuditWriteFailure: If the entry could not be written; the session
                is rolled back
        """
        tag = _tag(entity_type)
        action_value = action.value if isinstance(action, AuditAction) else str(action)
        entry = AuditEntry(
            timestamp=self.clock.now(),
            actor_id=actor.id,
            actor_name=actor.name,
            actor_role=actor.role.value,
            action=action_value,
            entity_type=tag,
            entity_id=str(entity_id),
            before=before,
            after=after,
            summary=summary or summarize(tag, action_value, before, after),
        )
        self.db.add(entry)

        try:
            await self.db.flush()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "Audit entry write failed",
                exc_info=True,
                extra={"entity_type": tag, "entity_id": str(entity_id), "action": action_value}
            )
            raise AuditWriteFailure(tag, str(entity_id), reason=str(e)) from e

        metrics_collector.record_audit_entry(tag, action_value)
        logger.debug(
            "Audit entry recorded",
            extra={
                "audit_entry_id": entry.id,
                "entity_type": tag,
                "entity_id": str(entity_id),
                "action": action_value,
                "actor_id": actor.id,
            }
        )
        return entry

    async def get_entry(self, entry_id: int) -> Optional[AuditEntry]:
        result = await self.db.execute(select(AuditEntry).where(AuditEntry.id == entry_id))
        return result.scalar_one_or_none()

    async def history(self, entity_type: EntityType | str, entity_id: Any) -> list[AuditEntry]:
        """All entries of one entity, oldest first."""
        stmt = (
            select(AuditEntry)
            .where(AuditEntry.entity_type == _tag(entity_type), AuditEntry.entity_id == str(entity_id))
            .order_by(AuditEntry.timestamp, AuditEntry.id)
        )
        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def list_entries(
        self,
        entity_type: Optional[str] = None,
        entity_id: Optional[str] = None,
        actor: Optional[str] = None,
        role: Optional[str] = None,
        action: Optional[AuditAction] = None,
        limit: Optional[int] = None,
    ) -> list[AuditEntry]:
        """
        Entries matching the filters, newest first.

        Args:
            entity_type: Entity-type tag
            entity_id: Entity id
            actor: Actor id or exact display name
            role: Actor role
            action: Audit action
            limit: Maximum entries loaded; all matching entries when None
        """
        stmt = _filtered(select(AuditEntry), entity_type, entity_id, actor, role, action)
        stmt = stmt.order_by(*NEWEST_FIRST)
        if limit:
            stmt = stmt.limit(limit)

        result = await self.db.execute(stmt)
        return list(result.scalars().all())

    async def count_entries(self, **filters: Any) -> int:
        stmt = _filtered(select(func.count()).select_from(AuditEntry), **filters)
        return (await self.db.execute(stmt)).scalar_one()

    async def count_groups(self, **filters: Any) -> int:
        """Number of runs of consecutive entries by the same actor, counted in SQL."""
        window = _filtered(
            select(
                AuditEntry.actor_id,
                AuditEntry.actor_name,
                AuditEntry.actor_role,
                func.row_number().over(order_by=NEWEST_FIRST).label("position"),
                func.lag(AuditEntry.actor_id).over(order_by=NEWEST_FIRST).label("previous_id"),
                func.lag(AuditEntry.actor_name).over(order_by=NEWEST_FIRST).label("previous_name"),
                func.lag(AuditEntry.actor_role).over(order_by=NEWEST_FIRST).label("previous_role"),
            ),
            **filters,
        ).subquery()

        stmt = select(func.count()).select_from(window).where(
            or_(
                window.c.position == 1,
                window.c.previous_id.is_distinct_from(window.c.actor_id),
                window.c.previous_name.is_distinct_from(window.c.actor_name),
                window.c.previous_role.is_distinct_from(window.c.actor_role),
            )
        )
        return (await self.db.execute(stmt)).scalar_one()

    async def iter_entries(self, batch_size: Optional[int] = None, **filters: Any) -> AsyncIterator[AuditEntry]:
        """Matching entries newest first, fetched in keyset batches."""
        size = batch_size or settings.audit_query_batch_size
        cursor = None
        while True:
            stmt = _filtered(select(AuditEntry), **filters)
            if cursor is not None:
                timestamp, entry_id = cursor
                stmt = stmt.where(
                    or_(
                        AuditEntry.timestamp < timestamp,
                        and_(AuditEntry.timestamp == timestamp, AuditEntry.id < entry_id),
                    )
                )
            stmt = stmt.order_by(*NEWEST_FIRST).limit(size)
            batch = list((await self.db.execute(stmt)).scalars().all())

            for entry in batch:
                yield entry
            if len(batch) < size:
                return
            cursor = (batch[-1].timestamp, batch[-1].id)

    async def query_groups(
        self,
        page: int = 1,
        page_size: Optional[int] = None,
        batch_size: Optional[int] = None,
        **filters: Any,
    ) -> tuple[GroupPage, int]:
        """
        Group matching entries by consecutive actor and return one page.

        Entries are read in batches only as far as the requested page reaches.
        Totals come from count queries over every matching entry.

        Returns:
            tuple: The page of groups and the number of matching entries

        Raises:
            ValueError: If page or page_size is below 1
        """
        size = page_size or settings.audit_page_size
        if page < 1 or size < 1:
            raise ValueError("page and page_size must be at least 1")
        start = (page - 1) * size

        runs = 0
        previous = None
        kept: list[AuditEntry] = []
        async for entry in self.iter_entries(batch_size, **filters):
            identity = (entry.actor_id, entry.actor_name, entry.actor_role)
            if identity != previous:
                runs += 1
                previous = identity
                if runs > start + size:
                    break
            if runs > start:
                kept.append(entry)

        group_page = GroupPage(
            groups=group_by_actor(kept),
            page=page,
            page_size=size,
            total_groups=await self.count_groups(**filters),
        )
        return group_page, await self.count_entries(**filters)


def _filtered(
    stmt: Select,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    actor: Optional[str] = None,
    role: Optional[str] = None,
    action: Optional[AuditAction] = None,
) -> Select:
    if entity_type:
        stmt = stmt.where(AuditEntry.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditEntry.entity_id == entity_id)
    if actor:
        stmt = stmt.where(or_(AuditEntry.actor_id == actor, AuditEntry.actor_name == actor))
    if role:
        stmt = stmt.where(AuditEntry.actor_role == role.upper())
    if action:
        stmt = stmt.where(AuditEntry.action == action.value)
    return stmt
