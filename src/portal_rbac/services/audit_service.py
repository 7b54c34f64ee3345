"""Audit trail service.

Append-only recording and querying of role changes and denied attempts.
Entries are never updated or deleted; every read is ordered by timestamp,
newest first.
"""

import uuid
from collections import Counter
from datetime import UTC, datetime, timedelta
from typing import Any

from loguru import logger
from sqlalchemy import ColumnElement, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from portal_rbac.core.errors import NotFound
from portal_rbac.core.logging import security_logger
from portal_rbac.lib.exporter import ExportResult, export_records
from portal_rbac.models.audit_log import DENIAL_SENTINELS, AuditLog
from portal_rbac.schemas.audit import AuditFilters
from portal_rbac.services.types import RequestContext, ValidationResult

_SEARCH_COLUMNS = (
    AuditLog.reason,
    AuditLog.user_id,
    AuditLog.performed_by,
    AuditLog.role_before,
    AuditLog.role_after,
    AuditLog.ip_address,
    AuditLog.user_agent,
)

RECENT_ACTIVITY_WINDOWS: tuple[tuple[str, timedelta], ...] = (
    ("last_24_hours", timedelta(hours=24)),
    ("last_7_days", timedelta(days=7)),
    ("last_30_days", timedelta(days=30)),
)


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def entry_to_record(entry: AuditLog) -> dict[str, Any]:
    """Flatten an entry into the dict shape shared by the API and both export formats."""
    return {
        "id": str(entry.id),
        "timestamp": entry.timestamp.isoformat() if entry.timestamp else None,
        "user_id": entry.user_id,
        "role_before": entry.role_before,
        "role_after": entry.role_after,
        "performed_by": entry.performed_by,
        "reason": entry.reason,
        "ip_address": entry.ip_address,
        "user_agent": entry.user_agent,
        "metadata": entry.entry_metadata,
    }


class AuditTrail:
    """Append-only audit log bound to one storage session."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    def stage(
        self,
        *,
        user_id: str,
        role_before: str | None,
        role_after: str,
        performed_by: str,
        reason: str,
        context: RequestContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add an entry to the current transaction without committing.

        Used when the entry must commit together with the change it records.

        Returns:
            The pending AuditLog, with its ID already assigned.
        """
        context = context or RequestContext()
        entry = AuditLog(
            id=uuid.uuid4(),
            user_id=user_id,
            role_before=role_before,
            role_after=role_after,
            performed_by=performed_by,
            reason=reason,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            entry_metadata={**context.as_metadata(), **(metadata or {})},
        )
        self._session.add(entry)
        return entry

    async def append(
        self,
        *,
        user_id: str,
        role_before: str | None,
        role_after: str,
        performed_by: str,
        reason: str,
        context: RequestContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> uuid.UUID:
        """Create and commit an immutable audit entry on its own.

        Returns:
            The new entry's ID.
        """
        entry = self.stage(
            user_id=user_id,
            role_before=role_before,
            role_after=role_after,
            performed_by=performed_by,
            reason=reason,
            context=context,
            metadata=metadata,
        )
        await self._session.commit()
        return entry.id

    def stage_denial(
        self,
        *,
        actor_id: str,
        target_user_id: str,
        sentinel: str,
        reason: str,
        validation: ValidationResult | None = None,
        context: RequestContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Add a denial entry without committing; see ``record_denial``."""
        details: dict[str, Any] = dict(metadata or {})
        if validation is not None:
            details["validation_result"] = validation.as_dict()
        entry = self.stage(
            user_id=target_user_id,
            role_before=None,
            role_after=sentinel,
            performed_by=actor_id,
            reason=reason,
            context=context,
            metadata=details,
        )
        risk = validation.risk_level if validation is not None else None
        security_logger.warning(
            f"Denied {sentinel}: actor={actor_id} target={target_user_id} reason={reason} risk={risk} entry={entry.id}"
        )
        return entry

    async def record_denial(
        self,
        *,
        actor_id: str,
        target_user_id: str,
        sentinel: str,
        reason: str,
        validation: ValidationResult | None = None,
        context: RequestContext | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> uuid.UUID:
        """Commit a denial entry with the validation outcome embedded in its metadata.

        Args:
            actor_id: The actor whose attempt was refused.
            target_user_id: The user the attempt was aimed at.
            sentinel: ``attempt_failed`` or ``blocked``.
            reason: Human-readable reason.
            validation: The ValidationResult that caused the denial.
            context: Request transport details.
            metadata: Additional metadata (attempted role, batch size, ...).

        Returns:
            The new entry's ID.
        """
        entry = self.stage_denial(
            actor_id=actor_id,
            target_user_id=target_user_id,
            sentinel=sentinel,
            reason=reason,
            validation=validation,
            context=context,
            metadata=metadata,
        )
        await self._session.commit()
        return entry.id

    async def get_entry(self, entry_id: uuid.UUID) -> AuditLog:
        """Return one entry.

        Raises:
            NotFound: If the entry does not exist.
        """
        entry = await self._session.get(AuditLog, entry_id)
        if entry is None:
            raise NotFound(f"Audit entry {entry_id} not found", code="AuditEntryNotFound")
        return entry

    @staticmethod
    def _conditions(filters: AuditFilters | None) -> list[ColumnElement[bool]]:
        if filters is None:
            return []
        conditions: list[ColumnElement[bool]] = []
        if filters.user_id is not None:
            conditions.append(AuditLog.user_id == filters.user_id)
        if filters.performed_by is not None:
            conditions.append(AuditLog.performed_by == filters.performed_by)
        if filters.role_before is not None:
            conditions.append(AuditLog.role_before == filters.role_before)
        if filters.role_after is not None:
            conditions.append(AuditLog.role_after == filters.role_after)
        if filters.start_time is not None:
            conditions.append(AuditLog.timestamp >= filters.start_time)
        if filters.end_time is not None:
            conditions.append(AuditLog.timestamp <= filters.end_time)
        if filters.reason:
            conditions.append(AuditLog.reason.ilike(f"%{_escape_like(filters.reason)}%", escape="\\"))
        return conditions

    @staticmethod
    def _scope_condition(scope: str | None) -> list[ColumnElement[bool]]:
        if scope is None:
            return []
        return [or_(AuditLog.user_id == scope, AuditLog.performed_by == scope)]

    async def list_entries(
        self,
        filters: AuditFilters | None = None,
        *,
        page: int = 1,
        page_size: int = 100,
    ) -> tuple[list[AuditLog], int]:
        """Query entries with optional filters.

        Args:
            filters: Filter criteria.
            page: Page number (1-based).
            page_size: Items per page.

        Returns:
            Tuple of (entries, total count matching the filters).
        """
        conditions = self._conditions(filters)
        count_query = select(func.count(AuditLog.id)).where(*conditions)
        total = (await self._session.execute(count_query)).scalar_one()

        offset = (page - 1) * page_size
        query = (
            select(AuditLog)
            .where(*conditions)
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .offset(offset)
            .limit(page_size)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all()), total

    async def search(
        self,
        term: str,
        filters: AuditFilters | None = None,
        *,
        limit: int = 100,
    ) -> list[AuditLog]:
        """Case-insensitive substring search over reason, identities, roles and client details."""
        pattern = f"%{_escape_like(term)}%"
        query = (
            select(AuditLog)
            .where(or_(*(column.ilike(pattern, escape="\\") for column in _SEARCH_COLUMNS)))
            .where(*self._conditions(filters))
            .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
            .limit(limit)
        )
        result = await self._session.execute(query)
        return list(result.scalars().all())

    async def _count(self, conditions: list[ColumnElement[bool]]) -> int:
        result = await self._session.execute(select(func.count(AuditLog.id)).where(*conditions))
        return result.scalar_one()

    async def statistics(self, scope: str | None = None, *, now: datetime | None = None) -> dict[str, Any]:
        """Aggregate the (optionally scoped) log.

        Args:
            scope: When set, only entries where this user is the target or
                the actor are counted.
            now: Reference time for the activity windows (defaults to now, UTC).

        Returns:
            Dict with total_changes, denied_attempts, changes_by_role,
            changes_by_user, changes_by_day and recent_activity_buckets.
        """
        now = now or datetime.now(UTC)
        scoped = self._scope_condition(scope)

        total = await self._count(scoped)
        denied = await self._count([*scoped, AuditLog.role_after.in_(DENIAL_SENTINELS)])

        transition_count = func.count(AuditLog.id).label("count")
        by_role = await self._session.execute(
            select(AuditLog.role_before, AuditLog.role_after, transition_count)
            .where(*scoped)
            .group_by(AuditLog.role_before, AuditLog.role_after)
            .order_by(transition_count.desc(), AuditLog.role_after)
        )
        user_count = func.count(AuditLog.id).label("count")
        by_user = await self._session.execute(
            select(AuditLog.user_id, user_count)
            .where(*scoped)
            .group_by(AuditLog.user_id)
            .order_by(user_count.desc(), AuditLog.user_id)
        )

        buckets = []
        for period, window in RECENT_ACTIVITY_WINDOWS:
            count = await self._count([*scoped, AuditLog.timestamp >= now - window])
            buckets.append({"period": period, "count": count})

        week_rows = await self._session.execute(
            select(AuditLog.timestamp).where(*scoped, AuditLog.timestamp >= now - timedelta(days=7))
        )
        per_day = Counter(ts.date().isoformat() for ts in week_rows.scalars().all())

        return {
            "total_changes": total,
            "denied_attempts": denied,
            "changes_by_role": [
                {"role_before": row.role_before, "role_after": row.role_after, "count": row.count}
                for row in by_role
            ],
            "changes_by_user": [{"user_id": row.user_id, "count": row.count} for row in by_user],
            "changes_by_day": [{"date": day, "count": per_day[day]} for day in sorted(per_day)],
            "recent_activity_buckets": buckets,
        }

    async def dashboard(self, scope: str | None = None, *, top: int = 5) -> dict[str, Any]:
        """Summary for the admin activity dashboard."""
        stats = await self.statistics(scope)
        recent, _total = await self.list_entries(page=1, page_size=top)
        buckets = {b["period"]: b["count"] for b in stats["recent_activity_buckets"]}
        return {
            "summary": {
                "total_changes": stats["total_changes"],
                "denied_attempts": stats["denied_attempts"],
                "changes_today": buckets.get("last_24_hours", 0),
                "changes_this_week": buckets.get("last_7_days", 0),
            },
            "top_users": stats["changes_by_user"][:top],
            "top_changes": stats["changes_by_role"][:top],
            "recent_activities": [entry_to_record(e) for e in recent],
        }

    async def export(
        self,
        filters: AuditFilters | None,
        output_format: str,
        *,
        max_records: int = 10000,
    ) -> ExportResult:
        """Export matching entries as CSV or JSON.

        Both formats are rendered from the same records, so they contain the
        same entries with the same values.

        Raises:
            ValueError: If the format is not supported.
        """
        entries, total = await self.list_entries(filters, page=1, page_size=max_records)
        if total > max_records:
            logger.warning(f"Audit export truncated to {max_records} of {total} entries")
        result = export_records((entry_to_record(e) for e in entries), output_format)
        logger.info(f"Exported {result.record_count} audit entries as {output_format} ({len(result.content)} bytes)")
        return result

