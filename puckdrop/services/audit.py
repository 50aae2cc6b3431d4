"""Audit trail: append records inside the caller's transaction, read them back paged."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, List, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

import config
from puckdrop.models import AuditLog
from puckdrop.services.authorization import Action, require_role

logger = logging.getLogger("puckdrop.audit")


@dataclass
class AuditLogPage:
    records: List[AuditLog]
    total_count: int
    has_more: bool
    offset: int = 0
    limit: int = 0


def record(
    session: AsyncSession,
    tournament_id: int,
    user_id: int,
    action: str,
    *,
    from_status: Optional[str] = None,
    to_status: Optional[str] = None,
    entity_type: Optional[str] = None,
    entity_id: Optional[int] = None,
    details: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """Add an audit record. Does not commit - the caller's transaction owns it."""
    entry = AuditLog(
        tournament_id=tournament_id,
        user_id=user_id,
        action=action,
        from_status=from_status,
        to_status=to_status,
        entity_type=entity_type,
        entity_id=entity_id,
        details=details,
        timestamp=datetime.utcnow(),
    )
    session.add(entry)
    logger.info("Audit tournament=%s action=%s user=%s", tournament_id, action, user_id)
    return entry


def describe(entry: AuditLog) -> str:
    """Human-readable summary, e.g. "EnterScore: Scheduled -> Completed"."""
    if entry.from_status and entry.to_status:
        return f"{entry.action}: {entry.from_status} -> {entry.to_status}"
    # "ResolveTies" -> "Resolve Ties"
    words = []
    for ch in entry.action:
        if ch.isupper() and words:
            words.append(" ")
        words.append(ch)
    return "".join(words)


async def get_audit_log(
    session: AsyncSession,
    tournament_id: int,
    actor_id: int,
    offset: int = 0,
    limit: Optional[int] = None,
    action: Optional[str] = None,
    from_date: Optional[datetime] = None,
    to_date: Optional[datetime] = None,
) -> AuditLogPage:
    """Newest-first page of audit records. Requires Scorekeeper or above."""
    await require_role(session, tournament_id, actor_id, Action.VIEW_AUDIT_LOG)

    if limit is None:
        limit = config.AUDIT_LOG_DEFAULT_LIMIT
    limit = max(1, min(limit, config.AUDIT_LOG_MAX_LIMIT))
    offset = max(0, offset)

    conditions = [AuditLog.tournament_id == tournament_id]
    if action:
        conditions.append(AuditLog.action == action)
    if from_date is not None:
        conditions.append(AuditLog.timestamp >= from_date)
    if to_date is not None:
        # to_date covers its whole day
        end_of_day = datetime(to_date.year, to_date.month, to_date.day) + timedelta(days=1)
        conditions.append(AuditLog.timestamp < end_of_day)

    total = await session.scalar(select(func.count(AuditLog.id)).where(*conditions))
    result = await session.execute(
        select(AuditLog)
        .where(*conditions)
        .order_by(AuditLog.timestamp.desc(), AuditLog.id.desc())
        .offset(offset)
        .limit(limit)
    )
    records = list(result.scalars().all())
    total = total or 0
    return AuditLogPage(
        records=records, total_count=total, has_more=offset + limit < total, offset=offset, limit=limit
    )
