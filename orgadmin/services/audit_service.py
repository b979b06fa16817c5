"""
Audit Recorder — append-only trail of administrator management actions.

Write policy is best-effort: ``record`` never raises. A failed audit write is
logged with its traceback and the primary operation's outcome stands. Rows
are written inside a SAVEPOINT so a failed insert cannot poison the caller's
transaction.

Read side:
  - query_logs         tenant-scoped filtered, paginated listing
  - activity_summary   recency buckets, critical count, per-type / per-actor
  - entity_trail       every entry touching one target
  - search_logs        substring match over changes / metadata
  - cleanup_old_logs   retention job (the only path that removes rows)
"""

from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from orgadmin.models import db
from orgadmin.models.audit import AUDIT_ACTIONS, CRITICAL_ACTIONS, AdminAuditLog

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def is_critical_action(action_type: str) -> bool:
    return action_type in CRITICAL_ACTIONS


def _request_metadata() -> dict:
    """IP / user agent of the current Flask request, if there is one."""
    from flask import has_request_context, request

    if not has_request_context():
        return {}
    return {
        "ip_address": request.headers.get("X-Forwarded-For", request.remote_addr),
        "user_agent": (request.user_agent.string or None) if request.user_agent else None,
    }


def _build_entry(
    *,
    company_id,
    action_type,
    actor_id,
    target_id,
    target_type,
    changes,
    metadata,
    ip_address,
    user_agent,
    created_at,
) -> AdminAuditLog:
    req = _request_metadata()
    entry = AdminAuditLog(
        company_id=company_id,
        action_type=action_type,
        actor_id=str(actor_id) if actor_id is not None else "system",
        target_id=str(target_id) if target_id is not None else None,
        target_type=target_type,
        changes=changes or {},
        context=metadata or {},
        ip_address=ip_address or req.get("ip_address"),
        user_agent=user_agent or req.get("user_agent"),
    )
    if created_at is not None:
        entry.created_at = created_at
    return entry


def record(
    *,
    company_id: int | None,
    action_type: str,
    actor_id: str | None,
    target_id: str | None = None,
    target_type: str | None = None,
    changes: dict | None = None,
    metadata: dict | None = None,
    ip_address: str | None = None,
    user_agent: str | None = None,
    created_at: datetime | None = None,
) -> AdminAuditLog | None:
    """Append one immutable audit entry. Returns it, or None if the write failed.

    Uses ``flush`` inside a savepoint; callers keep transaction control and
    commit alongside their own changes.
    """
    if action_type not in AUDIT_ACTIONS:
        logger.error("Audit write skipped: unknown action_type %r", action_type)
        return None
    try:
        entry = _build_entry(
            company_id=company_id,
            action_type=action_type,
            actor_id=actor_id,
            target_id=target_id,
            target_type=target_type,
            changes=changes,
            metadata=metadata,
            ip_address=ip_address,
            user_agent=user_agent,
            created_at=created_at,
        )
        with db.session.begin_nested():
            db.session.add(entry)
        return entry
    except Exception:
        logger.exception(
            "Audit write failed action=%s actor=%s target=%s", action_type, actor_id, target_id
        )
        return None


# ═════════════════════════════════════════════════════════════════════════════
# Read side
# ═════════════════════════════════════════════════════════════════════════════


def query_logs(
    company_id: int,
    *,
    actor_id: str | None = None,
    target_id: str | None = None,
    action_type: str | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = 1,
    per_page: int = DEFAULT_PAGE_SIZE,
) -> dict:
    """Return one page of a company's audit entries, newest first."""
    q = AdminAuditLog.query.filter(AdminAuditLog.company_id == company_id)
    if actor_id:
        q = q.filter(AdminAuditLog.actor_id == actor_id)
    if target_id:
        q = q.filter(AdminAuditLog.target_id == target_id)
    if action_type:
        q = q.filter(AdminAuditLog.action_type == action_type)
    if date_from is not None:
        q = q.filter(AdminAuditLog.created_at >= date_from)
    if date_to is not None:
        q = q.filter(AdminAuditLog.created_at <= date_to)

    q = q.order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc())

    page = max(1, page)
    per_page = min(MAX_PAGE_SIZE, max(1, per_page))
    paginated = q.paginate(page=page, per_page=per_page, error_out=False)
    return {
        "logs": [log.to_dict() for log in paginated.items],
        "total": paginated.total,
        "page": paginated.page,
        "per_page": paginated.per_page,
        "pages": paginated.pages,
    }


def _count_since(company_id: int, since: datetime, actions=None) -> int:
    q = db.session.query(func.count(AdminAuditLog.id)).filter(
        AdminAuditLog.company_id == company_id,
        AdminAuditLog.created_at >= since,
    )
    if actions:
        q = q.filter(AdminAuditLog.action_type.in_(sorted(actions)))
    return q.scalar() or 0


def activity_summary(company_id: int, now: datetime | None = None) -> dict:
    """Dashboard counters for one company.

    Buckets: since UTC midnight, last 7 days, last 30 days. ``critical_actions``
    counts critical entries in the last 7 days.
    """
    now = now or _utcnow()
    today = now.replace(hour=0, minute=0, second=0, microsecond=0)
    week_ago = now - timedelta(days=7)
    month_ago = now - timedelta(days=30)

    logs = (
        AdminAuditLog.query
        .filter(AdminAuditLog.company_id == company_id)
        .order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc())
        .all()
    )
    by_type = Counter(log.action_type for log in logs)
    by_actor = Counter(log.actor_id for log in logs)
    critical = [log for log in logs if log.is_critical]

    return {
        "today": _count_since(company_id, today),
        "week": _count_since(company_id, week_ago),
        "month": _count_since(company_id, month_ago),
        "critical_actions": _count_since(company_id, week_ago, CRITICAL_ACTIONS),
        "total_actions": len(logs),
        "actions_by_type": dict(by_type),
        "most_active_users": [
            {"user_id": actor, "action_count": count}
            for actor, count in by_actor.most_common(10)
        ],
        "recent_critical_actions": [log.to_dict() for log in critical[:10]],
    }


def entity_trail(entity_id: str, entity_type: str, limit: int = 100) -> list[dict]:
    """Every entry whose target is (*entity_type*, *entity_id*), newest first."""
    rows = (
        AdminAuditLog.query
        .filter(
            AdminAuditLog.target_id == str(entity_id),
            AdminAuditLog.target_type == entity_type,
        )
        .order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return [r.to_dict() for r in rows]


def search_logs(company_id: int, text: str, limit: int = 50) -> list[dict]:
    """Case-insensitive substring search over serialised changes and metadata."""
    pattern = f"%{text}%"
    rows = (
        AdminAuditLog.query
        .filter(AdminAuditLog.company_id == company_id)
        .filter(
            db.or_(
                db.cast(AdminAuditLog.changes, db.String).ilike(pattern),
                db.cast(AdminAuditLog.context, db.String).ilike(pattern),
            )
        )
        .order_by(AdminAuditLog.created_at.desc(), AdminAuditLog.id.desc())
        .limit(limit)
        .all()
    )
    return [r.to_dict() for r in rows]


def cleanup_old_logs(retention_days: int = 365, now: datetime | None = None) -> int:
    """Retention job: bulk-delete entries older than *retention_days*.

    This is the only code path that removes audit rows. Returns the number
    of rows removed.
    """
    if retention_days < 1:
        raise ValueError("retention_days must be at least 1")
    cutoff = (now or _utcnow()) - timedelta(days=retention_days)
    removed = (
        AdminAuditLog.query
        .filter(AdminAuditLog.created_at < cutoff)
        .delete(synchronize_session=False)
    )
    db.session.commit()
    logger.info(
        "Audit retention cleanup removed %d entries older than %s", removed, cutoff.isoformat()
    )
    return removed
