"""
Scope Store Adapter — school / branch assignments for administrators.

Rules:
  - Removal is soft (is_active=False); rows are kept for the audit trail.
  - ``has_access_to_scope`` is an exact type+id match on an active,
    non-expired assignment. No inheritance across schools and branches here;
    hierarchy-based decisions live in the authorization engine.
  - Entity admins have implicit tenant-wide access, so assigning them a scope
    is a logged no-op.
  - An acting administrator below sub-entity level can only hand out scopes
    it holds itself (a branch counts when its school is one of the actor's).
  - Override fragments never switch on a flag the acting administrator lacks.
  - db.session.commit() happens only in the mutating functions of this file.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from orgadmin.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from orgadmin.models import db
from orgadmin.models.admin import (
    SCOPE_CAPABILITY_FLAGS,
    SCOPE_TYPES,
    AdminLevel,
    Administrator,
    ScopeAssignment,
)
from orgadmin.models.organisation import Branch, School
from orgadmin.services import audit_service
from orgadmin.services.permission_catalog import validate_permission_set
from orgadmin.services.permission_resolver import ensure_can_grant
from orgadmin.utils.helpers import parse_datetime

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _get_admin(admin_id: str) -> Administrator:
    admin = db.session.get(Administrator, admin_id)
    if admin is None:
        raise NotFoundError(resource="Administrator", resource_id=admin_id)
    return admin


def _parse_expiry(raw) -> datetime | None:
    if raw in (None, ""):
        return None
    expires_at = parse_datetime(raw)
    if expires_at is None:
        raise ValidationError("expires_at must be an ISO 8601 date or datetime",
                              details={"expires_at": str(raw)})
    return expires_at


def list_scopes(admin_id: str, now: datetime | None = None) -> list[dict]:
    """Active, non-expired scope assignments of an administrator, newest first."""
    now = now or _utcnow()
    rows = db.session.execute(
        select(ScopeAssignment)
        .where(
            ScopeAssignment.admin_id == admin_id,
            ScopeAssignment.is_active.is_(True),
        )
        .order_by(ScopeAssignment.assigned_at.desc(), ScopeAssignment.id.desc())
    ).scalars().all()
    return [row.to_dict() for row in rows if not row.is_expired(now)]


def validate_scope_entity(scope_type: str, scope_id: int, company_id: int) -> bool:
    """True if the school/branch exists and belongs to *company_id*."""
    if scope_type == "school":
        school = db.session.get(School, scope_id)
        return school is not None and school.company_id == company_id
    if scope_type == "branch":
        row = db.session.execute(
            select(Branch.id)
            .join(School, School.id == Branch.school_id)
            .where(Branch.id == scope_id, School.company_id == company_id)
        ).first()
        return row is not None
    return False


def within_reach(actor_id: str, scope_type: str, scope_id: int, now: datetime | None = None) -> bool:
    """May *actor_id* hand out this school or branch?

    Entity and sub-entity admins reach every scope of their tenant. Below
    that an actor reaches the entities it is scoped to, plus branches of
    its schools.
    """
    actor = db.session.get(Administrator, actor_id) if actor_id else None
    if actor is None or not actor.is_active:
        return False
    if actor.admin_level in (AdminLevel.ENTITY_ADMIN.value, AdminLevel.SUB_ENTITY_ADMIN.value):
        return True
    if has_access_to_scope(actor_id, scope_type, scope_id, now):
        return True
    if scope_type == "branch":
        branch = db.session.get(Branch, scope_id)
        return branch is not None and branch.school_id in scoped_ids(actor_id, "school", now)
    return False


def _ensure_within_reach(actor_id: str, scope_type: str, scope_id: int, now=None) -> None:
    if not within_reach(actor_id, scope_type, scope_id, now):
        logger.warning("Scope %s %s outside the reach of actor %s", scope_type, scope_id, actor_id)
        raise AuthorizationError(f"{scope_type.title()} {scope_id} is outside your own scopes")


def assign_scope(
    admin_id: str,
    scope: dict,
    *,
    assigned_by: str | None = None,
    now: datetime | None = None,
    commit: bool = True,
) -> dict | None:
    """Assign a school or branch to an administrator.

    Args:
        admin_id:    Target administrator.
        scope:       ``scope_type``, ``scope_id`` and optionally the capability
                     flags, ``permissions`` fragment, ``expires_at``, ``notes``.
        assigned_by: Acting administrator id, stored and audited. When given,
                     the scope must be within its reach and the fragment
                     within its own permissions.
        commit:      False leaves the commit (or rollback) to the caller.

    Returns:
        The new assignment as a dict, or None for entity admins (no-op).

    Raises:
        NotFoundError:   Unknown administrator, or scope entity outside the tenant.
        ValidationError: Bad scope_type, expiry or permission fragment.
        ConflictError:   An active assignment for the same entity exists.
        AuthorizationError / PrivilegeEscalationError: see ``assigned_by``.
    """
    admin = _get_admin(admin_id)
    if admin.admin_level == AdminLevel.ENTITY_ADMIN.value:
        logger.warning(
            "Scope assignment skipped for entity admin %s: implicit full access", admin_id
        )
        return None

    scope_type = (scope.get("scope_type") or "").strip().lower()
    if scope_type not in SCOPE_TYPES:
        raise ValidationError(
            f"scope_type must be one of: {', '.join(SCOPE_TYPES)}",
            details={"scope_type": scope_type},
        )
    try:
        scope_id = int(scope.get("scope_id"))
    except (TypeError, ValueError):
        raise ValidationError("scope_id is required", details={"scope_id": scope.get("scope_id")})

    if not validate_scope_entity(scope_type, scope_id, admin.company_id):
        raise NotFoundError(resource=scope_type.title(), resource_id=scope_id, company_id=admin.company_id)
    if assigned_by is not None:
        _ensure_within_reach(assigned_by, scope_type, scope_id, now)

    permissions = scope.get("permissions")
    if permissions is not None:
        validate_permission_set(permissions, partial=True)
        if assigned_by is not None:
            ensure_can_grant(assigned_by, permissions, now=now)
    expires_at = _parse_expiry(scope.get("expires_at"))

    existing = ScopeAssignment.query.filter_by(
        admin_id=admin_id, scope_type=scope_type, scope_id=scope_id, is_active=True
    ).first()
    if existing is not None:
        raise ConflictError("ScopeAssignment", "scope", f"{scope_type}:{scope_id}")

    assignment = ScopeAssignment(
        admin_id=admin_id,
        company_id=admin.company_id,
        scope_type=scope_type,
        scope_id=scope_id,
        permissions=permissions,
        assigned_by=assigned_by,
        assigned_at=now or _utcnow(),
        expires_at=expires_at,
        notes=scope.get("notes"),
        is_active=True,
    )
    for flag_name in SCOPE_CAPABILITY_FLAGS:
        if flag_name in scope:
            setattr(assignment, flag_name, bool(scope[flag_name]))

    db.session.add(assignment)
    try:
        db.session.flush()
    except IntegrityError:
        # Concurrent insert lost the race on the partial unique index
        db.session.rollback()
        raise ConflictError("ScopeAssignment", "scope", f"{scope_type}:{scope_id}")

    audit_service.record(
        company_id=admin.company_id,
        action_type="scope_assigned",
        actor_id=assigned_by,
        target_id=admin_id,
        target_type="administrator",
        changes={"scope": {"old": None, "new": f"{scope_type}:{scope_id}"}},
        metadata={"source": "scope_service.assign_scope", "assignment_id": assignment.id},
    )
    if commit:
        db.session.commit()
    logger.info("Assigned %s %s to admin %s", scope_type, scope_id, admin_id)
    return assignment.to_dict()


def remove_scope(admin_id: str, scope_assignment_id: int, *, removed_by: str | None = None) -> None:
    """Soft-remove one assignment (is_active=False). The row stays in the store."""
    assignment = db.session.get(ScopeAssignment, scope_assignment_id)
    if assignment is None or assignment.admin_id != admin_id:
        raise NotFoundError(resource="ScopeAssignment", resource_id=scope_assignment_id)
    if not assignment.is_active:
        return

    assignment.deactivate()
    audit_service.record(
        company_id=assignment.company_id,
        action_type="scope_removed",
        actor_id=removed_by,
        target_id=admin_id,
        target_type="administrator",
        changes={"scope": {"old": f"{assignment.scope_type}:{assignment.scope_id}", "new": None}},
        metadata={"source": "scope_service.remove_scope", "assignment_id": assignment.id},
    )
    db.session.commit()
    logger.info("Removed scope assignment %s from admin %s", scope_assignment_id, admin_id)


def has_access_to_scope(
    admin_id: str, scope_type: str, scope_id: int, now: datetime | None = None
) -> bool:
    """Exact-match check for an active, non-expired assignment."""
    rows = ScopeAssignment.query.filter_by(
        admin_id=admin_id, scope_type=scope_type, scope_id=scope_id, is_active=True
    ).all()
    return any(not row.is_expired(now) for row in rows)


def scoped_ids(admin_id: str, scope_type: str, now: datetime | None = None) -> set[int]:
    """Ids of every entity of *scope_type* the administrator is actively scoped to."""
    rows = ScopeAssignment.query.filter_by(
        admin_id=admin_id, scope_type=scope_type, is_active=True
    ).all()
    return {row.scope_id for row in rows if not row.is_expired(now)}


def get_company_scopes(company_id: int, scope_type: str | None = None) -> list[dict]:
    """Every active assignment in a company, optionally limited to one scope type."""
    q = ScopeAssignment.query_active().filter(ScopeAssignment.company_id == company_id)
    if scope_type:
        q = q.filter(ScopeAssignment.scope_type == scope_type)
    rows = q.order_by(ScopeAssignment.assigned_at.desc(), ScopeAssignment.id.desc()).all()
    return [row.to_dict() for row in rows]


def update_scope_permissions(
    scope_assignment_id: int, permissions: dict, *, updated_by: str | None = None
) -> dict:
    """Replace the override fragment on one assignment.

    With ``updated_by`` the same reach and grant rules as ``assign_scope``
    apply; only flags newly switched on are checked against the actor.
    """
    assignment = db.session.get(ScopeAssignment, scope_assignment_id)
    if assignment is None:
        raise NotFoundError(resource="ScopeAssignment", resource_id=scope_assignment_id)
    validate_permission_set(permissions, partial=True)

    old = assignment.permissions or {}
    if updated_by is not None:
        _ensure_within_reach(updated_by, assignment.scope_type, assignment.scope_id)
        ensure_can_grant(updated_by, permissions, previous=old)
    assignment.permissions = permissions
    audit_service.record(
        company_id=assignment.company_id,
        action_type="permission_granted",
        actor_id=updated_by,
        target_id=assignment.admin_id,
        target_type="administrator",
        changes={"scope_permissions": {"old": old, "new": permissions}},
        metadata={"source": "scope_service.update_scope_permissions", "assignment_id": assignment.id},
    )
    db.session.commit()
    return assignment.to_dict()


def expire_scope_assignments(now: datetime | None = None) -> dict:
    """Deactivate assignments whose ``expires_at`` has passed.

    Expired assignments are already ignored by every read path; this job
    makes the store reflect it.
    """
    now = now or _utcnow()
    rows = ScopeAssignment.query.filter(
        ScopeAssignment.is_active.is_(True),
        ScopeAssignment.expires_at.isnot(None),
    ).all()
    expired = 0
    for row in rows:
        if not row.is_expired(now):
            continue
        row.deactivate()
        expired += 1
        audit_service.record(
            company_id=row.company_id,
            action_type="scope_removed",
            actor_id="system",
            target_id=row.admin_id,
            target_type="administrator",
            changes={"scope": {"old": f"{row.scope_type}:{row.scope_id}", "new": None}},
            metadata={"source": "scope_service.expire_scope_assignments", "reason": "expired"},
        )
    if expired:
        db.session.commit()
    return {"expired_assignments": expired}
