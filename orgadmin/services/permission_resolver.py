"""
Permission Resolver — effective permissions for one administrator.

Resolution order:
  1. level defaults from the catalog
  2. the administrator's own override fragment
  3. override fragments of every active, non-expired scope assignment

Steps 2 and 3 use the catalog's true-biased OR-merge, so overrides can only
add capabilities.

Failure policy is fail-closed: a missing administrator, or any lookup error,
resolves to the all-False minimal bundle. Nothing here writes to the store.

``ensure_can_grant`` keeps overrides from exceeding the granting actor:
nobody can switch on a flag their own resolved bundle lacks.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from orgadmin.core.exceptions import PrivilegeEscalationError
from orgadmin.models import db
from orgadmin.models.admin import AdminLevel, Administrator, ScopeAssignment
from orgadmin.services.permission_catalog import (
    default_permissions_for,
    flag,
    granted_flags,
    merge_permissions,
    minimal_permissions,
)

logger = logging.getLogger(__name__)


def active_scope_assignments(admin_id: str, now: datetime | None = None) -> list[ScopeAssignment]:
    """Active, non-expired scope assignments for an administrator."""
    now = now or datetime.now(timezone.utc)
    rows = db.session.execute(
        select(ScopeAssignment)
        .where(
            ScopeAssignment.admin_id == admin_id,
            ScopeAssignment.is_active.is_(True),
        )
        .order_by(ScopeAssignment.assigned_at.desc(), ScopeAssignment.id.desc())
    ).scalars().all()
    return [row for row in rows if not row.is_expired(now)]


def compute_permissions(administrator: Administrator, scopes=(), now: datetime | None = None) -> dict:
    """Pure merge for an already-loaded administrator and its scope rows.

    Inactive or expired scope rows contribute nothing.
    """
    effective = default_permissions_for(administrator.admin_level)
    effective = merge_permissions(effective, administrator.permissions)
    for scope in scopes:
        if not scope.is_effective(now):
            continue
        effective = merge_permissions(effective, scope.permissions)
    return effective


def resolve_effective_permissions(admin_id: str, now: datetime | None = None) -> dict:
    """Return the fully merged permission bundle for *admin_id*.

    Never raises: unknown administrators and store errors yield
    ``minimal_permissions()``.
    """
    try:
        administrator = db.session.get(Administrator, admin_id)
        if administrator is None:
            logger.info("Permission resolution for unknown admin %s -> minimal", admin_id)
            return minimal_permissions()
        scopes = active_scope_assignments(admin_id, now)
        return compute_permissions(administrator, scopes, now)
    except SQLAlchemyError:
        logger.exception("Permission resolution failed for admin %s -> minimal", admin_id)
        return minimal_permissions()


def has_permission(admin_id: str, dotted: str, now: datetime | None = None) -> bool:
    """Check a single ``"category.key"`` flag against the resolved bundle."""
    return flag(resolve_effective_permissions(admin_id, now), dotted)


def can_perform_action(
    admin_id: str,
    dotted: str,
    scope_type: str | None = None,
    scope_id: int | None = None,
    now: datetime | None = None,
) -> bool:
    """Resolved flag check, narrowed to one school or branch when a scope is named.

    With ``scope_type`` and ``scope_id`` the administrator must also hold an
    active, non-expired assignment for exactly that entity. Entity admins
    have implicit access to every scope in their tenant.
    """
    from orgadmin.services.scope_service import has_access_to_scope

    if not has_permission(admin_id, dotted, now):
        return False
    if scope_type is None or scope_id is None:
        return True
    administrator = db.session.get(Administrator, admin_id)
    if administrator is not None and administrator.admin_level == AdminLevel.ENTITY_ADMIN.value:
        return True
    return has_access_to_scope(admin_id, scope_type, scope_id, now)


def ensure_can_grant(
    actor_id: str, fragment: dict | None, previous: dict | None = None, now: datetime | None = None
) -> None:
    """Reject an override fragment that turns on flags the actor does not hold.

    Only flags newly switched on relative to ``previous`` are checked;
    ``False`` leaves grant nothing and always pass.

    Raises:
        PrivilegeEscalationError: listing the offending dotted keys.
    """
    requested = granted_flags(fragment, previous)
    if not requested:
        return
    actor = db.session.get(Administrator, actor_id) if actor_id else None
    held = resolve_effective_permissions(actor_id, now) if actor is not None else minimal_permissions()
    missing = [dotted for dotted in requested if not flag(held, dotted)]
    if missing:
        logger.warning("Grant denied actor=%s: does not hold %s", actor_id, ", ".join(missing))
        raise PrivilegeEscalationError(
            actor.admin_level if actor is not None else "unknown administrator",
            permissions=missing,
        )
