"""
Authorization Decision Engine — may actor X act on administrator Y?

Decides only; never mutates and never writes audit entries. Callers receive a
``Decision`` (allowed + human-readable reason) and record the outcome of any
state change they go on to perform.

Modify rules, in order:
  1. Self-action is denied, except that an entity admin may change non-activity
     fields (name, email) on their own record; never the authentication
     identity or metadata.
  2. entity_admin may act on anyone in the tenant.
  3. sub_entity_admin may act on anyone except entity admins.
  4. school_admin / branch_admin may act only on strictly lower ranks, so a
     branch admin can act on no administrator at all.
On top of the level rules the actor's resolved ``users.modify_<level>`` flag
must be set.

Level assignment: nobody may create or promote to a rank above their own.

Visibility (read path):
  - entity_admin        everyone in the tenant
  - sub_entity_admin    everyone except entity admins, unless the
                        SUB_ENTITY_SEES_ENTITY_ADMINS policy is on
  - school_admin        self + branch admins scoped to a branch inside one of
                        the actor's schools
  - branch_admin        self only

Lookups fail closed: a missing or inactive actor is denied everything.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum

from flask import current_app, has_app_context
from sqlalchemy import select

from orgadmin.core.exceptions import AuthorizationError, PrivilegeEscalationError, SelfActionError
from orgadmin.models import db
from orgadmin.models.admin import AdminLevel, Administrator, ScopeAssignment
from orgadmin.models.organisation import Branch
from orgadmin.services.permission_catalog import flag, modify_flag_for_level
from orgadmin.services.permission_resolver import resolve_effective_permissions

logger = logging.getLogger(__name__)


class ModifyIntent(str, Enum):
    """What the caller is about to change on the target record."""
    UPDATE_PROFILE = "update_profile"
    UPDATE_ACCOUNT = "update_account"
    DEACTIVATE = "deactivate"
    RESTORE = "restore"
    CHANGE_LEVEL = "change_level"
    CHANGE_HIERARCHY = "change_hierarchy"
    CHANGE_PERMISSIONS = "change_permissions"
    CHANGE_SCOPE = "change_scope"


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        return asdict(self)


ALLOW = Decision(True)


def _deny(reason: str) -> Decision:
    return Decision(False, reason)


def _level_or_none(value):
    try:
        return AdminLevel.parse(value)
    except ValueError:
        return None


# ═════════════════════════════════════════════════════════════════════════════
# Modify
# ═════════════════════════════════════════════════════════════════════════════


def decide_modify(actor, target, intent=ModifyIntent.UPDATE_PROFILE) -> Decision:
    """Pure level/self/tenant rules for two already-loaded administrators."""
    if actor is None or target is None:
        return _deny("Administrator not found")
    intent = ModifyIntent(intent)
    if not actor.is_active:
        return _deny("Inactive administrators cannot manage administrators")
    if actor.company_id != target.company_id:
        return _deny("Administrator belongs to a different organisation")

    actor_level = _level_or_none(actor.admin_level)
    target_level = _level_or_none(target.admin_level)
    if actor_level is None or target_level is None:
        return _deny("Unknown administrator level")

    if actor.id == target.id:
        if intent == ModifyIntent.DEACTIVATE:
            return _deny("You cannot deactivate your own account")
        if actor_level == AdminLevel.ENTITY_ADMIN and intent == ModifyIntent.UPDATE_PROFILE:
            return ALLOW
        return _deny("You cannot modify your own account for security reasons")

    if actor_level == AdminLevel.ENTITY_ADMIN:
        return ALLOW
    if actor_level == AdminLevel.SUB_ENTITY_ADMIN:
        if target_level == AdminLevel.ENTITY_ADMIN:
            return _deny("Sub-entity administrators cannot modify entity administrators")
        return ALLOW
    if actor_level.rank > target_level.rank:
        return ALLOW
    return _deny(
        f"A {actor_level.value} can only manage administrators below their own level"
    )


def can_modify(actor_id: str, target_id: str, intent=ModifyIntent.UPDATE_PROFILE) -> Decision:
    """Store-backed decision: level rules plus the actor's resolved modify flag."""
    actor = db.session.get(Administrator, actor_id) if actor_id else None
    target = db.session.get(Administrator, target_id) if target_id else None
    decision = decide_modify(actor, target, intent)
    if decision.allowed and actor.id != target.id:
        perms = resolve_effective_permissions(actor.id)
        if not flag(perms, f"users.{modify_flag_for_level(target.admin_level)}"):
            decision = _deny(f"Missing permission users.{modify_flag_for_level(target.admin_level)}")
    if not decision.allowed:
        logger.warning(
            "Modify denied actor=%s target=%s intent=%s: %s",
            actor_id, target_id, ModifyIntent(intent).value, decision.reason,
        )
    return decision


def ensure_can_modify(actor_id: str, target_id: str, intent=ModifyIntent.UPDATE_PROFILE) -> None:
    """Raise SelfActionError / AuthorizationError when ``can_modify`` denies."""
    decision = can_modify(actor_id, target_id, intent)
    if decision.allowed:
        return
    if actor_id and actor_id == target_id:
        raise SelfActionError(decision.reason)
    raise AuthorizationError(decision.reason)


# ═════════════════════════════════════════════════════════════════════════════
# Level assignment
# ═════════════════════════════════════════════════════════════════════════════


def level_allows_assign(actor_level, requested_level) -> bool:
    actor_level = _level_or_none(actor_level)
    requested_level = _level_or_none(requested_level)
    if actor_level is None or requested_level is None:
        return False
    return requested_level.rank <= actor_level.rank


def can_assign_level(actor_id: str, level) -> bool:
    """False when *level* ranks above the actor's own level (or the actor is unusable)."""
    actor = db.session.get(Administrator, actor_id) if actor_id else None
    if actor is None or not actor.is_active:
        return False
    allowed = level_allows_assign(actor.admin_level, level)
    if not allowed:
        logger.warning("Level assignment denied actor=%s level=%s", actor_id, level)
    return allowed


def ensure_can_assign_level(actor_id: str, level) -> None:
    if can_assign_level(actor_id, level):
        return
    actor = db.session.get(Administrator, actor_id) if actor_id else None
    if actor is None or not actor.is_active:
        raise AuthorizationError("Acting administrator not found or inactive")
    raise PrivilegeEscalationError(actor.admin_level, str(getattr(level, "value", level)))


# ═════════════════════════════════════════════════════════════════════════════
# Visibility
# ═════════════════════════════════════════════════════════════════════════════


def filter_visible(actor, candidates, *, reachable_ids=frozenset(), include_superiors=True) -> list:
    """Pure visibility filter over loaded administrators, order preserved.

    ``reachable_ids`` are the branch admins a school admin reaches through
    its schools; it is ignored for other levels.
    """
    if actor is None or not actor.is_active:
        return []
    level = _level_or_none(actor.admin_level)
    same_tenant = [c for c in candidates if c.company_id == actor.company_id]

    if level == AdminLevel.ENTITY_ADMIN:
        return same_tenant
    if level == AdminLevel.SUB_ENTITY_ADMIN:
        if include_superiors:
            return same_tenant
        return [
            c for c in same_tenant
            if c.id == actor.id or c.admin_level != AdminLevel.ENTITY_ADMIN.value
        ]
    if level == AdminLevel.SCHOOL_ADMIN:
        return [
            c for c in same_tenant
            if c.id == actor.id
            or (c.admin_level == AdminLevel.BRANCH_ADMIN.value and c.id in reachable_ids)
        ]
    return [c for c in same_tenant if c.id == actor.id]


def branch_admins_in_schools_of(actor_id: str, now: datetime | None = None) -> set[str]:
    """Admins scoped to a branch that lies within a school *actor_id* is scoped to."""
    now = now or datetime.now(timezone.utc)
    school_rows = db.session.execute(
        select(ScopeAssignment).where(
            ScopeAssignment.admin_id == actor_id,
            ScopeAssignment.scope_type == "school",
            ScopeAssignment.is_active.is_(True),
        )
    ).scalars().all()
    school_ids = {row.scope_id for row in school_rows if not row.is_expired(now)}
    if not school_ids:
        return set()

    branch_rows = db.session.execute(
        select(ScopeAssignment)
        .join(Branch, Branch.id == ScopeAssignment.scope_id)
        .where(
            ScopeAssignment.scope_type == "branch",
            ScopeAssignment.is_active.is_(True),
            Branch.school_id.in_(sorted(school_ids)),
        )
    ).scalars().all()
    return {row.admin_id for row in branch_rows if not row.is_expired(now)}


def _sub_entity_policy() -> bool:
    if has_app_context():
        return bool(current_app.config.get("SUB_ENTITY_SEES_ENTITY_ADMINS", True))
    return True


def visible_administrators(
    actor_id: str,
    candidate_ids,
    include_superiors: bool | None = None,
    now: datetime | None = None,
) -> list[str]:
    """Subset of *candidate_ids* the actor may see, in the given order."""
    actor = db.session.get(Administrator, actor_id) if actor_id else None
    if actor is None or not actor.is_active:
        return []
    candidate_ids = list(candidate_ids)
    if not candidate_ids:
        return []

    rows = db.session.execute(
        select(Administrator).where(Administrator.id.in_(candidate_ids))
    ).scalars().all()
    by_id = {a.id: a for a in rows}
    ordered = [by_id[cid] for cid in candidate_ids if cid in by_id]

    reachable = frozenset()
    if actor.admin_level == AdminLevel.SCHOOL_ADMIN.value:
        reachable = frozenset(branch_admins_in_schools_of(actor.id, now))
    if include_superiors is None:
        include_superiors = _sub_entity_policy()

    visible = filter_visible(
        actor, ordered, reachable_ids=reachable, include_superiors=include_superiors
    )
    return [a.id for a in visible]
