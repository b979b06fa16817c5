"""
Administrator Service — create, update, deactivate, restore, list.

Every mutating function takes the acting administrator's id explicitly and
asks the authorization engine before touching anything. Mutations and their
audit entries are flushed together and committed once; audit writes are
best-effort and never block the mutation.

Tenant scoping: the actor's company is the only company an operation can
reach. Cross-tenant lookups surface as NotFoundError.
"""

from __future__ import annotations

import logging
import re

from email_validator import EmailNotValidError, validate_email
from sqlalchemy.exc import IntegrityError

from orgadmin.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from orgadmin.models import db
from orgadmin.models.admin import AdminLevel, Administrator
from orgadmin.services import audit_service, hierarchy_service, scope_service
from orgadmin.services.authorization import (
    ModifyIntent,
    ensure_can_assign_level,
    ensure_can_modify,
    visible_administrators,
)
from orgadmin.services.permission_catalog import (
    create_flag_for_level,
    flag,
    permission_differences,
    validate_permission_set,
)
from orgadmin.services.permission_resolver import ensure_can_grant, resolve_effective_permissions

logger = logging.getLogger(__name__)

MIN_NAME_LENGTH = 2
PROFILE_FIELDS = ("name", "email")
ACCOUNT_FIELDS = ("auth_user_id", "metadata")

# Sentinel: re-parent direct reports to the deactivated admin's own parent
TO_OWN_PARENT = object()


# ═══════════════════════════════════════════════════════════════
# Input helpers
# ═══════════════════════════════════════════════════════════════
def _clean_name(raw) -> str:
    name = re.sub(r"\s+", " ", str(raw or "")).strip()
    name = re.sub(r"[<>]", "", name)
    if len(name) < MIN_NAME_LENGTH:
        raise ValidationError(
            f"Name must be at least {MIN_NAME_LENGTH} characters",
            details={"name": "too short"},
        )
    return name


def _clean_email(raw) -> str:
    try:
        valid = validate_email(str(raw or "").strip(), check_deliverability=False)
    except EmailNotValidError as e:
        raise ValidationError(f"Invalid email: {e}", details={"email": "invalid"})
    return valid.normalized.lower()


def _parse_level(raw) -> AdminLevel:
    try:
        return AdminLevel.parse(raw)
    except ValueError:
        raise ValidationError(
            "admin_level must be one of: " + ", ".join(l.value for l in AdminLevel),
            details={"admin_level": raw},
        )


def _get_actor(actor_id: str) -> Administrator:
    actor = db.session.get(Administrator, actor_id) if actor_id else None
    if actor is None or not actor.is_active:
        raise AuthorizationError("Acting administrator not found or inactive")
    return actor


def _get_in_company(admin_id: str, company_id: int) -> Administrator:
    admin = db.session.get(Administrator, admin_id)
    if admin is None or admin.company_id != company_id:
        raise NotFoundError(resource="Administrator", resource_id=admin_id, company_id=company_id)
    return admin


def _ensure_email_free(company_id: int, email: str, exclude_id: str | None = None) -> None:
    q = Administrator.query.filter_by(company_id=company_id, email=email)
    if exclude_id:
        q = q.filter(Administrator.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Administrator", "email", email)


# ═══════════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════════
def create_admin(actor_id: str, data: dict) -> dict:
    """Create an administrator in the actor's company.

    ``data`` keys: name, email, admin_level (required); auth_user_id,
    parent_admin_id, permissions (override fragment), metadata, is_active,
    scopes (list of scope dicts, ignored for entity admins).

    Raises:
        AuthorizationError / PrivilegeEscalationError: actor may not create this
            level, grant these flags or hand out these scopes.
        ValidationError: bad name, email, level, scope or permission fragment.
        ConflictError:   email already used in the company.
        NotFoundError:   parent or scope entity outside the tenant.

    The administrator, its parent edge and its scopes share one transaction.
    """
    actor = _get_actor(actor_id)
    level = _parse_level(data.get("admin_level"))

    ensure_can_assign_level(actor_id, level)
    required = f"users.{create_flag_for_level(level)}"
    if not flag(resolve_effective_permissions(actor_id), required):
        logger.warning("Create denied actor=%s level=%s: missing %s", actor_id, level.value, required)
        raise AuthorizationError(f"Missing permission {required}")

    name = _clean_name(data.get("name"))
    email = _clean_email(data.get("email"))
    permissions = data.get("permissions")
    if permissions:
        validate_permission_set(permissions, partial=True)
        ensure_can_grant(actor_id, permissions)
    _ensure_email_free(actor.company_id, email)

    admin = Administrator(
        company_id=actor.company_id,
        auth_user_id=data.get("auth_user_id"),
        name=name,
        email=email,
        admin_level=level.value,
        permissions=permissions or None,
        meta=data.get("metadata") or {},
        is_active=data.get("is_active", True) is not False,
        created_by=actor_id,
    )
    db.session.add(admin)
    try:
        db.session.flush()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Administrator", "email", email)

    try:
        if data.get("parent_admin_id"):
            hierarchy_service.apply_parent(
                admin, data["parent_admin_id"], actor_id, "admin_service.create_admin"
            )
        if level != AdminLevel.ENTITY_ADMIN:
            for scope in data.get("scopes") or []:
                scope_service.assign_scope(admin.id, scope, assigned_by=actor_id, commit=False)
    except Exception:
        # Nothing of a half-built administrator survives
        db.session.rollback()
        raise

    audit_service.record(
        company_id=actor.company_id,
        action_type="admin_created",
        actor_id=actor_id,
        target_id=admin.id,
        target_type="administrator",
        changes={
            "name": {"old": None, "new": name},
            "email": {"old": None, "new": email},
            "admin_level": {"old": None, "new": level.value},
        },
        metadata={"source": "admin_service.create_admin"},
    )
    db.session.commit()
    logger.info("Admin %s (%s) created by %s", admin.id, level.value, actor_id)
    return admin.to_dict(include_scopes=True)


# ═══════════════════════════════════════════════════════════════
# Update
# ═══════════════════════════════════════════════════════════════
def _intents_for(admin: Administrator, data: dict) -> list[ModifyIntent]:
    """Intents for the fields of *data* that differ from the stored record."""
    intents = []
    if any(f in data for f in PROFILE_FIELDS):
        intents.append(ModifyIntent.UPDATE_PROFILE)
    if any(f in data for f in ACCOUNT_FIELDS):
        intents.append(ModifyIntent.UPDATE_ACCOUNT)
    if "admin_level" in data and data["admin_level"] != admin.admin_level:
        intents.append(ModifyIntent.CHANGE_LEVEL)
    if "permissions" in data and (data["permissions"] or {}) != (admin.permissions or {}):
        intents.append(ModifyIntent.CHANGE_PERMISSIONS)
    if "parent_admin_id" in data and (data["parent_admin_id"] or None) != admin.parent_admin_id:
        intents.append(ModifyIntent.CHANGE_HIERARCHY)
    if "is_active" in data and bool(data["is_active"]) != bool(admin.is_active):
        intents.append(ModifyIntent.RESTORE if data["is_active"] else ModifyIntent.DEACTIVATE)
    return intents


def _record_permission_changes(admin: Administrator, actor_id: str, old: dict, new: dict) -> None:
    diff = permission_differences(old, new)
    granted = {k: v for k, v in diff.items() if v["new"]}
    revoked = {k: v for k, v in diff.items() if not v["new"]}
    for action_type, changes in (("permission_granted", granted), ("permission_revoked", revoked)):
        if changes:
            audit_service.record(
                company_id=admin.company_id,
                action_type=action_type,
                actor_id=actor_id,
                target_id=admin.id,
                target_type="administrator",
                changes=changes,
                metadata={"source": "admin_service.update_admin"},
            )


def update_admin(actor_id: str, admin_id: str, data: dict) -> dict:
    """Apply a partial update. Each kind of change is authorized separately.

    Field edits, re-parenting and an ``is_active`` flip share one
    transaction: if any step fails, nothing is applied.
    """
    actor = _get_actor(actor_id)
    admin = _get_in_company(admin_id, actor.company_id)

    intents = _intents_for(admin, data)
    for intent in intents:
        ensure_can_modify(actor_id, admin_id, intent)

    changes: dict[str, dict] = {}

    if "name" in data:
        name = _clean_name(data["name"])
        if name != admin.name:
            changes["name"] = {"old": admin.name, "new": name}
            admin.name = name

    if "email" in data:
        email = _clean_email(data["email"])
        if email != admin.email:
            _ensure_email_free(admin.company_id, email, exclude_id=admin.id)
            changes["email"] = {"old": admin.email, "new": email}
            admin.email = email

    if "auth_user_id" in data and data["auth_user_id"] != admin.auth_user_id:
        changes["auth_user_id"] = {"old": admin.auth_user_id, "new": data["auth_user_id"]}
        admin.auth_user_id = data["auth_user_id"]

    if "metadata" in data:
        meta = data["metadata"] or {}
        if meta != (admin.meta or {}):
            changes["metadata"] = {"old": admin.meta or {}, "new": meta}
            admin.meta = meta

    if "admin_level" in data:
        level = _parse_level(data["admin_level"])
        if level.value != admin.admin_level:
            ensure_can_assign_level(actor_id, level)
            changes["admin_level"] = {"old": admin.admin_level, "new": level.value}
            admin.admin_level = level.value

    if "permissions" in data:
        new_perms = data["permissions"] or {}
        old_perms = admin.permissions or {}
        if new_perms:
            validate_permission_set(new_perms, partial=True)
            ensure_can_grant(actor_id, new_perms, previous=old_perms)
        if new_perms != old_perms:
            admin.permissions = new_perms or None
            _record_permission_changes(admin, actor_id, old_perms, new_perms)

    try:
        db.session.flush()
        if ModifyIntent.CHANGE_HIERARCHY in intents:
            hierarchy_service.apply_parent(
                admin, data["parent_admin_id"] or None, actor_id, "admin_service.update_admin"
            )
        if changes:
            audit_service.record(
                company_id=admin.company_id,
                action_type="admin_modified",
                actor_id=actor_id,
                target_id=admin.id,
                target_type="administrator",
                changes=changes,
                metadata={"source": "admin_service.update_admin"},
            )
        if ModifyIntent.DEACTIVATE in intents:
            _apply_deactivation(admin, actor_id, TO_OWN_PARENT, "admin_service.update_admin")
        elif ModifyIntent.RESTORE in intents:
            _apply_restore(admin, actor_id, "admin_service.update_admin")
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Administrator", "email", data.get("email"))
    except Exception:
        db.session.rollback()
        raise

    db.session.commit()
    logger.info("Admin %s updated by %s: %s", admin_id, actor_id, sorted(changes))
    return admin.to_dict(include_scopes=True)


# ═══════════════════════════════════════════════════════════════
# Deactivate / restore
# ═══════════════════════════════════════════════════════════════
def _apply_deactivation(admin: Administrator, actor_id: str, reassign_to, source: str) -> int:
    """Move direct reports, flip the flag and audit. Caller commits."""
    new_parent = admin.parent_admin_id if reassign_to is TO_OWN_PARENT else reassign_to
    moved = hierarchy_service.reassign_children(
        admin.id, new_parent, actor_id=actor_id, commit=False
    )
    admin.deactivate()
    audit_service.record(
        company_id=admin.company_id,
        action_type="admin_deleted",
        actor_id=actor_id,
        target_id=admin.id,
        target_type="administrator",
        changes={"is_active": {"old": True, "new": False}},
        metadata={"source": source, "reassigned_reports": moved},
    )
    return moved


def _apply_restore(admin: Administrator, actor_id: str, source: str) -> None:
    admin.restore()
    audit_service.record(
        company_id=admin.company_id,
        action_type="admin_activated",
        actor_id=actor_id,
        target_id=admin.id,
        target_type="administrator",
        changes={"is_active": {"old": False, "new": True}},
        metadata={"source": source},
    )


def deactivate_admin(actor_id: str, admin_id: str, reassign_to=TO_OWN_PARENT) -> dict:
    """Soft-delete an administrator after moving their direct reports.

    Reports go to the deactivated admin's own parent unless ``reassign_to``
    names another administrator (or None to make them roots).
    """
    actor = _get_actor(actor_id)
    admin = _get_in_company(admin_id, actor.company_id)
    ensure_can_modify(actor_id, admin_id, ModifyIntent.DEACTIVATE)
    if not admin.is_active:
        return admin.to_dict()

    try:
        moved = _apply_deactivation(admin, actor_id, reassign_to, "admin_service.deactivate_admin")
    except Exception:
        db.session.rollback()
        raise
    db.session.commit()
    logger.info("Admin %s deactivated by %s (%d reports moved)", admin_id, actor_id, moved)
    return admin.to_dict()


def restore_admin(actor_id: str, admin_id: str) -> dict:
    actor = _get_actor(actor_id)
    admin = _get_in_company(admin_id, actor.company_id)
    ensure_can_modify(actor_id, admin_id, ModifyIntent.RESTORE)
    if admin.is_active:
        return admin.to_dict()

    _apply_restore(admin, actor_id, "admin_service.restore_admin")
    db.session.commit()
    logger.info("Admin %s restored by %s", admin_id, actor_id)
    return admin.to_dict()


# ═══════════════════════════════════════════════════════════════
# Reads
# ═══════════════════════════════════════════════════════════════
def get_admin(company_id: int, admin_id: str) -> dict:
    return _get_in_company(admin_id, company_id).to_dict(include_scopes=True)


def list_admins(
    company_id: int,
    *,
    actor_id: str | None = None,
    admin_level: str | None = None,
    is_active: bool | None = None,
    search: str | None = None,
    page: int = 1,
    per_page: int = 50,
) -> dict:
    """Tenant-scoped listing. With ``actor_id`` only visible administrators are returned."""
    q = Administrator.query_for_company(company_id)
    if admin_level:
        q = q.filter(Administrator.admin_level == _parse_level(admin_level).value)
    if is_active is not None:
        q = q.filter(Administrator.is_active.is_(bool(is_active)))
    if search:
        pattern = f"%{search.strip()}%"
        q = q.filter(db.or_(Administrator.name.ilike(pattern), Administrator.email.ilike(pattern)))
    admins = q.order_by(Administrator.created_at.desc(), Administrator.name).all()

    if actor_id is not None:
        allowed = set(visible_administrators(actor_id, [a.id for a in admins]))
        admins = [a for a in admins if a.id in allowed]

    page = max(1, page)
    per_page = max(1, per_page)
    total = len(admins)
    items = admins[(page - 1) * per_page: page * per_page]
    return {
        "items": [a.to_dict(include_scopes=True) for a in items],
        "total": total,
        "page": page,
        "per_page": per_page,
        "pages": (total + per_page - 1) // per_page,
    }
