"""
Administrator management blueprint.

Endpoints (all under /api/v1, bearer token required):
    GET    /admins                               — visible administrators (filters, paging)
    POST   /admins                               — create
    GET    /admins/<id>                          — one administrator (404 if not visible)
    PUT    /admins/<id>                          — partial update
    DELETE /admins/<id>                          — soft delete (?reassign_to=<id>|root)
    POST   /admins/<id>/restore                  — reactivate
    GET    /admins/<id>/permissions              — effective permission bundle
    GET    /admins/<id>/can-modify?intent=       — decision check
    GET    /admins/<id>/scopes                   — active scope assignments
    POST   /admins/<id>/scopes                   — assign school / branch
    DELETE /admins/<id>/scopes/<assignment_id>   — soft-remove assignment
    PUT    /admins/<id>/parent                   — set / clear parent
    GET    /admins/<id>/reports|descendants|ancestors
    GET    /permissions/can-assign?level=        — privilege-escalation check
    GET    /hierarchy[/stats|/integrity]         — tenant-wide views

The acting administrator comes from the JWT (g.actor_id) and is passed to
the services explicitly. Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, g, jsonify, request

from orgadmin.core.exceptions import AuthorizationError, NotFoundError
from orgadmin.middleware.jwt_auth import require_actor
from orgadmin.models import db
from orgadmin.models.admin import Administrator
from orgadmin.services import admin_service, hierarchy_service, scope_service
from orgadmin.services.authorization import (
    ModifyIntent,
    can_assign_level,
    can_modify,
    ensure_can_modify,
    visible_administrators,
)
from orgadmin.services.permission_resolver import resolve_effective_permissions
from orgadmin.utils.errors import E, api_error, register_error_handlers
from orgadmin.utils.helpers import parse_bool, parse_datetime, parse_int

logger = logging.getLogger(__name__)

admins_bp = Blueprint("admins", __name__, url_prefix="/api/v1")
register_error_handlers(admins_bp)


@admins_bp.before_request
@require_actor
def _authenticated():
    return None


# ── Actor helpers ─────────────────────────────────────────────────────────────


def _actor() -> Administrator:
    actor = db.session.get(Administrator, g.actor_id)
    if actor is None or not actor.is_active:
        raise AuthorizationError("Acting administrator not found or inactive")
    return actor


def _visible_or_404(actor: Administrator, admin_id: str) -> None:
    if not visible_administrators(actor.id, [admin_id]):
        raise NotFoundError(resource="Administrator", resource_id=admin_id, company_id=actor.company_id)


def _bad_expiry(raw):
    return api_error(
        E.VALIDATION_INVALID,
        "expires_at must be an ISO 8601 date or datetime",
        details={"expires_at": str(raw)},
    )


# ═════════════════════════════════════════════════════════════════════════
# Administrators
# ═════════════════════════════════════════════════════════════════════════


@admins_bp.route("/admins", methods=["GET"])
def list_admins():
    """
    Query params:
        admin_level  — filter by level
        is_active    — true / false
        search       — name or email substring
        page, per_page
    """
    actor = _actor()
    max_page = current_app.config.get("ADMIN_PAGE_SIZE_MAX", 200)
    result = admin_service.list_admins(
        actor.company_id,
        actor_id=actor.id,
        admin_level=request.args.get("admin_level") or None,
        is_active=parse_bool(request.args.get("is_active")),
        search=request.args.get("search") or None,
        page=parse_int(request.args.get("page"), 1),
        per_page=parse_int(request.args.get("per_page"), 50, maximum=max_page),
    )
    return jsonify(result)


@admins_bp.route("/admins", methods=["POST"])
def create_admin():
    data = request.get_json(silent=True) or {}
    missing = [f for f in ("name", "email", "admin_level") if not data.get(f)]
    if missing:
        return api_error(E.VALIDATION_REQUIRED, f"Missing required fields: {', '.join(missing)}")
    for scope in data.get("scopes") or []:
        if isinstance(scope, dict) and scope.get("expires_at"):
            expires_at = parse_datetime(scope["expires_at"])
            if expires_at is None:
                return _bad_expiry(scope["expires_at"])
            scope["expires_at"] = expires_at
    admin = admin_service.create_admin(g.actor_id, data)
    return jsonify(admin), 201


@admins_bp.route("/admins/<admin_id>", methods=["GET"])
def get_admin(admin_id):
    actor = _actor()
    _visible_or_404(actor, admin_id)
    return jsonify(admin_service.get_admin(actor.company_id, admin_id))


@admins_bp.route("/admins/<admin_id>", methods=["PUT"])
def update_admin(admin_id):
    data = request.get_json(silent=True) or {}
    return jsonify(admin_service.update_admin(g.actor_id, admin_id, data))


@admins_bp.route("/admins/<admin_id>", methods=["DELETE"])
def deactivate_admin(admin_id):
    reassign = request.args.get("reassign_to")
    if reassign is None:
        result = admin_service.deactivate_admin(g.actor_id, admin_id)
    else:
        result = admin_service.deactivate_admin(
            g.actor_id, admin_id, reassign_to=None if reassign == "root" else reassign
        )
    return jsonify(result)


@admins_bp.route("/admins/<admin_id>/restore", methods=["POST"])
def restore_admin(admin_id):
    return jsonify(admin_service.restore_admin(g.actor_id, admin_id))


# ── Decisions / permissions ──────────────────────────────────────────────────


@admins_bp.route("/admins/<admin_id>/permissions", methods=["GET"])
def effective_permissions(admin_id):
    actor = _actor()
    _visible_or_404(actor, admin_id)
    return jsonify({"admin_id": admin_id, "permissions": resolve_effective_permissions(admin_id)})


@admins_bp.route("/admins/<admin_id>/can-modify", methods=["GET"])
def can_modify_check(admin_id):
    intent = request.args.get("intent", ModifyIntent.UPDATE_PROFILE.value)
    try:
        intent = ModifyIntent(intent)
    except ValueError:
        return api_error(E.VALIDATION_INVALID, f"Unknown intent: {intent}")
    return jsonify(can_modify(g.actor_id, admin_id, intent).to_dict())


@admins_bp.route("/permissions/can-assign", methods=["GET"])
def can_assign_check():
    level = request.args.get("level")
    if not level:
        return api_error(E.VALIDATION_REQUIRED, "level is required")
    return jsonify({"level": level, "allowed": can_assign_level(g.actor_id, level)})


# ── Scopes ───────────────────────────────────────────────────────────────────


@admins_bp.route("/admins/<admin_id>/scopes", methods=["GET"])
def list_scopes(admin_id):
    actor = _actor()
    _visible_or_404(actor, admin_id)
    return jsonify({"items": scope_service.list_scopes(admin_id)})


@admins_bp.route("/admins/<admin_id>/scopes", methods=["POST"])
def assign_scope(admin_id):
    data = request.get_json(silent=True) or {}
    if not data.get("scope_type") or data.get("scope_id") is None:
        return api_error(E.VALIDATION_REQUIRED, "scope_type and scope_id are required")
    ensure_can_modify(g.actor_id, admin_id, ModifyIntent.CHANGE_SCOPE)
    if data.get("expires_at"):
        expires_at = parse_datetime(data["expires_at"])
        if expires_at is None:
            return _bad_expiry(data["expires_at"])
        data["expires_at"] = expires_at
    assignment = scope_service.assign_scope(admin_id, data, assigned_by=g.actor_id)
    if assignment is None:
        return jsonify({"message": "Entity administrators have access to every scope"}), 200
    return jsonify(assignment), 201


@admins_bp.route("/admins/<admin_id>/scopes/<int:assignment_id>", methods=["DELETE"])
def remove_scope(admin_id, assignment_id):
    ensure_can_modify(g.actor_id, admin_id, ModifyIntent.CHANGE_SCOPE)
    scope_service.remove_scope(admin_id, assignment_id, removed_by=g.actor_id)
    return jsonify({"removed": assignment_id})


# ── Hierarchy ────────────────────────────────────────────────────────────────


@admins_bp.route("/admins/<admin_id>/parent", methods=["PUT"])
def set_parent(admin_id):
    data = request.get_json(silent=True) or {}
    ensure_can_modify(g.actor_id, admin_id, ModifyIntent.CHANGE_HIERARCHY)
    admin = hierarchy_service.set_parent(
        admin_id, data.get("parent_admin_id") or None, actor_id=g.actor_id
    )
    return jsonify(admin)


@admins_bp.route("/admins/<admin_id>/reports", methods=["GET"])
def direct_reports(admin_id):
    actor = _actor()
    _visible_or_404(actor, admin_id)
    include_inactive = parse_bool(request.args.get("include_inactive")) or False
    return jsonify({"items": hierarchy_service.get_direct_reports(admin_id, include_inactive)})


@admins_bp.route("/admins/<admin_id>/descendants", methods=["GET"])
def descendants(admin_id):
    actor = _actor()
    _visible_or_404(actor, admin_id)
    return jsonify({"items": hierarchy_service.get_descendants(admin_id)})


@admins_bp.route("/admins/<admin_id>/ancestors", methods=["GET"])
def ancestors(admin_id):
    actor = _actor()
    _visible_or_404(actor, admin_id)
    return jsonify({"items": hierarchy_service.get_ancestor_chain(admin_id)})


@admins_bp.route("/hierarchy", methods=["GET"])
def hierarchy_tree():
    actor = _actor()
    include_inactive = parse_bool(request.args.get("include_inactive")) or False
    return jsonify({"roots": hierarchy_service.hierarchy_tree(actor.company_id, include_inactive)})


@admins_bp.route("/hierarchy/stats", methods=["GET"])
def hierarchy_stats():
    return jsonify(hierarchy_service.hierarchy_stats(_actor().company_id))


@admins_bp.route("/hierarchy/integrity", methods=["GET"])
def hierarchy_integrity():
    return jsonify(hierarchy_service.validate_hierarchy_integrity(_actor().company_id))
