"""
Administrator audit trail blueprint.

Endpoints (under /api/v1, bearer token + settings.view_audit_logs required):
    GET  /audit                                   — list / filter entries of the actor's company
    GET  /audit/summary                           — activity counters
    GET  /audit/search?q=                         — substring search over changes / metadata
    GET  /audit/trail/<entity_type>/<entity_id>   — every entry touching one target

The trail is read-only over HTTP; retention cleanup runs as a CLI job.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify, request

from orgadmin.core.exceptions import AuthorizationError
from orgadmin.middleware.jwt_auth import require_actor
from orgadmin.models import db
from orgadmin.models.admin import Administrator
from orgadmin.services import audit_service
from orgadmin.services.permission_resolver import has_permission
from orgadmin.utils.errors import E, api_error, register_error_handlers
from orgadmin.utils.helpers import parse_datetime, parse_int

audit_bp = Blueprint("admin_audit", __name__, url_prefix="/api/v1")
register_error_handlers(audit_bp)


@audit_bp.before_request
@require_actor
def _authenticated():
    return None


def _auditor_company() -> int:
    """Company of the acting administrator, if they may read the audit trail."""
    actor = db.session.get(Administrator, g.actor_id)
    if actor is None or not actor.is_active:
        raise AuthorizationError("Acting administrator not found or inactive")
    if not has_permission(actor.id, "settings.view_audit_logs"):
        raise AuthorizationError("Missing permission settings.view_audit_logs")
    return actor.company_id


# ── List / filter ────────────────────────────────────────────────────────────

@audit_bp.route("/audit", methods=["GET"])
def list_audit_logs():
    """
    Return paginated audit entries, newest first.

    Query params:
        actor_id     — filter by acting administrator
        target_id    — filter by target
        action_type  — filter by action
        date_from    — ISO date / datetime, inclusive
        date_to      — ISO date / datetime, inclusive
        page         — page number (default 1)
        per_page     — items per page (default 50, max 200)
    """
    company_id = _auditor_company()
    return jsonify(audit_service.query_logs(
        company_id,
        actor_id=request.args.get("actor_id") or None,
        target_id=request.args.get("target_id") or None,
        action_type=request.args.get("action_type") or None,
        date_from=parse_datetime(request.args.get("date_from")),
        date_to=parse_datetime(request.args.get("date_to")),
        page=parse_int(request.args.get("page"), 1),
        per_page=parse_int(request.args.get("per_page"), 50, maximum=audit_service.MAX_PAGE_SIZE),
    ))


@audit_bp.route("/audit/summary", methods=["GET"])
def activity_summary():
    return jsonify(audit_service.activity_summary(_auditor_company()))


@audit_bp.route("/audit/search", methods=["GET"])
def search_logs():
    text = (request.args.get("q") or "").strip()
    if not text:
        return api_error(E.VALIDATION_REQUIRED, "q is required")
    company_id = _auditor_company()
    limit = parse_int(request.args.get("limit"), 50, maximum=audit_service.MAX_PAGE_SIZE)
    return jsonify({"items": audit_service.search_logs(company_id, text, limit)})


@audit_bp.route("/audit/trail/<entity_type>/<entity_id>", methods=["GET"])
def entity_trail(entity_type, entity_id):
    company_id = _auditor_company()
    limit = parse_int(request.args.get("limit"), 100, maximum=audit_service.MAX_PAGE_SIZE)
    rows = audit_service.entity_trail(entity_id, entity_type, limit)
    return jsonify({"items": [r for r in rows if r.get("company_id") == company_id]})
