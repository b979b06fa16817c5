"""Standardised API error responses.

Usage
-----
    from orgadmin.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Administrator not found")
    return api_error(E.HIERARCHY_CYCLE, str(exc), details={"child_id": exc.child_id})
"""

from __future__ import annotations

from flask import jsonify


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants. All carry the ``ERR_`` prefix."""

    # Validation – HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Authentication – HTTP 401
    UNAUTHORIZED = "ERR_UNAUTHORIZED"

    # Permissions – HTTP 403
    FORBIDDEN = "ERR_FORBIDDEN"
    SELF_ACTION = "ERR_SELF_ACTION"
    PRIVILEGE_ESCALATION = "ERR_PRIVILEGE_ESCALATION"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    HIERARCHY_CYCLE = "ERR_HIERARCHY_CYCLE"

    # Server – HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.SELF_ACTION: 403,
    E.PRIVILEGE_ESCALATION: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.HIERARCHY_CYCLE: 409,
    E.INTERNAL: 500,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation, shown to the user as-is.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, conflicting ids).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)
    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details
    return jsonify(body), http_status


def register_error_handlers(bp):
    """Map the service exception hierarchy onto JSON responses for *bp*."""
    from orgadmin.core.exceptions import (
        AuthorizationError,
        ConflictError,
        CycleError,
        NotFoundError,
        PrivilegeEscalationError,
        SelfActionError,
        ValidationError,
    )

    @bp.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @bp.errorhandler(ValidationError)
    def _invalid(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @bp.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc), details={"field": exc.field})

    @bp.errorhandler(CycleError)
    def _cycle(exc):
        return api_error(
            E.HIERARCHY_CYCLE, str(exc),
            details={"child_id": exc.child_id, "parent_id": exc.parent_id},
        )

    @bp.errorhandler(SelfActionError)
    def _self_action(exc):
        return api_error(E.SELF_ACTION, exc.reason)

    @bp.errorhandler(PrivilegeEscalationError)
    def _escalation(exc):
        details = {"permissions": exc.permissions} if exc.permissions else None
        return api_error(E.PRIVILEGE_ESCALATION, exc.reason, details=details)

    @bp.errorhandler(AuthorizationError)
    def _forbidden(exc):
        return api_error(E.FORBIDDEN, exc.reason)
