"""
JWT Auth Middleware — parses the bearer token and sets the request identity.

  Authorization: Bearer <token>  →  g.actor_id, g.company_id

Invalid or expired tokens leave the identity empty; ``require_actor``
turns that into a 401 for the routes that need an acting administrator.
Services never read ``g`` themselves: blueprints pass ``g.actor_id`` in.
"""

import logging
from functools import wraps

import jwt as pyjwt
from flask import g, request

from orgadmin.services.jwt_service import decode_access_token
from orgadmin.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor_id = None
        g.company_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError:
            logger.warning("Invalid access token on %s", path)
            return
        g.actor_id = payload.get("sub")
        g.company_id = payload.get("company_id")


def require_actor(fn):
    """Reject the request with 401 unless a valid token identified the actor."""

    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not getattr(g, "actor_id", None):
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return fn(*args, **kwargs)

    return wrapper
