"""
JWT Auth Middleware — parses the bearer token and sets ``g.actor_id``.

Token issuance is owned by the external authentication layer; this module
only verifies HS256 access tokens (see ``jwt_service``) and exposes the
actor to the request.

  Authorization: Bearer <token>   →  g.actor_id (int)
  missing / invalid / expired     →  g.actor_id = None, g.auth_error = reason

Views that need an actor are wrapped with ``require_actor`` which answers
401 when ``g.actor_id`` is missing.
"""

import functools
import logging

import jwt as pyjwt
from flask import g, request

from tracker.services.jwt_service import actor_id_from_token
from tracker.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.actor_id = None
        g.auth_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            g.auth_error = "missing bearer token"
            return

        token = auth_header[7:]  # Strip "Bearer "
        try:
            g.actor_id = actor_id_from_token(token)
        except pyjwt.ExpiredSignatureError:
            g.auth_error = "token expired"
        except pyjwt.InvalidTokenError:
            g.auth_error = "invalid token"
            logger.debug("Rejected bearer token on %s", path)


def require_actor(f):
    """Decorator: answer 401 unless a verified actor is on ``g``."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if getattr(g, "actor_id", None) is None:
            return api_error(
                E.UNAUTHORIZED,
                "Authentication required",
                details={"reason": getattr(g, "auth_error", None) or "missing bearer token"},
            )
        return f(*args, **kwargs)

    return decorated
