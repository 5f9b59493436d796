"""
Session Context Middleware - per-request caller identity.

The caller's identity and role claim arrive in trusted headers set by the
fronting gateway:

    X-User-Id:    7
    X-User-Roles: DOT,ADERENTE

No authentication happens here.  The middleware only builds an immutable
``SessionContext`` and stores it on ``g.session_ctx`` so blueprints can
hand it explicitly to the services.  Requests without the headers get the
anonymous context, which holds no capability.
"""

import logging

from flask import g, request

from retail_audit.services.permission import ANONYMOUS, SessionContext

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"
ROLES_HEADER = "X-User-Roles"


def init_session_context(app):
    """Register the before_request hook that builds ``g.session_ctx``."""

    @app.before_request
    def _session_context():
        g.session_ctx = ANONYMOUS
        if not request.path.startswith("/api/"):
            return None
        user_id = request.headers.get(USER_ID_HEADER)
        if not user_id:
            return None
        g.session_ctx = SessionContext.build(user_id, request.headers.get(ROLES_HEADER, ""))
        return None


def current_session() -> SessionContext:
    """The SessionContext of the current request (anonymous outside one)."""
    return getattr(g, "session_ctx", ANONYMOUS)
